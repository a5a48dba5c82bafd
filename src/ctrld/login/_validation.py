"""Syntax checks for the credentials submitted to the setup server."""

import re

MAX_ACCOUNT_NAME_LENGTH = 64
MAX_API_TOKEN_LENGTH = 256
API_TOKEN_PREFIX = "api."

_ACCOUNT_NAME_PATTERN = re.compile(r"[A-Za-z0-9_-]+")


class ValidationError(ValueError):
    """Raised when a submitted account name or token is malformed."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def validate_account_name(name: str) -> None:
    """
    Check an account name: 1-64 characters of letters, digits, dash or underscore.

    Raises:
        ValidationError: With a message suitable for display to the user.
    """
    if not name:
        raise ValidationError("account name cannot be empty")
    if len(name) > MAX_ACCOUNT_NAME_LENGTH:
        raise ValidationError(f"account name too long (max {MAX_ACCOUNT_NAME_LENGTH} characters)")
    if not _ACCOUNT_NAME_PATTERN.fullmatch(name):
        raise ValidationError(
            "account name contains invalid characters (use only letters, numbers, dash, underscore)"
        )


def validate_api_token(token: str) -> None:
    """
    Check an API token: 1-256 characters starting with `api.`.

    Raises:
        ValidationError: With a message suitable for display to the user.
    """
    if not token:
        raise ValidationError("API token cannot be empty")
    if len(token) > MAX_API_TOKEN_LENGTH:
        raise ValidationError(f"API token too long (max {MAX_API_TOKEN_LENGTH} characters)")
    if not token.startswith(API_TOKEN_PREFIX):
        raise ValidationError(f"API token must start with '{API_TOKEN_PREFIX}'")
