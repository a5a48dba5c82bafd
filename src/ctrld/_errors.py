"""
Error taxonomy for the Control D API.

Every failed API call ends in exactly one of these exceptions:

- ApiError subclasses, one per ErrorKind, for HTTP error responses.
- TransportError when the request never produced a response.
- OperationCancelledError / DeadlineExceededError (see ctrld._cancel) when
  the caller's token fired.

Example:
    >>> try:
    ...     client.execute("GET", "/profiles")
    ... except NotFoundError as e:
    ...     print(f"Missing: {e.message}")
    ... except ApiError as e:
    ...     print(f"{e.kind} (HTTP {e.status_code}): {e.message}")
"""

from __future__ import annotations

import json
import logging
from enum import StrEnum

import requests

from ctrld._retry import RetryableError

logger = logging.getLogger(__name__)

INTERNAL_SERVICE_ERROR = "internal service error"
RATE_LIMIT_EXHAUSTED = "exceeded available rate limit retries"


class ErrorKind(StrEnum):
    """Closed set of failure classifications for HTTP error responses."""

    REQUEST = "request"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    RATE_LIMIT = "rate_limit"
    SERVICE = "service"


# =============================================================================
# Exceptions
# =============================================================================


class ApiError(Exception):
    """
    Base class for classified HTTP error responses.

    Attributes:
        kind: The ErrorKind of this error.
        status_code: HTTP status code of the final response.
        message: Error message, taken from the API envelope when available.
    """

    kind: ErrorKind = ErrorKind.REQUEST

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status_code={self.status_code}, message={self.message!r})"


class RequestError(ApiError):
    """4xx responses not covered by a more specific kind (generally bad payloads)."""

    kind = ErrorKind.REQUEST


class AuthenticationError(ApiError):
    """HTTP 403 responses."""

    kind = ErrorKind.AUTHENTICATION


class AuthorizationError(ApiError):
    """HTTP 401 responses."""

    kind = ErrorKind.AUTHORIZATION


class NotFoundError(ApiError):
    """HTTP 404 responses."""

    kind = ErrorKind.NOT_FOUND


class RateLimitError(ApiError):
    """HTTP 429 responses that persisted after every retry."""

    kind = ErrorKind.RATE_LIMIT


class ServiceError(ApiError):
    """5xx responses that persisted after every retry."""

    kind = ErrorKind.SERVICE


class TransportError(RetryableError):
    """
    Raised when a request fails before any HTTP response is received.

    Wraps connection errors and per-request timeouts from `requests`.
    Retryable: the retry loop attempts the call again until retries run out.

    Attributes:
        cause: The underlying `requests` exception.
    """

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class RetryableStatusError(RetryableError):
    """
    Raised inside the retry loop for HTTP 429 and 5xx responses.

    Internal signal only: once retries are exhausted it is translated into
    RateLimitError or ServiceError by classify_exhausted().

    Attributes:
        response: The HTTP response that triggered the retry.
    """

    def __init__(self, response: requests.Response):
        self.response = response
        super().__init__(
            f"received {response.reason or 'error'} response (HTTP {response.status_code}), "
            "please try again later"
        )


# =============================================================================
# Classification
# =============================================================================


_KIND_BY_STATUS: dict[int, type[ApiError]] = {
    # 401 -> authorization and 403 -> authentication as the remote API reports them
    401: AuthorizationError,
    403: AuthenticationError,
    404: NotFoundError,
    429: RateLimitError,
}


def is_retryable_status(status_code: int) -> bool:
    """True for HTTP 429 and every 5xx status."""
    return status_code == 429 or status_code >= 500


def error_for_status(status_code: int, message: str) -> ApiError:
    """
    Build the ApiError matching an HTTP status code.

    Args:
        status_code: HTTP status code (>= 400).
        message: Error message to carry.

    Returns:
        The classified error instance.
    """
    if status_code >= 500:
        return ServiceError(status_code, message)
    error_class = _KIND_BY_STATUS.get(status_code, RequestError)
    return error_class(status_code, message)


def classify_response(response: requests.Response) -> ApiError | None:
    """
    Classify a terminal HTTP response.

    Returns:
        None for 1xx-3xx responses, otherwise the matching ApiError.
    """
    status_code = response.status_code
    if status_code < 400:
        return None
    if status_code >= 500:
        return ServiceError(status_code, INTERNAL_SERVICE_ERROR)
    return error_for_status(status_code, extract_error_message(response))


def classify_exhausted(last_exception: Exception) -> Exception:
    """
    Translate the last failure of an exhausted retry loop into its final error.

    - 429 -> RateLimitError
    - 5xx -> ServiceError
    - anything else (transport failures) is returned unchanged
    """
    if isinstance(last_exception, RetryableStatusError):
        status_code = last_exception.response.status_code
        if status_code == 429:
            return RateLimitError(status_code, RATE_LIMIT_EXHAUSTED)
        return ServiceError(status_code, INTERNAL_SERVICE_ERROR)
    return last_exception


def extract_error_message(response: requests.Response) -> str:
    """
    Read the error message from the API response envelope.

    The API answers errors with `{"success": false, "error": {"message": ..., "code": ...}}`.
    Falls back to `HTTP <status> <reason>` when the body is not such an envelope.
    """
    fallback = f"HTTP {response.status_code} {response.reason or ''}".rstrip()
    try:
        payload = json.loads(response.content or b"null")
    except (ValueError, UnicodeDecodeError):
        logger.debug(f"Error response body is not JSON (HTTP {response.status_code})")
        return fallback

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return fallback
