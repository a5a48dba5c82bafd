"""
Browser-based login for the Control D API.

Starts a loopback-only web form where the user pastes an API token, checks
it against the API, and saves it in a CredentialStore.

Example:
    >>> from ctrld import CancellationToken, InMemoryCredentialStore
    >>> from ctrld.login import SetupServer
    >>> result = SetupServer(store=InMemoryCredentialStore()).start(
    ...     cancel=CancellationToken.with_timeout(600)
    ... )
    >>> print(f"Saved account {result.account_name}")
"""

from ctrld.login._csrf import CSRF_HEADER, CSRFGuard
from ctrld.login._handoff import OneShot
from ctrld.login._limiter import ClientRateLimiter, TooManyAttemptsError
from ctrld.login._server import (
    ConnectivityError,
    SetupCancelledError,
    SetupResult,
    SetupServer,
    SetupState,
)
from ctrld.login._validation import ValidationError, validate_account_name, validate_api_token

__all__ = [
    # Server
    "SetupServer",
    "SetupState",
    "SetupResult",
    # Errors
    "SetupCancelledError",
    "ConnectivityError",
    "ValidationError",
    "TooManyAttemptsError",
    # Building blocks
    "CSRFGuard",
    "CSRF_HEADER",
    "ClientRateLimiter",
    "OneShot",
    "validate_account_name",
    "validate_api_token",
]
