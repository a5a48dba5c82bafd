"""
Per-session CSRF token for the setup server.

The token is generated once per server, embedded in the served pages, and
must be echoed back in the `X-CSRF-Token` header of every POST.
"""

import hmac
import secrets

CSRF_HEADER = "X-CSRF-Token"
CSRF_TOKEN_BYTES = 32


class CSRFGuard:
    """
    Holds the session token and checks submitted values in constant time.

    Example:
        >>> guard = CSRFGuard()
        >>> guard.verify(guard.token)
        True
        >>> guard.verify("")
        False
    """

    def __init__(self, token: str | None = None):
        self._token = token or secrets.token_hex(CSRF_TOKEN_BYTES)

    @property
    def token(self) -> str:
        return self._token

    def verify(self, provided: str | None) -> bool:
        if not provided:
            return False
        return hmac.compare_digest(provided.encode("utf-8"), self._token.encode("utf-8"))

    def __repr__(self) -> str:
        return "CSRFGuard(token='***')"
