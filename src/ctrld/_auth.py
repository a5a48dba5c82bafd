"""
Authentication for the Control D API.

Control D authenticates with static API tokens (`api.xxx`) sent as bearer
tokens. This module provides:

- AuthProvider: Abstract base class for authentication providers.
- StaticTokenAuthProvider: Provider for a fixed API token.
- resolve_token(): Finds the token to use, from an explicit value, the
  environment or a credential store.

Example:
    >>> from ctrld._auth import StaticTokenAuthProvider
    >>> auth = StaticTokenAuthProvider("api.xxx")
    >>> headers = auth.get_auth_headers()
    >>> # {"Authorization": "Bearer api.xxx"}
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, override

from ctrld._config import ENV_API_TOKEN
from ctrld._secrets import CredentialNotFoundError

if TYPE_CHECKING:
    from ctrld._secrets import CredentialStore

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class CredentialsNotFoundError(Exception):
    """
    Raised when no API token can be resolved.

    Attributes:
        message: Description of what was looked up.
        account: The requested account name, if any.

    Example:
        >>> try:
        ...     token = resolve_token(store=store)
        ... except CredentialsNotFoundError as e:
        ...     print(e)
    """

    def __init__(self, message: str, account: str | None = None):
        super().__init__(message)
        self.message = message
        self.account = account


# =============================================================================
# Abstract Base Class
# =============================================================================


class AuthProvider(ABC):
    """
    Abstract base class for authentication providers.

    Implementations must be thread-safe.

    Example:
        >>> class MyAuthProvider(AuthProvider):
        ...     def get_access_token(self) -> str:
        ...         return "api.my-token"
        ...
        >>> auth = MyAuthProvider()
        >>> headers = auth.get_auth_headers()
        >>> # {"Authorization": "Bearer api.my-token"}
    """

    @abstractmethod
    def get_access_token(self) -> str:
        """
        Return the API token (without "Bearer" prefix).
        """
        pass

    def get_auth_headers(self) -> dict[str, str]:
        """Return authorization headers for HTTP requests."""
        return {"Authorization": f"Bearer {self.get_access_token()}"}


# =============================================================================
# Implementations
# =============================================================================


class StaticTokenAuthProvider(AuthProvider):
    """
    Provider for a fixed Control D API token.

    Args:
        token: The API token. Never logged and hidden from repr.
    """

    def __init__(self, token: str):
        assert token, "token cannot be empty."
        self._token = token

    @override
    def get_access_token(self) -> str:
        return self._token

    def __repr__(self) -> str:
        return "StaticTokenAuthProvider(token='***')"


# =============================================================================
# Token resolution
# =============================================================================


def resolve_token(
    token: str | None = None,
    account: str | None = None,
    store: CredentialStore | None = None,
) -> str:
    """
    Resolve the API token to use.

    Precedence (highest to lowest):
        1. The explicit `token` argument
        2. The CONTROLD_API_TOKEN environment variable
        3. The named `account` in the credential store
        4. The only stored account, when exactly one exists

    Args:
        token: Explicit API token.
        account: Account name to look up in the store.
        store: Credential store to search.

    Returns:
        The API token.

    Raises:
        CredentialsNotFoundError: If no token could be found.
        CredentialStoreError: If the store itself fails.
    """
    if token:
        return token

    env_token = os.environ.get(ENV_API_TOKEN, "").strip()
    if env_token:
        logger.debug(f"Using API token from {ENV_API_TOKEN}")
        return env_token

    if store is None:
        raise CredentialsNotFoundError(
            f"no API token found: set {ENV_API_TOKEN} or run the login flow"
        )

    if account:
        try:
            return store.get(account).token
        except CredentialNotFoundError as e:
            raise CredentialsNotFoundError(
                f"no credentials for account '{account}': run the login flow to add it",
                account=account,
            ) from e

    stored = store.list()
    if len(stored) == 1:
        logger.debug(f"Using the only stored account '{stored[0].name}'")
        return stored[0].token
    if not stored:
        raise CredentialsNotFoundError(
            f"no API token found: set {ENV_API_TOKEN} or run the login flow"
        )
    names = ", ".join(c.name for c in stored)
    raise CredentialsNotFoundError(
        f"multiple accounts stored ({names}): choose one with the account argument"
    )
