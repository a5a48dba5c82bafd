"""
Credential store capability.

Persistent storage of API tokens is owned by the embedding application (an
OS keychain, an encrypted file...). The library only depends on the
CredentialStore interface below.

InMemoryCredentialStore is a process-local implementation used by tests and
by short-lived sessions that must not persist anything.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import override

KEY_PREFIX = "account:"


class CredentialStoreError(Exception):
    """Raised when a credential store operation fails."""


class CredentialNotFoundError(CredentialStoreError, KeyError):
    """Raised by CredentialStore.get() and delete() for unknown accounts."""

    def __init__(self, name: str):
        super().__init__(f"no credentials stored for account '{name}'")
        self.name = name

    def __str__(self) -> str:
        return self.args[0]


@dataclass(frozen=True)
class Credentials:
    """
    A stored API token.

    Attributes:
        name: Normalized account name.
        token: The secret API token. Excluded from repr.
        created_at: When the token was stored (UTC).
    """

    name: str
    token: str = field(repr=False)
    created_at: datetime


class CredentialStore(ABC):
    """
    Abstract store of named API tokens.

    Implementations must be thread-safe. Each call is a single operation;
    callers never retry them.
    """

    @abstractmethod
    def set(self, name: str, token: str) -> None:
        """
        Store (or replace) the token for an account.

        Raises:
            CredentialStoreError: If the token cannot be stored.
        """

    @abstractmethod
    def get(self, name: str) -> Credentials:
        """
        Raises:
            CredentialNotFoundError: If nothing is stored under `name`.
            CredentialStoreError: On any other failure.
        """

    @abstractmethod
    def delete(self, name: str) -> None:
        """
        Raises:
            CredentialNotFoundError: If nothing is stored under `name`.
            CredentialStoreError: On any other failure.
        """

    @abstractmethod
    def list(self) -> list[Credentials]:
        """Return every stored credential. Unreadable entries are skipped."""

    @abstractmethod
    def keys(self) -> list[str]:
        """Return the raw storage keys (`account:<name>`)."""


def normalize(name: str) -> str:
    return name.strip().lower()


def credential_key(name: str) -> str:
    return f"{KEY_PREFIX}{name}"


class InMemoryCredentialStore(CredentialStore):
    """
    Thread-safe, process-local CredentialStore.

    Account names are normalized (trimmed and lower-cased) the way
    persistent stores key them.

    Example:
        >>> store = InMemoryCredentialStore()
        >>> store.set("Work", "api.abc")
        >>> store.get("work").token
        'api.abc'
    """

    def __init__(self) -> None:
        self._items: dict[str, Credentials] = {}
        self._lock = threading.Lock()

    @override
    def set(self, name: str, token: str) -> None:
        name = normalize(name)
        if not name:
            raise CredentialStoreError("missing account name")
        if not token:
            raise CredentialStoreError("missing token")

        credentials = Credentials(name=name, token=token, created_at=datetime.now(UTC))
        with self._lock:
            self._items[credential_key(name)] = credentials

    @override
    def get(self, name: str) -> Credentials:
        name = normalize(name)
        if not name:
            raise CredentialStoreError("missing account name")
        with self._lock:
            credentials = self._items.get(credential_key(name))
        if credentials is None:
            raise CredentialNotFoundError(name)
        return credentials

    @override
    def delete(self, name: str) -> None:
        name = normalize(name)
        if not name:
            raise CredentialStoreError("missing account name")
        with self._lock:
            if self._items.pop(credential_key(name), None) is None:
                raise CredentialNotFoundError(name)

    @override
    def list(self) -> list[Credentials]:
        with self._lock:
            return sorted(self._items.values(), key=lambda c: c.name)

    @override
    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._items)
