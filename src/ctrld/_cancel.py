"""
Cancellation tokens for blocking operations.

A CancellationToken carries a cancel flag and an optional deadline. Every
operation that can suspend the calling thread (backoff sleeps, rate limiter
waits, the login server's result wait) takes a token and wakes up as soon as
it is cancelled or its deadline passes.

Example:
    >>> token = CancellationToken.with_timeout(10.0)
    >>> client.execute("GET", "/profiles", cancel=token)
    >>>
    >>> # From another thread
    >>> token.cancel()
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable


class OperationCancelledError(Exception):
    """
    Raised when an operation is aborted because its token was cancelled.

    Never retried: the retry loop treats it as terminal.
    """


class DeadlineExceededError(OperationCancelledError):
    """Raised when an operation is aborted because its token's deadline passed."""


class CancellationToken:
    """
    Thread-safe cancel flag with an optional deadline.

    Tokens form a tree: cancelling a parent cancels every child created from
    it, while a child's own deadline or cancel never affects the parent.

    Args:
        deadline: Absolute `time.monotonic()` value after which the token
            counts as expired. None means no deadline.
    """

    def __init__(self, deadline: float | None = None):
        self._deadline = deadline
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []
        self._unlink: Callable[[], None] | None = None

    @classmethod
    def with_timeout(cls, seconds: float) -> CancellationToken:
        """Create a token whose deadline is `seconds` from now."""
        assert seconds >= 0, "seconds must be >= 0"
        return cls(deadline=time.monotonic() + seconds)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def deadline(self) -> float | None:
        return self._deadline

    @property
    def cancelled(self) -> bool:
        """True once cancel() was called on this token or an ancestor."""
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        """True once the deadline has passed."""
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    def remaining(self) -> float | None:
        """Seconds until the deadline (never negative), or None without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    # -------------------------------------------------------------------------
    # Control
    # -------------------------------------------------------------------------

    def cancel(self) -> None:
        """Cancel the token and all of its children. Idempotent."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []

        for callback in callbacks:
            callback()

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Run `callback` when the token is cancelled.

        If the token is already cancelled, the callback runs immediately.
        Deadlines do not trigger callbacks; waiters observe them through
        their own timeouts.

        Returns:
            A function that unregisters the callback.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def unregister() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return unregister

        callback()
        return lambda: None

    def child(self, timeout: float | None = None) -> CancellationToken:
        """
        Create a token cancelled together with this one.

        The child's deadline is the earlier of this token's deadline and
        `timeout` seconds from now. Call close() (or use it as a context
        manager) to detach it from the parent once no longer needed.
        """
        deadline = self._deadline
        if timeout is not None:
            own = time.monotonic() + timeout
            deadline = own if deadline is None else min(deadline, own)

        token = CancellationToken(deadline=deadline)
        token._unlink = self.register(token.cancel)
        return token

    def close(self) -> None:
        """Detach from the parent token, if any."""
        if self._unlink is not None:
            self._unlink()
            self._unlink = None

    def __enter__(self) -> CancellationToken:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Waiting
    # -------------------------------------------------------------------------

    def raise_if_done(self) -> None:
        """
        Raise if the token is cancelled or expired.

        Raises:
            OperationCancelledError: If cancelled.
            DeadlineExceededError: If the deadline has passed.
        """
        if self.cancelled:
            raise OperationCancelledError("operation cancelled")
        if self.expired:
            raise DeadlineExceededError("deadline exceeded")

    def sleep(self, seconds: float) -> None:
        """
        Block for `seconds`, returning early only by raising.

        Raises:
            OperationCancelledError: If cancelled before the time elapsed.
            DeadlineExceededError: If the deadline comes before the time elapsed.
        """
        self.raise_if_done()
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            self._event.wait(remaining)
            self.raise_if_done()
            raise DeadlineExceededError("deadline exceeded")

        if self._event.wait(seconds):
            raise OperationCancelledError("operation cancelled")

    def wait(self, event: threading.Event) -> None:
        """
        Block until `event` is set, the token is cancelled or its deadline passes.

        The token sets `event` itself on cancellation, so pass an event that
        is dedicated to this wait.

        Raises:
            OperationCancelledError: If cancelled first.
            DeadlineExceededError: If the deadline passes first.
        """
        unregister = self.register(event.set)
        try:
            while not event.is_set():
                self.raise_if_done()
                event.wait(self.remaining())
            self.raise_if_done()
        finally:
            unregister()

    def __repr__(self) -> str:
        return (
            f"CancellationToken(cancelled={self.cancelled}, "
            f"remaining={self.remaining()})"
        )

