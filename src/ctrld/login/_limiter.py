"""
Inbound attempt limiter for the setup server.

Counts attempts per `(client address, endpoint)` in fixed windows, so a local
process cannot brute-force tokens through the validation endpoints.

Example:
    >>> limiter = ClientRateLimiter(max_attempts=10, window=900)
    >>> limiter.check("127.0.0.1", "/validate")  # raises TooManyAttemptsError when exhausted
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

TOO_MANY_ATTEMPTS = "too many attempts, please try again later"


class TooManyAttemptsError(Exception):
    """
    Raised when a client exceeded its attempts for an endpoint.

    Attributes:
        address: Client address.
        endpoint: Endpoint path.
    """

    def __init__(self, address: str, endpoint: str):
        super().__init__(TOO_MANY_ATTEMPTS)
        self.address = address
        self.endpoint = endpoint


@dataclass
class _Window:
    count: int
    reset_at: float


class ClientRateLimiter:
    """
    Thread-safe fixed-window attempt counter.

    Args:
        max_attempts: Attempts allowed per key and window.
        window: Window length in seconds, starting at the first attempt.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        max_attempts: int = 10,
        window: float = 900.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        assert max_attempts >= 1, "max_attempts must be >= 1."
        assert window > 0, "window must be greater than 0."

        self.max_attempts = max_attempts
        self.window = window
        self._clock = clock
        self._attempts: dict[str, _Window] = {}
        self._lock = threading.Lock()

        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

    @staticmethod
    def key(address: str, endpoint: str) -> str:
        return f"{address}:{endpoint}"

    def check(self, address: str, endpoint: str) -> None:
        """
        Record an attempt.

        Raises:
            TooManyAttemptsError: If the attempt exceeds `max_attempts` for this window.
        """
        key = self.key(address, endpoint)
        now = self._clock()

        with self._lock:
            current = self._attempts.get(key)
            if current is not None and now > current.reset_at:
                current = None

            if current is None:
                self._attempts[key] = _Window(count=1, reset_at=now + self.window)
                return

            current.count += 1
            if current.count > self.max_attempts:
                logger.warning(f"Too many attempts from {address} on {endpoint}")
                raise TooManyAttemptsError(address, endpoint)

    def sweep(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, w in self._attempts.items() if now > w.reset_at]
            for key in expired:
                del self._attempts[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired attempt window(s)")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._attempts)

    def start_sweeper(self, interval: float) -> None:
        """Run sweep() every `interval` seconds on a daemon thread until stop()."""
        assert interval > 0, "interval must be greater than 0."
        assert self._sweeper is None, "sweeper already started."

        def run() -> None:
            while not self._stop.wait(interval):
                self.sweep()

        self._sweeper = threading.Thread(target=run, name="ctrld-limiter-sweeper", daemon=True)
        self._sweeper.start()

    def stop(self) -> None:
        """Stop the sweeper thread, if running. Safe to call more than once."""
        self._stop.set()
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is not None:
            sweeper.join()
