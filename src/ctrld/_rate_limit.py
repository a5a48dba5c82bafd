"""
Outbound rate limiting for the Control D API.

Implements the Token Bucket algorithm: permits accumulate at a fixed rate up
to `burst`, and callers block until one is available. Every attempt made by
the request pipeline (including retries) takes one permit.

Example:
    >>> from ctrld._rate_limit import TokenBucketRateLimiter
    >>> limiter = TokenBucketRateLimiter(rate=4.0, burst=1)  # 1200 req / 5 min
    >>> limiter.acquire(cancel=token)
"""

from __future__ import annotations

import logging
import threading
import time

from ctrld._cancel import CancellationToken, DeadlineExceededError, OperationCancelledError

logger = logging.getLogger(__name__)


class TokenBucketRateLimiter:
    """
    Thread-safe token bucket.

    Args:
        rate: Permits added per second.
        burst: Bucket capacity. The bucket starts full.

    Example:
        >>> limiter = TokenBucketRateLimiter(rate=10.0, burst=5)
        >>> limiter.acquire()  # returns immediately while permits remain
    """

    def __init__(self, rate: float, burst: int = 1):
        assert rate is not None, "rate cannot be None."
        assert rate > 0, "rate must be greater than 0."
        assert burst is not None, "burst cannot be None."
        assert burst >= 1, "burst must be >= 1."

        self.rate = rate
        self.burst = burst

        # Token bucket state
        self._tokens = float(burst)
        self._last_refill = time.monotonic()
        self._lock = threading.Lock()

    def _refill(self, now: float) -> None:
        elapsed_since_refill = now - self._last_refill
        self._tokens = min(float(self.burst), self._tokens + elapsed_since_refill * self.rate)
        self._last_refill = now

    def _take_permit(self) -> float:
        """Take a permit if one is available. Returns 0.0 on success, else the wait for the next one."""
        with self._lock:
            self._refill(time.monotonic())
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return 0.0
            return (1.0 - self._tokens) / self.rate

    def acquire(self, cancel: CancellationToken | None = None) -> None:
        """
        Acquire a permit, blocking until one is available.

        Uses Token Bucket algorithm:
        - Refills tokens based on elapsed time
        - Waits outside the lock if no tokens are available
        - Gives up as soon as the cancellation token fires

        Raises:
            OperationCancelledError: If the token is cancelled while waiting.
            DeadlineExceededError: If the token's deadline passes while waiting,
                or cannot be met by the time the next permit is due.
        """
        cancel = cancel or CancellationToken()

        while True:
            cancel.raise_if_done()

            wait_time = self._take_permit()
            if wait_time == 0.0:
                return

            remaining = cancel.remaining()
            if remaining is not None and remaining < wait_time:
                cancel.raise_if_done()
                raise DeadlineExceededError(
                    f"rate limiter: waiting {wait_time:.2f}s would exceed the deadline"
                )

            logger.debug(f"Rate limit reached, waiting {wait_time:.3f}s for next permit")
            try:
                cancel.sleep(wait_time)
            except OperationCancelledError as e:
                raise type(e)(f"error caused by request rate limiting: {e}") from e
