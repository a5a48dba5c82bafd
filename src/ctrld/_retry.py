"""
Retry utilities with exponential backoff.

Inspired by Tenacity's Retrying class, this module provides a context manager
for implementing retry logic with capped exponential backoff and cancellation.

Example:
    >>> from ctrld._retry import RetryPolicy, Retrying
    >>> policy = RetryPolicy(max_retries=3, min_delay=1.0, max_delay=30.0)
    >>> for attempt in Retrying(policy, cancel=token):
    ...     with attempt:
    ...         return send_request()
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from dataclasses import dataclass

from ctrld._cancel import CancellationToken, OperationCancelledError

logger = logging.getLogger(__name__)


class RetryableError(Exception):
    """
    Base class for exceptions that should trigger automatic retry.

    Exceptions extending this class are automatically retried by the Retrying
    context manager.

    Example:
        >>> class MyTransientError(RetryableError):
        ...     '''Custom retryable error for my service.'''
        ...     pass
    """

    pass


class MaxRetriesExceededError(Exception):
    """
    Raised when all retry attempts are exhausted.

    Attributes:
        message: Human-readable error message.
        last_exception: The original exception from the last attempt.
        attempts: Number of attempts made.
    """

    def __init__(self, message: str, last_exception: Exception | None = None, attempts: int = 0):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


@dataclass(frozen=True)
class RetryPolicy:
    """
    Declarative retry parameters.

    Attributes:
        max_retries: Retries after the first attempt (0 disables retrying).
        min_delay: Backoff in seconds before the first retry.
        max_delay: Cap in seconds for any single backoff.

    Example:
        >>> policy = RetryPolicy(max_retries=6, min_delay=1.0, max_delay=30.0)
        >>> [policy.delay_for(i) for i in range(1, 7)]
        [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]
    """

    max_retries: int = 3
    min_delay: float = 1.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        assert self.max_retries >= 0, f"max_retries must be >= 0, got {self.max_retries}"
        assert self.min_delay > 0, f"min_delay must be > 0, got {self.min_delay}"
        assert self.max_delay >= self.min_delay, "max_delay must be >= min_delay"

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt_number: int) -> float:
        """
        Backoff to wait before the given attempt.

        Args:
            attempt_number: Zero-based attempt index. Attempt 0 never waits.

        Returns:
            `min(max_delay, min_delay * 2 ** (attempt_number - 1))` for attempts >= 1.
        """
        if attempt_number <= 0:
            return 0.0
        return min(self.max_delay, self.min_delay * (2 ** (attempt_number - 1)))


@dataclass(frozen=True)
class RetryAttempt:
    """
    Represents a single attempt within a retry loop.

    Attributes:
        attempt_number: Zero-based index of the current attempt (0 = first attempt).
        max_retries: Maximum number of retries configured.
    """

    attempt_number: int
    max_retries: int

    @property
    def is_last_attempt(self) -> bool:
        """Return True if this is the last attempt."""
        return self.attempt_number >= self.max_retries


class Retrying:
    """
    Context manager for retry with capped exponential backoff.

    Usage:
        >>> for attempt in Retrying(RetryPolicy(max_retries=3), cancel=token):
        ...     with attempt:
        ...         return send_request()

    The backoff for attempt `i >= 1` is slept before that attempt starts, on
    the cancellation token, so a cancelled call stops immediately without
    making further attempts.

    Args:
        policy: Retry parameters.
        cancel: Token observed by backoff sleeps. None means never cancelled.
        logger_prefix: Prefix for log messages (e.g., "GET /profiles").

    Raises:
        MaxRetriesExceededError: When the last attempt fails with a retryable error.
            Contains the last exception in the `last_exception` attribute.
        OperationCancelledError: When the token fires during a backoff.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        cancel: CancellationToken | None = None,
        logger_prefix: str = "",
    ):
        assert policy is not None, "policy cannot be None"

        self.policy = policy
        self.cancel = cancel or CancellationToken()
        self.logger_prefix = logger_prefix

    def __iter__(self) -> Generator[_RetryContext, None, None]:
        """Yield retry contexts for each attempt, sleeping the backoff in between."""
        for attempt in range(self.policy.max_attempts):
            if attempt > 0:
                self._backoff(attempt, self.policy.delay_for(attempt))
            yield _RetryContext(self, RetryAttempt(attempt, self.policy.max_retries))

    def _prefix(self) -> str:
        return f"{self.logger_prefix} | " if self.logger_prefix else ""

    def _backoff(self, attempt: int, delay: float) -> None:
        """
        Sleep before a retry, honoring the cancellation token.

        Raises:
            OperationCancelledError: If the token fires before the delay elapses.
        """
        logger.warning(
            f"{self._prefix()}Sleeping {delay:.1f}s before retry attempt number {attempt}"
        )
        try:
            self.cancel.sleep(delay)
        except OperationCancelledError as e:
            raise type(e)(f"operation aborted during backoff: {e}") from e

    def _should_retry(self, exception: Exception) -> bool:
        """
        Determine if exception should trigger a retry.

        Cancellation is never retried, even when raised as a RetryableError.
        """
        if isinstance(exception, OperationCancelledError):
            return False
        return isinstance(exception, RetryableError)

    def _handle_retry(self, attempt: RetryAttempt, exception: Exception) -> None:
        logger.warning(
            f"{self._prefix()}Attempt {attempt.attempt_number + 1}/{self.policy.max_attempts} failed: {exception}"
        )

    def _handle_exhausted(self, exception: Exception) -> None:
        """
        Raises:
            MaxRetriesExceededError: Always raised with the last exception.
        """
        logger.error(
            f"{self._prefix()}Max retries ({self.policy.max_retries}) exceeded. Last error: {exception}"
        )
        raise MaxRetriesExceededError(
            message=f"Max retries exceeded. Last error: {exception}",
            last_exception=exception,
            attempts=self.policy.max_attempts,
        ) from exception


class _RetryContext:
    """
    Context for a single retry attempt (internal).

    On success (no exception): exits normally; the caller returns or breaks
    On retryable exception: suppresses exception, loop continues
    On non-retryable exception: re-raises exception, loop exits
    On exhausted retries: raises MaxRetriesExceededError
    """

    def __init__(self, retrying: Retrying, attempt: RetryAttempt):
        self._retrying = retrying
        self.attempt = attempt

    def __enter__(self) -> RetryAttempt:
        return self.attempt

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> bool:
        if exc_val is None:
            return False

        # Only handle Exception, not BaseException (KeyboardInterrupt, etc.)
        if not isinstance(exc_val, Exception):
            return False

        if not self._retrying._should_retry(exc_val):
            return False

        if self.attempt.is_last_attempt:
            self._retrying._handle_exhausted(exc_val)
            return False  # Never reached

        self._retrying._handle_retry(self.attempt, exc_val)
        return True
