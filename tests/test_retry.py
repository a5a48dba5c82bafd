"""Tests for retry utilities."""

import unittest
from unittest.mock import MagicMock, patch

from ctrld._cancel import CancellationToken, DeadlineExceededError, OperationCancelledError
from ctrld._retry import (
    MaxRetriesExceededError,
    RetryableError,
    RetryAttempt,
    Retrying,
    RetryPolicy,
)


def _no_sleep_token() -> MagicMock:
    """A token whose sleep() returns immediately and records the delays."""
    token = MagicMock(spec=CancellationToken)
    token.sleep.return_value = None
    return token


class TestRetryPolicy(unittest.TestCase):
    """Tests for backoff calculation."""

    def test_backoff_sequence_is_capped_exponential(self):
        policy = RetryPolicy(max_retries=7, min_delay=1.0, max_delay=30.0)
        delays = [policy.delay_for(i) for i in range(1, 8)]
        self.assertEqual(delays, [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0])

    def test_first_attempt_never_waits(self):
        self.assertEqual(RetryPolicy().delay_for(0), 0.0)

    def test_max_attempts_counts_first_attempt(self):
        self.assertEqual(RetryPolicy(max_retries=3).max_attempts, 4)
        self.assertEqual(RetryPolicy(max_retries=0).max_attempts, 1)

    def test_rejects_negative_retries(self):
        with self.assertRaises(AssertionError):
            RetryPolicy(max_retries=-1)

    def test_rejects_max_delay_below_min_delay(self):
        with self.assertRaises(AssertionError):
            RetryPolicy(min_delay=2.0, max_delay=1.0)


class TestRetryAttempt(unittest.TestCase):

    def test_is_last_attempt(self):
        self.assertFalse(RetryAttempt(attempt_number=2, max_retries=3).is_last_attempt)
        self.assertTrue(RetryAttempt(attempt_number=3, max_retries=3).is_last_attempt)

    def test_is_frozen(self):
        attempt = RetryAttempt(attempt_number=0, max_retries=3)
        with self.assertRaises(AttributeError):
            attempt.attempt_number = 2  # type: ignore


class TestMaxRetriesExceededError(unittest.TestCase):

    def test_attributes(self):
        original = ValueError("boom")
        error = MaxRetriesExceededError("Test message", last_exception=original, attempts=4)
        self.assertEqual(str(error), "Test message")
        self.assertIs(error.last_exception, original)
        self.assertEqual(error.attempts, 4)


class TestRetrying(unittest.TestCase):
    """Tests for the Retrying loop."""

    def test_returns_on_first_success_without_sleeping(self):
        token = _no_sleep_token()
        calls = []

        def run():
            for attempt in Retrying(RetryPolicy(max_retries=3), cancel=token):
                with attempt:
                    calls.append(attempt.attempt_number)
                    return "ok"

        self.assertEqual(run(), "ok")
        self.assertEqual(calls, [0])
        token.sleep.assert_not_called()

    def test_retries_retryable_errors_until_success(self):
        token = _no_sleep_token()
        outcomes = [RetryableError("1"), RetryableError("2"), "ok"]

        def run():
            for attempt in Retrying(RetryPolicy(max_retries=3), cancel=token):
                with attempt:
                    outcome = outcomes.pop(0)
                    if isinstance(outcome, Exception):
                        raise outcome
                    return outcome

        self.assertEqual(run(), "ok")
        self.assertEqual([c.args[0] for c in token.sleep.call_args_list], [1.0, 2.0])

    def test_sleeps_backoff_before_each_retry(self):
        token = _no_sleep_token()
        policy = RetryPolicy(max_retries=6, min_delay=1.0, max_delay=10.0)

        with self.assertRaises(MaxRetriesExceededError):
            for attempt in Retrying(policy, cancel=token):
                with attempt:
                    raise RetryableError("always")

        self.assertEqual(
            [c.args[0] for c in token.sleep.call_args_list],
            [1.0, 2.0, 4.0, 8.0, 10.0, 10.0],
        )

    def test_raises_max_retries_exceeded_with_last_exception(self):
        token = _no_sleep_token()
        attempts = []

        with self.assertRaises(MaxRetriesExceededError) as ctx:
            for attempt in Retrying(RetryPolicy(max_retries=3), cancel=token):
                with attempt:
                    attempts.append(attempt.attempt_number)
                    raise RetryableError(f"failure {attempt.attempt_number}")

        self.assertEqual(attempts, [0, 1, 2, 3])
        self.assertEqual(str(ctx.exception.last_exception), "failure 3")
        self.assertEqual(ctx.exception.attempts, 4)

    def test_zero_retries_still_raises_max_retries_exceeded(self):
        token = _no_sleep_token()

        with self.assertRaises(MaxRetriesExceededError):
            for attempt in Retrying(RetryPolicy(max_retries=0), cancel=token):
                with attempt:
                    raise RetryableError("once")

        token.sleep.assert_not_called()

    def test_non_retryable_error_propagates_immediately(self):
        token = _no_sleep_token()
        attempts = []

        with self.assertRaises(ValueError):
            for attempt in Retrying(RetryPolicy(max_retries=3), cancel=token):
                with attempt:
                    attempts.append(attempt.attempt_number)
                    raise ValueError("bad payload")

        self.assertEqual(attempts, [0])

    def test_cancellation_error_is_never_retried(self):
        token = _no_sleep_token()
        attempts = []

        with self.assertRaises(OperationCancelledError):
            for attempt in Retrying(RetryPolicy(max_retries=3), cancel=token):
                with attempt:
                    attempts.append(attempt.attempt_number)
                    raise OperationCancelledError("operation cancelled")

        self.assertEqual(attempts, [0])

    def test_cancellation_during_backoff_stops_further_attempts(self):
        token = CancellationToken()
        attempts = []

        with self.assertRaises(OperationCancelledError) as ctx:
            for attempt in Retrying(RetryPolicy(max_retries=3, min_delay=30.0, max_delay=30.0), cancel=token):
                with attempt:
                    attempts.append(attempt.attempt_number)
                    token.cancel()
                    raise RetryableError("transient")

        self.assertEqual(attempts, [0])
        self.assertIn("operation aborted during backoff", str(ctx.exception))

    def test_deadline_shorter_than_backoff_raises_deadline_exceeded(self):
        token = CancellationToken.with_timeout(0.05)
        attempts = []

        with self.assertRaises(DeadlineExceededError):
            for attempt in Retrying(RetryPolicy(max_retries=3, min_delay=5.0, max_delay=5.0), cancel=token):
                with attempt:
                    attempts.append(attempt.attempt_number)
                    raise RetryableError("transient")

        self.assertEqual(attempts, [0])

    @patch("ctrld._retry.logger")
    def test_logs_sleep_before_retry_with_prefix(self, mock_logger):
        token = _no_sleep_token()

        with self.assertRaises(MaxRetriesExceededError):
            for attempt in Retrying(RetryPolicy(max_retries=1), cancel=token, logger_prefix="GET /profiles"):
                with attempt:
                    raise RetryableError("transient")

        messages = [c.args[0] for c in mock_logger.warning.call_args_list]
        self.assertTrue(any("GET /profiles | Sleeping 1.0s before retry attempt number 1" in m for m in messages))
        mock_logger.error.assert_called_once()

    def test_keyboard_interrupt_is_not_handled(self):
        token = _no_sleep_token()

        with self.assertRaises(KeyboardInterrupt):
            for attempt in Retrying(RetryPolicy(max_retries=3), cancel=token):
                with attempt:
                    raise KeyboardInterrupt()


if __name__ == "__main__":
    unittest.main()
