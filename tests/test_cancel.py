"""Tests for cancellation tokens."""

import threading
import time

import pytest

from ctrld._cancel import CancellationToken, DeadlineExceededError, OperationCancelledError


class TestCancellationTokenState:

    def test_new_token_is_not_done(self):
        token = CancellationToken()
        assert not token.cancelled
        assert not token.expired
        assert not token.done
        assert token.remaining() is None

    def test_cancel_is_idempotent(self):
        token = CancellationToken()
        token.cancel()
        token.cancel()
        assert token.cancelled
        assert token.done

    def test_with_timeout_sets_deadline(self):
        token = CancellationToken.with_timeout(10.0)
        remaining = token.remaining()
        assert remaining is not None
        assert 9.0 < remaining <= 10.0

    def test_expired_after_deadline(self):
        token = CancellationToken(deadline=time.monotonic() - 1)
        assert token.expired
        assert token.done
        assert token.remaining() == 0.0

    def test_raise_if_done_distinguishes_cancel_and_deadline(self):
        cancelled = CancellationToken()
        cancelled.cancel()
        with pytest.raises(OperationCancelledError) as exc_info:
            cancelled.raise_if_done()
        assert not isinstance(exc_info.value, DeadlineExceededError)

        expired = CancellationToken(deadline=time.monotonic() - 1)
        with pytest.raises(DeadlineExceededError):
            expired.raise_if_done()

    def test_deadline_exceeded_is_a_cancellation(self):
        assert issubclass(DeadlineExceededError, OperationCancelledError)


class TestCancellationTokenCallbacks:

    def test_callback_runs_on_cancel(self):
        token = CancellationToken()
        calls = []
        token.register(lambda: calls.append("called"))
        token.cancel()
        token.cancel()
        assert calls == ["called"]

    def test_callback_runs_immediately_when_already_cancelled(self):
        token = CancellationToken()
        token.cancel()
        calls = []
        token.register(lambda: calls.append("called"))
        assert calls == ["called"]

    def test_unregister_prevents_callback(self):
        token = CancellationToken()
        calls = []
        unregister = token.register(lambda: calls.append("called"))
        unregister()
        token.cancel()
        assert calls == []


class TestChildTokens:

    def test_cancelling_parent_cancels_child(self):
        parent = CancellationToken()
        child = parent.child()
        parent.cancel()
        assert child.cancelled

    def test_cancelling_child_does_not_cancel_parent(self):
        parent = CancellationToken()
        child = parent.child()
        child.cancel()
        assert not parent.cancelled

    def test_child_deadline_is_the_earlier_one(self):
        parent = CancellationToken.with_timeout(100.0)
        child = parent.child(timeout=1.0)
        assert child.remaining() <= 1.0

        short_parent = CancellationToken.with_timeout(1.0)
        long_child = short_parent.child(timeout=100.0)
        assert long_child.deadline == short_parent.deadline

    def test_closed_child_is_detached(self):
        parent = CancellationToken()
        with parent.child() as child:
            pass
        parent.cancel()
        assert not child.cancelled

    def test_child_of_cancelled_parent_starts_cancelled(self):
        parent = CancellationToken()
        parent.cancel()
        assert parent.child().cancelled


class TestSleep:

    def test_sleep_completes_when_not_cancelled(self):
        token = CancellationToken()
        start = time.monotonic()
        token.sleep(0.05)
        assert time.monotonic() - start >= 0.04

    def test_cancel_wakes_sleeper_immediately(self):
        token = CancellationToken()
        threading.Timer(0.05, token.cancel).start()

        start = time.monotonic()
        with pytest.raises(OperationCancelledError):
            token.sleep(10.0)
        assert time.monotonic() - start < 5.0

    def test_sleep_past_deadline_raises_deadline_exceeded(self):
        token = CancellationToken.with_timeout(0.05)
        start = time.monotonic()
        with pytest.raises(DeadlineExceededError):
            token.sleep(10.0)
        assert time.monotonic() - start < 5.0

    def test_sleep_on_cancelled_token_raises_without_waiting(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelledError):
            token.sleep(10.0)


class TestWait:

    def test_returns_when_event_is_set(self):
        token = CancellationToken()
        event = threading.Event()
        threading.Timer(0.05, event.set).start()
        token.wait(event)
        assert event.is_set()

    def test_cancel_interrupts_wait(self):
        token = CancellationToken()
        event = threading.Event()
        threading.Timer(0.05, token.cancel).start()
        with pytest.raises(OperationCancelledError):
            token.wait(event)

    def test_deadline_interrupts_wait(self):
        token = CancellationToken.with_timeout(0.05)
        with pytest.raises(DeadlineExceededError):
            token.wait(threading.Event())
