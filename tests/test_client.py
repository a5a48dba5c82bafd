"""Tests for the request pipeline and ControlDClient."""

import threading
import time
import unittest
from typing import override
from unittest.mock import MagicMock

import requests

from ctrld._cancel import CancellationToken, DeadlineExceededError, OperationCancelledError
from ctrld._client import ClientOptions, ControlDClient, RequestExecutor
from ctrld._config import CTRLD, CtrldConfig
from ctrld._errors import (
    INTERNAL_SERVICE_ERROR,
    RATE_LIMIT_EXHAUSTED,
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    RateLimitError,
    RequestError,
    ServiceError,
    TransportError,
)
from ctrld._http import HttpClient
from ctrld._rate_limit import TokenBucketRateLimiter
from ctrld._retry import RetryPolicy


def make_response(status_code: int, content: bytes = b"", reason: str = "") -> MagicMock:
    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    response.content = content
    response.reason = reason
    return response


class FakeHttpClient(HttpClient):
    """Returns (or raises) scripted outcomes, repeating the last one."""

    def __init__(self, *outcomes, on_request=None):
        self.outcomes = list(outcomes)
        self.calls: list[dict] = []
        self.on_request = on_request
        self.closed = False

    @override
    def request(self, method, url, data=None, headers=None, timeout=30):
        self.calls.append({"method": method, "url": url, "data": data, "headers": headers, "timeout": timeout})
        if self.on_request is not None:
            self.on_request()
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    @override
    def close(self):
        self.closed = True


FAST_OPTIONS = ClientOptions(
    max_retries=3,
    min_delay=0.001,
    max_delay=0.01,
    requests_per_second=10_000.0,
    burst=100,
)


def make_client(http_client: HttpClient, options: ClientOptions = FAST_OPTIONS) -> ControlDClient:
    return ControlDClient(token="api.test", options=options, http_client=http_client)


class TestClientOptions(unittest.TestCase):

    def test_none_values_use_config(self):
        resolved = ClientOptions().with_defaults_from(CtrldConfig())
        self.assertEqual(resolved.base_url, "https://api.controld.com")
        self.assertEqual(resolved.request_timeout, 30.0)
        self.assertEqual(resolved.max_retries, 3)
        self.assertEqual(resolved.min_delay, 1.0)
        self.assertEqual(resolved.max_delay, 30.0)
        self.assertEqual(resolved.requests_per_second, 4.0)
        self.assertEqual(resolved.burst, 1)
        self.assertFalse(resolved.debug)

    def test_explicit_values_win(self):
        resolved = ClientOptions(max_retries=0, debug=True).with_defaults_from(CtrldConfig())
        self.assertEqual(resolved.max_retries, 0)
        self.assertTrue(resolved.debug)

    def test_client_reads_global_config(self):
        try:
            CTRLD.configure(retry={"max_retries": 1}, allow_env_override=False)
            client = make_client(FakeHttpClient(make_response(200, b"{}")), options=ClientOptions())
            self.assertEqual(client.executor.policy.max_retries, 1)
        finally:
            CTRLD.reset()


class TestRetries(unittest.TestCase):
    """Retry and classification behavior of a full call."""

    def test_success_returns_body(self):
        http = FakeHttpClient(make_response(200, b'{"success": true}'))
        self.assertEqual(make_client(http).execute("GET", "/profiles"), b'{"success": true}')
        self.assertEqual(len(http.calls), 1)
        self.assertEqual(http.calls[0]["url"], "https://api.controld.com/profiles")

    def test_persistent_500_makes_four_attempts_then_service_error(self):
        http = FakeHttpClient(make_response(500, reason="Internal Server Error"))

        with self.assertRaises(ServiceError) as ctx:
            make_client(http).execute("GET", "/profiles")

        self.assertEqual(len(http.calls), 4)
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(ctx.exception.message, INTERNAL_SERVICE_ERROR)

    def test_persistent_429_ends_in_rate_limit_error(self):
        http = FakeHttpClient(make_response(429, reason="Too Many Requests"))

        with self.assertRaises(RateLimitError) as ctx:
            make_client(http).execute("GET", "/profiles")

        self.assertEqual(len(http.calls), 4)
        self.assertEqual(ctx.exception.message, RATE_LIMIT_EXHAUSTED)

    def test_recovers_after_transient_errors(self):
        http = FakeHttpClient(
            make_response(503),
            requests.ConnectionError("reset"),
            make_response(200, b"ok"),
        )
        self.assertEqual(make_client(http).execute("GET", "/profiles"), b"ok")
        self.assertEqual(len(http.calls), 3)

    def test_terminal_4xx_is_not_retried(self):
        cases = [
            (400, RequestError),
            (401, AuthorizationError),
            (403, AuthenticationError),
            (404, NotFoundError),
        ]
        for status_code, error_class in cases:
            with self.subTest(status_code=status_code):
                body = b'{"success": false, "error": {"message": "nope", "code": 1}}'
                http = FakeHttpClient(make_response(status_code, body))

                with self.assertRaises(error_class) as ctx:
                    make_client(http).execute("GET", "/profiles")

                self.assertEqual(len(http.calls), 1)
                self.assertEqual(ctx.exception.message, "nope")

    def test_persistent_transport_failure_raises_transport_error(self):
        http = FakeHttpClient(requests.ConnectionError("connection refused"))

        with self.assertRaises(TransportError) as ctx:
            make_client(http).execute("GET", "/profiles")

        self.assertEqual(len(http.calls), 4)
        self.assertIsInstance(ctx.exception.cause, requests.ConnectionError)
        self.assertIsNot(ctx.exception.__cause__, ctx.exception)
        self.assertIsInstance(ctx.exception.__cause__, requests.ConnectionError)

    def test_zero_retries_makes_a_single_attempt(self):
        http = FakeHttpClient(make_response(500))
        options = ClientOptions(max_retries=0, requests_per_second=10_000.0, burst=100)

        with self.assertRaises(ServiceError):
            make_client(http, options=options).execute("GET", "/profiles")

        self.assertEqual(len(http.calls), 1)

    def test_unencodable_body_sends_nothing(self):
        http = FakeHttpClient(make_response(200))

        with self.assertRaises(ValueError):
            make_client(http).execute("POST", "/profiles", body={"bad": object()})

        self.assertEqual(http.calls, [])

    def test_body_is_json_encoded(self):
        http = FakeHttpClient(make_response(200, b"{}"))
        make_client(http).execute("POST", "/profiles", body={"name": "home"})
        self.assertEqual(http.calls[0]["data"], b'{"name": "home"}')

    def test_extra_headers_are_sent_on_every_attempt(self):
        http = FakeHttpClient(make_response(503), make_response(200, b"{}"))
        make_client(http).execute("GET", "/profiles", headers={"X-Force-Org-Id": "org1"})

        self.assertEqual(len(http.calls), 2)
        for call in http.calls:
            self.assertEqual(call["headers"], {"X-Force-Org-Id": "org1"})


class TestCancellation(unittest.TestCase):

    def test_cancel_during_backoff_stops_further_attempts(self):
        token = CancellationToken()
        http = FakeHttpClient(make_response(500), on_request=token.cancel)
        options = ClientOptions(max_retries=3, min_delay=30.0, max_delay=30.0, requests_per_second=10_000.0, burst=100)

        start = time.monotonic()
        with self.assertRaises(OperationCancelledError):
            make_client(http, options=options).execute("GET", "/profiles", cancel=token)

        self.assertEqual(len(http.calls), 1)
        self.assertLess(time.monotonic() - start, 5.0)

    def test_cancel_from_another_thread_wakes_backoff(self):
        token = CancellationToken()
        http = FakeHttpClient(make_response(502))
        options = ClientOptions(max_retries=3, min_delay=30.0, max_delay=30.0, requests_per_second=10_000.0, burst=100)
        threading.Timer(0.1, token.cancel).start()

        with self.assertRaises(OperationCancelledError):
            make_client(http, options=options).execute("GET", "/profiles", cancel=token)

        self.assertEqual(len(http.calls), 1)

    def test_already_cancelled_token_sends_nothing(self):
        token = CancellationToken()
        token.cancel()
        http = FakeHttpClient(make_response(200))

        with self.assertRaises(OperationCancelledError):
            make_client(http).execute("GET", "/profiles", cancel=token)

        self.assertEqual(http.calls, [])

    def test_request_timeout_is_bounded_by_deadline(self):
        http = FakeHttpClient(make_response(200, b"{}"))
        make_client(http).execute("GET", "/profiles", cancel=CancellationToken.with_timeout(2.0))
        self.assertLessEqual(http.calls[0]["timeout"], 2.0)

    def test_timeout_past_deadline_raises_deadline_exceeded_without_retry(self):
        token = CancellationToken.with_timeout(0.05)
        http = FakeHttpClient(requests.Timeout("read timed out"), on_request=lambda: time.sleep(0.1))

        with self.assertRaises(DeadlineExceededError):
            make_client(http).execute("GET", "/profiles", cancel=token)

        self.assertEqual(len(http.calls), 1)


class TestRequestExecutor(unittest.TestCase):

    def test_every_attempt_takes_a_permit(self):
        limiter = MagicMock(spec=TokenBucketRateLimiter)
        executor = RequestExecutor(
            http_client=FakeHttpClient(make_response(500)),
            base_url="https://api.controld.com/",
            policy=RetryPolicy(max_retries=3, min_delay=0.001, max_delay=0.001),
            rate_limiter=limiter,
        )

        with self.assertRaises(ServiceError):
            executor.execute("GET", "profiles")

        self.assertEqual(limiter.acquire.call_count, 4)

    def test_joins_base_url_and_path(self):
        http = FakeHttpClient(make_response(200))
        executor = RequestExecutor(
            http_client=http,
            base_url="https://api.controld.com/",
            policy=RetryPolicy(max_retries=0),
            rate_limiter=TokenBucketRateLimiter(rate=100.0),
        )
        executor.execute("GET", "/profiles/abc/filters")
        self.assertEqual(http.calls[0]["url"], "https://api.controld.com/profiles/abc/filters")


class TestControlDClient(unittest.TestCase):

    def test_raw_decodes_envelope(self):
        http = FakeHttpClient(make_response(200, b'{"success": true, "body": {"x": 1}}'))
        self.assertEqual(make_client(http).raw("GET", "/x"), {"success": True, "body": {"x": 1}})

    def test_raw_rejects_non_object(self):
        http = FakeHttpClient(make_response(200, b"[1, 2]"))
        with self.assertRaises(ValueError):
            make_client(http).raw("GET", "/x")

    def test_list_profiles(self):
        body = b'{"success": true, "body": {"profiles": [{"PK": "abc", "name": "Home"}]}}'
        http = FakeHttpClient(make_response(200, body))
        self.assertEqual(make_client(http).list_profiles(), [{"PK": "abc", "name": "Home"}])
        self.assertEqual(http.calls[0]["method"], "GET")
        self.assertTrue(http.calls[0]["url"].endswith("/profiles"))

    def test_list_profiles_handles_missing_body(self):
        http = FakeHttpClient(make_response(200, b'{"success": true}'))
        self.assertEqual(make_client(http).list_profiles(), [])

    def test_list_profiles_rejects_unexpected_shapes(self):
        for content in (b'{"success": true, "body": [1]}', b'{"success": true, "body": {"profiles": "x"}}'):
            with self.subTest(content=content):
                http = FakeHttpClient(make_response(200, content))
                with self.assertRaises(ValueError):
                    make_client(http).list_profiles()

    def test_raw_passes_extra_headers(self):
        http = FakeHttpClient(make_response(200, b"{}"))
        make_client(http).raw("GET", "/x", headers={"X-Force-Org-Id": "org1"})
        self.assertEqual(http.calls[0]["headers"], {"X-Force-Org-Id": "org1"})

    def test_context_manager_closes_transport(self):
        http = FakeHttpClient(make_response(200))
        with make_client(http):
            pass
        self.assertTrue(http.closed)

    def test_init_fails_with_empty_token(self):
        with self.assertRaises(AssertionError):
            ControlDClient(token="")


if __name__ == "__main__":
    unittest.main()
