"""
Control D API client.

The request pipeline for one logical call is:

    for each attempt (1 + max_retries):
        backoff (attempts >= 1, cancellable)
        acquire an outbound rate-limit permit (cancellable)
        send the request
        2xx/3xx -> return the body
        429/5xx -> retry
        other 4xx -> classified error, no retry
    retries exhausted -> RateLimitError / ServiceError / TransportError

Example:
    >>> from ctrld import ControlDClient, CancellationToken
    >>> with ControlDClient(token="api.xxx") as client:
    ...     profiles = client.list_profiles(cancel=CancellationToken.with_timeout(10))
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import requests

from ctrld._auth import StaticTokenAuthProvider, resolve_token
from ctrld._cancel import CancellationToken, DeadlineExceededError
from ctrld._config import CTRLD
from ctrld._errors import (
    RetryableStatusError,
    TransportError,
    classify_exhausted,
    classify_response,
    is_retryable_status,
)
from ctrld._http import HttpClient, RequestsHttpClient, encode_body
from ctrld._rate_limit import TokenBucketRateLimiter
from ctrld._retry import MaxRetriesExceededError, Retrying, RetryPolicy

if TYPE_CHECKING:
    from ctrld._config import CtrldConfig
    from ctrld._secrets import CredentialStore

logger = logging.getLogger(__name__)


# =============================================================================
# Options
# =============================================================================


@dataclass(frozen=True)
class ClientOptions:
    """
    Per-client options.

    Fields set to None use values from global config (CTRLD.config).

    Attributes:
        base_url: Control D API base URL.
        request_timeout: Per-attempt HTTP timeout in seconds.
        user_agent: User-Agent header value.
        debug: Log request/response summaries at DEBUG level.
        max_retries: Retries after the first attempt. 0 disables retrying.
        min_delay: Backoff before the first retry, in seconds.
        max_delay: Cap for any single backoff, in seconds.
        requests_per_second: Outbound permits per second.
        burst: Outbound limiter capacity.

    Example:
        >>> options = ClientOptions(max_retries=0, request_timeout=5)
        >>> client = ControlDClient(token="api.xxx", options=options)
    """

    base_url: str | None = None
    request_timeout: float | None = None
    user_agent: str | None = None
    debug: bool | None = None
    max_retries: int | None = None
    min_delay: float | None = None
    max_delay: float | None = None
    requests_per_second: float | None = None
    burst: int | None = None

    def with_defaults_from(self, cfg: CtrldConfig) -> ClientOptions:
        """
        Returns a new ClientOptions with None values filled from config.

        Args:
            cfg: The CtrldConfig to use for default values.

        Returns:
            A new ClientOptions with all fields resolved (no None values).
        """

        def pick(value: Any, default: Any) -> Any:
            return value if value is not None else default

        return ClientOptions(
            base_url=pick(self.base_url, cfg.api.base_url),
            request_timeout=pick(self.request_timeout, cfg.api.request_timeout),
            user_agent=pick(self.user_agent, cfg.api.user_agent),
            debug=pick(self.debug, cfg.api.debug),
            max_retries=pick(self.max_retries, cfg.retry.max_retries),
            min_delay=pick(self.min_delay, cfg.retry.min_delay),
            max_delay=pick(self.max_delay, cfg.retry.max_delay),
            requests_per_second=pick(self.requests_per_second, cfg.rate_limit.requests_per_second),
            burst=pick(self.burst, cfg.rate_limit.burst),
        )


# =============================================================================
# Request pipeline
# =============================================================================


class RequestExecutor:
    """
    Runs one logical API call through retry, rate limiting and classification.

    Args:
        http_client: Transport used for every attempt.
        base_url: URL prefix joined with each request path.
        policy: Retry/backoff parameters.
        rate_limiter: Outbound limiter; one permit per attempt.
        request_timeout: Per-attempt timeout in seconds, further bounded by
            the caller's deadline.
    """

    def __init__(
        self,
        http_client: HttpClient,
        base_url: str,
        policy: RetryPolicy,
        rate_limiter: TokenBucketRateLimiter,
        request_timeout: float = 30.0,
    ):
        assert http_client is not None, "http_client cannot be None."
        assert base_url, "base_url cannot be empty."
        assert policy is not None, "policy cannot be None."
        assert rate_limiter is not None, "rate_limiter cannot be None."
        assert request_timeout > 0, "request_timeout must be greater than 0."

        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.policy = policy
        self.rate_limiter = rate_limiter
        self.request_timeout = request_timeout

    def execute(
        self,
        method: str,
        path: str,
        body: Any = None,
        cancel: CancellationToken | None = None,
        headers: dict[str, str] | None = None,
    ) -> bytes:
        """
        Execute a request and return the raw response body.

        Args:
            method: HTTP method.
            path: API path, e.g. "/profiles".
            body: Request payload (see encode_body()).
            cancel: Cancellation token observed by every wait.
            headers: Extra request headers, sent on every attempt.

        Returns:
            The body of the first non-error response.

        Raises:
            ValueError: If the body cannot be encoded. No request is sent.
            ApiError: Classified HTTP error (terminal 4xx, or 429/5xx after exhaustion).
            TransportError: If the last attempt got no response at all.
            OperationCancelledError: If the token was cancelled.
            DeadlineExceededError: If the token's deadline passed.
        """
        assert method, "method cannot be empty."
        cancel = cancel or CancellationToken()
        data = encode_body(body)
        url = f"{self.base_url}/{path.lstrip('/')}"

        try:
            for attempt in Retrying(self.policy, cancel=cancel, logger_prefix=f"{method} {path}"):
                with attempt:
                    self.rate_limiter.acquire(cancel)
                    response = self._send(method, url, data, headers, cancel)

                    if is_retryable_status(response.status_code):
                        raise RetryableStatusError(response)

                    error = classify_response(response)
                    if error is not None:
                        logger.debug(f"{method} {path} | HTTP {response.status_code}: {error.message}")
                        raise error
                    return response.content

            # Should never reach here - Retrying raises MaxRetriesExceededError
            raise RuntimeError(f"{method} {path} | retry loop ended without a response")

        except MaxRetriesExceededError as e:
            last_exception = e.last_exception or e
            final = classify_exhausted(last_exception)
            if final is last_exception:
                raise final
            raise final from last_exception

    def _send(
        self,
        method: str,
        url: str,
        data: bytes | None,
        headers: dict[str, str] | None,
        cancel: CancellationToken,
    ) -> requests.Response:
        cancel.raise_if_done()

        timeout = self.request_timeout
        remaining = cancel.remaining()
        if remaining is not None:
            timeout = min(timeout, remaining)

        try:
            return self.http_client.request(method, url, data=data, headers=headers, timeout=timeout)
        except requests.Timeout as e:
            if cancel.expired:
                raise DeadlineExceededError(f"deadline exceeded during {method} {url}") from e
            raise TransportError(f"error sending request: {e}", cause=e) from e
        except requests.RequestException as e:
            cancel.raise_if_done()
            raise TransportError(f"error sending request: {e}", cause=e) from e


# =============================================================================
# Client
# =============================================================================


class ControlDClient:
    """
    Synchronous Control D API client.

    Args:
        token: Control D API token (`api.xxx`).
        options: Client options; None values use CTRLD.config.
        http_client: Custom transport. Defaults to RequestsHttpClient with
            bearer authentication.

    Example:
        >>> client = ControlDClient(token="api.xxx")
        >>> envelope = client.raw("GET", "/profiles")
        >>> envelope["success"]
        True
    """

    def __init__(
        self,
        token: str,
        options: ClientOptions | None = None,
        http_client: HttpClient | None = None,
    ):
        assert token, "token cannot be empty."

        resolved = (options or ClientOptions()).with_defaults_from(CTRLD.config)
        assert resolved.base_url is not None, "Sanity check | base_url must be set after with_defaults_from()"
        assert resolved.request_timeout is not None, "Sanity check | request_timeout must be set after with_defaults_from()"
        assert resolved.requests_per_second is not None, "Sanity check | requests_per_second must be set after with_defaults_from()"

        if http_client is None:
            http_client = RequestsHttpClient(
                auth_provider=StaticTokenAuthProvider(token),
                user_agent=resolved.user_agent or "ctrld-python",
                debug=bool(resolved.debug),
            )

        self.options = resolved
        self.http_client = http_client
        self.executor = RequestExecutor(
            http_client=http_client,
            base_url=resolved.base_url,
            policy=RetryPolicy(
                max_retries=resolved.max_retries,
                min_delay=resolved.min_delay,
                max_delay=resolved.max_delay,
            ),
            rate_limiter=TokenBucketRateLimiter(
                rate=resolved.requests_per_second,
                burst=resolved.burst,
            ),
            request_timeout=resolved.request_timeout,
        )

    @classmethod
    def from_credentials(
        cls,
        store: CredentialStore | None = None,
        account: str | None = None,
        options: ClientOptions | None = None,
    ) -> ControlDClient:
        """
        Build a client from the environment or a credential store.

        Raises:
            CredentialsNotFoundError: If no token could be resolved.
        """
        return cls(token=resolve_token(account=account, store=store), options=options)

    def execute(
        self,
        method: str,
        path: str,
        body: Any = None,
        cancel: CancellationToken | None = None,
        headers: dict[str, str] | None = None,
    ) -> bytes:
        """Execute a request and return the raw response body. See RequestExecutor.execute()."""
        return self.executor.execute(method, path, body=body, cancel=cancel, headers=headers)

    def raw(
        self,
        method: str,
        path: str,
        data: Any = None,
        cancel: CancellationToken | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """
        Execute a request and decode the JSON envelope.

        Returns:
            The decoded envelope, `{"success": ..., "body": ..., "error": ...}`.

        Raises:
            ValueError: If the response is not a JSON object.
        """
        content = self.execute(method, path, body=data, cancel=cancel, headers=headers)
        try:
            envelope = json.loads(content or b"{}")
        except (ValueError, UnicodeDecodeError) as e:
            raise ValueError(f"error decoding response of {method} {path}: {e}") from e
        if not isinstance(envelope, dict):
            raise ValueError(f"unexpected response of {method} {path}: expected a JSON object")
        return envelope

    def list_profiles(self, cancel: CancellationToken | None = None) -> list[dict[str, Any]]:
        """
        Return the profiles of the authenticated account.

        Raises:
            ValueError: If the response body does not hold a list of profiles.
        """
        envelope = self.raw("GET", "/profiles", cancel=cancel)
        body = envelope.get("body") or {}
        if not isinstance(body, dict):
            raise ValueError("unexpected response of GET /profiles: body is not an object")
        profiles = body.get("profiles") or []
        if not isinstance(profiles, list):
            raise ValueError("unexpected response of GET /profiles: profiles is not a list")
        return profiles

    def close(self) -> None:
        self.http_client.close()

    def __enter__(self) -> ControlDClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
