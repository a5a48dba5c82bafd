"""
HTTP transport abstraction for the ctrld library.

The request pipeline talks to the network only through HttpClient, which
makes the transport easy to replace in tests and keeps authentication and
header handling in one place.

Available implementations:
    - RequestsHttpClient: `requests.Session` based client that injects the
      bearer token, User-Agent and JSON content type into every request.

Example:
    >>> from ctrld._auth import StaticTokenAuthProvider
    >>> from ctrld._http import RequestsHttpClient
    >>> client = RequestsHttpClient(auth_provider=StaticTokenAuthProvider("api.xxx"))
    >>> response = client.request("GET", "https://api.controld.com/profiles")
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, override

import requests

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from ctrld._auth import AuthProvider


# =============================================================================
# Abstract Base Class
# =============================================================================


class HttpClient(ABC):
    """
    Abstract base class for HTTP clients.

    Implementations handle authentication and headers. Retries, rate limiting
    and error classification live in the RequestExecutor, above this layer.

    Example:
        >>> class MyHttpClient(HttpClient):
        ...     def request(self, method, url, data=None, headers=None, timeout=30):
        ...         return requests.request(method, url, data=data, headers=headers, timeout=timeout)
    """

    @abstractmethod
    def request(
        self,
        method: str,
        url: str,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 30,
    ) -> requests.Response:
        """
        Execute one authenticated HTTP request. Never retries.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE...).
            url: The full URL to request.
            data: Already-encoded request body, if any.
            headers: Additional headers to include (merged over the defaults).
            timeout: Request timeout in seconds.

        Returns:
            The HTTP response, whatever its status code.

        Raises:
            requests.RequestException: If no response could be obtained.
        """
        pass

    def close(self) -> None:
        """Release pooled connections, if any."""


# =============================================================================
# Requests Implementation
# =============================================================================


class RequestsHttpClient(HttpClient):
    """
    HTTP client backed by a `requests.Session`.

    Every request carries:
        - `Authorization: Bearer <token>` from the AuthProvider
        - `User-Agent: <user_agent>`
        - `Content-Type: application/json` unless the caller sets one

    Args:
        auth_provider: Provider for the bearer token.
        user_agent: Value for the User-Agent header.
        debug: Log request/response summaries at DEBUG level.
    """

    def __init__(
        self,
        auth_provider: "AuthProvider",
        user_agent: str = "ctrld-python",
        debug: bool = False,
    ):
        from ctrld._auth import AuthProvider

        assert auth_provider is not None, "auth_provider cannot be None"
        assert isinstance(auth_provider, AuthProvider), "auth_provider must be an AuthProvider instance"
        assert user_agent, "user_agent cannot be empty"

        self._auth = auth_provider
        self._user_agent = user_agent
        self._debug = debug
        self._session: requests.Session | None = None
        self._lock = threading.Lock()

    def _get_session(self) -> requests.Session:
        if self._session is None:
            with self._lock:
                if self._session is None:
                    self._session = requests.Session()
        return self._session

    def _build_headers(self, headers: dict[str, str] | None) -> dict[str, str]:
        merged = {
            "User-Agent": self._user_agent,
            **(headers or {}),
            **self._auth.get_auth_headers(),
        }
        if not any(key.lower() == "content-type" for key in merged):
            merged["Content-Type"] = "application/json"
        return merged

    @override
    def request(
        self,
        method: str,
        url: str,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 30,
    ) -> requests.Response:
        assert method, "method cannot be empty."
        assert url, "URL cannot be empty."
        assert timeout is not None, "Timeout cannot be None."
        assert timeout > 0, "Timeout must be greater than 0."

        merged_headers = self._build_headers(headers)
        if self._debug:
            logger.debug(f"--> {method} {url} ({len(data) if data else 0} bytes)")

        response = self._get_session().request(
            method,
            url,
            data=data,
            headers=merged_headers,
            timeout=timeout,
        )

        if self._debug:
            logger.debug(
                f"<-- {response.status_code} {method} {url} "
                f"({len(response.content)} bytes, {response.elapsed.total_seconds():.3f}s)"
            )
        return response

    @override
    def close(self) -> None:
        with self._lock:
            if self._session is not None:
                self._session.close()
                self._session = None


def encode_body(body: Any) -> bytes | None:
    """
    Encode a request body.

    - None -> no body
    - bytes -> sent unchanged
    - str -> UTF-8 encoded
    - anything else -> JSON encoded

    Raises:
        ValueError: If the body is not JSON serializable.
    """
    if body is None:
        return None
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode("utf-8")
    try:
        return json.dumps(body).encode("utf-8")
    except TypeError as e:
        raise ValueError(f"error marshalling params to JSON: {e}") from e
