"""
Control D API client for Python.

A client for the Control D DNS filtering API with retries, outbound rate
limiting, cancellation, and a browser-based login flow.

Quick Start:
    >>> from ctrld import ControlDClient, CancellationToken
    >>> with ControlDClient(token="api.xxx") as client:
    ...     profiles = client.list_profiles(cancel=CancellationToken.with_timeout(30))

Login (browser-based):
    >>> from ctrld import InMemoryCredentialStore
    >>> from ctrld.login import SetupServer
    >>> result = SetupServer(store=InMemoryCredentialStore()).start()
    >>> print(result.account_name)

Global Configuration:
    >>> from ctrld import CTRLD
    >>>
    >>> # Pre-loaded with defaults + env vars
    >>> timeout = CTRLD.config.api.request_timeout
    >>>
    >>> # Custom configuration
    >>> CTRLD.configure(
    ...     retry={"max_retries": 5, "max_delay": 10.0},
    ...     rate_limit={"requests_per_second": 2.0},
    ... )

Main Classes:
    - ControlDClient: Client for the Control D API.
    - ClientOptions: Per-client options (None values use CTRLD.config).
    - RequestExecutor: Retry, rate limit and classification pipeline.
    - CancellationToken: Cancel flag and deadline for blocking calls.

Errors:
    - ApiError: Base class for classified HTTP errors (see ErrorKind).
    - RequestError, AuthenticationError, AuthorizationError, NotFoundError,
      RateLimitError, ServiceError: One class per ErrorKind.
    - TransportError: No HTTP response was received.
    - OperationCancelledError, DeadlineExceededError: The caller's token fired.

Credentials:
    - CredentialStore: Abstract store of named API tokens.
    - InMemoryCredentialStore: Process-local store.
    - resolve_token: Find the token from an argument, the environment or a store.
"""

from importlib.metadata import version as _get_version

__version__ = _get_version("ctrld")

from ctrld._auth import (
    AuthProvider,
    CredentialsNotFoundError,
    StaticTokenAuthProvider,
    resolve_token,
)
from ctrld._cancel import (
    CancellationToken,
    DeadlineExceededError,
    OperationCancelledError,
)
from ctrld._client import (
    ClientOptions,
    ControlDClient,
    RequestExecutor,
)
from ctrld._config import (
    CTRLD,
    ApiConfig,
    ConfigEnvVarError,
    ConfigValidationError,
    CtrldConfig,
    RateLimitConfig,
    RetryConfig,
    SetupConfig,
)
from ctrld._errors import (
    ApiError,
    AuthenticationError,
    AuthorizationError,
    ErrorKind,
    NotFoundError,
    RateLimitError,
    RequestError,
    ServiceError,
    TransportError,
)
from ctrld._http import (
    HttpClient,
    RequestsHttpClient,
)
from ctrld._rate_limit import TokenBucketRateLimiter
from ctrld._retry import (
    MaxRetriesExceededError,
    RetryableError,
    Retrying,
    RetryPolicy,
)
from ctrld._secrets import (
    CredentialNotFoundError,
    Credentials,
    CredentialStore,
    CredentialStoreError,
    InMemoryCredentialStore,
)

__all__ = [
    "__version__",
    # Client
    "ControlDClient",
    "ClientOptions",
    "RequestExecutor",
    # Cancellation
    "CancellationToken",
    "OperationCancelledError",
    "DeadlineExceededError",
    # Configuration
    "CTRLD",
    "CtrldConfig",
    "ApiConfig",
    "RetryConfig",
    "RateLimitConfig",
    "SetupConfig",
    "ConfigEnvVarError",
    "ConfigValidationError",
    # Errors
    "ErrorKind",
    "ApiError",
    "RequestError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "RateLimitError",
    "ServiceError",
    "TransportError",
    # Authentication
    "AuthProvider",
    "StaticTokenAuthProvider",
    "CredentialsNotFoundError",
    "resolve_token",
    # Credential store
    "CredentialStore",
    "CredentialStoreError",
    "CredentialNotFoundError",
    "Credentials",
    "InMemoryCredentialStore",
    # HTTP Client
    "HttpClient",
    "RequestsHttpClient",
    # Rate limiting
    "TokenBucketRateLimiter",
    # Retry
    "Retrying",
    "RetryPolicy",
    "RetryableError",
    "MaxRetriesExceededError",
]
