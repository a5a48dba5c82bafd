"""
Global configuration for the ctrld library.

This module provides a simple configuration system following Convention over Configuration (CoC).
Callers can optionally call CTRLD.configure() at application startup to customize defaults.
If not called, sensible defaults are used.

Hierarchy of precedence (highest to lowest):
1. Options passed to client constructors (ClientOptions)
2. Values set via CTRLD.configure()
3. Environment variables (CONTROLD_*) - when allow_env_override=True
4. Hardcoded defaults (in dataclass fields)

Example:
    >>> from ctrld import CTRLD
    >>>
    >>> # Pre-loaded with defaults + env vars
    >>> timeout = CTRLD.config.api.request_timeout
    >>>
    >>> # Custom configuration
    >>> CTRLD.configure(
    ...     retry={"max_retries": 5},
    ...     rate_limit={"requests_per_second": 2.0},
    ... )
"""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from typing import Any, Self

# Environment variable holding the API token (see ctrld._auth.resolve_token)
ENV_API_TOKEN = "CONTROLD_API_TOKEN"

DEFAULT_BASE_URL = "https://api.controld.com"
DEFAULT_USER_AGENT = "ctrld-python"


# =============================================================================
# Exceptions
# =============================================================================


class ConfigEnvVarError(ValueError):
    """Raised when an environment variable has an invalid value."""

    def __init__(
        self,
        env_var: str,
        value: str,
        expected_type: str,
        cause: Exception | None = None,
    ):
        self.env_var = env_var
        self.value = value
        self.expected_type = expected_type
        super().__init__(f"Invalid value for {env_var}: '{value}' (expected {expected_type})")
        self.__cause__ = cause


class ConfigValidationError(ValueError):
    """Raised when a configuration value fails validation."""

    def __init__(
        self,
        field: str,
        value: Any,
        message: str,
        section: str | None = None,
    ):
        self.field = field
        self.value = value
        self.section = section
        prefix = f"[{section}] " if section else ""
        super().__init__(f"{prefix}Invalid value for '{field}': {value!r}. {message}")


# =============================================================================
# Environment Variables
# =============================================================================


class EnvVars:
    """
    Utility class for reading environment variables with type conversion.

    Example:
        >>> EnvVars.get("CONTROLD_RETRY_MAX_RETRIES", type_hint=int)
        3
        >>> EnvVars.get("UNDEFINED_VAR")
        None
    """

    @staticmethod
    def get(
        var_name: str,
        type_hint: Any = str,
        converter: Callable[[str], Any] | None = None,
    ) -> Any:
        """
        Read an environment variable with optional type conversion.

        Args:
            var_name: The environment variable name.
            type_hint: Type hint used to infer the converter (ignored if converter is provided).
            converter: Custom converter function (takes precedence over type_hint).

        Returns:
            The converted value, or None if env var is not set/empty.

        Raises:
            ConfigEnvVarError: If the value cannot be converted.
        """
        raw_value = os.environ.get(var_name)
        if not raw_value:  # None or empty string
            return None

        actual_converter = converter or EnvVars._infer_converter(type_hint)
        try:
            return actual_converter(raw_value)
        except (ValueError, TypeError) as e:
            raise ConfigEnvVarError(
                env_var=var_name,
                value=raw_value,
                expected_type=type_hint.__name__ if hasattr(type_hint, "__name__") else str(type_hint),
                cause=e,
            ) from e

    @staticmethod
    def _infer_converter(type_hint: Any) -> Callable[[str], Any]:
        """
        Infer converter function from type hint.

        Handles both actual types and string annotations (PEP 563).
        """
        type_str = str(type_hint)

        if type_hint is int or type_str == "int":
            return int
        if type_hint is float or type_str == "float":
            return float
        if type_hint is bool or type_str == "bool":
            return _parse_bool
        return str


def _parse_bool(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in ("true", "1", "yes", "on"):
        return True
    if normalized in ("false", "0", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


# =============================================================================
# Base Class
# =============================================================================


@dataclass(frozen=True)
class OverridableConfig:
    """
    Base class for immutable configuration dataclasses.

    Provides `.with_overrides()` for creating new instances with partial
    field updates, and `.with_env_vars()` for applying the environment
    variables declared in each field's metadata.

    Example:
        >>> config = RetryConfig()
        >>> custom = config.with_overrides({"max_retries": 5})
        >>> custom.max_retries
        5
    """

    def with_overrides(self, overrides: dict[str, Any]) -> Self:
        """
        Return a new instance with specified fields overridden.

        None values are ignored so partially-filled dicts can be passed through.

        Raises:
            ValueError: If overrides contains unknown field names.
        """
        if not overrides:
            return self

        valid_fields = {f.name for f in fields(self)}
        invalid_fields = set(overrides.keys()) - valid_fields

        if invalid_fields:
            raise ValueError(
                f"Unknown config fields: {invalid_fields}. "
                f"Valid fields are: {valid_fields}"
            )

        filtered = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **filtered) if filtered else self

    def with_env_vars(self) -> Self:
        """
        Return new instance with environment variables applied.

        Raises:
            ConfigEnvVarError: If an env var has an invalid value.
        """
        overrides: dict[str, Any] = {}
        for f in fields(self):
            env_var = f.metadata.get("env")
            if env_var:
                value = EnvVars.get(var_name=env_var, type_hint=f.type)
                if value is not None:
                    overrides[f.name] = value
        return self.with_overrides(overrides)


def _require_http_url(value: str, name: str, section: str) -> None:
    if not (value.startswith("http://") or value.startswith("https://")):
        raise ConfigValidationError(
            name, value, "Must start with 'http://' or 'https://'.", section=section
        )


def _require_positive(value: float, name: str, section: str) -> None:
    if value <= 0:
        raise ConfigValidationError(name, value, "Must be greater than 0.", section=section)


# =============================================================================
# Configuration Dataclasses
# =============================================================================


@dataclass(frozen=True)
class ApiConfig(OverridableConfig):
    """
    Remote API connection settings.

    Attributes:
        base_url: Base URL of the Control D REST API.
            Env var: CONTROLD_API_BASE_URL

        request_timeout: Per-request HTTP timeout in seconds.
            Env var: CONTROLD_API_REQUEST_TIMEOUT

        user_agent: Value of the User-Agent header sent on every request.
            Env var: CONTROLD_API_USER_AGENT

        debug: Log request/response summaries at DEBUG level.
            Env var: CONTROLD_DEBUG
    """

    base_url: str = field(default=DEFAULT_BASE_URL, metadata={"env": "CONTROLD_API_BASE_URL"})
    request_timeout: float = field(default=30.0, metadata={"env": "CONTROLD_API_REQUEST_TIMEOUT"})
    user_agent: str = field(default=DEFAULT_USER_AGENT, metadata={"env": "CONTROLD_API_USER_AGENT"})
    debug: bool = field(default=False, metadata={"env": "CONTROLD_DEBUG"})

    def validate(self) -> Self:
        """Validate API configuration fields."""
        _require_http_url(self.base_url, "base_url", "api")
        _require_positive(self.request_timeout, "request_timeout", "api")
        if not self.user_agent:
            raise ConfigValidationError(
                "user_agent", self.user_agent, "Must not be empty.", section="api"
            )
        return self


@dataclass(frozen=True)
class RetryConfig(OverridableConfig):
    """
    Retry policy defaults for the request pipeline.

    Attributes:
        max_retries: Retries after the first attempt. 3 means 4 attempts in total.
            Env var: CONTROLD_RETRY_MAX_RETRIES

        min_delay: Backoff before the first retry, in seconds. Doubles on each retry.
            Env var: CONTROLD_RETRY_MIN_DELAY

        max_delay: Upper bound for a single backoff, in seconds.
            Env var: CONTROLD_RETRY_MAX_DELAY
    """

    max_retries: int = field(default=3, metadata={"env": "CONTROLD_RETRY_MAX_RETRIES"})
    min_delay: float = field(default=1.0, metadata={"env": "CONTROLD_RETRY_MIN_DELAY"})
    max_delay: float = field(default=30.0, metadata={"env": "CONTROLD_RETRY_MAX_DELAY"})

    def validate(self) -> Self:
        """Validate retry configuration fields."""
        if self.max_retries < 0:
            raise ConfigValidationError(
                "max_retries", self.max_retries, "Must be >= 0.", section="retry"
            )
        _require_positive(self.min_delay, "min_delay", "retry")
        if self.max_delay < self.min_delay:
            raise ConfigValidationError(
                "max_delay", self.max_delay,
                f"Must be >= min_delay ({self.min_delay}).", section="retry"
            )
        return self


@dataclass(frozen=True)
class RateLimitConfig(OverridableConfig):
    """
    Outbound token bucket settings.

    The defaults match the remote quota of 1200 requests per 5 minutes.

    Attributes:
        requests_per_second: Sustained refill rate of the bucket.
            Env var: CONTROLD_RATE_LIMIT_REQUESTS_PER_SECOND

        burst: Bucket capacity (requests allowed back-to-back).
            Env var: CONTROLD_RATE_LIMIT_BURST
    """

    requests_per_second: float = field(default=4.0, metadata={"env": "CONTROLD_RATE_LIMIT_REQUESTS_PER_SECOND"})
    burst: int = field(default=1, metadata={"env": "CONTROLD_RATE_LIMIT_BURST"})

    def validate(self) -> Self:
        """Validate rate limit configuration fields."""
        _require_positive(self.requests_per_second, "requests_per_second", "rate_limit")
        if self.burst < 1:
            raise ConfigValidationError(
                "burst", self.burst, "Must be >= 1.", section="rate_limit"
            )
        return self


@dataclass(frozen=True)
class SetupConfig(OverridableConfig):
    """
    Settings for the browser-based login server.

    Attributes:
        max_attempts: Attempts allowed per client address and endpoint within `window`.
            Env var: CONTROLD_SETUP_MAX_ATTEMPTS

        window: Length in seconds of the inbound rate limit window.
            Env var: CONTROLD_SETUP_WINDOW

        sweep_interval: Seconds between sweeps of expired limiter entries.
            Env var: CONTROLD_SETUP_SWEEP_INTERVAL

        validation_timeout: Upper bound in seconds for one connectivity check.
            Env var: CONTROLD_SETUP_VALIDATION_TIMEOUT

        open_browser: Whether to launch the default browser on start.
            Env var: CONTROLD_SETUP_OPEN_BROWSER
    """

    max_attempts: int = field(default=10, metadata={"env": "CONTROLD_SETUP_MAX_ATTEMPTS"})
    window: float = field(default=15 * 60.0, metadata={"env": "CONTROLD_SETUP_WINDOW"})
    sweep_interval: float = field(default=5 * 60.0, metadata={"env": "CONTROLD_SETUP_SWEEP_INTERVAL"})
    validation_timeout: float = field(default=30.0, metadata={"env": "CONTROLD_SETUP_VALIDATION_TIMEOUT"})
    open_browser: bool = field(default=True, metadata={"env": "CONTROLD_SETUP_OPEN_BROWSER"})

    def validate(self) -> Self:
        """Validate setup server configuration fields."""
        if self.max_attempts < 1:
            raise ConfigValidationError(
                "max_attempts", self.max_attempts, "Must be >= 1.", section="setup"
            )
        _require_positive(self.window, "window", "setup")
        _require_positive(self.sweep_interval, "sweep_interval", "setup")
        _require_positive(self.validation_timeout, "validation_timeout", "setup")
        return self


@dataclass(frozen=True)
class CtrldConfig:
    """
    Root configuration, aggregating every section.

    Attributes:
        api: Remote API connection settings.
        retry: Retry policy defaults.
        rate_limit: Outbound rate limiting.
        setup: Browser login server settings.
    """

    api: ApiConfig = field(default_factory=ApiConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    setup: SetupConfig = field(default_factory=SetupConfig)

    def with_env_vars(self) -> CtrldConfig:
        """Return a new config with CONTROLD_* environment variables applied on top."""
        return CtrldConfig(
            api=self.api.with_env_vars(),
            retry=self.retry.with_env_vars(),
            rate_limit=self.rate_limit.with_env_vars(),
            setup=self.setup.with_env_vars(),
        )

    def with_section_overrides(
        self,
        *,
        api: dict[str, Any] | None = None,
        retry: dict[str, Any] | None = None,
        rate_limit: dict[str, Any] | None = None,
        setup: dict[str, Any] | None = None,
    ) -> CtrldConfig:
        """Return a new config with overrides merged into each section."""
        return CtrldConfig(
            api=self.api.with_overrides(api or {}),
            retry=self.retry.with_overrides(retry or {}),
            rate_limit=self.rate_limit.with_overrides(rate_limit or {}),
            setup=self.setup.with_overrides(setup or {}),
        )

    def validate(self) -> CtrldConfig:
        self.api.validate()
        self.retry.validate()
        self.rate_limit.validate()
        self.setup.validate()
        return self


# =============================================================================
# Global Configuration Singleton
# =============================================================================


class _CTRLD:
    """
    Singleton holding the active configuration.

    Example:
        >>> from ctrld import CTRLD
        >>> CTRLD.configure(api={"request_timeout": 10})
        >>> print(CTRLD.config.api.request_timeout)
    """

    def __init__(self) -> None:
        self._config: CtrldConfig = CtrldConfig().with_env_vars()

    def configure(
        self,
        *,
        api: dict[str, Any] | None = None,
        retry: dict[str, Any] | None = None,
        rate_limit: dict[str, Any] | None = None,
        setup: dict[str, Any] | None = None,
        allow_env_override: bool = True,
    ) -> CtrldConfig:
        """
        Configure library settings.

        Args:
            api: API config overrides (base_url, request_timeout, user_agent, debug).
            retry: Retry config overrides (max_retries, min_delay, max_delay).
            rate_limit: Outbound limiter overrides (requests_per_second, burst).
            setup: Login server overrides (max_attempts, window, sweep_interval, ...).
            allow_env_override: If True (default), env vars are used as fallback
                for fields NOT provided. If False, ignores env vars entirely.

        Returns:
            The configured CtrldConfig instance.

        Raises:
            ValueError: If any dict contains unknown field names.
            ConfigValidationError: If any config value fails validation.
        """
        base = CtrldConfig()
        if allow_env_override:
            base = base.with_env_vars()

        self._config = base.with_section_overrides(
            api=api,
            retry=retry,
            rate_limit=rate_limit,
            setup=setup,
        )
        return self.validate()

    @property
    def config(self) -> CtrldConfig:
        """Access current configuration (read-only)."""
        return self._config

    def reset(self) -> CtrldConfig:
        """
        Reset configuration to defaults + env vars.

        Useful for testing to ensure clean state between tests.
        """
        self._config = CtrldConfig().with_env_vars()
        return self.validate()

    def validate(self) -> CtrldConfig:
        """
        Validate current configuration.

        Raises:
            ConfigValidationError: If any config value is invalid.
        """
        return self._config.validate()

    def __repr__(self) -> str:
        return f"CTRLD(config={self._config!r})"


# Global singleton instance - always reflects current configuration
CTRLD: _CTRLD = _CTRLD()
CTRLD.validate()  # Validate defaults + env vars on module load
