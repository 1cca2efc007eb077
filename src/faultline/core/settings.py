"""Environment-driven settings for the resilience layer.

``ResilienceSettings`` gathers every recognized option (breaker thresholds,
retry schedule, per-attempt timeout, logging) into one validated object.
Values come from ``FAULTLINE_*`` environment variables or a ``.env`` file;
the value objects the runtime consumes are built from it with
``retry_policy()`` and ``breaker_options()``.

Examples:
    >>> settings = ResilienceSettings(failure_threshold=2, reset_timeout_ms=100)
    >>> breaker = registry.get_or_create("warehouse", **settings.breaker_options())
    >>> policy = settings.retry_policy()

Tags:
    settings, configuration, pydantic, environment, faultline

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from faultline.execution.retry import RetryPolicy


class ResilienceSettings(BaseSettings):
    """Resilience configuration.

    Fields
    ──────
    failure_threshold   : Failures in CLOSED before the breaker opens
    success_threshold   : Half-open successes before the breaker closes
    reset_timeout_ms    : Open window before a half-open probe is allowed
    half_open_max_calls : Concurrent half-open probes (None = no limit)
    max_attempts        : Retries after the first attempt
    initial_delay_ms    : First backoff delay
    max_delay_ms        : Backoff cap
    backoff             : exponential / linear / fixed
    jitter_factor       : Relative jitter in [0, 1]
    timeout_ms          : Per-attempt timeout (None = unbounded)
    log_level           : Structlog log level
    log_format          : json or console
    """

    model_config = SettingsConfigDict(
        env_prefix="FAULTLINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Circuit breaker ──────────────────────────────────────────
    failure_threshold: int = Field(default=3, gt=0)
    success_threshold: int = Field(default=1, ge=1)
    reset_timeout_ms: int = Field(default=30_000, ge=0)
    half_open_max_calls: int | None = Field(default=None, ge=1)

    # ── Retry ────────────────────────────────────────────────────
    max_attempts: int = Field(default=3, ge=0)
    initial_delay_ms: float = Field(default=1_000.0, ge=0)
    max_delay_ms: float = Field(default=30_000.0, ge=0)
    backoff: str = Field(default="exponential")
    jitter_factor: float = Field(default=0.1, ge=0.0, le=1.0)

    # ── Timeout ──────────────────────────────────────────────────
    timeout_ms: float | None = Field(default=None, gt=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    @field_validator("backoff")
    @classmethod
    def _known_backoff(cls, value: str) -> str:
        from faultline.execution.retry import BackoffStrategy

        normalized = value.strip().lower()
        if normalized not in {s.value for s in BackoffStrategy}:
            raise ValueError(f"unknown backoff strategy: {value!r}")
        return normalized

    @field_validator("log_format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in ("json", "console"):
            raise ValueError(f"log_format must be 'json' or 'console', got {value!r}")
        return normalized

    def breaker_options(self) -> dict[str, Any]:
        """Keyword arguments for ``CircuitBreaker`` / ``get_or_create``."""
        return {
            "failure_threshold": self.failure_threshold,
            "success_threshold": self.success_threshold,
            "reset_timeout_ms": self.reset_timeout_ms,
            "half_open_max_calls": self.half_open_max_calls,
        }

    def retry_policy(self, **overrides: Any) -> RetryPolicy:
        """Build a RetryPolicy from these settings."""
        from faultline.execution.retry import BackoffStrategy, RetryPolicy

        options: dict[str, Any] = {
            "max_attempts": self.max_attempts,
            "initial_delay_ms": self.initial_delay_ms,
            "max_delay_ms": self.max_delay_ms,
            "backoff": BackoffStrategy(self.backoff),
            "jitter_factor": self.jitter_factor,
            "timeout_ms": self.timeout_ms,
        }
        options.update(overrides)
        return RetryPolicy(**options)
