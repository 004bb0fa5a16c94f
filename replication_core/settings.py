"""Environment-driven settings for the replication core components."""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_RETRYABLE_ERRORS: tuple[str, ...] = (
    "connection refused",
    "timeout",
    "temporary failure",
    "service unavailable",
)


class DiscoverySettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="REPLICATION_DISCOVERY_",
        frozen=True,
        extra="ignore",
    )

    # seconds
    cache_ttl: float = Field(default=300.0, gt=0.0)
    refresh_interval: float = Field(default=30.0, gt=0.0)
    timeout_per_backend: float = Field(default=10.0, gt=0.0)
    enable_auto_refresh: bool = False

    # max_retries counts additional attempts after the first one
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0.0)


class CapabilitySettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="REPLICATION_CAPABILITY_",
        frozen=True,
        extra="ignore",
    )

    enable_capability_detection: bool = True
    enable_health_monitoring: bool = True
    enable_performance_monitoring: bool = False
    enable_version_detection: bool = True

    health_check_interval: float = Field(default=60.0, gt=0.0)
    capability_refresh_interval: float = Field(default=300.0, gt=0.0)
    performance_check_interval: float = Field(default=900.0, gt=0.0)

    timeout_per_check: float = Field(default=30.0, gt=0.0)
    max_concurrent_checks: int = Field(default=3, gt=0)


class RetrySettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="REPLICATION_RETRY_",
        frozen=True,
        extra="ignore",
    )

    max_attempts: int = Field(default=5, gt=0)
    initial_delay: float = Field(default=1.0, ge=0.0)
    max_delay: float = Field(default=300.0, ge=0.0)
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: float = Field(default=0.1, ge=0.0, le=1.0)
    retryable_errors: tuple[str, ...] = DEFAULT_RETRYABLE_ERRORS
    non_retryable_errors: tuple[str, ...] = ()

    @model_validator(mode="after")
    def _check_delays(self) -> "RetrySettings":
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        return self


class CircuitBreakerSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="REPLICATION_BREAKER_",
        frozen=True,
        extra="ignore",
    )

    name: str = "default"
    failure_threshold: int = Field(default=5, gt=0)
    success_threshold: int = Field(default=2, gt=0)
    timeout: float = Field(default=60.0, gt=0.0)


class ControllerSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="REPLICATION_CONTROLLER_",
        frozen=True,
        extra="ignore",
    )

    enable_caching: bool = True
    discovery_cache_ttl: float = Field(default=300.0, gt=0.0)
    history_size: int = Field(default=100, gt=0)


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="REPLICATION_LOG_",
        frozen=True,
        extra="ignore",
    )

    level: str = "INFO"
    json_logs: bool = True
    development_mode: bool = False
