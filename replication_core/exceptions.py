"""
Typed errors raised by the replication control-plane core.

Discovery failures carry backend and schema context so that callers can
decide whether a retry makes sense; resilience failures (open breaker,
exhausted retries) are distinct types so they never get confused with the
wrapped operation's own errors.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ReplicationCoreError(Exception):
    """Base class for every error raised by replication_core."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


# =============================================================================
# Discovery
# =============================================================================


class DiscoveryErrorType(str, Enum):
    SCHEMA_NOT_FOUND = "crd_not_found"
    CONTROLLER_NOT_FOUND = "controller_not_found"
    TIMEOUT = "timeout"
    PERMISSION_DENIED = "permission_denied"
    UNKNOWN = "unknown"


class DiscoveryError(ReplicationCoreError):
    def __init__(
        self,
        error_type: DiscoveryErrorType,
        message: str,
        backend: str = "",
        schema_name: str = "",
        cause: BaseException | None = None,
    ) -> None:
        self.error_type = error_type
        self.backend = backend
        self.schema_name = schema_name
        self.cause = cause
        super().__init__(message)

    def __str__(self) -> str:
        text = f"discovery error ({self.error_type.value})"
        if self.backend:
            text += f" for backend {self.backend}"
        if self.schema_name:
            text += f" CRD {self.schema_name}"
        text += f": {self.message}"
        if self.cause is not None:
            text += f" (caused by: {self.cause})"
        return text

    @property
    def is_retryable(self) -> bool:
        return self.error_type is not DiscoveryErrorType.PERMISSION_DENIED


class SchemaNotFoundError(LookupError):
    """Raised by a resource store gateway when a schema declaration is absent."""

    def __init__(self, name: str) -> None:
        super().__init__(f"schema {name} not found")
        self.name = name


def classify_error(
    exc: BaseException, backend: str = "", schema_name: str = ""
) -> DiscoveryError:
    """Wrap an arbitrary gateway failure into a :class:`DiscoveryError`."""
    if isinstance(exc, DiscoveryError):
        return exc
    if isinstance(exc, SchemaNotFoundError):
        error_type = DiscoveryErrorType.SCHEMA_NOT_FOUND
    elif isinstance(exc, PermissionError):
        error_type = DiscoveryErrorType.PERMISSION_DENIED
    elif isinstance(exc, TimeoutError):
        error_type = DiscoveryErrorType.TIMEOUT
    else:
        error_type = DiscoveryErrorType.UNKNOWN
    return DiscoveryError(
        error_type,
        str(exc) or type(exc).__name__,
        backend=backend,
        schema_name=schema_name,
        cause=exc,
    )


# =============================================================================
# Capabilities
# =============================================================================


class CapabilityError(ReplicationCoreError):
    """Registry lookups and refreshes for unknown backends or detectors."""


class ConfigurationValidationError(ReplicationCoreError):
    """A replication configuration asks for something the backend cannot do."""


# =============================================================================
# Resilience
# =============================================================================


class CircuitBreakerOpenError(ReplicationCoreError):
    """The breaker rejected the call without invoking the operation."""

    def __init__(self, name: str, remaining: float = 0.0) -> None:
        self.name = name
        self.remaining = remaining
        super().__init__(
            f"circuit breaker is open: {name}",
            {"retry_in_seconds": round(remaining, 3)},
        )


class RetryExhaustedError(ReplicationCoreError):
    def __init__(self, key: str, attempts: int, last_error: BaseException | None) -> None:
        self.key = key
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"max retry attempts ({attempts}) exceeded for {key}: {last_error}"
        )


# =============================================================================
# State machine / controller
# =============================================================================


class InvalidTransitionError(ReplicationCoreError):
    def __init__(self, from_state: str, to_state: str) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"invalid state transition from {from_state or '<empty>'} to {to_state or '<empty>'}"
        )


class BackendSelectionError(ReplicationCoreError):
    """No backend could be chosen for a replication resource."""


class UnsupportedOperationError(ReplicationCoreError):
    pass


__all__ = [
    "BackendSelectionError",
    "CapabilityError",
    "CircuitBreakerOpenError",
    "ConfigurationValidationError",
    "DiscoveryError",
    "DiscoveryErrorType",
    "InvalidTransitionError",
    "ReplicationCoreError",
    "RetryExhaustedError",
    "SchemaNotFoundError",
    "UnsupportedOperationError",
    "classify_error",
]
