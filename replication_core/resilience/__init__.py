"""Retry and circuit-breaker primitives guarding backend operations."""

from replication_core.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerMetrics,
    CircuitBreakerState,
)
from replication_core.resilience.retry import RetryManager, RetryState, RetryStrategy

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerMetrics",
    "CircuitBreakerState",
    "RetryManager",
    "RetryState",
    "RetryStrategy",
]
