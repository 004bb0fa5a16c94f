"""
Three-state circuit breaker guarding outbound backend operations.

One breaker is shared by every caller of an operation class, so callers
share fate: once enough consecutive failures accumulate the breaker opens
and rejects calls without running them until ``timeout`` has elapsed.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, TypeVar

import structlog

from replication_core.exceptions import CircuitBreakerOpenError
from replication_core.settings import CircuitBreakerSettings

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitBreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass
class CircuitBreakerMetrics:
    failure_count: int = 0
    success_count: int = 0
    last_failure: datetime | None = None
    last_success: datetime | None = None
    opened_at: datetime | None = None
    total_calls: int = 0
    rejected_calls: int = 0
    state_changes: int = 0


class CircuitBreaker:
    def __init__(
        self,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        timeout: float = 60.0,
        name: str = "default",
    ) -> None:
        if failure_threshold <= 0 or success_threshold <= 0:
            raise ValueError("thresholds must be > 0")
        self.name = name
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.timeout = timeout

        self.state = CircuitBreakerState.CLOSED
        self.metrics = CircuitBreakerMetrics()
        self._opened_mono: float | None = None
        # Lazy-init so the lock binds to the loop that first uses the breaker.
        self._lock: asyncio.Lock | None = None

    @classmethod
    def from_settings(cls, settings: CircuitBreakerSettings) -> "CircuitBreaker":
        return cls(
            failure_threshold=settings.failure_threshold,
            success_threshold=settings.success_threshold,
            timeout=settings.timeout,
            name=settings.name,
        )

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            asyncio.get_running_loop()
            self._lock = asyncio.Lock()
        return self._lock

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """
        Run ``func`` through the breaker.

        Raises:
            CircuitBreakerOpenError: the breaker is open and ``func`` was not run.
            Exception: whatever ``func`` raised, after it was counted as a failure.
        """
        async with self._get_lock():
            self.metrics.total_calls += 1
            if self.state is CircuitBreakerState.OPEN:
                elapsed = time.monotonic() - (self._opened_mono or 0.0)
                if elapsed <= self.timeout:
                    self.metrics.rejected_calls += 1
                    raise CircuitBreakerOpenError(self.name, self.timeout - elapsed)
                self._transition(CircuitBreakerState.HALF_OPEN)
                self.metrics.success_count = 0

        try:
            result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            raise
        except Exception:
            async with self._get_lock():
                self._on_failure()
            raise

        async with self._get_lock():
            self._on_success()
        return result

    def _transition(self, new_state: CircuitBreakerState) -> None:
        if new_state is self.state:
            return
        logger.info(
            "circuit_breaker_state_changed",
            name=self.name,
            from_state=self.state.value,
            to_state=new_state.value,
        )
        self.state = new_state
        self.metrics.state_changes += 1

    def _open(self) -> None:
        self._opened_mono = time.monotonic()
        self.metrics.opened_at = datetime.now(timezone.utc)
        self._transition(CircuitBreakerState.OPEN)

    def _on_success(self) -> None:
        m = self.metrics
        m.last_success = datetime.now(timezone.utc)
        m.failure_count = 0
        m.success_count += 1
        if (
            self.state is CircuitBreakerState.HALF_OPEN
            and m.success_count >= self.success_threshold
        ):
            m.success_count = 0
            m.failure_count = 0
            self._transition(CircuitBreakerState.CLOSED)

    def _on_failure(self) -> None:
        m = self.metrics
        m.last_failure = datetime.now(timezone.utc)
        m.failure_count += 1
        m.success_count = 0
        if self.state is CircuitBreakerState.HALF_OPEN:
            self._open()
        elif m.failure_count >= self.failure_threshold:
            if self.state is CircuitBreakerState.CLOSED:
                logger.error(
                    "circuit_breaker_opened",
                    name=self.name,
                    failures=m.failure_count,
                    threshold=self.failure_threshold,
                )
            self._open()

    def get_state(self) -> CircuitBreakerState:
        return self.state

    def reset(self) -> None:
        self._transition(CircuitBreakerState.CLOSED)
        self.metrics.failure_count = 0
        self.metrics.success_count = 0
        self._opened_mono = None

    def get_metrics(self) -> dict[str, Any]:
        m = self.metrics
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": m.failure_count,
            "success_count": m.success_count,
            "last_failure": m.last_failure.isoformat() if m.last_failure else None,
            "last_success": m.last_success.isoformat() if m.last_success else None,
            "opened_at": m.opened_at.isoformat() if m.opened_at else None,
            "total_calls": m.total_calls,
            "rejected_calls": m.rejected_calls,
            "state_changes": m.state_changes,
        }


__all__ = ["CircuitBreaker", "CircuitBreakerMetrics", "CircuitBreakerState"]
