"""
Per-resource retry manager with exponential backoff and jitter.

Attempt counters are keyed by an arbitrary caller-supplied string (usually
``namespace/name``). Entries are created on the first recorded attempt and
only removed by :meth:`RetryManager.reset_attempts`, so callers must reset
once a resource has converged.
"""

from __future__ import annotations

import random
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, TypeVar

import structlog
from tenacity import AsyncRetrying, RetryError, retry_if_exception, stop_after_attempt

from replication_core.exceptions import (
    BackendSelectionError,
    ConfigurationValidationError,
    InvalidTransitionError,
    RetryExhaustedError,
    UnsupportedOperationError,
)
from replication_core.settings import DEFAULT_RETRYABLE_ERRORS, RetrySettings

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# errors that describe a bad request rather than a flaky dependency
NON_RETRYABLE_TYPES: tuple[type[BaseException], ...] = (
    BackendSelectionError,
    ConfigurationValidationError,
    InvalidTransitionError,
    UnsupportedOperationError,
)


@dataclass(frozen=True)
class RetryStrategy:
    max_attempts: int = 5
    initial_delay: float = 1.0
    max_delay: float = 300.0
    multiplier: float = 2.0
    jitter: float = 0.1
    retryable_errors: tuple[str, ...] = DEFAULT_RETRYABLE_ERRORS
    non_retryable_errors: tuple[str, ...] = ()

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryStrategy":
        return cls(
            max_attempts=settings.max_attempts,
            initial_delay=settings.initial_delay,
            max_delay=settings.max_delay,
            multiplier=settings.multiplier,
            jitter=settings.jitter,
            retryable_errors=tuple(settings.retryable_errors),
            non_retryable_errors=tuple(settings.non_retryable_errors),
        )


@dataclass
class RetryState:
    attempts: int = 0
    last_attempt: datetime | None = None


class RetryManager:
    def __init__(self, strategy: RetryStrategy | None = None) -> None:
        self.strategy = strategy or RetryStrategy()
        self._lock = threading.Lock()
        self._states: dict[str, RetryState] = {}

    # =========================================================================
    # Attempt bookkeeping
    # =========================================================================

    def record_attempt(self, key: str) -> int:
        with self._lock:
            state = self._states.setdefault(key, RetryState())
            state.attempts += 1
            state.last_attempt = datetime.now(timezone.utc)
            return state.attempts

    def reset_attempts(self, key: str) -> None:
        with self._lock:
            self._states.pop(key, None)

    def get_attempt_count(self, key: str) -> int:
        with self._lock:
            state = self._states.get(key)
            return state.attempts if state is not None else 0

    def get_last_attempt(self, key: str) -> datetime | None:
        with self._lock:
            state = self._states.get(key)
            return state.last_attempt if state is not None else None

    def tracked_keys(self) -> list[str]:
        with self._lock:
            return list(self._states)

    # =========================================================================
    # Policy
    # =========================================================================

    def is_retryable_error(self, err: BaseException | None) -> bool:
        """
        Classify an error by message.

        A message matching ``non_retryable_errors`` is terminal, a message
        matching ``retryable_errors`` is retried, and anything else is retried
        as well.
        """
        if err is None or not isinstance(err, Exception):
            return False
        if isinstance(err, NON_RETRYABLE_TYPES):
            return False
        message = str(err).lower()
        if any(s.lower() in message for s in self.strategy.non_retryable_errors):
            return False
        if any(s.lower() in message for s in self.strategy.retryable_errors):
            return True
        return True

    def should_retry(self, key: str, err: BaseException | None) -> bool:
        if err is None:
            return False
        if self.get_attempt_count(key) >= self.strategy.max_attempts:
            return False
        return self.is_retryable_error(err)

    def get_next_delay(self, key: str) -> float:
        """Backoff before the next attempt, never above ``max_delay``."""
        return self._backoff(self.get_attempt_count(key))

    def _backoff(self, attempts: int) -> float:
        s = self.strategy
        if attempts == 0:
            return min(s.initial_delay, s.max_delay)

        delay = min(s.initial_delay * s.multiplier ** (attempts - 1), s.max_delay)
        if s.jitter > 0:
            delay += random.uniform(0, s.jitter * delay)
        return min(delay, s.max_delay)

    # =========================================================================
    # Execution
    # =========================================================================

    async def with_retry(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``fn`` until it succeeds, fails with a non-retryable error, or runs
        out of attempts.

        Backoff restarts from ``initial_delay`` on every call, whatever the
        key's recorded count. Success resets the key's attempt counter. A
        non-retryable error is re-raised as is; running out of attempts raises
        :class:`RetryExhaustedError` chained to the last failure. Cancellation
        while waiting between attempts propagates immediately.
        """

        def _before_sleep(retry_state: Any) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "retry_scheduled",
                key=key,
                attempt=retry_state.attempt_number,
                sleep_seconds=round(retry_state.next_action.sleep, 3)
                if retry_state.next_action
                else 0.0,
                error=str(exc) if exc else None,
            )

        retrying = AsyncRetrying(
            retry=retry_if_exception(self.is_retryable_error),
            stop=stop_after_attempt(self.strategy.max_attempts),
            wait=lambda rs: self._backoff(rs.attempt_number),
            before_sleep=_before_sleep,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    self.record_attempt(key)
                    result = await fn()
                if attempt.retry_state.outcome is None or attempt.retry_state.outcome.failed:
                    continue
                self.reset_attempts(key)
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "operation_succeeded_after_retry",
                        key=key,
                        attempts=attempt.retry_state.attempt_number,
                    )
                return result
        except RetryError as e:
            last = e.last_attempt.exception()
            logger.error(
                "retry_attempts_exhausted",
                key=key,
                attempts=self.strategy.max_attempts,
                error=str(last),
            )
            raise RetryExhaustedError(key, self.strategy.max_attempts, last) from last
        raise AssertionError("unreachable")  # pragma: no cover


__all__ = ["NON_RETRYABLE_TYPES", "RetryManager", "RetryState", "RetryStrategy"]
