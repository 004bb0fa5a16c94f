import asyncio

import pytest

from replication_core.exceptions import (
    InvalidTransitionError,
    RetryExhaustedError,
    UnsupportedOperationError,
)
from replication_core.resilience.retry import RetryManager, RetryStrategy
from replication_core.settings import RetrySettings


@pytest.fixture
def manager():
    return RetryManager(
        RetryStrategy(max_attempts=3, initial_delay=0.01, max_delay=0.05, multiplier=2.0, jitter=0.1)
    )


def test_attempt_bookkeeping(manager):
    assert manager.get_attempt_count("ns/a") == 0
    assert manager.get_last_attempt("ns/a") is None

    assert manager.record_attempt("ns/a") == 1
    assert manager.record_attempt("ns/a") == 2
    assert manager.get_attempt_count("ns/a") == 2
    assert manager.get_last_attempt("ns/a") is not None
    assert manager.tracked_keys() == ["ns/a"]

    manager.reset_attempts("ns/a")
    assert manager.get_attempt_count("ns/a") == 0
    assert manager.tracked_keys() == []


def test_next_delay_is_monotonic_and_capped():
    manager = RetryManager(
        RetryStrategy(max_attempts=50, initial_delay=1.0, max_delay=30.0, multiplier=2.0, jitter=0.0)
    )
    delays = []
    for _ in range(20):
        delays.append(manager.get_next_delay("k"))
        manager.record_attempt("k")

    assert delays[:4] == [1.0, 1.0, 2.0, 4.0]
    assert delays == sorted(delays)
    assert max(delays) == 30.0


def test_jitter_never_exceeds_max_delay():
    manager = RetryManager(
        RetryStrategy(max_attempts=50, initial_delay=1.0, max_delay=10.0, jitter=1.0)
    )
    for _ in range(30):
        manager.record_attempt("k")
        assert manager.get_next_delay("k") <= 10.0


def test_should_retry_stops_after_max_attempts(manager):
    err = RuntimeError("connection refused")
    assert manager.should_retry("k", err)
    for _ in range(3):
        manager.record_attempt("k")
    assert not manager.should_retry("k", err)
    assert not manager.should_retry("other", None)


def test_unmatched_errors_are_retryable(manager):
    assert manager.is_retryable_error(RuntimeError("something odd"))
    assert manager.is_retryable_error(RuntimeError("Service Unavailable"))
    assert not manager.is_retryable_error(None)


def test_deny_list_and_typed_errors_are_terminal():
    manager = RetryManager(RetryStrategy(non_retryable_errors=("not found",)))
    assert not manager.is_retryable_error(RuntimeError("volume Not Found"))
    assert not manager.is_retryable_error(InvalidTransitionError("source", "replica"))
    assert not manager.is_retryable_error(UnsupportedOperationError("unknown operation: x"))


def test_strategy_from_settings():
    settings = RetrySettings(max_attempts=7, initial_delay=0.5, max_delay=5.0)
    strategy = RetryStrategy.from_settings(settings)
    assert strategy.max_attempts == 7
    assert strategy.retryable_errors == settings.retryable_errors

    with pytest.raises(ValueError):
        RetrySettings(initial_delay=10.0, max_delay=1.0)


@pytest.mark.asyncio
async def test_with_retry_succeeds_after_failures_and_resets(manager):
    calls = 0

    async def flaky():
        nonlocal calls
        calls += 1
        if calls < 3:
            raise RuntimeError("temporary failure")
        return "ok"

    assert await manager.with_retry("ns/flaky", flaky) == "ok"
    assert calls == 3
    assert manager.get_attempt_count("ns/flaky") == 0


@pytest.mark.asyncio
async def test_with_retry_exhaustion(manager):
    calls = 0

    async def always_fails():
        nonlocal calls
        calls += 1
        raise RuntimeError("connection refused")

    with pytest.raises(RetryExhaustedError) as exc_info:
        await manager.with_retry("ns/down", always_fails)

    assert calls == 3
    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_with_retry_does_not_retry_terminal_errors(manager):
    calls = 0

    async def invalid():
        nonlocal calls
        calls += 1
        raise InvalidTransitionError("source", "replica")

    with pytest.raises(InvalidTransitionError):
        await manager.with_retry("ns/bad", invalid)
    assert calls == 1


@pytest.mark.asyncio
async def test_cancellation_during_backoff_propagates():
    manager = RetryManager(RetryStrategy(max_attempts=5, initial_delay=10.0, max_delay=10.0))
    started = asyncio.Event()

    async def fails():
        started.set()
        raise RuntimeError("timeout")

    task = asyncio.create_task(manager.with_retry("ns/slow", fails))
    await started.wait()
    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(task, timeout=1.0)


@pytest.mark.asyncio
async def test_backoff_restarts_on_each_call_for_the_same_key():
    manager = RetryManager(
        RetryStrategy(max_attempts=3, initial_delay=0.01, max_delay=100.0, multiplier=10.0, jitter=0.0)
    )

    async def always_fails():
        raise RuntimeError("connection refused")

    with pytest.raises(RetryExhaustedError):
        await manager.with_retry("ns/a", always_fails)
    assert manager.get_attempt_count("ns/a") == 3

    loop = asyncio.get_running_loop()
    started = loop.time()
    with pytest.raises(RetryExhaustedError):
        await asyncio.wait_for(manager.with_retry("ns/a", always_fails), timeout=2.0)

    # 0.01 + 0.1 again, not 1 + 10 + 100 carried over from the first run
    assert loop.time() - started < 1.0
