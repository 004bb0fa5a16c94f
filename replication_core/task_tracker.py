"""
Background task tracking for long-lived control-plane loops.

The discovery auto-refresh loop and the health monitor run as detached
asyncio tasks. Tracking them here keeps a strong reference (so they are not
garbage collected mid-flight), surfaces unhandled exceptions in the log, and
gives tests and shutdown hooks one place to cancel everything.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Coroutine
from typing import Any, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_tasks_lock = threading.Lock()
_background_tasks: set[asyncio.Task[Any]] = set()

DEFAULT_SHUTDOWN_TIMEOUT: float = 5.0


def _on_task_done(task: asyncio.Task[Any]) -> None:
    with _tasks_lock:
        _background_tasks.discard(task)

    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "unhandled_background_task_error",
            task=task.get_name(),
            error=str(exc),
            exc_info=exc,
        )


def create_tracked_task(
    coro: Coroutine[Any, Any, T], name: str | None = None
) -> asyncio.Task[T]:
    """Schedule ``coro`` on the running loop and track it until it finishes."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        coro.close()
        raise RuntimeError(
            "create_tracked_task() must be called with a running event loop"
        ) from None

    task = loop.create_task(coro, name=name)
    task.add_done_callback(_on_task_done)
    with _tasks_lock:
        _background_tasks.add(task)
        total = len(_background_tasks)

    logger.debug("tracked_task_created", task=task.get_name(), total_tracked_tasks=total)
    return task


def get_task_names() -> list[str]:
    with _tasks_lock:
        return [t.get_name() for t in _background_tasks]


async def cancel_all_tasks(timeout: float = DEFAULT_SHUTDOWN_TIMEOUT) -> dict[str, int]:
    """Cancel every tracked task and wait up to ``timeout`` seconds for them."""
    if timeout <= 0:
        raise ValueError(f"timeout must be > 0, got: {timeout!r}")

    with _tasks_lock:
        tasks = list(_background_tasks)

    if not tasks:
        return {"total": 0, "cancelled": 0, "completed": 0, "errors": 0, "timeout": 0}

    for t in tasks:
        t.cancel()
    done, pending = await asyncio.wait(tasks, timeout=timeout)

    cancelled = completed = errors = 0
    for t in done:
        if t.cancelled():
            cancelled += 1
        elif t.exception() is not None:
            errors += 1
        else:
            completed += 1

    if pending:
        logger.warning(
            "background_tasks_timeout",
            pending_count=len(pending),
            tasks=[t.get_name() for t in pending],
        )

    stats = {
        "total": len(tasks),
        "cancelled": cancelled,
        "completed": completed,
        "errors": errors,
        "timeout": len(pending),
    }
    logger.info("background_tasks_cancelled", **stats)
    return stats


__all__ = ["cancel_all_tasks", "create_tracked_task", "get_task_names"]
