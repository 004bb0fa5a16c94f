"""
Background health monitoring for registered backends.

One task drives three schedules (health checks, capability refresh and,
when enabled, performance sampling). Each tick fans out across the backends
currently in the registry, bounded by ``max_concurrent_checks``.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable
from datetime import datetime

import structlog
from pydantic import BaseModel, Field

from replication_core.capabilities.models import (
    HealthLevel,
    HealthStatus,
    PerformanceCharacteristics,
)
from replication_core.capabilities.registry import CapabilityRegistry
from replication_core.discovery.models import Backend, utcnow
from replication_core.settings import CapabilitySettings
from replication_core.task_tracker import create_tracked_task

logger = structlog.get_logger(__name__)


class HealthSummary(BaseModel):
    total_backends: int = 0
    healthy_backends: int = 0
    degraded_backends: int = 0
    unhealthy_backends: int = 0
    unknown_backends: int = 0
    last_updated: datetime = Field(default_factory=utcnow)
    backend_status: dict[Backend, HealthLevel] = Field(default_factory=dict)

    def is_healthy(self) -> bool:
        return (
            self.unhealthy_backends == 0
            and self.degraded_backends == 0
            and self.unknown_backends == 0
        )

    def health_percentage(self) -> float:
        if self.total_backends == 0:
            return 100.0
        return self.healthy_backends / self.total_backends * 100.0

    def get_unhealthy_backends(self) -> list[Backend]:
        return [b for b, level in self.backend_status.items() if level is not HealthLevel.HEALTHY]


class HealthMonitor:
    def __init__(
        self,
        registry: CapabilityRegistry,
        settings: CapabilitySettings | None = None,
    ) -> None:
        self._registry = registry
        self.settings = settings or CapabilitySettings()
        self._semaphore = asyncio.Semaphore(self.settings.max_concurrent_checks)
        self._performance: dict[Backend, PerformanceCharacteristics] = {}

        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        self._stopped = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        if self.is_running():
            return
        if self._stopped:
            raise RuntimeError("health monitor cannot be restarted after stop()")

        self._stop_event = asyncio.Event()
        self._task = create_tracked_task(
            self._monitor_loop(self._stop_event), name="capability_health_monitor"
        )
        logger.info(
            "health_monitor_started",
            health_check_interval=self.settings.health_check_interval,
            capability_refresh_interval=self.settings.capability_refresh_interval,
            performance_monitoring=self.settings.enable_performance_monitoring,
        )

    async def stop(self) -> None:
        task = self._task
        if task is None:
            return
        self._stopped = True
        self._task = None
        if self._stop_event is not None:
            self._stop_event.set()
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("health_monitor_stopped")

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _monitor_loop(self, stop: asyncio.Event) -> None:
        schedules: list[tuple[float, Callable[[], Awaitable[None]]]] = [
            (self.settings.health_check_interval, self.run_health_checks),
            (self.settings.capability_refresh_interval, self.refresh_capabilities),
        ]
        if self.settings.enable_performance_monitoring:
            schedules.append(
                (self.settings.performance_check_interval, self.collect_performance_metrics)
            )

        now = time.monotonic()
        next_due = [now + interval for interval, _ in schedules]

        while not stop.is_set():
            delay = max(0.0, min(next_due) - time.monotonic())
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=delay)
            if stop.is_set():
                break

            now = time.monotonic()
            for i, (interval, job) in enumerate(schedules):
                if next_due[i] > now:
                    continue
                next_due[i] = now + interval
                try:
                    await job()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error("health_monitor_job_failed", job=job.__name__, error=str(e))

    # =========================================================================
    # Jobs
    # =========================================================================

    async def _bounded(self, coro: Awaitable[None]) -> None:
        async with self._semaphore:
            await coro

    async def run_health_checks(self) -> None:
        backends = self._registry.backends()
        await asyncio.gather(*(self._bounded(self.check_backend_health(b)) for b in backends))
        logger.debug("health_checks_completed", backends=len(backends))

    async def check_backend_health(self, backend: Backend) -> None:
        detector = self._registry.get_detector(backend)
        if detector is None:
            logger.debug("health_check_skipped_no_detector", backend=backend.value)
            return

        try:
            health = await asyncio.wait_for(
                detector.check_health(), timeout=self.settings.timeout_per_check
            )
        except asyncio.CancelledError:
            raise
        except TimeoutError:
            health = HealthStatus(level=HealthLevel.UNHEALTHY, message="health check timed out")
        except Exception as e:
            health = HealthStatus(level=HealthLevel.UNHEALTHY, message=str(e))

        self._registry.update_health(backend, health)
        if health.level is not HealthLevel.HEALTHY:
            logger.warning(
                "backend_health_issue",
                backend=backend.value,
                level=health.level.value,
                message=health.message,
            )

    async def refresh_capabilities(self) -> None:
        backends = list(self._registry.get_detectors())
        await asyncio.gather(
            *(self._bounded(self._refresh_backend_capabilities(b)) for b in backends)
        )
        logger.debug("capabilities_refreshed", backends=len(backends))

    async def _refresh_backend_capabilities(self, backend: Backend) -> None:
        try:
            await asyncio.wait_for(
                self._registry.refresh_capabilities(backend),
                timeout=self.settings.timeout_per_check,
            )
        except asyncio.CancelledError:
            raise
        except TimeoutError:
            logger.warning("capability_refresh_timed_out", backend=backend.value)
        except Exception as e:
            logger.warning("capability_refresh_failed", backend=backend.value, error=str(e))

    async def collect_performance_metrics(self) -> None:
        backends = self._registry.backends()
        await asyncio.gather(
            *(self._bounded(self._collect_backend_performance(b)) for b in backends)
        )

    async def _collect_backend_performance(self, backend: Backend) -> None:
        detector = self._registry.get_detector(backend)
        if detector is None:
            return
        try:
            perf = await asyncio.wait_for(
                detector.get_performance_characteristics(),
                timeout=self.settings.timeout_per_check,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.info("performance_collection_failed", backend=backend.value, error=str(e))
            return
        self._performance[backend] = perf

    # =========================================================================
    # Reporting
    # =========================================================================

    def get_performance(self, backend: Backend) -> PerformanceCharacteristics | None:
        return self._performance.get(backend)

    def get_health_summary(self) -> HealthSummary:
        summary = HealthSummary()
        for backend, caps in self._registry.get_all_capabilities().items():
            level = caps.health.level
            summary.total_backends += 1
            summary.backend_status[backend] = level
            if level is HealthLevel.HEALTHY:
                summary.healthy_backends += 1
            elif level is HealthLevel.DEGRADED:
                summary.degraded_backends += 1
            elif level is HealthLevel.UNHEALTHY:
                summary.unhealthy_backends += 1
            else:
                summary.unknown_backends += 1
        return summary

    def get_unhealthy_backends(self) -> list[Backend]:
        return self.get_health_summary().get_unhealthy_backends()
