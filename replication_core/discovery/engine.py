"""
Discovery engine.

Fans detection out across every known backend, one task per backend, each
bounded by its own timeout and retried with a fixed delay. The aggregate is
cached as a single immutable snapshot and only published once every backend
task has joined.
"""

from __future__ import annotations

import asyncio
import contextlib
import threading
import time

import structlog

from replication_core.discovery.detectors import DetectorRegistry, check_schema_ready
from replication_core.discovery.gateway import ResourceStoreGateway
from replication_core.discovery.models import (
    Backend,
    BackendDiscoveryResult,
    DiscoveryResult,
    DiscoveryStatus,
    SchemaInfo,
)
from replication_core.exceptions import (
    DiscoveryError,
    DiscoveryErrorType,
    SchemaNotFoundError,
    classify_error,
)
from replication_core.settings import DiscoverySettings
from replication_core.task_tracker import create_tracked_task

logger = structlog.get_logger(__name__)


class DiscoveryEngine:
    def __init__(
        self,
        gateway: ResourceStoreGateway,
        settings: DiscoverySettings | None = None,
        detectors: DetectorRegistry | None = None,
    ) -> None:
        self._gateway = gateway
        self.settings = settings or DiscoverySettings()
        self.detectors = detectors or DetectorRegistry(gateway)

        # (result, monotonic timestamp); replaced as a whole under the lock
        self._cache_lock = threading.Lock()
        self._cache: tuple[DiscoveryResult, float] | None = None

        self._refresh_task: asyncio.Task | None = None
        self._refresh_stop: asyncio.Event | None = None
        self._refresh_lock = threading.Lock()
        self._stopped = False

    # =========================================================================
    # Discovery
    # =========================================================================

    async def discover_backends(self) -> DiscoveryResult:
        order = list(self.detectors.get_all())
        logger.info("backend_discovery_started", backends=len(order))

        results = await asyncio.gather(*(self._discover_one(b) for b in order))

        backends: dict[Backend, BackendDiscoveryResult] = {}
        failures: list[DiscoveryError] = []
        for backend, (result, error) in zip(order, results):
            if error is not None:
                failures.append(error)
            backends[backend] = result

        aggregate_error = None
        if failures:
            aggregate_error = DiscoveryError(
                DiscoveryErrorType.UNKNOWN,
                f"Failed to discover {len(failures)} backends",
            )

        discovery = DiscoveryResult(
            backends=backends,
            available_backends=tuple(b for b in order if backends[b].is_available),
            error=aggregate_error,
        )
        self._update_cache(discovery)

        logger.info(
            "backend_discovery_completed",
            available=[b.value for b in discovery.available_backends],
            total=len(backends),
            failed=len(failures),
        )
        return discovery

    async def _discover_one(
        self, backend: Backend
    ) -> tuple[BackendDiscoveryResult, DiscoveryError | None]:
        timeout = self.settings.timeout_per_backend
        try:
            async with asyncio.timeout(timeout):
                return await self._discover_with_retry(backend), None
        except TimeoutError as e:
            error = DiscoveryError(
                DiscoveryErrorType.TIMEOUT,
                f"discovery timed out after {timeout}s",
                backend=backend.value,
                cause=e,
            )
        except DiscoveryError as e:
            error = e

        logger.error("backend_discovery_failed", backend=backend.value, error=str(error))
        return (
            BackendDiscoveryResult(
                backend=backend,
                status=DiscoveryStatus.UNAVAILABLE,
                message=str(error),
            ),
            error,
        )

    async def _discover_with_retry(self, backend: Backend) -> BackendDiscoveryResult:
        attempts = self.settings.max_retries + 1
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self.discover_backend(backend)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = classify_error(e, backend.value)
                if not error.is_retryable:
                    logger.warning(
                        "discovery_retry_skipped",
                        backend=backend.value,
                        error_type=error.error_type.value,
                    )
                    raise error
                logger.debug(
                    "discovery_attempt_failed",
                    backend=backend.value,
                    attempt=attempt,
                    error=str(error),
                )
                if attempt >= attempts:
                    raise error
            await asyncio.sleep(self.settings.retry_delay)

    async def discover_backend(self, backend: Backend) -> BackendDiscoveryResult:
        detector = self.detectors.get(backend)
        if detector is None:
            raise DiscoveryError(
                DiscoveryErrorType.UNKNOWN,
                f"no detector registered for backend {backend}",
                backend=str(backend),
            )
        return await detector.detect()

    async def is_backend_available(self, backend: Backend) -> bool:
        result = await self.discover_backend(backend)
        return result.status is DiscoveryStatus.AVAILABLE

    async def get_available_backends(self) -> list[Backend]:
        cached, valid = self.get_cached_result()
        if valid and cached is not None:
            return list(cached.available_backends)
        result = await self.discover_backends()
        return list(result.available_backends)

    # =========================================================================
    # Cache
    # =========================================================================

    async def refresh_cache(self) -> DiscoveryResult:
        return await self.discover_backends()

    def get_cached_result(self) -> tuple[DiscoveryResult | None, bool]:
        with self._cache_lock:
            entry = self._cache
        if entry is None:
            return None, False
        result, cached_at = entry
        if time.monotonic() - cached_at >= self.settings.cache_ttl:
            return None, False
        return result, True

    def invalidate_cache(self) -> None:
        with self._cache_lock:
            self._cache = None

    def _update_cache(self, result: DiscoveryResult) -> None:
        with self._cache_lock:
            self._cache = (result, time.monotonic())

    # =========================================================================
    # Auto refresh
    # =========================================================================

    def start_auto_refresh(self) -> None:
        if not self.settings.enable_auto_refresh:
            return
        with self._refresh_lock:
            if self._stopped:
                raise RuntimeError("discovery engine is stopped and cannot be restarted")
            if self._refresh_task is not None:
                raise RuntimeError("auto refresh is already running")
            self._refresh_stop = asyncio.Event()
            self._refresh_task = create_tracked_task(
                self._auto_refresh_loop(self._refresh_stop),
                name="discovery_auto_refresh",
            )
        logger.info("discovery_auto_refresh_started", interval=self.settings.refresh_interval)

    async def stop_auto_refresh(self) -> None:
        with self._refresh_lock:
            task, stop = self._refresh_task, self._refresh_stop
            if task is None:
                return
            self._refresh_task = None
            self._refresh_stop = None
            self._stopped = True

        if stop is not None:
            stop.set()
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("discovery_auto_refresh_stopped")

    def is_auto_refresh_running(self) -> bool:
        task = self._refresh_task
        return task is not None and not task.done()

    async def _auto_refresh_loop(self, stop: asyncio.Event) -> None:
        interval = self.settings.refresh_interval
        while not stop.is_set():
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=interval)
            if stop.is_set():
                break
            try:
                await self.discover_backends()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("discovery_auto_refresh_failed", error=str(e))

    # =========================================================================
    # Schema introspection
    # =========================================================================

    async def check_schema_exists(self, name: str) -> bool:
        try:
            await self._gateway.schema_info(name)
        except SchemaNotFoundError:
            return False
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise classify_error(e, schema_name=name) from e
        return True

    async def check_schema_ready(self, name: str) -> bool:
        try:
            return await check_schema_ready(self._gateway, name)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise classify_error(e, schema_name=name) from e

    async def get_schema_info(self, name: str) -> SchemaInfo:
        try:
            return await self._gateway.schema_info(name)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise classify_error(e, schema_name=name) from e

    async def list_schemas(self, group: str = "") -> list[SchemaInfo]:
        try:
            return await self._gateway.list_schemas(group)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise classify_error(e) from e

    async def validate_client_permissions(self) -> None:
        try:
            await self.list_schemas()
        except DiscoveryError as e:
            raise DiscoveryError(
                DiscoveryErrorType.PERMISSION_DENIED,
                "insufficient permissions to list CRDs",
                cause=e.cause,
            ) from e

    async def close(self) -> None:
        await self.stop_auto_refresh()
        self._stopped = True
