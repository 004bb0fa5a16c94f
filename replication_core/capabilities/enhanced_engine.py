"""Discovery engine that also detects and registers backend capabilities."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import structlog

from replication_core.capabilities.detectors import (
    BaseCapabilityDetector,
    capability_detector_for,
)
from replication_core.capabilities.health_monitor import HealthMonitor
from replication_core.capabilities.models import (
    BackendCapabilities,
    CapabilityQuery,
    CapabilityQueryResult,
    EnhancedDiscoveryResult,
    HealthLevel,
    HealthStatus,
)
from replication_core.capabilities.registry import CapabilityRegistry
from replication_core.discovery import schemas
from replication_core.discovery.engine import DiscoveryEngine
from replication_core.discovery.gateway import ResourceStoreGateway
from replication_core.discovery.models import Backend
from replication_core.settings import CapabilitySettings, DiscoverySettings

logger = structlog.get_logger(__name__)


class EnhancedDiscoveryEngine(DiscoveryEngine):
    def __init__(
        self,
        gateway: ResourceStoreGateway,
        registry: CapabilityRegistry,
        settings: DiscoverySettings | None = None,
        capability_settings: CapabilitySettings | None = None,
    ) -> None:
        super().__init__(gateway, settings)
        self.capability_settings = capability_settings or CapabilitySettings()
        self._registry = registry
        self._capability_detectors: dict[Backend, BaseCapabilityDetector] = {
            backend: capability_detector_for(backend, gateway, self.capability_settings)
            for backend in schemas.known_backends()
        }
        self._semaphore = asyncio.Semaphore(self.capability_settings.max_concurrent_checks)
        self.health_monitor: HealthMonitor | None = None
        if self.capability_settings.enable_health_monitoring:
            self.health_monitor = HealthMonitor(registry, self.capability_settings)

    async def discover_backends_with_capabilities(self) -> EnhancedDiscoveryResult:
        base = await self.discover_backends()
        result = EnhancedDiscoveryResult(discovery=base)

        if not base.available_backends:
            logger.info("capability_detection_skipped", reason="no_available_backends")
            return result
        if not self.capability_settings.enable_capability_detection:
            return result

        await asyncio.gather(
            *(self._collect_backend(backend, result) for backend in base.available_backends)
        )

        logger.info(
            "enhanced_discovery_completed",
            available_backends=len(base.available_backends),
            capabilities_detected=len(result.capabilities),
        )
        return result

    async def _collect_backend(self, backend: Backend, result: EnhancedDiscoveryResult) -> None:
        detector = self._capability_detectors[backend]
        timeout = self.capability_settings.timeout_per_check

        async with self._semaphore:
            try:
                caps = await asyncio.wait_for(
                    self._detect_backend_capabilities(detector), timeout=timeout
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("capability_detection_failed", backend=backend.value, error=str(e))
            else:
                result.capabilities[backend] = caps
                self._registry.register_capabilities(caps)
                self._registry.register_detector(backend, detector)

            if self.capability_settings.enable_performance_monitoring:
                try:
                    result.performance[backend] = await asyncio.wait_for(
                        detector.get_performance_characteristics(), timeout=timeout
                    )
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.debug(
                        "performance_detection_failed", backend=backend.value, error=str(e)
                    )

            if self.capability_settings.enable_version_detection:
                try:
                    result.versions[backend] = await asyncio.wait_for(
                        detector.get_version_info(), timeout=timeout
                    )
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.debug(
                        "version_detection_failed", backend=backend.value, error=str(e)
                    )

    async def _detect_backend_capabilities(
        self, detector: BaseCapabilityDetector
    ) -> BackendCapabilities:
        caps = await detector.detect_capabilities()
        if self.capability_settings.enable_health_monitoring:
            try:
                caps.health = await detector.check_health()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # a failed health probe must not fail capability detection
                caps.health = HealthStatus(
                    level=HealthLevel.UNKNOWN, message=f"Health check failed: {e}"
                )
        return caps

    # =========================================================================
    # Capability surface
    # =========================================================================

    def get_backend_capabilities(self, backend: Backend) -> BackendCapabilities | None:
        return self._registry.get_capabilities(backend)

    def query_backends_by_capabilities(
        self, query: CapabilityQuery
    ) -> list[CapabilityQueryResult]:
        return self._registry.query_backends_by_capabilities(query)

    def validate_backend_configuration(
        self, backend: Backend, config: Mapping[str, Any]
    ) -> None:
        self._registry.validate_configuration(backend, config)

    def get_capability_registry(self) -> CapabilityRegistry:
        return self._registry

    async def refresh_capabilities(self) -> None:
        await self._registry.refresh_all_capabilities()

    def start_capability_monitoring(self) -> None:
        if self.health_monitor is not None:
            self.health_monitor.start()

    async def stop_capability_monitoring(self) -> None:
        if self.health_monitor is not None:
            await self.health_monitor.stop()

    async def close(self) -> None:
        await self.stop_capability_monitoring()
        await super().close()
