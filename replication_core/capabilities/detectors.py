"""
Per-backend capability detectors.

Capability maps are static knowledge about what each backend can do; the
live part is the health check, which reuses the same schema-establishment
signal that discovery relies on. Like discovery detectors, the set is
closed and ``capability_detector_for`` is the only constructor lookup.
"""

from __future__ import annotations

import asyncio
import time
from typing import ClassVar

import structlog

from replication_core.capabilities.models import (
    BackendCapabilities,
    BackendCapability,
    CapabilityInfo,
    CapabilityLevel,
    HealthCheck,
    HealthLevel,
    HealthStatus,
    PerformanceCharacteristics,
    VersionInfo,
)
from replication_core.discovery import schemas
from replication_core.discovery.gateway import ResourceStoreGateway
from replication_core.discovery.models import Backend, SchemaInfo
from replication_core.exceptions import CapabilityError, SchemaNotFoundError
from replication_core.settings import CapabilitySettings

logger = structlog.get_logger(__name__)

_C = BackendCapability
_L = CapabilityLevel

# (level, description)
CapabilityTable = dict[BackendCapability, tuple[CapabilityLevel, str]]


def overall_health(checks: list[HealthCheck]) -> tuple[HealthLevel, str]:
    """Grade a set of sub-checks; only required checks count toward the verdict."""
    counted = [c for c in checks if c.required]
    if not counted:
        return HealthLevel.UNKNOWN, "No CRDs to check"
    healthy = sum(1 for c in counted if c.level is HealthLevel.HEALTHY)
    if healthy == len(counted):
        return HealthLevel.HEALTHY, "All CRDs are healthy"
    if healthy > 0:
        return HealthLevel.DEGRADED, f"{healthy}/{len(counted)} CRDs are healthy"
    return HealthLevel.UNHEALTHY, "No CRDs are healthy"


class BaseCapabilityDetector:
    backend: ClassVar[Backend]
    capability_table: ClassVar[CapabilityTable] = {}
    performance: ClassVar[dict] = {}

    def __init__(
        self,
        gateway: ResourceStoreGateway,
        settings: CapabilitySettings | None = None,
    ) -> None:
        self._gateway = gateway
        self.settings = settings or CapabilitySettings()

    def _build_capabilities(self) -> dict[BackendCapability, CapabilityInfo]:
        return {
            cap: CapabilityInfo(capability=cap, level=level, description=description)
            for cap, (level, description) in self.capability_table.items()
        }

    async def detect_capabilities(self) -> BackendCapabilities:
        caps = BackendCapabilities(
            backend=self.backend, capabilities=self._build_capabilities()
        )
        if self.settings.enable_version_detection:
            try:
                caps.version = (await self.get_version_info()).version
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    "version_detection_failed", backend=self.backend.value, error=str(e)
                )
        logger.debug(
            "capabilities_detected",
            backend=self.backend.value,
            capabilities=len(caps.capabilities),
        )
        return caps

    async def check_health(self) -> HealthStatus:
        checks: list[HealthCheck] = []
        for req in schemas.get_requirements(self.backend):
            started = time.perf_counter()
            try:
                info = await self._gateway.schema_info(req.name)
            except asyncio.CancelledError:
                raise
            except SchemaNotFoundError as e:
                level, message = HealthLevel.UNHEALTHY, f"CRD not found: {e}"
            except Exception as e:
                level, message = HealthLevel.UNHEALTHY, f"CRD check failed: {e}"
            else:
                if info.established:
                    level, message = HealthLevel.HEALTHY, "CRD is established and ready"
                else:
                    level, message = HealthLevel.DEGRADED, "CRD exists but not established"

            checks.append(
                HealthCheck(
                    name=f"CRD-{req.kind}",
                    level=level,
                    message=message,
                    required=req.required,
                    duration_ms=(time.perf_counter() - started) * 1000,
                )
            )

        level, message = overall_health(checks)
        return HealthStatus(level=level, message=message, checks=checks)

    async def get_performance_characteristics(self) -> PerformanceCharacteristics:
        return PerformanceCharacteristics(backend=self.backend, **self.performance)

    async def get_version_info(self) -> VersionInfo:
        requirements = schemas.get_requirements(self.backend)
        if not requirements:
            raise CapabilityError(f"no CRDs defined for backend {self.backend.value}")

        primary = requirements[0]
        info: SchemaInfo = await self._gateway.schema_info(primary.name)
        api_version = info.storage_version or info.version
        return VersionInfo(
            backend=self.backend,
            version=api_version,
            api_version=api_version,
            controller_version=info.annotations.get("controller.version", ""),
            driver_version=info.annotations.get("driver.version", ""),
        )

    async def validate_capability(self, capability: BackendCapability) -> CapabilityInfo:
        entry = self.capability_table.get(capability)
        if entry is None:
            return CapabilityInfo(
                capability=capability,
                level=CapabilityLevel.NONE,
                description=f"Capability not supported by {self.backend.value}",
            )
        level, description = entry
        return CapabilityInfo(capability=capability, level=level, description=description)


class CephCapabilityDetector(BaseCapabilityDetector):
    backend = Backend.CEPH
    capability_table = {
        _C.ASYNC_REPLICATION: (_L.FULL, "RBD mirroring supports asynchronous replication"),
        _C.SYNC_REPLICATION: (_L.BASIC, "Basic synchronous replication"),
        _C.SOURCE_PROMOTION: (_L.FULL, "Promote a replica image to primary"),
        _C.REPLICA_DEMOTION: (_L.FULL, "Demote a primary image to secondary"),
        _C.RESYNC: (_L.FULL, "Resynchronize mirrored images"),
        _C.JOURNAL_BASED: (_L.FULL, "Journal-based mirroring"),
        _C.SNAPSHOT_BASED: (_L.FULL, "Snapshot-based mirroring"),
        _C.AUTO_RESYNC: (_L.PARTIAL, "Automatic resync when configured"),
        _C.SCHEDULED_SYNC: (_L.FULL, "Scheduled snapshot mirroring"),
        _C.HIGH_THROUGHPUT: (_L.FULL, "Designed for high throughput workloads"),
        _C.MULTI_REGION: (_L.FULL, "Multi-region deployments"),
    }
    performance = {
        "max_throughput_mbps": 1000,
        "typical_latency_ms": 5,
        "max_concurrent_ops": 100,
        "max_volume_size": "16TB",
        "supported_regions": ["multi-region"],
    }


class TridentCapabilityDetector(BaseCapabilityDetector):
    backend = Backend.TRIDENT
    capability_table = {
        _C.ASYNC_REPLICATION: (_L.FULL, "SnapMirror asynchronous replication"),
        _C.SYNC_REPLICATION: (_L.FULL, "SnapMirror synchronous replication"),
        _C.SOURCE_PROMOTION: (_L.FULL, "Promote a mirror destination"),
        _C.FAILOVER: (_L.FULL, "Break the mirror and fail over"),
        _C.FAILBACK: (_L.FULL, "Reverse resync and fail back"),
        _C.SNAPSHOT_BASED: (_L.FULL, "Snapshot-based transfers"),
        _C.SCHEDULED_SYNC: (_L.FULL, "Policy driven scheduled updates"),
        _C.CONSISTENCY_GROUPS: (_L.FULL, "Consistency group relationships"),
        _C.LOW_LATENCY: (_L.FULL, "Low latency ONTAP storage"),
        _C.MULTI_CLOUD: (_L.FULL, "Cloud Volumes ONTAP across clouds"),
    }
    performance = {
        "max_throughput_mbps": 2000,
        "typical_latency_ms": 2,
        "max_concurrent_ops": 200,
        "max_volume_size": "100TB",
        "supported_regions": ["multi-cloud", "hybrid-cloud"],
    }


class PowerStoreCapabilityDetector(BaseCapabilityDetector):
    backend = Backend.POWERSTORE
    capability_table = {
        _C.ASYNC_REPLICATION: (_L.FULL, "Asynchronous replication sessions"),
        _C.SYNC_REPLICATION: (_L.FULL, "Synchronous replication sessions"),
        _C.METRO_REPLICATION: (_L.FULL, "Metro volumes with active/active access"),
        _C.SOURCE_PROMOTION: (_L.FULL, "Promote a destination group"),
        _C.REPLICA_DEMOTION: (_L.FULL, "Demote a source group"),
        _C.FAILOVER: (_L.FULL, "Planned and unplanned failover"),
        _C.VOLUME_GROUPS: (_L.FULL, "Replication of volume groups"),
        _C.CONSISTENCY_GROUPS: (_L.FULL, "Write-order consistent groups"),
        _C.HIGH_THROUGHPUT: (_L.FULL, "NVMe based high throughput"),
        _C.LOW_LATENCY: (_L.FULL, "Sub-millisecond latency"),
        _C.MULTI_REGION: (_L.FULL, "Multi-site replication"),
    }
    performance = {
        "max_throughput_mbps": 3000,
        "typical_latency_ms": 1,
        "max_concurrent_ops": 500,
        "max_volume_size": "256TB",
        "max_volumes_per_group": 1000,
        "supported_regions": ["multi-site", "metro"],
    }


_CAPABILITY_DETECTOR_TYPES: dict[Backend, type[BaseCapabilityDetector]] = {
    Backend.CEPH: CephCapabilityDetector,
    Backend.TRIDENT: TridentCapabilityDetector,
    Backend.POWERSTORE: PowerStoreCapabilityDetector,
}


def capability_detector_for(
    backend: Backend,
    gateway: ResourceStoreGateway,
    settings: CapabilitySettings | None = None,
) -> BaseCapabilityDetector:
    try:
        detector_type = _CAPABILITY_DETECTOR_TYPES[Backend(backend)]
    except (KeyError, ValueError):
        raise CapabilityError(f"no capability detector for backend {backend}") from None
    return detector_type(gateway, settings)
