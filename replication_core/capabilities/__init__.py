"""Backend capability detection, registry, health monitoring and ranking."""

from replication_core.capabilities.detectors import (
    BaseCapabilityDetector,
    CephCapabilityDetector,
    PowerStoreCapabilityDetector,
    TridentCapabilityDetector,
    capability_detector_for,
)
from replication_core.capabilities.enhanced_engine import EnhancedDiscoveryEngine
from replication_core.capabilities.health_monitor import HealthMonitor, HealthSummary
from replication_core.capabilities.models import (
    BackendCapabilities,
    BackendCapability,
    CapabilityInfo,
    CapabilityLevel,
    CapabilityQuery,
    CapabilityQueryResult,
    EnhancedDiscoveryResult,
    HealthCheck,
    HealthLevel,
    HealthStatus,
    PerformanceCharacteristics,
    VersionInfo,
)
from replication_core.capabilities.registry import (
    CapabilityRegistry,
    RegistryStatistics,
    capabilities_for_config,
)

__all__ = [
    "BackendCapabilities",
    "BackendCapability",
    "BaseCapabilityDetector",
    "CapabilityInfo",
    "CapabilityLevel",
    "CapabilityQuery",
    "CapabilityQueryResult",
    "CapabilityRegistry",
    "CephCapabilityDetector",
    "EnhancedDiscoveryEngine",
    "EnhancedDiscoveryResult",
    "HealthCheck",
    "HealthLevel",
    "HealthMonitor",
    "HealthStatus",
    "HealthSummary",
    "PerformanceCharacteristics",
    "PowerStoreCapabilityDetector",
    "RegistryStatistics",
    "TridentCapabilityDetector",
    "VersionInfo",
    "capabilities_for_config",
    "capability_detector_for",
]
