"""Backend discovery: which replication backends are installed and ready."""

from replication_core.discovery.detectors import (
    BaseDetector,
    CephDetector,
    DetectorRegistry,
    PowerStoreDetector,
    TridentDetector,
    detector_for,
)
from replication_core.discovery.engine import DiscoveryEngine
from replication_core.discovery.gateway import ResourceStoreGateway
from replication_core.discovery.models import (
    Backend,
    BackendDiscoveryResult,
    DiscoveryResult,
    DiscoveryStatus,
    SchemaAvailability,
    SchemaInfo,
    SchemaRequirement,
)

__all__ = [
    "Backend",
    "BackendDiscoveryResult",
    "BaseDetector",
    "CephDetector",
    "DetectorRegistry",
    "DiscoveryEngine",
    "DiscoveryResult",
    "DiscoveryStatus",
    "PowerStoreDetector",
    "ResourceStoreGateway",
    "SchemaAvailability",
    "SchemaInfo",
    "SchemaRequirement",
    "TridentDetector",
    "detector_for",
]
