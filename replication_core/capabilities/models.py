from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from replication_core.discovery.models import Backend, DiscoveryResult, utcnow

# =============================================================================
# Enums
# =============================================================================


class BackendCapability(str, Enum):
    # replication modes
    ASYNC_REPLICATION = "async_replication"
    SYNC_REPLICATION = "sync_replication"
    METRO_REPLICATION = "metro_replication"

    # state management
    SOURCE_PROMOTION = "source_promotion"
    REPLICA_DEMOTION = "replica_demotion"
    FAILOVER = "failover"
    FAILBACK = "failback"
    RESYNC = "resync"

    # data management
    SNAPSHOT_BASED = "snapshot_based"
    JOURNAL_BASED = "journal_based"
    AUTO_RESYNC = "auto_resync"
    SCHEDULED_SYNC = "scheduled_sync"
    VOLUME_GROUPS = "volume_groups"
    CONSISTENCY_GROUPS = "consistency_groups"

    # performance and topology
    HIGH_THROUGHPUT = "high_throughput"
    LOW_LATENCY = "low_latency"
    MULTI_REGION = "multi_region"
    MULTI_CLOUD = "multi_cloud"

    # operations
    METRICS = "metrics"
    ALERTING = "alerting"
    LOGGING = "logging"


class CapabilityLevel(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    BASIC = "basic"
    NONE = "none"
    UNKNOWN = "unknown"

    @property
    def rank(self) -> int:
        """Position in the fixed ordering none < unknown < basic < partial < full."""
        return _LEVEL_RANK[self]

    @property
    def weight(self) -> float:
        """Contribution of this level to a capability query score."""
        return _LEVEL_WEIGHT.get(self, 0.0)

    def at_least(self, other: "CapabilityLevel") -> bool:
        return self.rank >= other.rank


_LEVEL_RANK = {
    CapabilityLevel.NONE: 0,
    CapabilityLevel.UNKNOWN: 1,
    CapabilityLevel.BASIC: 2,
    CapabilityLevel.PARTIAL: 3,
    CapabilityLevel.FULL: 4,
}

_LEVEL_WEIGHT = {
    CapabilityLevel.FULL: 1.0,
    CapabilityLevel.PARTIAL: 0.7,
    CapabilityLevel.BASIC: 0.5,
}


class HealthLevel(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


# =============================================================================
# Models
# =============================================================================


class CapabilityInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    capability: BackendCapability
    level: CapabilityLevel
    version: str = ""
    description: str = ""
    limitations: list[str] = Field(default_factory=list)
    requirements: list[str] = Field(default_factory=list)
    last_checked: datetime = Field(default_factory=utcnow)


class HealthCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    level: HealthLevel
    message: str = ""
    required: bool = True
    duration_ms: float = 0.0
    last_checked: datetime = Field(default_factory=utcnow)


class HealthStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: HealthLevel = HealthLevel.UNKNOWN
    message: str = ""
    last_checked: datetime = Field(default_factory=utcnow)
    checks: list[HealthCheck] = Field(default_factory=list)

    @property
    def is_healthy(self) -> bool:
        return self.level is HealthLevel.HEALTHY


class PerformanceCharacteristics(BaseModel):
    model_config = ConfigDict(frozen=True)

    backend: Backend
    max_throughput_mbps: int = 0
    typical_latency_ms: int = 100
    max_concurrent_ops: int = 10
    max_volume_size: str = ""
    max_volumes_per_group: int = 0
    supported_regions: list[str] = Field(default_factory=list)
    last_measured: datetime = Field(default_factory=utcnow)


class VersionInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    backend: Backend
    version: str = ""
    api_version: str = ""
    controller_version: str = ""
    driver_version: str = ""
    min_supported_version: str = ""
    max_supported_version: str = ""
    deprecation_warnings: list[str] = Field(default_factory=list)
    last_detected: datetime = Field(default_factory=utcnow)


class BackendCapabilities(BaseModel):
    """
    Capability snapshot for one backend.

    Instances handed out by the registry are copies; the registry is the only
    owner of the live record.
    """

    backend: Backend
    capabilities: dict[BackendCapability, CapabilityInfo] = Field(default_factory=dict)
    version: str = ""
    health: HealthStatus = Field(default_factory=HealthStatus)
    last_updated: datetime = Field(default_factory=utcnow)

    def level_of(self, capability: BackendCapability) -> CapabilityLevel | None:
        info = self.capabilities.get(capability)
        return info.level if info is not None else None


class CapabilityQuery(BaseModel):
    required: list[BackendCapability] = Field(default_factory=list)
    optional: list[BackendCapability] = Field(default_factory=list)
    min_level: CapabilityLevel | None = None
    require_healthy: bool = False
    min_version: str = ""


class CapabilityQueryResult(BaseModel):
    backend: Backend
    capabilities: BackendCapabilities
    score: float
    reasons: list[str] = Field(default_factory=list)


class EnhancedDiscoveryResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    discovery: DiscoveryResult
    capabilities: dict[Backend, BackendCapabilities] = Field(default_factory=dict)
    performance: dict[Backend, PerformanceCharacteristics] = Field(default_factory=dict)
    versions: dict[Backend, VersionInfo] = Field(default_factory=dict)

    @property
    def available_backends(self) -> tuple[Backend, ...]:
        return self.discovery.available_backends
