from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from replication_core.exceptions import DiscoveryError

# =============================================================================
# Enums
# =============================================================================


class Backend(str, Enum):
    CEPH = "ceph"
    TRIDENT = "trident"
    POWERSTORE = "powerstore"


class DiscoveryStatus(str, Enum):
    AVAILABLE = "Available"
    PARTIAL = "Partial"
    UNAVAILABLE = "Unavailable"
    UNKNOWN = "Unknown"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Models
# =============================================================================


class SchemaRequirement(BaseModel):
    """A resource-type declaration whose presence signals an installed backend."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    group: str
    version: str
    kind: str
    required: bool = True

    @property
    def full_name(self) -> str:
        return f"{self.group}/{self.version}/{self.kind}"


class SchemaInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    group: str = ""
    version: str = ""
    kind: str = ""
    established: bool = False
    storage_version: str = ""
    annotations: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)


class SchemaAvailability(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    group: str
    version: str
    kind: str
    required: bool
    available: bool = False
    established: bool = False
    error: str = ""


class BackendDiscoveryResult(BaseModel):
    """Snapshot produced by one detection pass for one backend."""

    model_config = ConfigDict(frozen=True)

    backend: Backend
    status: DiscoveryStatus
    schemas: tuple[SchemaAvailability, ...] = ()
    message: str = ""
    last_updated: datetime = Field(default_factory=utcnow)

    @property
    def is_available(self) -> bool:
        return self.status is DiscoveryStatus.AVAILABLE


class DiscoveryResult(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    backends: dict[Backend, BackendDiscoveryResult] = Field(default_factory=dict)
    available_backends: tuple[Backend, ...] = ()
    discovery_time: datetime = Field(default_factory=utcnow)
    error: DiscoveryError | None = None


__all__ = [
    "Backend",
    "BackendDiscoveryResult",
    "DiscoveryResult",
    "DiscoveryStatus",
    "SchemaAvailability",
    "SchemaInfo",
    "SchemaRequirement",
    "utcnow",
]
