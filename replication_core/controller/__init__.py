"""Controller-side consumer of discovery, capabilities and resilience."""

from replication_core.controller.engine import ControllerEngine, backend_from_storage_class
from replication_core.controller.health import (
    ControllerHealth,
    ControllerHealthChecker,
    ReadinessChecker,
)
from replication_core.controller.models import (
    AdapterRegistry,
    ReplicationAdapter,
    ReplicationOperation,
    ReplicationResource,
    ReplicationStatus,
)

__all__ = [
    "AdapterRegistry",
    "ControllerEngine",
    "ControllerHealth",
    "ControllerHealthChecker",
    "ReadinessChecker",
    "ReplicationAdapter",
    "ReplicationOperation",
    "ReplicationResource",
    "ReplicationStatus",
    "backend_from_storage_class",
]
