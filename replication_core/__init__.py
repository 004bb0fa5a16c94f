"""
replication_core - discovery, capability ranking and resilience primitives
for a multi-backend storage replication controller.
"""

from replication_core.capabilities import (
    CapabilityQuery,
    CapabilityRegistry,
    EnhancedDiscoveryEngine,
    HealthMonitor,
)
from replication_core.controller import (
    ControllerEngine,
    ControllerHealthChecker,
    ReadinessChecker,
    ReplicationResource,
)
from replication_core.discovery import Backend, DiscoveryEngine, ResourceStoreGateway
from replication_core.logging_config import configure_from_settings, configure_logging
from replication_core.resilience import CircuitBreaker, RetryManager, RetryStrategy
from replication_core.state_machine import ReplicationState, StateMachine

__version__ = "0.1.0"

__all__ = [
    "Backend",
    "CapabilityQuery",
    "CapabilityRegistry",
    "CircuitBreaker",
    "ControllerEngine",
    "ControllerHealthChecker",
    "DiscoveryEngine",
    "EnhancedDiscoveryEngine",
    "HealthMonitor",
    "ReadinessChecker",
    "ReplicationResource",
    "ReplicationState",
    "ResourceStoreGateway",
    "RetryManager",
    "RetryStrategy",
    "StateMachine",
    "configure_from_settings",
    "configure_logging",
]
