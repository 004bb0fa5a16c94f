import pytest

from replication_core.capabilities.enhanced_engine import EnhancedDiscoveryEngine
from replication_core.capabilities.models import (
    BackendCapability,
    CapabilityQuery,
    HealthLevel,
)
from replication_core.capabilities.registry import CapabilityRegistry
from replication_core.discovery.models import Backend
from replication_core.exceptions import ConfigurationValidationError
from replication_core.settings import CapabilitySettings

pytestmark = pytest.mark.asyncio(loop_scope="function")


@pytest.fixture
def registry():
    return CapabilityRegistry()


async def test_capabilities_registered_for_available_backends_only(
    gateway, registry, discovery_settings, capability_settings
):
    gateway.install(Backend.CEPH)
    gateway.install(Backend.TRIDENT)
    engine = EnhancedDiscoveryEngine(gateway, registry, discovery_settings, capability_settings)

    result = await engine.discover_backends_with_capabilities()

    assert result.available_backends == (Backend.CEPH, Backend.TRIDENT)
    assert set(result.capabilities) == {Backend.CEPH, Backend.TRIDENT}
    assert set(registry.backends()) == {Backend.CEPH, Backend.TRIDENT}
    assert registry.get_detector(Backend.CEPH) is not None
    assert registry.get_capabilities(Backend.CEPH).health.level is HealthLevel.HEALTHY
    assert result.versions[Backend.TRIDENT].api_version == "v1"
    assert result.performance == {}


async def test_nothing_available_skips_capability_detection(
    gateway, registry, discovery_settings, capability_settings
):
    engine = EnhancedDiscoveryEngine(gateway, registry, discovery_settings, capability_settings)

    result = await engine.discover_backends_with_capabilities()

    assert result.capabilities == {}
    assert registry.backends() == []


async def test_performance_collected_when_enabled(gateway, registry, discovery_settings):
    gateway.install(Backend.POWERSTORE)
    settings = CapabilitySettings(enable_performance_monitoring=True)
    engine = EnhancedDiscoveryEngine(gateway, registry, discovery_settings, settings)

    result = await engine.discover_backends_with_capabilities()

    assert result.performance[Backend.POWERSTORE].typical_latency_ms == 1


async def test_ranking_ties_follow_discovery_order_not_detection_speed(
    gateway, registry, discovery_settings, capability_settings
):
    for backend in (Backend.CEPH, Backend.TRIDENT, Backend.POWERSTORE):
        gateway.install(backend)
    gateway.slow_down(Backend.CEPH, 0.05)
    engine = EnhancedDiscoveryEngine(gateway, registry, discovery_settings, capability_settings)

    result = await engine.discover_backends_with_capabilities()
    ranked = engine.query_backends_by_capabilities(
        CapabilityQuery(required=[BackendCapability.ASYNC_REPLICATION])
    )

    assert result.available_backends == (Backend.CEPH, Backend.TRIDENT, Backend.POWERSTORE)
    assert [r.backend for r in ranked] == [Backend.CEPH, Backend.TRIDENT, Backend.POWERSTORE]
    assert {r.score for r in ranked} == {1.0}


async def test_capability_surface_delegates_to_registry(
    gateway, registry, discovery_settings, capability_settings
):
    gateway.install(Backend.CEPH)
    gateway.install(Backend.POWERSTORE)
    engine = EnhancedDiscoveryEngine(gateway, registry, discovery_settings, capability_settings)
    await engine.discover_backends_with_capabilities()

    assert engine.get_capability_registry() is registry
    assert engine.get_backend_capabilities(Backend.CEPH).backend is Backend.CEPH

    ranked = engine.query_backends_by_capabilities(
        CapabilityQuery(required=[BackendCapability.SYNC_REPLICATION])
    )
    assert [r.backend for r in ranked] == [Backend.POWERSTORE, Backend.CEPH]

    engine.validate_backend_configuration(Backend.POWERSTORE, {"replicationMode": "synchronous"})
    with pytest.raises(ConfigurationValidationError):
        engine.validate_backend_configuration(
            Backend.CEPH, {"extensions": {"ceph": {"mirroringMode": "async"}}}
        )


async def test_monitoring_lifecycle(gateway, registry, discovery_settings, capability_settings):
    engine = EnhancedDiscoveryEngine(gateway, registry, discovery_settings, capability_settings)
    assert engine.health_monitor is not None

    engine.start_capability_monitoring()
    assert engine.health_monitor.is_running()

    await engine.close()
    assert not engine.health_monitor.is_running()


async def test_monitoring_disabled(gateway, registry, discovery_settings):
    settings = CapabilitySettings(enable_health_monitoring=False)
    engine = EnhancedDiscoveryEngine(gateway, registry, discovery_settings, settings)

    engine.start_capability_monitoring()
    assert engine.health_monitor is None
    await engine.stop_capability_monitoring()
