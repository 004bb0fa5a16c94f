import pytest

from replication_core.capabilities.detectors import CephCapabilityDetector
from replication_core.capabilities.models import (
    BackendCapabilities,
    BackendCapability,
    CapabilityInfo,
    CapabilityLevel,
    CapabilityQuery,
    HealthLevel,
    HealthStatus,
)
from replication_core.capabilities.registry import (
    CapabilityRegistry,
    capabilities_for_config,
    score_backend,
)
from replication_core.discovery.models import Backend
from replication_core.exceptions import CapabilityError, ConfigurationValidationError

C = BackendCapability
L = CapabilityLevel


def make_caps(backend, levels, health=HealthLevel.UNKNOWN, version=""):
    return BackendCapabilities(
        backend=backend,
        capabilities={cap: CapabilityInfo(capability=cap, level=lvl) for cap, lvl in levels.items()},
        health=HealthStatus(level=health),
        version=version,
    )


@pytest.fixture
def registry():
    return CapabilityRegistry()


def test_register_and_get_returns_copies(registry):
    registry.register_capabilities(make_caps(Backend.CEPH, {C.RESYNC: L.FULL}))

    copy = registry.get_capabilities(Backend.CEPH)
    copy.capabilities.clear()

    assert registry.get_capabilities(Backend.CEPH).level_of(C.RESYNC) is L.FULL
    assert registry.get_capabilities(Backend.TRIDENT) is None
    assert set(registry.get_all_capabilities()) == {Backend.CEPH}


def test_register_none_is_rejected(registry):
    with pytest.raises(CapabilityError):
        registry.register_capabilities(None)


def test_update_merges_with_existing_record(registry):
    registry.register_capabilities(
        make_caps(Backend.CEPH, {C.RESYNC: L.FULL}, health=HealthLevel.HEALTHY, version="1.2")
    )

    registry.update_capabilities(Backend.CEPH, make_caps(Backend.CEPH, {C.FAILOVER: L.BASIC}))

    merged = registry.get_capabilities(Backend.CEPH)
    assert merged.level_of(C.RESYNC) is L.FULL
    assert merged.level_of(C.FAILOVER) is L.BASIC
    assert merged.version == "1.2"
    assert merged.health.level is HealthLevel.HEALTHY


def test_update_overrides_levels_present_in_update(registry):
    registry.register_capabilities(make_caps(Backend.CEPH, {C.RESYNC: L.FULL}))
    registry.update_capabilities(Backend.CEPH, make_caps(Backend.CEPH, {C.RESYNC: L.PARTIAL}))
    assert registry.get_capabilities(Backend.CEPH).level_of(C.RESYNC) is L.PARTIAL


def test_update_health_ignores_unknown_backends(registry):
    assert not registry.update_health(Backend.TRIDENT, HealthStatus(level=HealthLevel.HEALTHY))
    assert registry.get_capabilities(Backend.TRIDENT) is None


def test_is_capability_supported(registry):
    registry.register_capabilities(make_caps(Backend.CEPH, {C.RESYNC: L.PARTIAL}))
    assert registry.is_capability_supported(Backend.CEPH, C.RESYNC) == (L.PARTIAL, True)
    assert registry.is_capability_supported(Backend.CEPH, C.FAILOVER) == (L.NONE, True)
    assert registry.is_capability_supported(Backend.TRIDENT, C.RESYNC) == (L.UNKNOWN, False)


def test_supported_backends_uses_fixed_level_ordering(registry):
    registry.register_capabilities(make_caps(Backend.CEPH, {C.RESYNC: L.UNKNOWN}))
    registry.register_capabilities(make_caps(Backend.TRIDENT, {C.RESYNC: L.BASIC}))
    registry.register_capabilities(make_caps(Backend.POWERSTORE, {C.RESYNC: L.FULL}))

    assert registry.get_supported_backends(C.RESYNC, L.BASIC) == [Backend.TRIDENT, Backend.POWERSTORE]
    assert registry.get_supported_backends(C.RESYNC, L.UNKNOWN) == [
        Backend.CEPH,
        Backend.TRIDENT,
        Backend.POWERSTORE,
    ]
    assert registry.get_supported_backends(C.RESYNC, L.FULL) == [Backend.POWERSTORE]


def test_query_ranks_full_above_basic(registry):
    registry.register_capabilities(make_caps(Backend.TRIDENT, {C.FAILOVER: L.BASIC}))
    registry.register_capabilities(make_caps(Backend.POWERSTORE, {C.FAILOVER: L.FULL}))

    results = registry.query_backends_by_capabilities(CapabilityQuery(required=[C.FAILOVER]))

    assert [r.backend for r in results] == [Backend.POWERSTORE, Backend.TRIDENT]
    assert results[0].score == pytest.approx(1.0)
    assert results[1].score == pytest.approx(0.5)


def test_query_ties_keep_discovery_order_regardless_of_registration(registry):
    for backend in (Backend.POWERSTORE, Backend.TRIDENT, Backend.CEPH):
        registry.register_capabilities(make_caps(backend, {C.ASYNC_REPLICATION: L.FULL}))

    results = registry.query_backends_by_capabilities(
        CapabilityQuery(required=[C.ASYNC_REPLICATION])
    )

    assert [r.backend for r in results] == [Backend.CEPH, Backend.TRIDENT, Backend.POWERSTORE]


def test_query_excludes_missing_and_unhealthy(registry):
    registry.register_capabilities(make_caps(Backend.CEPH, {C.RESYNC: L.NONE}))
    registry.register_capabilities(
        make_caps(Backend.TRIDENT, {C.RESYNC: L.FULL}, health=HealthLevel.DEGRADED)
    )
    registry.register_capabilities(
        make_caps(Backend.POWERSTORE, {C.RESYNC: L.FULL}, health=HealthLevel.HEALTHY)
    )

    results = registry.query_backends_by_capabilities(
        CapabilityQuery(required=[C.RESYNC], require_healthy=True)
    )

    assert [r.backend for r in results] == [Backend.POWERSTORE]


def test_optional_capabilities_add_bonus():
    caps = make_caps(Backend.CEPH, {C.RESYNC: L.FULL, C.FAILOVER: L.PARTIAL})

    result = score_backend(caps, CapabilityQuery(required=[C.RESYNC], optional=[C.FAILOVER]))

    assert result.score == pytest.approx(1.0 + 0.7 * 0.3)
    assert result.reasons == [f"matches with score {result.score:.2f}"]


def test_min_level_and_min_version():
    caps = make_caps(Backend.CEPH, {C.RESYNC: L.BASIC}, version="v1.4.0")

    assert score_backend(caps, CapabilityQuery(required=[C.RESYNC], min_level=L.PARTIAL)).score == 0
    assert score_backend(caps, CapabilityQuery(required=[C.RESYNC], min_version="1.3")).score > 0
    assert score_backend(caps, CapabilityQuery(required=[C.RESYNC], min_version="1.10")).score == 0


def test_capabilities_for_config():
    assert capabilities_for_config(
        {"replicationMode": "synchronous", "replicationState": "promoting"}
    ) == [C.SYNC_REPLICATION, C.SOURCE_PROMOTION]
    assert capabilities_for_config({"replicationState": "replica"}) == []


def test_validate_configuration(registry):
    registry.register_capabilities(
        make_caps(
            Backend.CEPH,
            {C.ASYNC_REPLICATION: L.FULL, C.SYNC_REPLICATION: L.NONE, C.JOURNAL_BASED: L.FULL},
        )
    )

    registry.validate_configuration(
        Backend.CEPH,
        {
            "replicationMode": "asynchronous",
            "replicationState": "replica",
            "extensions": {"ceph": {"mirroringMode": "journal"}},
        },
    )

    with pytest.raises(ConfigurationValidationError, match="does not support replication mode"):
        registry.validate_configuration(Backend.CEPH, {"replicationMode": "synchronous"})
    with pytest.raises(ConfigurationValidationError, match="does not support replication state"):
        registry.validate_configuration(Backend.CEPH, {"replicationState": "promoting"})
    with pytest.raises(ConfigurationValidationError, match="mirroring mode snapshot"):
        registry.validate_configuration(
            Backend.CEPH, {"extensions": {"ceph": {"mirroringMode": "snapshot"}}}
        )
    with pytest.raises(ConfigurationValidationError, match="unknown replication mode"):
        registry.validate_configuration(Backend.CEPH, {"replicationMode": "eventual"})
    with pytest.raises(ConfigurationValidationError):
        registry.validate_configuration(Backend.TRIDENT, {})


@pytest.mark.asyncio
async def test_refresh_capabilities_uses_registered_detector(registry, gateway):
    gateway.install(Backend.CEPH)
    with pytest.raises(CapabilityError):
        await registry.refresh_capabilities(Backend.CEPH)

    registry.register_capabilities(
        make_caps(Backend.CEPH, {C.METRICS: L.BASIC}, health=HealthLevel.HEALTHY)
    )
    registry.register_detector(Backend.CEPH, CephCapabilityDetector(gateway))

    await registry.refresh_all_capabilities()

    refreshed = registry.get_capabilities(Backend.CEPH)
    assert refreshed.level_of(C.METRICS) is L.BASIC
    assert refreshed.level_of(C.JOURNAL_BASED) is L.FULL
    assert refreshed.health.level is HealthLevel.HEALTHY
    assert refreshed.version == "v1alpha1"


def test_statistics(registry):
    registry.register_capabilities(
        make_caps(Backend.CEPH, {C.RESYNC: L.FULL, C.FAILOVER: L.FULL}, health=HealthLevel.HEALTHY)
    )
    registry.register_capabilities(
        make_caps(Backend.TRIDENT, {C.RESYNC: L.FULL}, health=HealthLevel.UNHEALTHY)
    )
    registry.register_capabilities(make_caps(Backend.POWERSTORE, {}))

    stats = registry.get_statistics()

    assert stats.total_backends == 3
    assert stats.healthy_backends == 1
    assert stats.unhealthy_backends == 1
    assert stats.unknown_backends == 1
    assert stats.total_capabilities == 3
    assert stats.last_updated is not None
