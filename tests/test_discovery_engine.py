import asyncio

import pytest

from replication_core.discovery import schemas
from replication_core.discovery.detectors import CephDetector, DetectorRegistry
from replication_core.discovery.engine import DiscoveryEngine
from replication_core.discovery.models import Backend, BackendDiscoveryResult, DiscoveryStatus
from replication_core.exceptions import DiscoveryError, DiscoveryErrorType
from replication_core.settings import DiscoverySettings

pytestmark = pytest.mark.asyncio(loop_scope="function")


async def eventually(assert_fn, timeout=1.0, step=0.01):
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        try:
            assert_fn()
            return
        except AssertionError:
            if asyncio.get_running_loop().time() >= deadline:
                raise
            await asyncio.sleep(step)


async def test_discover_backends_reports_each_backend(gateway, discovery_settings):
    gateway.install(Backend.CEPH)
    gateway.install(Backend.POWERSTORE)
    engine = DiscoveryEngine(gateway, discovery_settings)

    result = await engine.discover_backends()

    assert result.available_backends == (Backend.CEPH, Backend.POWERSTORE)
    assert result.backends[Backend.TRIDENT].status is DiscoveryStatus.UNAVAILABLE
    assert result.error is None


async def test_failure_of_one_backend_does_not_abort_the_others(gateway, discovery_settings):
    gateway.install(Backend.CEPH)
    gateway.fail(Backend.TRIDENT, RuntimeError("boom"))
    engine = DiscoveryEngine(gateway, discovery_settings)

    result = await engine.discover_backends()

    assert result.available_backends == (Backend.CEPH,)
    assert result.backends[Backend.TRIDENT].status is DiscoveryStatus.UNAVAILABLE
    assert isinstance(result.error, DiscoveryError)
    assert str(result.error.message) == "Failed to discover 1 backends"


async def test_retryable_errors_are_retried(gateway, discovery_settings):
    gateway.fail(Backend.TRIDENT, RuntimeError("flaky"))
    engine = DiscoveryEngine(gateway, discovery_settings)

    await engine.discover_backends()

    first = schemas.get_requirements(Backend.TRIDENT)[0].name
    assert gateway.established_calls[first] == discovery_settings.max_retries + 1


async def test_transient_failure_recovers_on_retry(gateway, discovery_settings):
    gateway.install(Backend.CEPH)
    original = gateway.schema_established
    ceph_schemas = {req.name for req in schemas.get_requirements(Backend.CEPH)}
    failures = {"left": 1}

    async def flaky(name):
        if name in ceph_schemas and failures["left"]:
            failures["left"] -= 1
            raise RuntimeError("connection reset")
        return await original(name)

    gateway.schema_established = flaky
    engine = DiscoveryEngine(gateway, discovery_settings)

    result = await engine.discover_backends()

    assert Backend.CEPH in result.available_backends
    assert failures["left"] == 0


async def test_single_attempt_when_retries_disabled(gateway):
    gateway.fail(Backend.TRIDENT, RuntimeError("flaky"))
    engine = DiscoveryEngine(gateway, DiscoverySettings(max_retries=0, retry_delay=0.0))

    result = await engine.discover_backends()

    first = schemas.get_requirements(Backend.TRIDENT)[0].name
    assert gateway.established_calls[first] == 1
    assert "flaky" in result.backends[Backend.TRIDENT].message

async def test_permission_denied_is_not_retried(gateway, discovery_settings):
    gateway.fail(Backend.POWERSTORE, PermissionError("forbidden"))
    engine = DiscoveryEngine(gateway, discovery_settings)

    result = await engine.discover_backends()

    name = schemas.get_requirements(Backend.POWERSTORE)[0].name
    assert gateway.established_calls[name] == 1
    assert "permission_denied" in result.backends[Backend.POWERSTORE].message


async def test_slow_backend_times_out(gateway):
    gateway.install(Backend.CEPH)
    gateway.delay = 0.2
    settings = DiscoverySettings(timeout_per_backend=0.05, max_retries=0, retry_delay=0.0)
    engine = DiscoveryEngine(gateway, settings)

    result = await engine.discover_backends()

    assert result.available_backends == ()
    assert "timeout" in result.backends[Backend.CEPH].message


async def test_cache_is_valid_until_ttl(gateway):
    gateway.install(Backend.CEPH)
    engine = DiscoveryEngine(gateway, DiscoverySettings(cache_ttl=0.05, retry_delay=0.0))

    assert engine.get_cached_result() == (None, False)
    result = await engine.discover_backends()
    cached, valid = engine.get_cached_result()
    assert valid and cached == result

    await asyncio.sleep(0.06)
    assert engine.get_cached_result() == (None, False)


async def test_get_available_backends_uses_cache(gateway, discovery_settings):
    gateway.install(Backend.CEPH)
    engine = DiscoveryEngine(gateway, discovery_settings)
    await engine.refresh_cache()
    gateway.install(Backend.TRIDENT)

    assert await engine.get_available_backends() == [Backend.CEPH]

    engine.invalidate_cache()
    assert await engine.get_available_backends() == [Backend.CEPH, Backend.TRIDENT]


async def test_is_backend_available_bypasses_cache(gateway, discovery_settings):
    engine = DiscoveryEngine(gateway, discovery_settings)
    await engine.discover_backends()
    gateway.install(Backend.POWERSTORE)

    assert await engine.is_backend_available(Backend.POWERSTORE)
    assert not await engine.is_backend_available(Backend.CEPH)


async def test_auto_refresh_updates_cache_and_stops(gateway, discovery_settings):
    settings = discovery_settings.model_copy(update={"enable_auto_refresh": True})
    engine = DiscoveryEngine(gateway, settings)
    engine.start_auto_refresh()
    assert engine.is_auto_refresh_running()

    with pytest.raises(RuntimeError):
        engine.start_auto_refresh()

    gateway.install(Backend.TRIDENT)

    def refreshed():
        cached, valid = engine.get_cached_result()
        assert valid and cached.available_backends == (Backend.TRIDENT,)

    await eventually(refreshed)

    await engine.stop_auto_refresh()
    assert not engine.is_auto_refresh_running()
    with pytest.raises(RuntimeError):
        engine.start_auto_refresh()


async def test_auto_refresh_disabled_is_noop(gateway, discovery_settings):
    engine = DiscoveryEngine(gateway, discovery_settings)
    engine.start_auto_refresh()
    assert not engine.is_auto_refresh_running()
    await engine.stop_auto_refresh()


async def test_schema_introspection(gateway, discovery_settings):
    gateway.install(Backend.CEPH, established=False)
    engine = DiscoveryEngine(gateway, discovery_settings)
    name = schemas.get_requirements(Backend.CEPH)[0].name

    assert await engine.check_schema_exists(name)
    assert not await engine.check_schema_ready(name)
    assert not await engine.check_schema_exists("missing.example.com")
    assert (await engine.get_schema_info(name)).kind == "VolumeReplicationClass"
    assert len(await engine.list_schemas(schemas.CEPH_GROUP)) == 2
    assert await engine.list_schemas(schemas.TRIDENT_GROUP) == []


async def test_validate_client_permissions(gateway, discovery_settings):
    engine = DiscoveryEngine(gateway, discovery_settings)
    await engine.validate_client_permissions()

    gateway.list_error = PermissionError("forbidden")
    with pytest.raises(DiscoveryError) as exc_info:
        await engine.validate_client_permissions()
    assert exc_info.value.error_type is DiscoveryErrorType.PERMISSION_DENIED
    assert exc_info.value.message == "insufficient permissions to list CRDs"


async def test_engine_runs_detectors_from_its_registry(gateway, discovery_settings):
    class PinnedCephDetector(CephDetector):
        async def detect(self):
            return BackendDiscoveryResult(
                backend=Backend.CEPH, status=DiscoveryStatus.AVAILABLE, message="pinned"
            )

    detectors = DetectorRegistry(gateway)
    detectors.register(PinnedCephDetector(gateway))
    engine = DiscoveryEngine(gateway, discovery_settings, detectors=detectors)

    result = await engine.discover_backends()

    assert engine.detectors is detectors
    assert result.available_backends == (Backend.CEPH,)
    assert result.backends[Backend.CEPH].message == "pinned"
