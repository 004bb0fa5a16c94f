from __future__ import annotations

import asyncio
from typing import Any

import pytest
import pytest_asyncio

from replication_core.discovery import schemas
from replication_core.discovery.gateway import ResourceStoreGateway
from replication_core.discovery.models import Backend, SchemaInfo
from replication_core.exceptions import SchemaNotFoundError
from replication_core.settings import CapabilitySettings, DiscoverySettings
from replication_core.task_tracker import cancel_all_tasks


class FakeGateway(ResourceStoreGateway):
    """In-memory resource store used by every test module."""

    def __init__(self) -> None:
        self.schemas: dict[str, SchemaInfo] = {}
        self.errors: dict[str, BaseException] = {}
        self.list_error: BaseException | None = None
        self.delay: float = 0.0
        self.slow: dict[str, float] = {}
        self.objects: list[dict[str, Any]] = []
        self.established_calls: dict[str, int] = {}

    # helpers

    def install(
        self,
        backend: Backend,
        established: bool = True,
        include_optional: bool = True,
        annotations: dict[str, str] | None = None,
    ) -> None:
        for req in schemas.get_requirements(backend):
            if not req.required and not include_optional:
                continue
            self.schemas[req.name] = SchemaInfo(
                name=req.name,
                group=req.group,
                version=req.version,
                kind=req.kind,
                established=established,
                storage_version=req.version,
                annotations=annotations or {},
            )

    def fail(self, backend: Backend, exc: BaseException) -> None:
        for req in schemas.get_requirements(backend):
            self.errors[req.name] = exc

    def slow_down(self, backend: Backend, seconds: float) -> None:
        for req in schemas.get_requirements(backend):
            self.slow[req.name] = seconds

    async def _lookup(self, name: str) -> SchemaInfo:
        delay = self.slow.get(name, self.delay)
        if delay:
            await asyncio.sleep(delay)
        if name in self.errors:
            raise self.errors[name]
        info = self.schemas.get(name)
        if info is None:
            raise SchemaNotFoundError(name)
        return info

    # ResourceStoreGateway

    async def schema_established(self, name: str) -> bool:
        self.established_calls[name] = self.established_calls.get(name, 0) + 1
        return (await self._lookup(name)).established

    async def schema_info(self, name: str) -> SchemaInfo:
        return await self._lookup(name)

    async def list_schemas(self, group_filter: str = "") -> list[SchemaInfo]:
        if self.list_error is not None:
            raise self.list_error
        return [s for s in self.schemas.values() if not group_filter or s.group == group_filter]

    async def get(self, kind: str, namespace: str, name: str) -> dict[str, Any]:
        for obj in self.objects:
            meta = obj.get("metadata", {})
            if obj.get("kind") == kind and meta.get("namespace") == namespace and meta.get("name") == name:
                return obj
        raise LookupError(f"{kind} {namespace}/{name} not found")

    async def list(
        self, kind: str, namespace: str = "", label_selector: dict[str, str] | None = None
    ) -> list[dict[str, Any]]:
        if self.list_error is not None:
            raise self.list_error
        found = []
        for obj in self.objects:
            meta = obj.get("metadata", {})
            if obj.get("kind") != kind:
                continue
            if namespace and meta.get("namespace") != namespace:
                continue
            labels = meta.get("labels", {})
            if label_selector and any(labels.get(k) != v for k, v in label_selector.items()):
                continue
            found.append(obj)
        return found

    async def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        self.objects.append(obj)
        return obj

    async def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        return obj

    async def delete(self, obj: dict[str, Any]) -> None:
        self.objects.remove(obj)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def discovery_settings() -> DiscoverySettings:
    return DiscoverySettings(
        cache_ttl=60.0,
        refresh_interval=0.05,
        timeout_per_backend=1.0,
        max_retries=2,
        retry_delay=0.0,
    )


@pytest.fixture
def capability_settings() -> CapabilitySettings:
    return CapabilitySettings(
        health_check_interval=0.05,
        capability_refresh_interval=0.05,
        performance_check_interval=0.05,
        timeout_per_check=1.0,
    )


@pytest_asyncio.fixture(autouse=True)
async def cleanup_tasks_between_tests():
    yield
    stats = await cancel_all_tasks(timeout=0.5)
    if stats["timeout"] > 0:
        pytest.fail(f"Tasks leaked and exceeded timeout: {stats}")
