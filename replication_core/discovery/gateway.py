"""
Resource store gateway interface.

The core never talks to a cluster API directly. Everything it needs (schema
readiness for discovery, typed CRUD for the controller layer) comes through
this interface, which transport-specific code implements.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from replication_core.discovery.models import SchemaInfo


class ResourceStoreGateway(ABC):
    # schema introspection (used by discovery and capability detection)
    @abstractmethod
    async def schema_established(self, name: str) -> bool:
        """Return readiness of a schema; raise SchemaNotFoundError when absent."""

    @abstractmethod
    async def schema_info(self, name: str) -> SchemaInfo: ...
    @abstractmethod
    async def list_schemas(self, group_filter: str = "") -> list[SchemaInfo]: ...

    # typed CRUD (used by the controller layer only)
    @abstractmethod
    async def get(self, kind: str, namespace: str, name: str) -> dict[str, Any]: ...
    @abstractmethod
    async def list(
        self, kind: str, namespace: str = "", label_selector: dict[str, str] | None = None
    ) -> list[dict[str, Any]]: ...
    @abstractmethod
    async def create(self, obj: dict[str, Any]) -> dict[str, Any]: ...
    @abstractmethod
    async def update(self, obj: dict[str, Any]) -> dict[str, Any]: ...
    @abstractmethod
    async def delete(self, obj: dict[str, Any]) -> None: ...

    async def close(self) -> None:
        return None
