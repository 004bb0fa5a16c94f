"""Resource and adapter contracts consumed by the controller engine."""

from __future__ import annotations

from enum import Enum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from replication_core.discovery.models import Backend


class ReplicationOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SYNC = "sync"


class ReplicationResource(BaseModel):
    """The slice of a replication object the engine needs to reconcile it."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    name: str
    replication_state: str = ""
    replication_mode: str = ""
    storage_class: str = ""
    extensions: dict[str, Any] = Field(default_factory=dict)
    # state last observed on the backend; "" until the first create
    current_state: str = ""

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def to_config(self) -> dict[str, Any]:
        config: dict[str, Any] = {}
        if self.replication_mode:
            config["replicationMode"] = self.replication_mode
        if self.replication_state:
            config["replicationState"] = self.replication_state
        if self.extensions:
            config["extensions"] = self.extensions
        return config


class ReplicationStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: str = ""
    mode: str = ""
    health: str = ""
    message: str = ""


@runtime_checkable
class ReplicationAdapter(Protocol):
    async def initialize(self) -> None: ...

    async def create_replication(self, resource: ReplicationResource) -> None: ...

    async def update_replication(self, resource: ReplicationResource) -> None: ...

    async def delete_replication(self, resource: ReplicationResource) -> None: ...

    async def get_replication_status(
        self, resource: ReplicationResource
    ) -> ReplicationStatus: ...


class AdapterRegistry(Protocol):
    def get_adapter(self, backend: Backend) -> ReplicationAdapter:
        """Return the adapter for ``backend`` or raise ``LookupError``."""
        ...


__all__ = [
    "AdapterRegistry",
    "ReplicationAdapter",
    "ReplicationOperation",
    "ReplicationResource",
    "ReplicationStatus",
]
