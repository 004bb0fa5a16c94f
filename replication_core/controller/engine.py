"""
Controller engine: turns a replication resource plus an operation into a
backend call.

Pipeline: discovery (cached) -> backend selection -> capability validation
-> state transition check -> adapter lookup -> operation. Adapter calls run
through the shared circuit breaker inside the per-resource retry loop.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

import structlog

from replication_core.capabilities.models import CapabilityQuery
from replication_core.capabilities.registry import CapabilityRegistry, capabilities_for_config
from replication_core.controller.models import (
    AdapterRegistry,
    ReplicationAdapter,
    ReplicationOperation,
    ReplicationResource,
    ReplicationStatus,
)
from replication_core.discovery.engine import DiscoveryEngine
from replication_core.discovery.models import Backend
from replication_core.exceptions import BackendSelectionError, UnsupportedOperationError
from replication_core.logging_config import (
    bind_correlation_id,
    generate_correlation_id,
    get_correlation_id,
)
from replication_core.resilience.circuit_breaker import CircuitBreaker
from replication_core.resilience.retry import RetryManager
from replication_core.settings import ControllerSettings
from replication_core.state_machine import StateMachine

logger = structlog.get_logger(__name__)

STORAGE_CLASS_HINTS: dict[Backend, tuple[str, ...]] = {
    Backend.CEPH: ("ceph", "rbd"),
    Backend.TRIDENT: ("trident", "netapp", "ontap"),
    Backend.POWERSTORE: ("powerstore", "dell"),
}

# operations that move the resource towards its requested state
_TRANSITIONING_OPERATIONS = (ReplicationOperation.CREATE, ReplicationOperation.UPDATE)


def backend_from_storage_class(
    storage_class: str, available: Sequence[Backend]
) -> Backend | None:
    lowered = storage_class.lower()
    for backend in available:
        if any(hint in lowered for hint in STORAGE_CLASS_HINTS.get(backend, ())):
            return backend
    return None


class ControllerEngine:
    def __init__(
        self,
        discovery: DiscoveryEngine,
        registry: CapabilityRegistry,
        adapters: AdapterRegistry,
        retry_manager: RetryManager | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        state_machine: StateMachine | None = None,
        settings: ControllerSettings | None = None,
    ) -> None:
        self.settings = settings or ControllerSettings()
        self.discovery = discovery
        self.registry = registry
        self.adapters = adapters
        self.retry_manager = retry_manager or RetryManager()
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name="backend-operations")
        self.state_machine = state_machine or StateMachine(
            max_history=self.settings.history_size
        )

        self._lock = threading.Lock()
        self._cached_backends: list[Backend] = []
        self._cached_at: float | None = None
        self._last_discovery: datetime | None = None
        self._initialized: dict[Backend, ReplicationAdapter] = {}

        self._operation_count = 0
        self._error_count = 0
        self._cache_hits = 0
        self._cache_misses = 0
        self._total_latency = 0.0
        self._last_reconcile: datetime | None = None

    # =========================================================================
    # Public API
    # =========================================================================

    async def process_replication(
        self, resource: ReplicationResource, operation: ReplicationOperation | str
    ) -> None:
        """
        Reconcile ``resource`` by running ``operation`` on its backend.

        Raises:
            UnsupportedOperationError: ``operation`` is not create/update/delete/sync.
            BackendSelectionError: no usable backend or adapter.
            ConfigurationValidationError: the backend cannot serve the request.
            InvalidTransitionError: the requested state is not reachable.
            RetryExhaustedError: the backend kept failing.
        """
        previous_id = get_correlation_id()
        request_id = generate_correlation_id(resource.namespace, resource.name)
        bind_correlation_id(request_id)
        log = logger.bind(resource=resource.key, operation=getattr(operation, "value", operation))

        started = time.monotonic()
        with self._lock:
            self._operation_count += 1
        try:
            op = self._parse_operation(operation)
            log.info("replication_processing_started")

            backends = await self._discover_backends()
            backend = self._select_backend(resource, backends)
            log = log.bind(backend=backend.value)

            self._validate_configuration(resource, backend)
            if op in _TRANSITIONING_OPERATIONS:
                self.state_machine.validate_transition(
                    resource.current_state, resource.replication_state
                )

            adapter = await self._get_adapter(backend)
            await self.retry_manager.with_retry(
                resource.key,
                lambda: self.circuit_breaker.call(self._execute, adapter, resource, op),
            )

            if op in _TRANSITIONING_OPERATIONS:
                self.state_machine.record_transition(
                    resource.current_state,
                    resource.replication_state,
                    reason=op.value,
                    request_id=request_id,
                )
            log.info("replication_processing_completed")
        except Exception as e:
            with self._lock:
                self._error_count += 1
            self.retry_manager.reset_attempts(resource.key)
            log.error("replication_processing_failed", error=str(e), error_type=type(e).__name__)
            raise
        finally:
            with self._lock:
                self._total_latency += time.monotonic() - started
                self._last_reconcile = datetime.now(timezone.utc)
            bind_correlation_id(previous_id)

    async def get_replication_status(self, resource: ReplicationResource) -> ReplicationStatus:
        backends = await self._discover_backends()
        backend = self._select_backend(resource, backends)
        adapter = await self._get_adapter(backend)
        return await self.circuit_breaker.call(adapter.get_replication_status, resource)

    def invalidate_cache(self) -> None:
        with self._lock:
            self._cached_backends = []
            self._cached_at = None
        logger.debug("controller_discovery_cache_invalidated")

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            count = self._operation_count
            return {
                "operation_count": count,
                "error_count": self._error_count,
                "cache_hits": self._cache_hits,
                "cache_misses": self._cache_misses,
                "cache_entries": len(self._cached_backends),
                "last_discovery": self._last_discovery,
                "last_reconcile": self._last_reconcile,
                "average_latency_ms": (self._total_latency / count * 1000.0) if count else 0.0,
            }

    # =========================================================================
    # Pipeline steps
    # =========================================================================

    @staticmethod
    def _parse_operation(operation: ReplicationOperation | str) -> ReplicationOperation:
        try:
            return ReplicationOperation(operation)
        except ValueError:
            raise UnsupportedOperationError(f"unknown operation: {operation}") from None

    async def _discover_backends(self) -> list[Backend]:
        if self.settings.enable_caching:
            with self._lock:
                fresh = (
                    self._cached_at is not None
                    and time.monotonic() - self._cached_at < self.settings.discovery_cache_ttl
                )
                if fresh and self._cached_backends:
                    self._cache_hits += 1
                    return list(self._cached_backends)

        with self._lock:
            self._cache_misses += 1

        result = await self.discovery.discover_backends()
        available = list(result.available_backends)
        if result.error is not None:
            logger.warning("controller_discovery_partial", error=str(result.error))

        if self.settings.enable_caching:
            with self._lock:
                self._cached_backends = available
                self._cached_at = time.monotonic()
                self._last_discovery = datetime.now(timezone.utc)
        return available

    def _select_backend(
        self, resource: ReplicationResource, available: Sequence[Backend]
    ) -> Backend:
        # explicit extension block wins, and must name an available backend
        for backend in Backend:
            if resource.extensions.get(backend.value) is not None:
                if backend not in available:
                    raise BackendSelectionError(
                        f"backend {backend.value} not available in cluster"
                    )
                return backend

        if resource.storage_class:
            backend = backend_from_storage_class(resource.storage_class, available)
            if backend is not None:
                return backend
            logger.debug(
                "storage_class_backend_not_detected", storage_class=resource.storage_class
            )

        required = capabilities_for_config(resource.to_config())
        if required:
            for match in self.registry.query_backends_by_capabilities(
                CapabilityQuery(required=required)
            ):
                if match.backend in available:
                    return match.backend

        if available:
            logger.info("backend_defaulted_to_first_available", backend=available[0].value)
            return available[0]

        raise BackendSelectionError("no backends available")

    def _validate_configuration(self, resource: ReplicationResource, backend: Backend) -> None:
        if self.registry.get_capabilities(backend) is None:
            logger.debug("capability_validation_skipped", backend=backend.value)
            return
        self.registry.validate_configuration(backend, resource.to_config())

    async def _get_adapter(self, backend: Backend) -> ReplicationAdapter:
        try:
            adapter = self.adapters.get_adapter(backend)
        except LookupError as e:
            raise BackendSelectionError(
                f"no adapter registered for backend {backend.value}"
            ) from e

        with self._lock:
            ready = self._initialized.get(backend) is adapter
        if not ready:
            await adapter.initialize()
            with self._lock:
                self._initialized[backend] = adapter
            logger.debug("adapter_initialized", backend=backend.value)
        return adapter

    @staticmethod
    async def _execute(
        adapter: ReplicationAdapter,
        resource: ReplicationResource,
        operation: ReplicationOperation,
    ) -> None:
        if operation is ReplicationOperation.CREATE:
            await adapter.create_replication(resource)
        elif operation is ReplicationOperation.UPDATE:
            await adapter.update_replication(resource)
        elif operation is ReplicationOperation.DELETE:
            await adapter.delete_replication(resource)
        else:
            await adapter.get_replication_status(resource)


__all__ = ["ControllerEngine", "STORAGE_CLASS_HINTS", "backend_from_storage_class"]
