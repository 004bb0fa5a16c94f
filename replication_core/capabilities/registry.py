"""
Capability registry.

Holds one :class:`BackendCapabilities` record per backend behind a single
lock. The registry is an ordinary object: the process builds one and hands
it to the health monitor, the enhanced discovery engine and the controller
engine explicitly.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Mapping
from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel

from replication_core.capabilities.models import (
    BackendCapabilities,
    BackendCapability,
    CapabilityLevel,
    CapabilityQuery,
    CapabilityQueryResult,
    HealthLevel,
    HealthStatus,
)
from replication_core.discovery import schemas
from replication_core.discovery.models import Backend, utcnow
from replication_core.exceptions import CapabilityError, ConfigurationValidationError

if TYPE_CHECKING:
    from replication_core.capabilities.detectors import BaseCapabilityDetector

logger = structlog.get_logger(__name__)

OPTIONAL_BONUS = 0.3

_MODE_CAPABILITIES = {
    "synchronous": BackendCapability.SYNC_REPLICATION,
    "asynchronous": BackendCapability.ASYNC_REPLICATION,
}

_STATE_CAPABILITIES = {
    "promoting": BackendCapability.SOURCE_PROMOTION,
    "demoting": BackendCapability.REPLICA_DEMOTION,
    "syncing": BackendCapability.RESYNC,
}

_CEPH_MIRRORING_CAPABILITIES = {
    "journal": BackendCapability.JOURNAL_BASED,
    "snapshot": BackendCapability.SNAPSHOT_BASED,
}


def capabilities_for_config(config: Mapping[str, Any]) -> list[BackendCapability]:
    """Capabilities a replication configuration implies, in a stable order."""
    implied: list[BackendCapability] = []
    mode = config.get("replicationMode")
    if isinstance(mode, str) and mode in _MODE_CAPABILITIES:
        implied.append(_MODE_CAPABILITIES[mode])
    state = config.get("replicationState")
    if isinstance(state, str) and state in _STATE_CAPABILITIES:
        implied.append(_STATE_CAPABILITIES[state])
    return implied


class RegistryStatistics(BaseModel):
    total_backends: int = 0
    healthy_backends: int = 0
    unhealthy_backends: int = 0
    unknown_backends: int = 0
    total_capabilities: int = 0
    last_updated: datetime | None = None


def _version_tuple(version: str) -> tuple[int, ...]:
    parts: list[int] = []
    for chunk in version.lstrip("vV").split("."):
        digits = ""
        for ch in chunk:
            if not ch.isdigit():
                break
            digits += ch
        parts.append(int(digits) if digits else 0)
    return tuple(parts)


def score_backend(
    capabilities: BackendCapabilities, query: CapabilityQuery
) -> CapabilityQueryResult:
    """
    Score how well one backend fits a capability query.

    A backend is rejected (score 0) when health is required but not healthy,
    or when any required capability is missing or ``none``. Otherwise the score
    is the mean level weight over required capabilities (1.0 if none are
    required) plus up to 0.3 from the mean weight of optional capabilities.
    """
    result = CapabilityQueryResult(
        backend=capabilities.backend, capabilities=capabilities, score=0.0
    )

    if query.require_healthy and capabilities.health.level is not HealthLevel.HEALTHY:
        result.reasons.append(
            f"backend is not healthy: {capabilities.health.level.value}"
        )
        return result

    if query.min_version:
        if not capabilities.version:
            result.reasons.append("backend version is unknown")
            return result
        if _version_tuple(capabilities.version) < _version_tuple(query.min_version):
            result.reasons.append(
                f"backend version {capabilities.version} is older than {query.min_version}"
            )
            return result

    required_score = 0.0
    for cap in query.required:
        level = capabilities.level_of(cap)
        if level is None or level is CapabilityLevel.NONE:
            result.reasons.append(f"missing required capability: {cap.value}")
            return result
        if query.min_level is not None and not level.at_least(query.min_level):
            result.reasons.append(
                f"capability {cap.value} is {level.value}, below {query.min_level.value}"
            )
            return result
        required_score += level.weight

    base = required_score / len(query.required) if query.required else 1.0

    bonus = 0.0
    if query.optional:
        optional_score = sum(
            (capabilities.level_of(cap) or CapabilityLevel.NONE).weight
            for cap in query.optional
        )
        bonus = (optional_score / len(query.optional)) * OPTIONAL_BONUS

    result.score = base + bonus
    if result.score > 0:
        result.reasons.append(f"matches with score {result.score:.2f}")
    return result


class CapabilityRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._capabilities: dict[Backend, BackendCapabilities] = {}
        self._detectors: dict[Backend, BaseCapabilityDetector] = {}

    # =========================================================================
    # Records
    # =========================================================================

    def register_capabilities(self, capabilities: BackendCapabilities | None) -> None:
        if capabilities is None:
            raise CapabilityError("capabilities cannot be None")
        record = capabilities.model_copy(deep=True)
        record.last_updated = utcnow()
        with self._lock:
            self._capabilities[record.backend] = record
        logger.debug(
            "capabilities_registered",
            backend=record.backend.value,
            capabilities=len(record.capabilities),
        )

    def get_capabilities(self, backend: Backend) -> BackendCapabilities | None:
        with self._lock:
            record = self._capabilities.get(backend)
            return record.model_copy(deep=True) if record is not None else None

    def get_all_capabilities(self) -> dict[Backend, BackendCapabilities]:
        with self._lock:
            return {b: c.model_copy(deep=True) for b, c in self._capabilities.items()}

    def update_capabilities(
        self, backend: Backend, capabilities: BackendCapabilities | None
    ) -> None:
        """Merge an update into the existing record; omitted entries are kept."""
        if capabilities is None:
            raise CapabilityError(f"capabilities cannot be None for backend {backend}")
        update = capabilities.model_copy(deep=True)
        update.backend = backend

        with self._lock:
            existing = self._capabilities.get(backend)
            if existing is not None:
                if not update.version:
                    update.version = existing.version
                for cap, info in existing.capabilities.items():
                    update.capabilities.setdefault(cap, info)
                if (
                    update.health.level is HealthLevel.UNKNOWN
                    and not update.health.checks
                ):
                    update.health = existing.health
            update.last_updated = utcnow()
            self._capabilities[backend] = update

    def update_health(self, backend: Backend, health: HealthStatus) -> bool:
        """Replace the health of a registered backend; unknown backends are ignored."""
        with self._lock:
            record = self._capabilities.get(backend)
            if record is None:
                return False
            record.health = health
            record.last_updated = utcnow()
            return True

    def backends(self) -> list[Backend]:
        with self._lock:
            return list(self._capabilities)

    # =========================================================================
    # Detectors
    # =========================================================================

    def register_detector(self, backend: Backend, detector: BaseCapabilityDetector) -> None:
        with self._lock:
            self._detectors[backend] = detector

    def get_detector(self, backend: Backend) -> BaseCapabilityDetector | None:
        with self._lock:
            return self._detectors.get(backend)

    def get_detectors(self) -> dict[Backend, BaseCapabilityDetector]:
        with self._lock:
            return dict(self._detectors)

    async def refresh_capabilities(self, backend: Backend) -> None:
        detector = self.get_detector(backend)
        if detector is None:
            raise CapabilityError(f"no detector registered for backend {backend}")
        try:
            capabilities = await detector.detect_capabilities()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise CapabilityError(
                f"failed to refresh capabilities for {backend}: {e}"
            ) from e
        self.update_capabilities(backend, capabilities)

    async def refresh_all_capabilities(self) -> None:
        failures: dict[str, str] = {}
        for backend in self.get_detectors():
            try:
                await self.refresh_capabilities(backend)
            except CapabilityError as e:
                failures[backend.value] = str(e)
        if failures:
            raise CapabilityError(
                "failed to refresh capabilities for some backends", failures
            )

    # =========================================================================
    # Queries
    # =========================================================================

    def is_capability_supported(
        self, backend: Backend, capability: BackendCapability
    ) -> tuple[CapabilityLevel, bool]:
        with self._lock:
            record = self._capabilities.get(backend)
            if record is None:
                return CapabilityLevel.UNKNOWN, False
            info = record.capabilities.get(capability)
            if info is None:
                return CapabilityLevel.NONE, True
            return info.level, True

    def get_supported_backends(
        self, capability: BackendCapability, min_level: CapabilityLevel
    ) -> list[Backend]:
        with self._lock:
            return [
                backend
                for backend, record in self._capabilities.items()
                if capability in record.capabilities
                and record.capabilities[capability].level.at_least(min_level)
            ]

    def query_backends_by_capabilities(
        self, query: CapabilityQuery
    ) -> list[CapabilityQueryResult]:
        results = [
            result
            for result in (
                score_backend(caps, query) for caps in self.get_all_capabilities().values()
            )
            if result.score > 0
        ]
        # equal scores keep discovery order
        order = {backend: i for i, backend in enumerate(schemas.known_backends())}
        return sorted(results, key=lambda r: (-r.score, order.get(r.backend, len(order))))

    def validate_configuration(self, backend: Backend, config: Mapping[str, Any]) -> None:
        """
        Check a replication configuration against the backend's capabilities.

        Recognised keys: ``replicationMode``, ``replicationState`` and
        ``extensions`` (a mapping keyed by backend name).
        """
        record = self.get_capabilities(backend)
        if record is None:
            raise ConfigurationValidationError(
                f"no capabilities registered for backend {backend}"
            )

        def require(cap: BackendCapability, what: str) -> None:
            level = record.level_of(cap)
            if level is None or level is CapabilityLevel.NONE:
                raise ConfigurationValidationError(
                    f"backend {backend.value} does not support {what}",
                    {"capability": cap.value},
                )

        mode = config.get("replicationMode")
        if mode is not None:
            if not isinstance(mode, str):
                raise ConfigurationValidationError("replication mode must be a string")
            cap = _MODE_CAPABILITIES.get(mode)
            if cap is None:
                raise ConfigurationValidationError(f"unknown replication mode: {mode}")
            require(cap, f"replication mode {mode}")

        state = config.get("replicationState")
        if state is not None:
            if not isinstance(state, str):
                raise ConfigurationValidationError("replication state must be a string")
            cap = _STATE_CAPABILITIES.get(state)
            if cap is not None:
                require(cap, f"replication state {state}")

        extensions = config.get("extensions")
        if extensions is not None:
            if not isinstance(extensions, Mapping):
                raise ConfigurationValidationError("extensions must be a mapping")
            backend_ext = extensions.get(backend.value)
            if backend is Backend.CEPH and isinstance(backend_ext, Mapping):
                mirroring = backend_ext.get("mirroringMode")
                if mirroring is not None:
                    cap = _CEPH_MIRRORING_CAPABILITIES.get(str(mirroring))
                    if cap is None:
                        raise ConfigurationValidationError(
                            f"unknown ceph mirroring mode: {mirroring}"
                        )
                    require(cap, f"mirroring mode {mirroring}")

    def get_statistics(self) -> RegistryStatistics:
        stats = RegistryStatistics()
        with self._lock:
            stats.total_backends = len(self._capabilities)
            for record in self._capabilities.values():
                level = record.health.level
                if level is HealthLevel.HEALTHY:
                    stats.healthy_backends += 1
                elif level in (HealthLevel.DEGRADED, HealthLevel.UNHEALTHY):
                    stats.unhealthy_backends += 1
                else:
                    stats.unknown_backends += 1
                stats.total_capabilities += len(record.capabilities)
                if stats.last_updated is None or record.last_updated > stats.last_updated:
                    stats.last_updated = record.last_updated
        return stats
