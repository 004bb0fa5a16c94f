"""
Backend detectors.

One detector per supported backend. The set is closed: ``detector_for`` is
the only place that maps a :class:`Backend` to its detector type, and the
engine never instantiates detectors any other way.
"""

from __future__ import annotations

import asyncio
from typing import ClassVar

import structlog

from replication_core.discovery import schemas
from replication_core.discovery.gateway import ResourceStoreGateway
from replication_core.discovery.models import (
    Backend,
    BackendDiscoveryResult,
    DiscoveryStatus,
    SchemaAvailability,
    SchemaRequirement,
)
from replication_core.exceptions import (
    DiscoveryError,
    DiscoveryErrorType,
    SchemaNotFoundError,
    classify_error,
)

logger = structlog.get_logger(__name__)


async def check_schema_ready(gateway: ResourceStoreGateway, name: str) -> bool:
    """Established-ness of a schema; an absent schema is simply not ready."""
    try:
        return await gateway.schema_established(name)
    except SchemaNotFoundError:
        return False


def grade_status(required_present: int, required_total: int) -> DiscoveryStatus:
    missing = required_total - required_present
    if missing == 0:
        return DiscoveryStatus.AVAILABLE
    if required_present > 0:
        return DiscoveryStatus.PARTIAL
    return DiscoveryStatus.UNAVAILABLE


class BaseDetector:
    backend: ClassVar[Backend]
    # labels of the backend's controller deployment, checked by validate_backend
    controller_selector: ClassVar[dict[str, str]] = {}
    controller_namespace: ClassVar[str] = ""

    def __init__(self, gateway: ResourceStoreGateway) -> None:
        self._gateway = gateway

    @property
    def requirements(self) -> tuple[SchemaRequirement, ...]:
        return schemas.get_requirements(self.backend)

    def get_required_schemas(self) -> list[SchemaRequirement]:
        return schemas.get_required(self.backend)

    async def detect(self) -> BackendDiscoveryResult:
        log = logger.bind(backend=self.backend.value)
        log.debug("backend_detection_started")

        entries: list[SchemaAvailability] = []
        required_total = required_present = available_total = 0

        for req in self.requirements:
            try:
                ready = await check_schema_ready(self._gateway, req.name)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning("schema_check_failed", schema=req.name, error=str(e))
                raise classify_error(e, self.backend.value, req.name) from e

            if ready:
                available_total += 1
            if req.required:
                required_total += 1
                if ready:
                    required_present += 1

            entries.append(
                SchemaAvailability(
                    name=req.name,
                    group=req.group,
                    version=req.version,
                    kind=req.kind,
                    required=req.required,
                    available=ready,
                    established=ready,
                )
            )

        status = grade_status(required_present, required_total)
        if status is DiscoveryStatus.AVAILABLE:
            message = "All required CRDs available"
        elif status is DiscoveryStatus.PARTIAL:
            message = f"{required_present}/{required_total} required CRDs available"
        else:
            message = "No required CRDs available"

        log.info(
            "backend_detection_completed",
            status=status.value,
            available_schemas=available_total,
            total_schemas=len(entries),
            missing_required=required_total - required_present,
        )
        return BackendDiscoveryResult(
            backend=self.backend,
            status=status,
            schemas=tuple(entries),
            message=message,
        )

    async def validate_backend(self, check_controller: bool = False) -> None:
        """
        Raise :class:`DiscoveryError` unless the backend is fully available.

        With ``check_controller`` the backend's controller deployment must also
        be present in the resource store.
        """
        result = await self.detect()
        if result.status is not DiscoveryStatus.AVAILABLE:
            raise DiscoveryError(
                DiscoveryErrorType.SCHEMA_NOT_FOUND,
                result.message,
                backend=self.backend.value,
            )
        if check_controller and self.controller_selector:
            await self._validate_controller()

    async def _validate_controller(self) -> None:
        try:
            deployments = await self._gateway.list(
                "Deployment",
                namespace=self.controller_namespace,
                label_selector=dict(self.controller_selector),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise classify_error(e, self.backend.value) from e
        if not deployments:
            raise DiscoveryError(
                DiscoveryErrorType.CONTROLLER_NOT_FOUND,
                f"no controller deployment matching {self.controller_selector}",
                backend=self.backend.value,
            )


class CephDetector(BaseDetector):
    backend = Backend.CEPH
    controller_selector = {"app": "csi-rbdplugin-provisioner"}


class TridentDetector(BaseDetector):
    backend = Backend.TRIDENT
    controller_selector = {"app": "controller.csi.trident.netapp.io"}


class PowerStoreDetector(BaseDetector):
    backend = Backend.POWERSTORE
    controller_selector = {"app": "powerstore-controller"}


_DETECTOR_TYPES: dict[Backend, type[BaseDetector]] = {
    Backend.CEPH: CephDetector,
    Backend.TRIDENT: TridentDetector,
    Backend.POWERSTORE: PowerStoreDetector,
}


def detector_for(backend: Backend, gateway: ResourceStoreGateway) -> BaseDetector:
    try:
        detector_type = _DETECTOR_TYPES[Backend(backend)]
    except (KeyError, ValueError):
        raise DiscoveryError(
            DiscoveryErrorType.UNKNOWN, "no detector for backend", backend=str(backend)
        ) from None
    return detector_type(gateway)


class DetectorRegistry:
    """Holds one detector per backend and runs them all on request."""

    def __init__(self, gateway: ResourceStoreGateway) -> None:
        self._detectors: dict[Backend, BaseDetector] = {
            backend: detector_for(backend, gateway) for backend in _DETECTOR_TYPES
        }

    def get(self, backend: Backend) -> BaseDetector | None:
        return self._detectors.get(backend)

    def get_all(self) -> dict[Backend, BaseDetector]:
        return dict(self._detectors)

    def register(self, detector: BaseDetector) -> None:
        self._detectors[detector.backend] = detector

    async def detect_all(self) -> dict[Backend, BackendDiscoveryResult]:
        results: dict[Backend, BackendDiscoveryResult] = {}
        for backend, detector in self._detectors.items():
            try:
                results[backend] = await detector.detect()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("detector_failed", backend=backend.value, error=str(e))
                results[backend] = BackendDiscoveryResult(
                    backend=backend,
                    status=DiscoveryStatus.UNKNOWN,
                    message=str(e),
                )
        return results
