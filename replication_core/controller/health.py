"""Liveness and readiness checks for a controller built on the engine."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from replication_core.controller.engine import ControllerEngine

logger = structlog.get_logger(__name__)

STALE_RECONCILE_AFTER = timedelta(minutes=10)
MAX_ERROR_RATE = 0.5


class ControllerHealth(BaseModel):
    model_config = ConfigDict(frozen=True)

    healthy: bool
    message: str
    last_check: datetime
    last_reconcile: datetime | None = None
    reconcile_count: int = 0
    error_rate: float = 0.0
    details: dict[str, Any] = Field(default_factory=dict)


class ControllerHealthChecker:
    def __init__(
        self,
        engine: ControllerEngine | None,
        stale_after: timedelta = STALE_RECONCILE_AFTER,
        max_error_rate: float = MAX_ERROR_RATE,
    ) -> None:
        self.engine = engine
        self.stale_after = stale_after
        self.max_error_rate = max_error_rate
        self._lock = threading.Lock()
        self._last_status: ControllerHealth | None = None
        self._check_count = 0

    def check(self) -> ControllerHealth:
        """
        Evaluate controller health.

        Unhealthy when the last reconcile is older than ``stale_after``, when
        more than ``max_error_rate`` of operations failed, or when a
        collaborator is missing. Later failures overwrite the message of
        earlier ones.
        """
        now = datetime.now(timezone.utc)
        healthy = True
        message = ""
        details: dict[str, Any] = {}
        last_reconcile = None
        count = 0
        error_rate = 0.0

        if self.engine is not None:
            metrics = self.engine.get_metrics()
            last_reconcile = metrics["last_reconcile"]
            count = metrics["operation_count"]

            if last_reconcile is not None:
                since = now - last_reconcile
                if since > self.stale_after:
                    healthy = False
                    message = f"No reconciliation in {since}"
                details["time_since_reconcile"] = str(since)

            if count > 0:
                error_rate = metrics["error_count"] / count
                if error_rate > self.max_error_rate:
                    healthy = False
                    message = f"High error rate: {error_rate * 100:.2f}%"
                details["error_rate"] = f"{error_rate * 100:.2f}%"

            if self.engine.discovery is None:
                healthy = False
                message = "Discovery engine not available"
            if self.engine.adapters is None:
                healthy = False
                message = "Adapter registry not available"
        else:
            healthy = False
            message = "Controller engine not available"

        if healthy and not message:
            message = "All systems operational"

        status = ControllerHealth(
            healthy=healthy,
            message=message,
            last_check=now,
            last_reconcile=last_reconcile,
            reconcile_count=count,
            error_rate=error_rate,
            details=details,
        )
        with self._lock:
            self._check_count += 1
            self._last_status = status
        if not healthy:
            logger.warning("controller_unhealthy", message=message)
        return status

    def get_last_status(self) -> ControllerHealth | None:
        with self._lock:
            return self._last_status


class ReadinessChecker:
    def __init__(self, engine: ControllerEngine | None = None) -> None:
        self.engine = engine
        self._ready = False
        self._lock = threading.Lock()

    def set_ready(self, ready: bool) -> None:
        with self._lock:
            self._ready = ready

    def is_ready(self) -> bool:
        with self._lock:
            return self._ready

    def check(self) -> bool:
        if not self.is_ready():
            return False
        engine = self.engine
        return engine is not None and engine.discovery is not None and engine.adapters is not None


__all__ = [
    "ControllerHealth",
    "ControllerHealthChecker",
    "MAX_ERROR_RATE",
    "ReadinessChecker",
    "STALE_RECONCILE_AFTER",
]
