from __future__ import annotations

import logging
import sys
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

import structlog
from structlog.types import EventDict, WrappedLogger

from replication_core.settings import LoggingSettings

# ============================================================================
# CORRELATION IDS
# ============================================================================

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def generate_correlation_id(namespace: str, name: str) -> str:
    return f"{namespace}-{name}-{time.time_ns()}"


def bind_correlation_id(correlation_id: str | None) -> None:
    _correlation_id.set(correlation_id)


def get_correlation_id() -> str | None:
    return _correlation_id.get()


# ============================================================================
# PROCESSORS
# ============================================================================


def add_correlation_id(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    correlation_id = get_correlation_id()
    if correlation_id:
        event_dict.setdefault("correlation_id", correlation_id)
    return event_dict


def add_timestamp(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def add_log_level(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    if method_name == "warn":
        method_name = "warning"
    event_dict["level"] = method_name.upper()
    return event_dict


def protect_log_injection(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    for key, value in event_dict.items():
        if isinstance(value, str) and ("\n" in value or "\r" in value):
            event_dict[key] = value.replace("\n", "\\n").replace("\r", "\\r")
    return event_dict


# ============================================================================
# CONFIGURATION
# ============================================================================


def configure_logging(
    log_level: str = "INFO", json_logs: bool = True, development_mode: bool = False
) -> None:
    level = getattr(logging, log_level.upper())

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_timestamp,
        add_log_level,
        add_correlation_id,
        protect_log_injection,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    renderer: Any
    if development_mode or not json_logs:
        renderer = structlog.dev.ConsoleRenderer(colors=True)
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    for h in root_logger.handlers[:]:
        root_logger.removeHandler(h)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)


def configure_from_settings(settings: LoggingSettings | None = None) -> None:
    settings = settings or LoggingSettings()
    configure_logging(
        log_level=settings.level,
        json_logs=settings.json_logs,
        development_mode=settings.development_mode,
    )


__all__ = [
    "add_correlation_id",
    "add_log_level",
    "add_timestamp",
    "bind_correlation_id",
    "configure_from_settings",
    "configure_logging",
    "generate_correlation_id",
    "get_correlation_id",
    "protect_log_injection",
]
