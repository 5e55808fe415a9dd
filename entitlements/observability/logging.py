"""
Structured Logging with Structlog.

Decision and download events are logged as flat JSON records. Identifiers
and enum members are rendered as plain strings so log pipelines can index
them without knowing the domain types.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

import structlog
from structlog.types import EventDict, Processor

from entitlements.config import settings
from entitlements.models.domain import YearMonth

# Chatty third-party loggers, raised to WARNING unless LOG_LEVEL is DEBUG
NOISY_LOGGERS = ("sqlalchemy.engine", "uvicorn.access")


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Stamp every record with the service, version and deployment."""
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    event_dict["environment"] = settings.deployment_environment
    return event_dict


def stringify_values(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Render UUIDs, enums, months and datetimes as strings."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
        elif isinstance(value, UUID | YearMonth):
            event_dict[key] = str(value)
        elif isinstance(value, datetime):
            event_dict[key] = value.isoformat()
    return event_dict


def setup_logging() -> None:
    """
    Configure structlog over the stdlib logging module.

    A JSON record looks like:
    {
        "event": "download_recorded",
        "level": "info",
        "timestamp": "2026-03-15T12:00:00.123456Z",
        "logger": "entitlements.services.quota",
        "service": "entitlements-api",
        "version": "0.1.0",
        "environment": "production",
        "request_id": "req-123",
        "user_id": "4b0c...",
        "month": "2026-03"
    }
    """
    level = getattr(logging, settings.log_level.upper())
    debug = level == logging.DEBUG

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if debug else max(level, logging.WARNING))

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        stringify_values,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.ExceptionRenderer() if debug else structlog.processors.format_exc_info,
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)  # type: ignore[no-any-return]


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """
    Bind fields to every log record emitted inside the block.

    Usage:
        with log_context(request_id="req-123"):
            logger.info("request_started")
    """
    with structlog.contextvars.bound_contextvars(**fields):
        yield
