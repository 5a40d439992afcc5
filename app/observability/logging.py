"""
Structured logging for the form backend.

Every record carries the service name and version; request ids are bound
per request by the HTTP middleware through log_context().
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from app.config import settings


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def _renderer() -> Processor:
    if settings.log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True)


def setup_logging() -> None:
    """Route structlog through stdlib logging on stdout at the configured level."""
    level = settings.log_level.upper()
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=getattr(logging, level))

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        # Full tracebacks only when debugging
        structlog.processors.ExceptionRenderer()
        if level == "DEBUG"
        else structlog.processors.format_exc_info,
        _renderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def log_context(**values: Any) -> Iterator[None]:
    """Bind ``values`` to every log record emitted inside the block."""
    with structlog.contextvars.bound_contextvars(**values):
        yield
