"""
Faultline Logging - structured logging for the resilience layer.

Every module logs through ``get_logger(__name__)`` with event-style keys
(``circuit.opened``, ``retry.scheduled``) and keyword fields, so breaker
transitions and retry decisions can be filtered and aggregated downstream.

Architecture:
    ::

        configure_logging(level="INFO", json_format=True, service="matcher")
            │
            ▼
        structlog processor chain:
          1. TimeStamper (iso)
          2. merge_contextvars
          3. add_log_level / add_logger_name
          4. add_service_metadata
          5. JSONRenderer (or ConsoleRenderer for dev)

Examples:
    >>> from faultline.core.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", json_format=True, service="matcher")
    >>> logger = get_logger(__name__)
    >>> logger.info("query.submitted", resource="warehouse", attempt=1)

    Wiring breaker events into the log:

    >>> breaker.add_listener(breaker_event_logger())

Tags:
    logging, structlog, observability, faultline

Doc-Types:
    - API Reference
    - Observability Guide
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

if TYPE_CHECKING:
    from faultline.execution.events import CircuitEvent


# Store service name for metadata
_SERVICE_NAME = "faultline"


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service", _SERVICE_NAME)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "faultline",
    add_timestamp: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
        add_timestamp: Include ISO timestamp in logs
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stdout.isatty()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if add_timestamp:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_format:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs.

    Example:
        bind_context(resource="warehouse", run_id="abc123")
        logger.info("query.submitted")  # Includes resource and run_id
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Context manager for scoped logging context.

    Example:
        async with LogContext(resource="warehouse"):
            await resilient.execute(submit_query)
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args) -> None:
        unbind_context(*self._context.keys())

    async def __aenter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    async def __aexit__(self, *args) -> None:
        unbind_context(*self._context.keys())


_EVENT_LEVELS = {
    "open": "warning",
    "half-open": "info",
    "close": "info",
    "reset": "info",
    "failure": "warning",
    "success": "debug",
}


def breaker_event_logger(logger: Any | None = None) -> Callable[[CircuitEvent], None]:
    """Return a breaker listener that writes each event to ``logger``."""
    log = logger or get_logger("faultline.events")

    def listener(event: CircuitEvent) -> None:
        method = getattr(log, _EVENT_LEVELS.get(event.type.value, "info"))
        method(
            f"circuit.{event.type.value}",
            breaker=event.name,
            **event.counters,
        )

    return listener


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
    "breaker_event_logger",
]
