"""
FlowSpine Logging - structured logging for engines and handlers.

Every engine in flowspine logs through structlog so that a host application
can route flow/step lifecycle records to whatever sink it already runs
(stdout JSON for log shippers, colored console for development).

Manifesto:
    A workflow run is only debuggable if every record it emits can be
    correlated back to the run:

    - **Structures:** Event-style names (``flow.started``) plus key/value fields
    - **Correlates:** ``execution_id`` and ``flow_id`` bound for the whole run
    - **Flexes:** JSON renderer for production, console renderer for a tty
    - **Injects:** Engines accept any logger with ``info/warning/error``

Architecture:
    ::

        configure_logging(level="INFO", json_format=None, service="flowspine")
            │
            ▼
        structlog processor chain:
          1. TimeStamper(iso)
          2. merge_contextvars      (bind_context / LogContext values)
          3. add_log_level
          4. _add_service_metadata
          5. JSONRenderer | ConsoleRenderer

        logger = get_logger(__name__)
        logger.info("flow.completed", flow_id="checkout", nodes=4)

Examples:
    >>> from flowspine.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> logger = get_logger(__name__)
    >>> with LogContext(execution_id="abc"):
    ...     logger.info("step.started", node_id="validate")

Tags:
    logging, structlog, observability, flowspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "flowspine"


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service", _SERVICE_NAME)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "flowspine",
    add_timestamp: bool = True,
) -> None:
    """Configure structured logging for the process.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name included in every record
        add_timestamp: Include ISO timestamp in records
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stdout.isatty()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
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
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger.

    Args:
        name: Logger name (usually __name__)
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs of this task/thread.

    Example:
        bind_context(flow_id="checkout", execution_id="abc123")
        logger.info("step.started")  # includes flow_id and execution_id
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
        async with LogContext(flow_id="checkout", execution_id="abc123"):
            logger.info("flow.started")
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


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
