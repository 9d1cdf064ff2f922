"""
chrono-spine logging - structured logging for the scheduler.

The scheduler reports everything it does (registrations, replacements,
skips, failures, retirements) as structured events, so an operator can
follow a job's lifecycle by filtering on ``job_name``.

Architecture:
    ::

        Configuration Flow:
        ┌────────────────────────────────────────────────────────────┐
        │ configure_logging(level="INFO", json_format=True,          │
        │                   service="chronospine")                   │
        │                                                             │
        │     ↓                                                       │
        │ structlog configured with processor chain:                  │
        │   1. TimeStamper (iso, UTC)                                 │
        │   2. merge_contextvars   (job_name, scheduled_time, ...)    │
        │   3. add_log_level / add_logger_name                        │
        │   4. add_thread_name     (loop thread or pool worker)       │
        │   5. service_metadata(service)                              │
        │   6. JSONRenderer (or ConsoleRenderer for dev)              │
        └────────────────────────────────────────────────────────────┘

        Usage Flow:
        ┌────────────────────────────────────────────────────────────┐
        │ logger = get_logger(__name__)                              │
        │ logger.info("job.scheduled", job_name="heartbeat",         │
        │             trigger="periodic", next_fire_time="...")      │
        └────────────────────────────────────────────────────────────┘

Tags:
    logging, structlog, observability, chrono-spine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import logging
import sys
import threading
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger


def service_metadata(service: str) -> Processor:
    """Processor that stamps every event with ``service.name``."""

    def _add_service_metadata(
        logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        event_dict.setdefault("service.name", service)
        return event_dict

    return _add_service_metadata


def add_thread_name(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Record the emitting thread: the scheduler loop or a named pool worker."""
    event_dict.setdefault("thread", threading.current_thread().name)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "chronospine",
    add_timestamp: bool = True,
) -> None:
    """Configure structured logging for the process.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name stamped on every event
        add_timestamp: Include ISO timestamp in logs

    Example:
        configure_logging(level="DEBUG", service="report-scheduler")
    """
    if json_format is None:
        json_format = not sys.stdout.isatty()
    log_level = getattr(logging, level.upper())

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_thread_name,
        service_metadata(service),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]
    if add_timestamp:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso", utc=True))

    if json_format:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs on this thread.

    Example:
        bind_context(job_name="nightly-report")
        logger.info("job.started")  # Includes job_name
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Scoped logging context.

    The worker dispatcher wraps every run in one, so anything the job logs
    carries the job's name and scheduled time. On exit the previous values
    are restored, so nested scopes do not clobber the outer one.

    Example:
        with LogContext(job_name="nightly-report"):
            logger.info("report.generated")
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> LogContext:
        self._tokens = structlog.contextvars.bind_contextvars(**self._context)
        return self

    def __exit__(self, *args) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)
        self._tokens = {}


__all__ = [
    "configure_logging",
    "service_metadata",
    "add_thread_name",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
