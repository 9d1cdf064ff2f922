"""Job protocol — the two shapes a unit of work can take.

A unit of work is either a **structured job**, an object with an
``execute(context)`` method that receives the job's name and config, or a
**plain callable** taking no arguments that never sees the config. The
shape is resolved once, at registration; anything else is an
``InvalidArgumentError`` raised to the caller, never a failure at fire time.

Usage::

    class ReportJob:
        def execute(self, context: JobContext) -> None:
            build_report(context.config["report"])

    scheduler.add_job("nightly", ReportJob(), {"report": "sales"}, "0 0 2 * * ?")
    scheduler.fire_job(lambda: print("ping"))

Tags:
    chrono-spine, scheduling, job, protocol, config

Doc-Types:
    api-reference
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Protocol, runtime_checkable

from chronospine.errors import InvalidArgumentError

# ── Well-known config keys ───────────────────────────────────────────

PROPERTY_SCHEDULER_PERIOD = "scheduler.period"
"""Period of a job in seconds."""

PROPERTY_SCHEDULER_EXPRESSION = "scheduler.expression"
"""Cron expression of a job."""

PROPERTY_SCHEDULER_CONCURRENT = "scheduler.concurrent"
"""Whether the job may run concurrently with itself."""

PROPERTY_SCHEDULER_NAME = "scheduler.name"
"""Name of the job."""

_SCALAR_TYPES = (str, bytes, bool, int, float, Decimal, datetime, date, time, timedelta)


# ── Context & protocol ───────────────────────────────────────────────


@dataclass(frozen=True)
class JobContext:
    """What a structured job receives on every fire."""

    name: str | None
    """Job name, ``None`` for anonymous jobs."""

    config: Mapping[str, Any]
    """Read-only snapshot of the config given at registration."""

    scheduled_time: datetime
    """The slot this run belongs to."""

    fire_time: datetime
    """When the scheduler actually dispatched the run."""


@runtime_checkable
class Job(Protocol):
    """Config-aware unit of work."""

    def execute(self, context: JobContext) -> None:
        ...


# ── Resolved shapes ──────────────────────────────────────────────────


@dataclass(frozen=True)
class StructuredJob:
    """A :class:`Job`; receives a :class:`JobContext`."""

    target: Job
    kind = "structured"

    def run(self, context: JobContext) -> None:
        self.target.execute(context)

    @property
    def label(self) -> str:
        return _label(self.target)


@dataclass(frozen=True)
class PlainCallable:
    """A zero-argument callable; the context is not passed on."""

    target: Callable[[], Any]
    kind = "callable"

    def run(self, context: JobContext) -> None:
        self.target()

    @property
    def label(self) -> str:
        return _label(self.target)


UnitOfWork = StructuredJob | PlainCallable


def _label(target: Any) -> str:
    name = getattr(target, "__qualname__", None) or type(target).__qualname__
    module = getattr(target, "__module__", None) or type(target).__module__
    return f"{module}.{name}"


def resolve_job(job: Any) -> UnitOfWork:
    """Resolve ``job`` into one of the two supported shapes.

    Raises:
        InvalidArgumentError: if ``job`` is neither a structured job nor a
            plain callable, or is a class or coroutine function.
    """
    if isinstance(job, (StructuredJob, PlainCallable)):
        return job
    if job is None:
        raise InvalidArgumentError("job must not be None", field="job")
    if isinstance(job, type):
        raise InvalidArgumentError(
            f"job must be an instance or a function, not the class {job.__name__}",
            field="job",
            value=job,
        )
    if callable(getattr(job, "execute", None)):
        return StructuredJob(job)
    if inspect.iscoroutinefunction(job):
        raise InvalidArgumentError(
            "coroutine functions are not supported; wrap them in a synchronous callable",
            field="job",
            value=job,
        )
    if callable(job):
        return PlainCallable(job)
    raise InvalidArgumentError(
        f"job of type {type(job).__name__} has no execute(context) method and is not callable",
        field="job",
        value=job,
    )


# ── Config payload ───────────────────────────────────────────────────


def _freeze(key: str, value: Any) -> Any:
    if value is None or isinstance(value, _SCALAR_TYPES):
        return value
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(key, item) for item in value)
    if isinstance(value, Mapping):
        frozen = {}
        for nested_key, nested in value.items():
            if not isinstance(nested_key, str):
                raise InvalidArgumentError(
                    f"config[{key!r}] has a non-string key {nested_key!r}", field="config"
                )
            frozen[nested_key] = _freeze(key, nested)
        return MappingProxyType(frozen)
    raise InvalidArgumentError(
        f"config[{key!r}] has unsupported value type {type(value).__name__}",
        field="config",
        value=value,
    )


def freeze_config(config: Mapping[str, Any] | None) -> Mapping[str, Any]:
    """Validate ``config`` and return a deeply read-only copy of it.

    Nested mappings become read-only mappings and lists become tuples, so
    no fire can change what later fires see.
    """
    if config is None:
        return MappingProxyType({})
    if not isinstance(config, Mapping):
        raise InvalidArgumentError(
            f"config must be a mapping, got {type(config).__name__}", field="config"
        )
    frozen = {}
    for key, value in config.items():
        if not isinstance(key, str):
            raise InvalidArgumentError(f"config key {key!r} is not a string", field="config")
        frozen[key] = _freeze(key, value)
    return MappingProxyType(frozen)


__all__ = [
    "PROPERTY_SCHEDULER_PERIOD",
    "PROPERTY_SCHEDULER_EXPRESSION",
    "PROPERTY_SCHEDULER_CONCURRENT",
    "PROPERTY_SCHEDULER_NAME",
    "JobContext",
    "Job",
    "StructuredJob",
    "PlainCallable",
    "UnitOfWork",
    "resolve_job",
    "freeze_config",
]
