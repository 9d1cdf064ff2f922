"""Scheduler service — the public scheduling API.

Manifesto:
    Callers see one object. ``SchedulerService`` validates arguments
    synchronously, builds the trigger and entry, and hands the entry to the
    registry; the loop and dispatcher do the rest. A registration call
    either raises (bad arguments, scheduler stopped) or leaves exactly one
    more entry armed. The boolean forms report the same failures as
    ``False`` instead.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER SERVICE                                                            │
│                                                                               │
│   add_job(name, job, config, expression, can_run_concurrently)  cron         │
│   add_periodic_job(name, job, config, period, ...)              periodic     │
│   fire_job(job, config)                                         once, now    │
│   fire_job_repeatedly(job, config, times, period) -> bool       N from now   │
│   fire_job_at(name, job, config, date)                          once at date │
│   fire_job_at_repeatedly(name, job, config, date, times, period) -> bool     │
│   remove_job(name)                                              cancel       │
│   schedule(job, config)               from scheduler.* config keys           │
│                                                                               │
│        │ resolve_job / freeze_config / Trigger(...)   (raise on bad input)   │
│        ▼                                                                      │
│   JobRegistry.add(entry) ──notify──► SchedulerLoop ──► WorkerDispatcher      │
│                                                                               │
│   start() / stop(wait) / with SchedulerService(...) as scheduler:            │
│   health() / get_stats() / reset_stats()                                     │
└──────────────────────────────────────────────────────────────────────────────┘

Well-known config keys (``scheduler.name``, ``scheduler.expression``,
``scheduler.period``, ``scheduler.concurrent``) are read at registration
only. An explicit argument always wins; the config value is used when the
argument is ``None``.

Tags:
    chrono-spine, scheduling, service, cron, periodic, one-shot

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

from collections.abc import Mapping
from concurrent.futures import Executor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from chronospine.errors import InvalidArgumentError, SchedulingError
from chronospine.logging import configure_logging, get_logger
from chronospine.settings import SchedulerSettings, get_settings

from .dispatcher import ErrorHandler, WorkerDispatcher
from .entry import ScheduleEntry
from .jobs import (
    PROPERTY_SCHEDULER_CONCURRENT,
    PROPERTY_SCHEDULER_EXPRESSION,
    PROPERTY_SCHEDULER_NAME,
    PROPERTY_SCHEDULER_PERIOD,
    freeze_config,
    resolve_job,
)
from .loop import Clock, SchedulerLoop, utcnow
from .registry import JobRegistry
from .triggers import (
    CronTrigger,
    OneShotTrigger,
    PeriodicTrigger,
    RepeatTrigger,
    Trigger,
    as_utc,
    immediate,
    immediate_repeat,
    to_period,
)

logger = get_logger(__name__)

_TRUE_STRINGS = {"true", "yes", "1", "on"}
_FALSE_STRINGS = {"false", "no", "0", "off"}


@dataclass
class SchedulerStats:
    """Statistics for the scheduler service."""

    cycles: int = 0
    fired: int = 0
    skipped: int = 0
    rejected: int = 0
    retired: int = 0
    succeeded: int = 0
    failed: int = 0
    running: int = 0
    last_cycle: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "cycles": self.cycles,
            "fired": self.fired,
            "skipped": self.skipped,
            "rejected": self.rejected,
            "retired": self.retired,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "running": self.running,
            "last_cycle": self.last_cycle.isoformat() if self.last_cycle else None,
            "last_error": self.last_error,
        }


@dataclass
class SchedulerHealth:
    """Health status for the scheduler service."""

    healthy: bool
    running: bool
    jobs_registered: int = 0
    named_jobs: int = 0
    next_deadline: datetime | None = None
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "healthy": self.healthy,
            "running": self.running,
            "jobs_registered": self.jobs_registered,
            "named_jobs": self.named_jobs,
            "next_deadline": self.next_deadline.isoformat() if self.next_deadline else None,
            "stats": self.stats.to_dict(),
        }


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in _TRUE_STRINGS | _FALSE_STRINGS:
        return value.strip().lower() in _TRUE_STRINGS
    raise InvalidArgumentError(f"{key} must be a boolean", field=key, value=value)


def _as_period(value: Any, key: str) -> timedelta:
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError as exc:
            raise InvalidArgumentError(
                f"{key} must be a number of seconds", field=key, value=value
            ) from exc
    return to_period(value, key)


class SchedulerService:
    """In-memory job scheduler.

    Example:
        >>> from chronospine.scheduling import SchedulerService
        >>>
        >>> scheduler = SchedulerService()
        >>> scheduler.add_job("nightly", ReportJob(), {"report": "sales"}, "0 0 2 * * ?")
        >>> scheduler.add_periodic_job("heartbeat", send_heartbeat, period=5)
        >>> scheduler.start()
        >>>
        >>> # Later...
        >>> scheduler.remove_job("heartbeat")
        >>> scheduler.stop()
    """

    def __init__(
        self,
        settings: SchedulerSettings | None = None,
        *,
        clock: Clock | None = None,
        executor: Executor | None = None,
        on_error: ErrorHandler | None = None,
    ) -> None:
        """Initialize scheduler service.

        Args:
            settings: Engine settings (defaults to :func:`get_settings`)
            clock: Returns the current aware datetime (default: UTC wall clock)
            executor: Executor to run jobs on (default: an owned thread pool)
            on_error: Called with ``(job_name, ExecutionError)`` when a run raises
        """
        self.settings = settings or get_settings()
        self.clock = clock or utcnow
        self.registry = JobRegistry()
        self.dispatcher = WorkerDispatcher(
            executor,
            max_workers=self.settings.max_workers,
            thread_name_prefix=self.settings.thread_name_prefix,
            on_error=on_error,
        )
        self.loop = SchedulerLoop(
            self.registry,
            self.dispatcher,
            clock=self.clock,
            count_skipped_runs=self.settings.count_skipped_runs,
            thread_name=self.settings.loop_thread_name,
        )
        self._stopped = False

    # === Lifecycle ===

    def start(self) -> None:
        """Start the scheduler loop thread."""
        if self._stopped:
            raise SchedulingError("scheduler has been stopped and cannot be restarted")
        if self.loop.is_running:
            logger.warning("scheduler.already_running")
            return
        self.loop.start()
        logger.info(
            "scheduler.started",
            jobs=len(self.registry),
            max_workers=self.settings.max_workers,
            timezone=self.settings.timezone,
        )

    def stop(self, wait: bool = True) -> None:
        """Stop the scheduler.

        Every entry is cancelled and the loop thread exits. In-flight runs
        are never interrupted; with ``wait`` the call returns once they
        have finished.
        """
        if self._stopped:
            return
        self._stopped = True
        cancelled = self.registry.close()
        self.loop.stop(timeout=self.settings.shutdown_timeout_seconds)
        self.dispatcher.shutdown(wait=wait)
        logger.info("scheduler.stopped", cancelled=len(cancelled))

    @property
    def is_running(self) -> bool:
        return self.loop.is_running

    def __enter__(self) -> SchedulerService:
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop(wait=True)

    # === Registration ===

    def add_job(
        self,
        name: str | None,
        job: Any,
        config: Mapping[str, Any] | None = None,
        expression: str | None = None,
        can_run_concurrently: bool | None = None,
    ) -> None:
        """Schedule ``job`` on a cron expression.

        Args:
            name: Job name; an existing job with this name is replaced.
                ``None`` falls back to ``scheduler.name`` in ``config``,
                then to an anonymous job
            job: Structured job or zero-argument callable
            config: Payload passed to structured jobs
            expression: Cron expression (falls back to ``scheduler.expression``)
            can_run_concurrently: Allow overlapping runs (falls back to
                ``scheduler.concurrent``, then True)

        Raises:
            InvalidArgumentError: bad expression, job or config
            SchedulingError: the scheduler is stopped
        """
        name = self._option(PROPERTY_SCHEDULER_NAME, name, config)
        expression = self._option(PROPERTY_SCHEDULER_EXPRESSION, expression, config)
        if expression is None:
            raise InvalidArgumentError("a cron expression is required", field="expression")
        if not isinstance(expression, str):
            raise InvalidArgumentError(
                "expression must be a string", field="expression", value=expression
            )
        trigger = CronTrigger(expression, timezone=self.settings.timezone)
        self._register(name, trigger, job, config, self._concurrency(can_run_concurrently, config))

    def add_periodic_job(
        self,
        name: str | None,
        job: Any,
        config: Mapping[str, Any] | None = None,
        period: float | timedelta | None = None,
        can_run_concurrently: bool | None = None,
    ) -> None:
        """Schedule ``job`` every ``period`` seconds; the first run is one period from now.

        ``period`` falls back to ``scheduler.period`` in ``config``.

        Raises:
            InvalidArgumentError: missing or non-positive period, bad job or config
            SchedulingError: the scheduler is stopped
        """
        name = self._option(PROPERTY_SCHEDULER_NAME, name, config)
        period = self._option(PROPERTY_SCHEDULER_PERIOD, period, config)
        if period is None:
            raise InvalidArgumentError("a period is required", field="period")
        trigger = PeriodicTrigger(_as_period(period, "period"))
        self._register(name, trigger, job, config, self._concurrency(can_run_concurrently, config))

    def fire_job(self, job: Any, config: Mapping[str, Any] | None = None) -> None:
        """Run ``job`` once, as soon as possible, as an anonymous job.

        Raises:
            InvalidArgumentError: bad job or config
            SchedulingError: the scheduler is stopped
        """
        self._register(None, immediate(), job, config, True)

    def fire_job_repeatedly(
        self,
        job: Any,
        config: Mapping[str, Any] | None,
        times: int,
        period: float | timedelta,
    ) -> bool:
        """Run ``job`` ``times`` times, ``period`` seconds apart, starting now.

        Returns:
            True if the job was scheduled, False if the arguments were
            rejected or the scheduler is stopped.
        """
        try:
            trigger = immediate_repeat(times, period)
            self._register(None, trigger, job, config, True)
        except (InvalidArgumentError, SchedulingError) as exc:
            logger.warning("job.rejected", operation="fire_job_repeatedly", **exc.to_dict())
            return False
        return True

    def fire_job_at(
        self,
        name: str | None,
        job: Any,
        config: Mapping[str, Any] | None,
        date: datetime,
    ) -> None:
        """Run ``job`` once at ``date``; a past date runs immediately.

        Raises:
            InvalidArgumentError: bad date, job or config
            SchedulingError: the scheduler is stopped
        """
        if date is None:
            raise InvalidArgumentError("date is required", field="date")
        self._register(name, OneShotTrigger(as_utc(date)), job, config, True)

    def fire_job_at_repeatedly(
        self,
        name: str | None,
        job: Any,
        config: Mapping[str, Any] | None,
        date: datetime,
        times: int,
        period: float | timedelta,
    ) -> bool:
        """Run ``job`` ``times`` times, ``period`` seconds apart, starting at ``date``.

        Returns:
            True if the job was scheduled, False otherwise.
        """
        try:
            if date is None:
                raise InvalidArgumentError("date is required", field="date")
            trigger = RepeatTrigger(as_utc(date), times, period)
            self._register(name, trigger, job, config, True)
        except (InvalidArgumentError, SchedulingError) as exc:
            logger.warning(
                "job.rejected", operation="fire_job_at_repeatedly", job_name=name, **exc.to_dict()
            )
            return False
        return True

    def schedule(self, job: Any, config: Mapping[str, Any]) -> None:
        """Schedule ``job`` purely from the ``scheduler.*`` keys in ``config``.

        ``scheduler.expression`` makes a cron job, otherwise
        ``scheduler.period`` makes a periodic job.

        Raises:
            InvalidArgumentError: neither key is present, or the values are invalid
        """
        if not isinstance(config, Mapping):
            raise InvalidArgumentError("config must be a mapping", field="config")
        if config.get(PROPERTY_SCHEDULER_EXPRESSION) is not None:
            self.add_job(None, job, config)
        elif config.get(PROPERTY_SCHEDULER_PERIOD) is not None:
            self.add_periodic_job(None, job, config)
        else:
            raise InvalidArgumentError(
                f"config has neither {PROPERTY_SCHEDULER_EXPRESSION!r} "
                f"nor {PROPERTY_SCHEDULER_PERIOD!r}",
                field="config",
            )

    def remove_job(self, name: str) -> None:
        """Cancel the job registered under ``name``.

        An in-flight run is not interrupted.

        Raises:
            NotFoundError: no active job has that name
        """
        entry = self.registry.remove(name)
        logger.info("job.removed", job_name=name, fire_count=entry.fire_count)

    # === Introspection ===

    def job_names(self) -> list[str]:
        return self.registry.names()

    def has_job(self, name: str) -> bool:
        return name in self.registry

    def next_fire_time(self, name: str) -> datetime | None:
        """Next fire time of the named job, or None if it is not registered."""
        entry = self.registry.get(name)
        return entry.next_fire_time if entry else None

    def jobs(self) -> list[dict[str, Any]]:
        """Snapshot of every active entry, named and anonymous."""
        return [entry.to_dict() for entry in self.registry.entries()]

    def run_pending(self, now: datetime | None = None):
        """Run one loop cycle synchronously on the calling thread."""
        return self.loop.run_pending(now)

    def get_stats(self) -> SchedulerStats:
        loop_stats = self.loop.stats()
        dispatch_stats = self.dispatcher.stats()
        return SchedulerStats(
            cycles=loop_stats["cycles"],
            fired=loop_stats["fired"],
            skipped=loop_stats["skipped"],
            rejected=loop_stats["rejected"],
            retired=loop_stats["retired"],
            succeeded=dispatch_stats["succeeded"],
            failed=dispatch_stats["failed"],
            running=dispatch_stats["running"],
            last_cycle=loop_stats["last_cycle"],
            last_error=loop_stats["last_error"],
        )

    def reset_stats(self) -> None:
        self.loop.reset_stats()
        self.dispatcher.reset_stats()

    def health(self) -> SchedulerHealth:
        running = self.is_running
        return SchedulerHealth(
            healthy=running and not self._stopped,
            running=running,
            jobs_registered=len(self.registry),
            named_jobs=len(self.registry.names()),
            next_deadline=self.registry.peek_deadline(),
            stats=self.get_stats(),
        )

    # === Internals ===

    def _option(self, key: str, explicit: Any, config: Mapping[str, Any] | None) -> Any:
        configured = config.get(key) if isinstance(config, Mapping) else None
        if explicit is None:
            return configured
        if configured is not None and configured != explicit:
            logger.warning(
                "scheduler.config_conflict",
                key=key,
                parameter=repr(explicit),
                config=repr(configured),
            )
        return explicit

    def _concurrency(self, explicit: bool | None, config: Mapping[str, Any] | None) -> bool:
        value = self._option(PROPERTY_SCHEDULER_CONCURRENT, explicit, config)
        if value is None:
            return True
        return _as_bool(value, "can_run_concurrently")

    def _register(
        self,
        name: str | None,
        trigger: Trigger,
        job: Any,
        config: Mapping[str, Any] | None,
        allow_concurrent: bool,
    ) -> ScheduleEntry:
        if name is not None and not isinstance(name, str):
            raise InvalidArgumentError("name must be a string", field="name", value=name)
        unit = resolve_job(job)
        frozen = freeze_config(config)

        now = self.clock()
        first = trigger.first_fire_time(now)
        if first is None:
            raise InvalidArgumentError(
                f"{trigger.describe()} never fires after {now.isoformat()}", field="trigger"
            )

        entry = ScheduleEntry(
            name=name or None,
            trigger=trigger,
            job=unit,
            config=frozen,
            allow_concurrent=allow_concurrent,
            next_fire_time=first,
        )
        replaced = self.registry.add(entry)

        if replaced is not None:
            logger.info(
                "job.replaced",
                job_name=entry.name,
                old_trigger=replaced.trigger.describe(),
                new_trigger=trigger.describe(),
            )
        logger.info(
            "job.scheduled",
            job_name=entry.label,
            trigger=trigger.describe(),
            job=unit.label,
            concurrent=allow_concurrent,
            next_fire_time=first.isoformat(),
        )
        return entry


def create_scheduler(
    settings: SchedulerSettings | None = None,
    on_error: ErrorHandler | None = None,
    *,
    clock: Clock | None = None,
    executor: Executor | None = None,
    configure_logs: bool = False,
) -> SchedulerService:
    """Factory: build a scheduler from settings (environment by default).

    With ``configure_logs`` the process-wide structlog setup is applied from
    ``settings.log_level`` and ``settings.log_json`` first.

    Example:
        >>> scheduler = create_scheduler(on_error=alert_on_failure)
        >>> with scheduler:
        ...     scheduler.add_periodic_job("heartbeat", send_heartbeat, period=5)
    """
    settings = settings or get_settings()
    if configure_logs:
        configure_logging(level=settings.log_level, json_format=settings.log_json)
    return SchedulerService(settings, clock=clock, executor=executor, on_error=on_error)


__all__ = [
    "SchedulerHealth",
    "SchedulerService",
    "SchedulerStats",
    "create_scheduler",
]
