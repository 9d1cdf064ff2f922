"""Scheduler loop — the single authoritative control loop.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER LOOP                                                               │
│                                                                               │
│   Daemon thread                                                               │
│                                                                               │
│   with registry.condition:                                                    │
│       while not stopping:                                                     │
│           deadline = registry.peek_deadline()                                 │
│           none yet       → condition.wait()                                   │
│           in the future  → condition.wait(deadline - now)                     │
│           due            → run_pending(now)                                   │
│                                                                               │
│   run_pending(now):                                                           │
│       for entry in registry.pop_due(now):        earliest first, seq ties    │
│           guard.try_acquire()?                                                │
│               yes → dispatcher.dispatch(...)      never waits for the run    │
│               no  → skip (logged, counted)                                   │
│           next = next_fire_time(trigger, state, scheduled, now)              │
│           None  → registry.retire(entry)                                     │
│           else  → registry.rearm(entry)                                      │
│                                                                               │
│  Any add/remove notifies the condition, so an earlier deadline wakes the     │
│  loop at once. Bookkeeping happens under the registry lock; jobs never run   │
│  under it.                                                                    │
└──────────────────────────────────────────────────────────────────────────────┘

Tags:
    chrono-spine, scheduling, loop, daemon-thread, misfire

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from chronospine.errors import ChronoSpineError, SchedulingError
from chronospine.logging import get_logger

from .dispatcher import WorkerDispatcher
from .entry import ScheduleEntry
from .registry import JobRegistry
from .triggers import next_fire_time

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


class FireOutcome(str, Enum):
    """What happened to one due slot."""

    FIRED = "fired"
    SKIPPED = "skipped"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass(frozen=True)
class SlotResult:
    """Result of processing one due entry in a cycle."""

    job_name: str | None
    scheduled_time: datetime
    outcome: FireOutcome
    next_fire_time: datetime | None

    @property
    def retired(self) -> bool:
        return self.next_fire_time is None


class SchedulerLoop:
    """Owns the ordering of fires and the daemon thread that drives it.

    Example:
        >>> loop = SchedulerLoop(registry, dispatcher)
        >>> loop.start()
        >>> ...
        >>> loop.stop()
    """

    def __init__(
        self,
        registry: JobRegistry,
        dispatcher: WorkerDispatcher,
        *,
        clock: Clock = utcnow,
        count_skipped_runs: bool = True,
        thread_name: str = "chronospine-scheduler",
        max_wait_seconds: float = 60.0,
    ):
        self.registry = registry
        self.dispatcher = dispatcher
        self.clock = clock
        self.count_skipped_runs = count_skipped_runs
        self.thread_name = thread_name
        self.max_wait_seconds = max_wait_seconds

        self._thread: threading.Thread | None = None
        self._stopping = False
        self._cycles = 0
        self._fired = 0
        self._skipped = 0
        self._rejected = 0
        self._retired = 0
        self._last_cycle: datetime | None = None
        self._last_error: str | None = None

    # === Lifecycle ===

    def start(self) -> None:
        """Start the loop in a daemon thread."""
        with self.registry.condition:
            if self.is_running:
                logger.warning("scheduler.loop_already_running")
                return
            if self.registry.closed:
                raise SchedulingError("scheduler has been stopped and cannot be restarted")
            self._stopping = False
            self._thread = threading.Thread(target=self._run, daemon=True, name=self.thread_name)
            self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Ask the loop to exit and wait for the thread."""
        with self.registry.condition:
            self._stopping = True
            self.registry.condition.notify_all()

        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return
        thread.join(timeout=timeout)
        if thread.is_alive():
            logger.warning("scheduler.loop_stop_timeout", timeout_seconds=timeout)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stopping

    def _run(self) -> None:
        logger.info("scheduler.loop_started", thread=self.thread_name)
        condition = self.registry.condition
        with condition:
            while not self._stopping and not self.registry.closed:
                deadline = self.registry.peek_deadline()
                if deadline is None:
                    condition.wait()
                    continue
                now = self.clock()
                if deadline > now:
                    condition.wait(timeout=min((deadline - now).total_seconds(), self.max_wait_seconds))
                    continue
                try:
                    self.run_pending(now)
                except Exception as exc:
                    self._last_error = str(exc)
                    logger.exception("scheduler.cycle_failed", error=str(exc))
        logger.info("scheduler.loop_stopped", thread=self.thread_name)

    # === Cycle ===

    def run_pending(self, now: datetime | None = None) -> list[SlotResult]:
        """Fire every entry due at ``now`` and re-arm or retire it.

        Args:
            now: Current time; the loop's clock when omitted

        Returns:
            One :class:`SlotResult` per due entry, in firing order.
        """
        with self.registry.condition:
            now = self.clock() if now is None else now
            results = []
            for entry in self.registry.pop_due(now):
                scheduled = entry.next_fire_time
                try:
                    results.append(self._process(entry, now))
                except Exception as exc:
                    results.append(self._abandon(entry, scheduled, exc))
            self._cycles += 1
            self._last_cycle = now
            return results

    def _process(self, entry: ScheduleEntry, now: datetime) -> SlotResult:
        scheduled = entry.next_fire_time
        outcome = self._fire(entry, scheduled, now)

        consumed = outcome is not FireOutcome.SKIPPED or self.count_skipped_runs
        upcoming = next_fire_time(
            entry.trigger, entry.trigger_state, scheduled, now, consumed=consumed
        )

        if upcoming is None or not entry.is_active:
            if entry.is_active:
                self.registry.retire(entry)
                self._retired += 1
                logger.info(
                    "job.retired",
                    job_name=entry.label,
                    trigger=entry.trigger.kind,
                    fire_count=entry.fire_count,
                    skip_count=entry.skip_count,
                )
            upcoming = None
        else:
            entry.next_fire_time = upcoming
            self.registry.rearm(entry)

        return SlotResult(
            job_name=entry.name,
            scheduled_time=scheduled,
            outcome=outcome,
            next_fire_time=upcoming,
        )

    def _abandon(self, entry: ScheduleEntry, scheduled: datetime, exc: Exception) -> SlotResult:
        """Retire an entry whose bookkeeping raised; the rest of the batch carries on."""
        self._last_error = str(exc)
        logger.exception(
            "job.abandoned",
            job_name=entry.label,
            scheduled_time=scheduled.isoformat(),
            error=str(exc),
        )
        if entry.is_active:
            self.registry.retire(entry)
            self._retired += 1
        return SlotResult(
            job_name=entry.name,
            scheduled_time=scheduled,
            outcome=FireOutcome.FAILED,
            next_fire_time=None,
        )

    def _fire(self, entry: ScheduleEntry, scheduled: datetime, now: datetime) -> FireOutcome:
        if not entry.guard.try_acquire():
            entry.skip_count += 1
            self._skipped += 1
            logger.info(
                "job.skipped",
                job_name=entry.label,
                scheduled_time=scheduled.isoformat(),
                reason="previous run still in flight",
            )
            return FireOutcome.SKIPPED

        entry.fire_count += 1
        entry.last_fire_time = now
        self._fired += 1
        logger.debug(
            "job.fired",
            job_name=entry.label,
            scheduled_time=scheduled.isoformat(),
            late_ms=round((now - scheduled).total_seconds() * 1000, 3),
        )
        try:
            self.dispatcher.dispatch(entry, scheduled, now)
        except ChronoSpineError as exc:
            self._rejected += 1
            self._last_error = str(exc)
            logger.error("job.dispatch_failed", job_name=entry.label, **exc.to_dict())
            return FireOutcome.REJECTED
        return FireOutcome.FIRED

    # === Introspection ===

    def stats(self) -> dict[str, Any]:
        return {
            "cycles": self._cycles,
            "fired": self._fired,
            "skipped": self._skipped,
            "rejected": self._rejected,
            "retired": self._retired,
            "last_cycle": self._last_cycle,
            "last_error": self._last_error,
        }

    def reset_stats(self) -> None:
        with self.registry.condition:
            self._cycles = 0
            self._fired = 0
            self._skipped = 0
            self._rejected = 0
            self._retired = 0
            self._last_error = None


__all__ = ["Clock", "FireOutcome", "SchedulerLoop", "SlotResult", "utcnow"]
