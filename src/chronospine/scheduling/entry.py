"""Schedule entry — the registry's unit of state.

An entry binds an immutable trigger, a resolved unit of work and a config
snapshot to the runtime fields the scheduler loop mutates after each slot:
next fire time, repeat counter and fire/skip counters.

Lifecycle::

    SCHEDULED ──(non-concurrent run in flight)──► BLOCKED ──(run ends)──► SCHEDULED
        │
        ├── trigger exhausted ───► RETIRED
        └── remove / replace ────► CANCELLED
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .guard import ExecutionGuard
from .jobs import JobContext, UnitOfWork
from .triggers import Trigger, TriggerState


class EntryState(str, Enum):
    """Registry-visible entry states."""

    SCHEDULED = "SCHEDULED"
    BLOCKED = "BLOCKED"
    RETIRED = "RETIRED"
    CANCELLED = "CANCELLED"


@dataclass(eq=False)
class ScheduleEntry:
    """One registered job."""

    name: str | None
    trigger: Trigger
    job: UnitOfWork
    config: Mapping[str, Any]
    allow_concurrent: bool = True
    next_fire_time: datetime | None = None
    seq: int = -1
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    trigger_state: TriggerState = field(init=False)
    guard: ExecutionGuard = field(init=False, repr=False)
    fire_count: int = field(default=0, init=False)
    skip_count: int = field(default=0, init=False)
    last_fire_time: datetime | None = field(default=None, init=False)
    _final_state: EntryState | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.trigger_state = self.trigger.initial_state()
        self.guard = ExecutionGuard(self.allow_concurrent)

    @property
    def state(self) -> EntryState:
        if self._final_state is not None:
            return self._final_state
        if self.guard.blocked:
            return EntryState.BLOCKED
        return EntryState.SCHEDULED

    @property
    def is_active(self) -> bool:
        return self._final_state is None

    @property
    def anonymous(self) -> bool:
        return not self.name

    @property
    def label(self) -> str:
        return self.name or f"<anonymous#{self.seq}>"

    def cancel(self) -> None:
        if self._final_state is None:
            self._final_state = EntryState.CANCELLED
            self.next_fire_time = None

    def retire(self) -> None:
        if self._final_state is None:
            self._final_state = EntryState.RETIRED
            self.next_fire_time = None

    def context_for(self, scheduled_time: datetime, fire_time: datetime) -> JobContext:
        return JobContext(
            name=self.name,
            config=self.config,
            scheduled_time=scheduled_time,
            fire_time=fire_time,
        )

    def to_dict(self) -> dict[str, Any]:
        """Snapshot for listings and health output."""
        return {
            "name": self.name,
            "seq": self.seq,
            "trigger": self.trigger.describe(),
            "job": self.job.label,
            "allow_concurrent": self.allow_concurrent,
            "state": self.state.value,
            "next_fire_time": self.next_fire_time.isoformat() if self.next_fire_time else None,
            "last_fire_time": self.last_fire_time.isoformat() if self.last_fire_time else None,
            "remaining": self.trigger_state.remaining,
            "fire_count": self.fire_count,
            "skip_count": self.skip_count,
            "in_flight": self.guard.in_flight,
        }


__all__ = ["EntryState", "ScheduleEntry"]
