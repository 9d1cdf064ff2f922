"""Trigger variants and the trigger evaluator.

Manifesto:
    Triggers describe *when* a job fires and nothing else. They are frozen
    dataclasses validated in ``__post_init__``, so a trigger that exists is
    a trigger that can be evaluated. The only mutable piece, the number of
    fires left on a repeat trigger, lives in :class:`TriggerState` owned by
    the schedule entry.

┌──────────────────────────────────────────────────────────────────────────────┐
│  TRIGGER VARIANTS                                                             │
│                                                                               │
│   CronTrigger(expression, timezone)     recurring, until cancelled            │
│   PeriodicTrigger(period, start_after)  every period, first after one period  │
│   OneShotTrigger(date)                  once at date (date=None → now)        │
│   RepeatTrigger(date, times, period)    times fires, period apart             │
│                                                                               │
│  next_fire_time(trigger, state, reference, now)                               │
│      reference = the slot just consumed, now = current time                   │
│      returns the first slot of the trigger's cadence strictly after now,     │
│      or None when the trigger is exhausted                                    │
│                                                                               │
│  Misfires are coalesced: a scheduler that wakes late fires the overdue slot  │
│  once and then continues on the original grid. Missed ticks are never        │
│  replayed one by one.                                                         │
└──────────────────────────────────────────────────────────────────────────────┘

Tags:
    chrono-spine, scheduling, triggers, cron, interval, misfire

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import ClassVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from chronospine.errors import InvalidArgumentError

from .cron import CronExpression, parse_expression

_MAX_PERIOD = datetime.max - datetime.min


def as_utc(moment: datetime) -> datetime:
    """Return ``moment`` as an aware UTC datetime (naive values are taken as UTC)."""
    if not isinstance(moment, datetime):
        raise InvalidArgumentError(
            f"expected a datetime, got {type(moment).__name__}", field="date", value=moment
        )
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def to_period(value: float | int | timedelta, name: str = "period") -> timedelta:
    """Normalise a period given in seconds (or as a timedelta) and check it is positive."""
    if isinstance(value, bool) or not isinstance(value, (int, float, timedelta)):
        raise InvalidArgumentError(
            f"{name} must be a number of seconds or a timedelta", field=name, value=value
        )
    try:
        period = value if isinstance(value, timedelta) else timedelta(seconds=value)
    except (OverflowError, ValueError) as exc:
        raise InvalidArgumentError(f"{name} is out of range", field=name, value=value) from exc
    if period <= timedelta(0):
        raise InvalidArgumentError(f"{name} must be > 0", field=name, value=value)
    if period > _MAX_PERIOD:
        raise InvalidArgumentError(f"{name} is out of range", field=name, value=value)
    return period


@dataclass
class TriggerState:
    """Mutable fire-tracking state for one entry.

    ``remaining`` is the number of fires left for repeat triggers and
    ``None`` for unbounded ones.
    """

    remaining: int | None = None

    @property
    def exhausted(self) -> bool:
        return self.remaining is not None and self.remaining <= 0


@dataclass(frozen=True)
class Trigger:
    """Base class for all trigger variants."""

    kind: ClassVar[str] = "trigger"

    def initial_state(self) -> TriggerState:
        return TriggerState()

    def first_fire_time(self, now: datetime) -> datetime | None:
        raise NotImplementedError

    def describe(self) -> str:
        return self.kind


@dataclass(frozen=True)
class CronTrigger(Trigger):
    """Fires at every instant matching ``expression``, evaluated in ``timezone``."""

    kind: ClassVar[str] = "cron"

    expression: str
    timezone: str = "UTC"
    cron: CronExpression = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "cron", parse_expression(self.expression))
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError, TypeError) as exc:
            raise InvalidArgumentError(
                f"unknown timezone: {self.timezone!r}", field="timezone", value=self.timezone
            ) from exc

    def first_fire_time(self, now: datetime) -> datetime | None:
        return self.cron.next_after(now, self.timezone)

    def describe(self) -> str:
        return f"cron({self.cron.expression})"


@dataclass(frozen=True)
class PeriodicTrigger(Trigger):
    """Fires every ``period``; the first fire is one period after registration."""

    kind: ClassVar[str] = "periodic"

    period: timedelta
    start_after_first_period: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "period", to_period(self.period))

    def first_fire_time(self, now: datetime) -> datetime | None:
        if self.start_after_first_period:
            return _shift(now, self.period)
        return now

    def describe(self) -> str:
        return f"periodic({self.period.total_seconds():g}s)"


@dataclass(frozen=True)
class OneShotTrigger(Trigger):
    """Fires once at ``date``; ``None`` means immediately. Past dates fire immediately."""

    kind: ClassVar[str] = "once"

    date: datetime | None = None

    def __post_init__(self) -> None:
        if self.date is not None:
            object.__setattr__(self, "date", as_utc(self.date))

    def first_fire_time(self, now: datetime) -> datetime | None:
        return self.date if self.date is not None else now

    def describe(self) -> str:
        return f"once({self.date.isoformat() if self.date else 'now'})"


@dataclass(frozen=True)
class RepeatTrigger(Trigger):
    """Fires at ``date`` and then ``times - 1`` more times, ``period`` apart.

    A missing or past ``date`` starts the series now, so all ``times`` fires happen.
    """

    kind: ClassVar[str] = "repeat"

    date: datetime | None
    times: int
    period: timedelta

    def __post_init__(self) -> None:
        if isinstance(self.times, bool) or not isinstance(self.times, int):
            raise InvalidArgumentError("times must be an integer", field="times", value=self.times)
        if self.times <= 1:
            raise InvalidArgumentError("times must be > 1", field="times", value=self.times)
        object.__setattr__(self, "period", to_period(self.period))
        if self.date is not None:
            object.__setattr__(self, "date", as_utc(self.date))

    def initial_state(self) -> TriggerState:
        return TriggerState(remaining=self.times)

    def first_fire_time(self, now: datetime) -> datetime | None:
        if self.date is None or self.date < now:
            return now
        return self.date

    def describe(self) -> str:
        start = self.date.isoformat() if self.date else "now"
        return f"repeat({self.times}x{self.period.total_seconds():g}s from {start})"


def immediate() -> OneShotTrigger:
    """Trigger that fires once, right away."""
    return OneShotTrigger()


def immediate_repeat(times: int, period: float | timedelta) -> RepeatTrigger:
    """Trigger that fires ``times`` times starting now."""
    return RepeatTrigger(date=None, times=times, period=period)


def _shift(moment: datetime, delta: timedelta) -> datetime | None:
    """``moment + delta``, or None past the last representable datetime."""
    try:
        return moment + delta
    except OverflowError:
        return None


def _next_on_grid(baseline: datetime, period: timedelta, now: datetime) -> datetime | None:
    """First ``baseline + k * period`` (k >= 1) strictly after ``now``."""
    first = _shift(baseline, period)
    if first is None or now < first:
        return first
    try:
        return _shift(baseline, period * ((now - baseline) // period + 1))
    except OverflowError:
        return None


def next_fire_time(
    trigger: Trigger,
    state: TriggerState,
    reference: datetime,
    now: datetime | None = None,
    *,
    consumed: bool = True,
) -> datetime | None:
    """Compute the fire time that follows the slot at ``reference``.

    Args:
        trigger: The entry's trigger
        state: The entry's mutable state; repeat triggers are decremented
            here when ``consumed`` is true
        reference: The scheduled time of the slot that was just fired (or skipped)
        now: Current time; defaults to ``reference``. Slots at or before
            ``now`` are coalesced away
        consumed: Whether the slot counts toward a repeat trigger's ``times``

    Returns:
        The next fire time as an aware UTC datetime, or ``None`` when the
        trigger is exhausted or the next slot is past ``datetime.max``.
    """
    now = reference if now is None else now
    horizon = max(reference, now)

    if isinstance(trigger, CronTrigger):
        return trigger.cron.next_after(horizon, trigger.timezone)

    if isinstance(trigger, PeriodicTrigger):
        return _next_on_grid(reference, trigger.period, now)

    if isinstance(trigger, RepeatTrigger):
        if consumed and state.remaining is not None:
            state.remaining -= 1
        if state.exhausted:
            return None
        return _next_on_grid(reference, trigger.period, now)

    if isinstance(trigger, OneShotTrigger):
        return None

    raise InvalidArgumentError(f"unsupported trigger type: {type(trigger).__name__}")


__all__ = [
    "Trigger",
    "TriggerState",
    "CronTrigger",
    "PeriodicTrigger",
    "OneShotTrigger",
    "RepeatTrigger",
    "immediate",
    "immediate_repeat",
    "next_fire_time",
    "as_utc",
    "to_period",
]
