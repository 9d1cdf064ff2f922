"""Cron expression interpreter.

Manifesto:
    A cron expression is validated once, when the job is registered.
    Everything that can go wrong with it (unknown tokens, out-of-range
    values, reversed ranges, dates that never exist) is an
    ``InvalidExpressionError`` at that point, so evaluating the next fire
    time later on cannot fail.

Expressions have six or seven whitespace-separated fields::

    ┌──────────── seconds        0-59
    │ ┌────────── minutes        0-59
    │ │ ┌──────── hours          0-23
    │ │ │ ┌────── day of month   1-31      (? allowed)
    │ │ │ │ ┌──── month          1-12 or JAN-DEC
    │ │ │ │ │ ┌── day of week    1-7 or SUN-SAT (1 = SUN, ? allowed)
    │ │ │ │ │ │ ┌ year           1970-2099 (optional)
    0 0 8 ? * MON-FRI

Each field is ``*``, ``?`` or a comma list of ``n``, ``a-b``, ``*/s``,
``a/s`` and ``a-b/s`` items. Day-of-month and day-of-week cannot both be
restricted.

Parsed fields are normalised to explicit value sets and handed to
``croniter`` (minute-first order, seconds last, Sunday = 0) for scanning;
the year field is enforced here because croniter's six-field form has none.

Tags:
    chrono-spine, scheduling, cron, croniter, parser

Doc-Types:
    api-reference
"""

from __future__ import annotations

import calendar
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo

from croniter import CroniterBadDateError, CroniterError, croniter

from chronospine.errors import InvalidExpressionError

_MONTH_NAMES = {
    name: index
    for index, name in enumerate(
        ["JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"],
        start=1,
    )
}
_DAY_NAMES = {"SUN": 1, "MON": 2, "TUE": 3, "WED": 4, "THU": 5, "FRI": 6, "SAT": 7}


@dataclass(frozen=True)
class FieldSpec:
    """Bounds and aliases for one cron field."""

    name: str
    minimum: int
    maximum: int
    aliases: dict[str, int] | None = None
    allows_question_mark: bool = False


SECONDS = FieldSpec("seconds", 0, 59)
MINUTES = FieldSpec("minutes", 0, 59)
HOURS = FieldSpec("hours", 0, 23)
DAY_OF_MONTH = FieldSpec("day_of_month", 1, 31, allows_question_mark=True)
MONTH = FieldSpec("month", 1, 12, aliases=_MONTH_NAMES)
DAY_OF_WEEK = FieldSpec("day_of_week", 1, 7, aliases=_DAY_NAMES, allows_question_mark=True)
YEAR = FieldSpec("year", 1970, 2099)

FIELD_SPECS = (SECONDS, MINUTES, HOURS, DAY_OF_MONTH, MONTH, DAY_OF_WEEK, YEAR)


@dataclass(frozen=True)
class CronField:
    """Parsed constraint for one field.

    ``wildcard`` is true for ``*`` and ``?``: the field does not restrict
    anything, which matters for the day-of-month/day-of-week pair.
    """

    spec: FieldSpec
    values: frozenset[int]
    wildcard: bool = False

    def __contains__(self, value: int) -> bool:
        return value in self.values


def _parse_value(spec: FieldSpec, text: str, expression: str) -> int:
    token = text.strip().upper()
    if spec.aliases and token in spec.aliases:
        return spec.aliases[token]
    if not token.isdigit():
        raise InvalidExpressionError(
            expression, f"{spec.name}: unrecognised value {text!r}", field=spec.name
        )
    value = int(token)
    if not spec.minimum <= value <= spec.maximum:
        raise InvalidExpressionError(
            expression,
            f"{spec.name}: {value} outside {spec.minimum}-{spec.maximum}",
            field=spec.name,
        )
    return value


def _parse_item(spec: FieldSpec, item: str, expression: str) -> set[int]:
    base, slash, step_text = item.partition("/")
    step = 1
    if slash:
        if not step_text.isdigit() or int(step_text) == 0:
            raise InvalidExpressionError(
                expression, f"{spec.name}: invalid step {step_text!r}", field=spec.name
            )
        step = int(step_text)

    if base == "*":
        start, end = spec.minimum, spec.maximum
    elif "-" in base:
        low, _, high = base.partition("-")
        start = _parse_value(spec, low, expression)
        end = _parse_value(spec, high, expression)
        if start > end:
            raise InvalidExpressionError(
                expression, f"{spec.name}: reversed range {base!r}", field=spec.name
            )
    elif base:
        start = _parse_value(spec, base, expression)
        end = spec.maximum if slash else start
    else:
        raise InvalidExpressionError(
            expression, f"{spec.name}: empty item in {item!r}", field=spec.name
        )
    return set(range(start, end + 1, step))


def _parse_field(spec: FieldSpec, token: str, expression: str) -> CronField:
    if token == "?":
        if not spec.allows_question_mark:
            raise InvalidExpressionError(
                expression, f"'?' is not allowed in {spec.name}", field=spec.name
            )
        return CronField(spec, frozenset(range(spec.minimum, spec.maximum + 1)), wildcard=True)
    if token == "*":
        return CronField(spec, frozenset(range(spec.minimum, spec.maximum + 1)), wildcard=True)

    values: set[int] = set()
    for item in token.split(","):
        values |= _parse_item(spec, item, expression)
    return CronField(spec, frozenset(values))


def _croniter_field(field: CronField, shift: int = 0) -> str:
    if field.wildcard:
        return "*"
    return ",".join(str(value + shift) for value in sorted(field.values))


class CronExpression:
    """A parsed, validated cron expression.

    Use :func:`parse_expression` (cached) or the constructor directly;
    both raise :class:`InvalidExpressionError` for bad input.

    Example:
        >>> expr = CronExpression("0 */15 * ? * MON-FRI")
        >>> expr.next_after(datetime(2024, 1, 6, tzinfo=UTC))   # a Saturday
        datetime.datetime(2024, 1, 8, 0, 0, tzinfo=datetime.timezone.utc)
    """

    def __init__(self, expression: str):
        if not isinstance(expression, str) or not expression.strip():
            raise InvalidExpressionError(expression, "expression must be a non-empty string")

        tokens = expression.split()
        if len(tokens) not in (6, 7):
            raise InvalidExpressionError(
                expression, f"expected 6 or 7 fields, got {len(tokens)}"
            )

        self.expression = " ".join(tokens)
        fields = [_parse_field(spec, token, expression) for spec, token in zip(FIELD_SPECS, tokens)]
        (
            self.seconds,
            self.minutes,
            self.hours,
            self.day_of_month,
            self.month,
            self.day_of_week,
        ) = fields[:6]
        self.year: CronField | None = fields[6] if len(fields) == 7 else None

        if not self.day_of_month.wildcard and not self.day_of_week.wildcard:
            raise InvalidExpressionError(
                expression,
                "day_of_month and day_of_week cannot both be restricted; use '?' in one of them",
                field="day_of_week",
            )
        if not self._has_valid_date():
            raise InvalidExpressionError(
                expression, "day_of_month never occurs in the allowed months", field="day_of_month"
            )

        self._croniter_expression = " ".join(
            [
                _croniter_field(self.minutes),
                _croniter_field(self.hours),
                _croniter_field(self.day_of_month),
                _croniter_field(self.month),
                _croniter_field(self.day_of_week, shift=-1),
                _croniter_field(self.seconds),
            ]
        )
        try:
            croniter(self._croniter_expression)
        except CroniterError as exc:
            raise InvalidExpressionError(expression, str(exc)) from exc

    def _has_valid_date(self) -> bool:
        if self.day_of_month.wildcard:
            return True
        years = sorted(self.year.values) if self.year is not None and not self.year.wildcard else [2000]
        for year in years:
            for month in self.month.values:
                last_day = calendar.monthrange(year, month)[1]
                if any(day <= last_day for day in self.day_of_month.values):
                    return True
        return False

    @property
    def croniter_expression(self) -> str:
        """The normalised six-field form handed to croniter."""
        return self._croniter_expression

    def matches(self, moment: datetime, timezone: str = "UTC") -> bool:
        """Check whether ``moment`` (truncated to the second) satisfies every field."""
        local = _as_aware(moment).astimezone(ZoneInfo(timezone))
        quartz_weekday = (local.weekday() + 1) % 7 + 1
        return (
            local.second in self.seconds
            and local.minute in self.minutes
            and local.hour in self.hours
            and local.month in self.month
            and local.day in self.day_of_month
            and quartz_weekday in self.day_of_week
            and (self.year is None or local.year in self.year)
        )

    def next_after(self, reference: datetime, timezone: str = "UTC") -> datetime | None:
        """Return the soonest matching instant strictly after ``reference``.

        The result is an aware UTC datetime, or ``None`` once an explicit
        year field has no further years.
        """
        zone = ZoneInfo(timezone)
        start = _as_aware(reference).astimezone(zone)
        years = None if self.year is None or self.year.wildcard else sorted(self.year.values)

        while True:
            try:
                candidate = croniter(self._croniter_expression, start).get_next(datetime)
            except CroniterBadDateError:
                return None
            if years is None or candidate.year in self.year:
                return candidate.astimezone(UTC)
            later = [year for year in years if year > candidate.year]
            if not later:
                return None
            start = datetime(later[0], 1, 1, tzinfo=zone) - timedelta(seconds=1)

    def iter_after(
        self, reference: datetime, count: int, timezone: str = "UTC"
    ) -> Iterator[datetime]:
        """Yield up to ``count`` consecutive fire times after ``reference``."""
        current = reference
        for _ in range(count):
            nxt = self.next_after(current, timezone)
            if nxt is None:
                return
            yield nxt
            current = nxt

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CronExpression):
            return NotImplemented
        return self._croniter_expression == other._croniter_expression and self.year == other.year

    def __hash__(self) -> int:
        return hash((self._croniter_expression, self.year))

    def __repr__(self) -> str:
        return f"CronExpression({self.expression!r})"


def _as_aware(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment


@lru_cache(maxsize=256)
def _parse_cached(expression: str) -> CronExpression:
    return CronExpression(expression)


def parse_expression(expression: str) -> CronExpression:
    """Parse and cache a cron expression."""
    if not isinstance(expression, str):
        raise InvalidExpressionError(expression, "expression must be a non-empty string")
    return _parse_cached(expression)


def is_valid_expression(expression: str) -> bool:
    """Return True when ``expression`` parses."""
    try:
        parse_expression(expression)
    except InvalidExpressionError:
        return False
    return True


__all__ = [
    "CronExpression",
    "CronField",
    "FieldSpec",
    "parse_expression",
    "is_valid_expression",
]
