"""
Recurrence calculation module.

Turns a schedule description (frequency, time of day, weekdays) into the
next execution instant. Pure functions, no I/O: callers pass `now`.

Weekdays use the 0 = Sunday .. 6 = Saturday numbering stored on
recurring task definitions.
"""

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from taskbridge.datetime_utils import parse_time_of_day
from taskbridge.models import Frequency

# Upper bound on coarse catch-up steps before giving up and returning
# whatever was last computed.
MAX_CATCH_UP_ITERATIONS = 50


class ConfigurationError(ValueError):
    """A recurring task definition that cannot be scheduled as stored."""


def validate_definition(definition):
    """Raise ConfigurationError if the stored frequency or time cannot be read."""
    try:
        Frequency.parse(definition.frequency)
        parse_time_of_day(definition.time_of_day)
    except ValueError as e:
        raise ConfigurationError(f"Invalid recurrence configuration: {e}") from e


@dataclass(frozen=True)
class ScheduleAdvance:
    """Result of advancing a schedule from an anchor."""
    next_run: datetime
    catch_up_iterations: int = 0
    exhausted: bool = False


@dataclass(frozen=True)
class ScheduleTransition:
    """State change to apply to a definition after a successful run."""
    last_run: datetime
    next_run: datetime
    warning: Optional[str] = None


def sunday_based_weekday(dt: datetime) -> int:
    """Weekday with Sunday = 0, matching stored `days_of_week` values."""
    return (dt.weekday() + 1) % 7


def add_months(dt: datetime, months: int, day: Optional[int] = None) -> datetime:
    """
    Move `dt` by a number of calendar months.

    The day of month (`day`, or dt's own day) is clamped to the last valid
    day of the target month, so Jan 31 + 1 month is Feb 28/29.
    """
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    target_day = day if day is not None else dt.day
    last_day = calendar.monthrange(year, month)[1]
    return dt.replace(year=year, month=month, day=min(target_day, last_day))


def _normalize_days(days_of_week: Optional[Iterable]) -> set:
    days = set()
    for value in days_of_week or []:
        day = int(value)
        if 0 <= day <= 6:
            days.add(day)
    return days


def _single_step(frequency, candidate, days, anchor_day):
    if frequency == Frequency.WEEKLY:
        candidate = candidate + timedelta(days=1)
        target_days = days or {sunday_based_weekday(candidate)}
        safety = 0
        while sunday_based_weekday(candidate) not in target_days and safety < 7:
            candidate = candidate + timedelta(days=1)
            safety += 1
        return candidate
    if frequency == Frequency.MONTHLY:
        return add_months(candidate, 1, day=anchor_day)
    return candidate + timedelta(days=1)


def advance(frequency, time_of_day, days_of_week, anchor: datetime, now: datetime) -> ScheduleAdvance:
    """
    Compute the next execution instant after `anchor`.

    1. Pin the anchor's clock to `time_of_day`.
    2. Take one step (DAILY +1 day, WEEKLY to the next selected weekday,
       MONTHLY +1 month clamped to the month's last day).
    3. While the result is not after `now`, take coarse steps (+1 day,
       +7 days, +1 month) up to MAX_CATCH_UP_ITERATIONS times.

    Unknown frequencies take a single daily catch-up step. Never raises for
    well-formed input; `exhausted` reports a catch-up that ran out of steps.
    """
    try:
        freq = Frequency.parse(frequency)
    except ValueError:
        freq = None

    clock = parse_time_of_day(time_of_day)
    days = _normalize_days(days_of_week) if freq == Frequency.WEEKLY else set()

    candidate = anchor.replace(
        hour=clock.hour, minute=clock.minute, second=clock.second, microsecond=0
    )
    anchor_day = candidate.day
    candidate = _single_step(freq, candidate, days, anchor_day)

    iterations = 0
    while candidate <= now and iterations < MAX_CATCH_UP_ITERATIONS:
        iterations += 1
        if freq == Frequency.DAILY:
            candidate = candidate + timedelta(days=1)
        elif freq == Frequency.WEEKLY:
            candidate = candidate + timedelta(days=7)
        elif freq == Frequency.MONTHLY:
            candidate = add_months(candidate, 1, day=anchor_day)
        else:
            candidate = candidate + timedelta(days=1)
            break

    return ScheduleAdvance(
        next_run=candidate,
        catch_up_iterations=iterations,
        exhausted=candidate <= now,
    )


def next_run(frequency, time_of_day, days_of_week, anchor: datetime, now: datetime) -> datetime:
    """Next execution instant; see `advance` for the algorithm."""
    return advance(frequency, time_of_day, days_of_week, anchor, now).next_run


def plan_transition(definition, now: datetime) -> ScheduleTransition:
    """
    Build the schedule state change for a definition that just ran.

    The definition's current `next_run` is the anchor, not `now`, so a late
    trigger does not shift the series.
    """
    result = advance(
        definition.frequency,
        definition.time_of_day,
        definition.days_of_week,
        definition.next_run,
        now,
    )
    warning = None
    if result.exhausted:
        warning = (
            f"Catch-up stopped after {MAX_CATCH_UP_ITERATIONS} steps; "
            f"next run {result.next_run.isoformat()} is not in the future"
        )
    return ScheduleTransition(last_run=now, next_run=result.next_run, warning=warning)


def first_run_on_or_after(frequency, time_of_day, days_of_week, start: datetime) -> datetime:
    """
    First slot of a new schedule at or after `start`.

    Used when a definition is created without an explicit first run.
    """
    clock = parse_time_of_day(time_of_day)
    candidate = start.replace(
        hour=clock.hour, minute=clock.minute, second=clock.second, microsecond=0
    )
    if candidate < start:
        candidate = candidate + timedelta(days=1)
    freq = Frequency.parse(frequency)
    if freq == Frequency.WEEKLY:
        days = _normalize_days(days_of_week)
        if days:
            for _ in range(7):
                if sunday_based_weekday(candidate) in days:
                    break
                candidate = candidate + timedelta(days=1)
    return candidate
