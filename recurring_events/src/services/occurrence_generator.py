"""
Occurrence generator.

Expands a validated recurrence pattern into the ordered, finite sequence of
occurrence windows that gets materialized as EventRepetition rows.

Algorithm (dateutil.rrule, one rule per pattern):
    daily   - start at recurringStartDate and step by interval days
    weekly  - a start on a weekday that is not listed first moves to the
              next listed day; weeks are Sunday-based buckets counted from
              the week of that first day and only every interval-th
              bucket emits, so the sequence does not depend on which
              weekday the pattern nominally starts on

Termination:
    endDate     - an occurrence is kept while its end is at or before the
                  recurrence end date
    occurrences - exactly N windows

Every window keeps the base event's duration and clock time. The sequence
holds no state outside the pattern, so re-running it yields identical
windows. A limit makes the generator stop after limit + 1 windows so the
caller can detect an oversized expansion without materializing it.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from itertools import islice
from typing import Iterator, List, Optional

from recurring_events.src.schemas.recurrence import (
    EndConditionType,
    Frequency,
    RecurrencePattern,
)
from recurring_events.src.services.exceptions import GenerationError
from recurring_events.src.utils.calendar import (
    DAYS_IN_WEEK,
    IntervalUnit,
    combine_date_time,
    first_matching_weekday,
    recurrence_rule,
    time_of_day,
    to_utc,
    utc_date,
)
from recurring_events.src.utils.logging_config import get_logger


logger = get_logger("engine")


@dataclass(frozen=True, order=True)
class OccurrenceWindow:
    """Start and end of one occurrence (aware UTC)."""

    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


def _fail(message: str) -> GenerationError:
    logger.error(f"Occurrence generation refused: {message}")
    return GenerationError(message)


def _check_pattern(pattern: Optional[RecurrencePattern]) -> None:
    """Re-check the contract the validator is expected to have enforced."""
    if pattern is None:
        raise _fail("No recurrence pattern")
    if not isinstance(pattern.frequency, Frequency):
        raise _fail(f"Unnormalized frequency {pattern.frequency!r}")
    if isinstance(pattern.interval, bool) or not isinstance(pattern.interval, int) or pattern.interval < 1:
        raise _fail(f"Invalid interval {pattern.interval!r}")
    if pattern.frequency == Frequency.WEEKLY:
        days = pattern.days_of_week or []
        if not days or any(
            isinstance(d, bool) or not isinstance(d, int) or not 0 <= d < DAYS_IN_WEEK
            for d in days
        ):
            raise _fail(f"Invalid weekday set {days!r}")
    if pattern.recurring_start_date is not None and not isinstance(pattern.recurring_start_date, datetime):
        raise _fail("Unnormalized recurringStartDate")

    condition = pattern.end_condition
    mode = condition.mode if condition is not None else None
    if mode is None:
        raise _fail("Missing or ambiguous end condition")
    if mode == EndConditionType.OCCURRENCES:
        value = condition.raw_value
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise _fail(f"Invalid occurrence count {value!r}")
    elif not isinstance(condition.raw_value, datetime):
        raise _fail("Unnormalized recurrence end date")


def iter_occurrences(
    pattern: RecurrencePattern,
    base_start: datetime,
    base_end: datetime,
    limit: Optional[int] = None,
) -> Iterator[OccurrenceWindow]:
    """
    Lazily expand a normalized pattern.

    Args:
        pattern: Normalized pattern (see RecurrencePattern.normalized)
        base_start / base_end: Window of the base event; gives the clock
            time and duration of every occurrence
        limit: Stop after limit + 1 windows

    Yields:
        OccurrenceWindow in strictly increasing order

    Raises:
        GenerationError: If the pattern is not normalized or contradictory
    """
    _check_pattern(pattern)
    base_start = to_utc(base_start)
    base_end = to_utc(base_end)
    if base_end <= base_start:
        raise _fail("Base event ends before it starts")

    duration = base_end - base_start
    clock = time_of_day(base_start)
    seed = combine_date_time(utc_date(pattern.recurring_start_date or base_start), clock)

    unit, weekdays = IntervalUnit.DAYS, None
    if pattern.frequency == Frequency.WEEKLY:
        unit, weekdays = IntervalUnit.WEEKS, set(pattern.days_of_week)
        seed = first_matching_weekday(seed, weekdays)

    condition = pattern.end_condition
    if condition.mode == EndConditionType.OCCURRENCES:
        limits = {"count": condition.raw_value}
    else:
        limits = {"until": utc_date(condition.raw_value - duration)}
    rule = recurrence_rule(unit, seed.date(), pattern.interval, weekdays, **limits)

    cap = limit + 1 if limit is not None else None
    for day in islice(rule, cap):
        start = combine_date_time(day.date(), clock)
        window = OccurrenceWindow(start, start + duration)
        # until has day resolution; the last day may still end too late
        if condition.mode == EndConditionType.END_DATE and window.end > condition.raw_value:
            return
        yield window


def generate_occurrences(
    pattern: RecurrencePattern,
    base_start: datetime,
    base_end: datetime,
    limit: Optional[int] = None,
) -> List[OccurrenceWindow]:
    """Eager form of iter_occurrences."""
    return list(iter_occurrences(pattern, base_start, base_end, limit=limit))


def single_occurrence(base_start: datetime, base_end: datetime) -> List[OccurrenceWindow]:
    """The one window of a non-recurring event."""
    return [OccurrenceWindow(to_utc(base_start), to_utc(base_end))]
