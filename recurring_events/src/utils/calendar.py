"""
Calendar arithmetic for the recurring events engine.

All comparisons and stepping happen on timezone-aware UTC instants. Naive
datetimes are interpreted as UTC; ISO 8601 strings (with or without a
trailing "Z") are accepted wherever an instant is expected.

Weekdays use the Sunday-based numbering of the event API:
    0 = Sunday, 1 = Monday, ..., 6 = Saturday

Design:
- Pure functions: the current time is always passed in by the caller
  (see Clock / FixedClock), never read from the wall clock here
- Daylight-saving rules are not applied; stepping is plain UTC arithmetic
- Day and week stepping uses dateutil.rrule with Sunday as week start
"""

import enum
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional, Protocol, Set, Union

from dateutil.rrule import DAILY, SU, WEEKLY, rrule


InstantLike = Union[datetime, str]

DAYS_IN_WEEK = 7


class InvalidDate(ValueError):
    """Raised when a value cannot be interpreted as an instant."""

    def __init__(self, value: object):
        self.value = value
        super().__init__(f"Invalid date value: {value!r}")


class Comparison(str, enum.Enum):
    """Result of comparing two instants."""
    BEFORE = "before"
    EQUAL = "equal"
    AFTER = "after"


class IntervalUnit(str, enum.Enum):
    """Units for add_interval and recurrence_rule."""
    DAYS = "days"
    WEEKS = "weeks"


# ============================================================================
# Reference clocks
# ============================================================================


class Clock(Protocol):
    """Source of the reference instant used for past/future checks."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock, for the embedding application only."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """
    Clock pinned to a given instant.

    Used by tests and by callers that need every check in one request to
    share the same notion of "now".
    """

    def __init__(self, instant: InstantLike):
        self._instant = to_utc(instant)

    def now(self) -> datetime:
        return self._instant

    def advance(self, **kwargs) -> None:
        """Move the clock forward by a timedelta built from kwargs."""
        self._instant = self._instant + timedelta(**kwargs)


# ============================================================================
# Normalization
# ============================================================================


def to_utc(value: InstantLike) -> datetime:
    """
    Normalize a datetime or ISO 8601 string to an aware UTC datetime.

    Args:
        value: datetime (naive values are taken as UTC) or ISO 8601 string

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        InvalidDate: If the value is not a datetime or parsable string
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise InvalidDate(value)
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise InvalidDate(value)
        return to_utc(parsed)

    raise InvalidDate(value)


def parse_instant(value: InstantLike) -> datetime:
    """Parse user input into a UTC instant (alias of to_utc for readability)."""
    return to_utc(value)


def to_naive_utc(value: datetime) -> datetime:
    """Strip tzinfo after converting to UTC, for storage columns."""
    return to_utc(value).replace(tzinfo=None)


def isoformat_z(value: datetime) -> str:
    """Serialize an instant as ISO 8601 with a trailing Z."""
    return to_utc(value).isoformat().replace("+00:00", "Z")


# ============================================================================
# Comparison and components
# ============================================================================


def compare_instant(a: InstantLike, b: InstantLike) -> Comparison:
    """
    Compare two instants after UTC normalization.

    Returns:
        Comparison.BEFORE if a < b, EQUAL if a == b, AFTER if a > b
    """
    left = to_utc(a)
    right = to_utc(b)
    if left < right:
        return Comparison.BEFORE
    if left > right:
        return Comparison.AFTER
    return Comparison.EQUAL


def is_after(a: InstantLike, b: InstantLike) -> bool:
    return compare_instant(a, b) == Comparison.AFTER


def is_before(a: InstantLike, b: InstantLike) -> bool:
    return compare_instant(a, b) == Comparison.BEFORE


def utc_date(value: InstantLike) -> date:
    """Calendar date of an instant in UTC."""
    return to_utc(value).date()


def time_of_day(value: InstantLike) -> time:
    """Clock time of an instant in UTC (no tzinfo)."""
    return to_utc(value).time().replace(tzinfo=None)


def combine_date_time(day: date, clock: time) -> datetime:
    """Build a UTC instant from a calendar date and a clock time."""
    return datetime.combine(day, clock.replace(tzinfo=None), tzinfo=timezone.utc)


def sunday_weekday(value: Union[date, datetime]) -> int:
    """Weekday with Sunday = 0 ... Saturday = 6."""
    return (value.weekday() + 1) % DAYS_IN_WEEK


def week_start(day: date) -> date:
    """Sunday that opens the week containing the given date."""
    return day - timedelta(days=sunday_weekday(day))


# ============================================================================
# Stepping
# ============================================================================


def add_interval(instant: InstantLike, unit: Union[IntervalUnit, str], n: int) -> datetime:
    """
    Add n days or weeks to an instant.

    Raises:
        InvalidDate: If the instant cannot be parsed
        ValueError: If the unit is not supported
    """
    start = to_utc(instant)
    unit = IntervalUnit(unit)
    if unit == IntervalUnit.DAYS:
        return start + timedelta(days=n)
    return start + timedelta(weeks=n)


def rrule_weekdays(weekdays: Iterable[int]) -> List[int]:
    """Map Sunday-based weekday numbers to dateutil's Monday-based ones."""
    return sorted((d - 1) % DAYS_IN_WEEK for d in weekdays)


def recurrence_rule(
    unit: Union[IntervalUnit, str],
    seed: date,
    interval: int = 1,
    weekdays: Optional[Iterable[int]] = None,
    count: Optional[int] = None,
    until: Optional[date] = None,
) -> rrule:
    """
    Build a day-resolution rule for daily or weekly recurrence.

    The rule runs on naive midnights; callers combine each yielded day with
    the clock time they need. Weekly rules count Sunday-based weeks from
    the week containing seed.

    Args:
        unit: IntervalUnit.DAYS (daily) or IntervalUnit.WEEKS (weekly)
        seed: First candidate day
        interval: Step in days or weeks
        weekdays: Sunday-based weekday numbers (weekly only)
        count: Stop after this many days
        until: Last day that may be yielded
    """
    unit = IntervalUnit(unit)
    return rrule(
        DAILY if unit == IntervalUnit.DAYS else WEEKLY,
        dtstart=datetime.combine(seed, time()),
        interval=interval,
        wkst=SU,
        byweekday=rrule_weekdays(weekdays) if weekdays is not None else None,
        count=count,
        until=datetime.combine(until, time()) if until is not None else None,
    )


def _check_weekdays(allowed: Set[int]) -> None:
    if not allowed or not allowed.issubset(range(DAYS_IN_WEEK)):
        raise ValueError(f"Invalid weekday set: {sorted(allowed)}")


def first_matching_weekday(instant: InstantLike, allowed_weekdays: Iterable[int]) -> datetime:
    """
    The instant itself if it falls on an allowed weekday, else the next
    allowed day at the same clock time.

    Raises:
        ValueError: If no weekday is allowed
    """
    allowed = set(allowed_weekdays)
    _check_weekdays(allowed)
    start = to_utc(instant)
    if sunday_weekday(start) in allowed:
        return start
    day = recurrence_rule(IntervalUnit.WEEKS, start.date(), weekdays=allowed)[0]
    return combine_date_time(day.date(), time_of_day(start))


def next_matching_weekday(
    instant: InstantLike,
    allowed_weekdays: Iterable[int],
    interval: int = 1,
) -> datetime:
    """
    Find the next instant strictly after the given one on an allowed weekday.

    When the input is on an allowed weekday its Sunday-based week is the
    current bucket and only buckets a multiple of interval weeks later
    qualify, so interval=2 skips every other week. When it is not, the
    series has not started yet and the first allowed day is returned.

    Args:
        instant: Starting instant (its clock time is preserved)
        allowed_weekdays: Sunday-based weekday numbers
        interval: Week interval (>= 1)

    Returns:
        The next qualifying instant

    Raises:
        ValueError: If no weekday is allowed or interval < 1
    """
    allowed = set(allowed_weekdays)
    _check_weekdays(allowed)
    if interval < 1:
        raise ValueError(f"Interval must be >= 1, got {interval}")

    start = to_utc(instant)
    if sunday_weekday(start) not in allowed:
        return first_matching_weekday(start, allowed)
    rule = recurrence_rule(IntervalUnit.WEEKS, start.date(), interval, allowed)
    day = rule.after(datetime.combine(start.date(), time()))
    return combine_date_time(day.date(), time_of_day(start))
