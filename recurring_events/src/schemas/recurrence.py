"""
Pydantic schemas for recurrence patterns.

Patterns arrive in the camelCase shape of the event API:

    {
        "frequency": "weekly",
        "interval": 1,
        "daysOfWeek": [3, 5],
        "recurringStartDate": "2024-12-18T10:00:00Z",
        "endCondition": {"type": "occurrences", "value": "4"}
    }

Design:
- Field types are deliberately loose (Any) so that malformed values reach
  the recurrence validator and come back as rule violations, not as parse
  errors that would stop at the first problem
- normalized() produces the strict form consumed by the occurrence
  generator: Frequency enum, int interval, sorted weekday list, UTC
  instants and an EndCondition whose value is a datetime or an int
"""

import enum
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from recurring_events.src.utils.calendar import DAYS_IN_WEEK, isoformat_z, to_utc


# ============================================================================
# Enums
# ============================================================================


class Frequency(str, enum.Enum):
    """How often a recurring event repeats."""
    DAILY = "daily"
    WEEKLY = "weekly"


class EndConditionType(str, enum.Enum):
    """What terminates a recurring series."""
    END_DATE = "endDate"
    OCCURRENCES = "occurrences"


# ============================================================================
# Coercion helpers
# ============================================================================


def coerce_positive_int(value: Any) -> int:
    """
    Interpret an int or digit string as a positive integer.

    Raises:
        ValueError: For booleans, fractions, non-numeric strings or values < 1
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Not an integer: {value!r}")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and value.strip().isdigit():
        number = int(value.strip())
    elif isinstance(value, float) and value.is_integer():
        number = int(value)
    else:
        raise ValueError(f"Not an integer: {value!r}")
    if number < 1:
        raise ValueError(f"Must be >= 1: {number}")
    return number


def coerce_weekdays(values: Any) -> List[int]:
    """
    Sorted, de-duplicated Sunday-based weekday numbers.

    Raises:
        ValueError: If the list is empty or holds values outside 0..6
    """
    if not isinstance(values, (list, tuple, set)) or not values:
        raise ValueError("Days of week must be a non-empty list")
    days = set()
    for value in values:
        if isinstance(value, int) and not isinstance(value, bool):
            day = value
        elif isinstance(value, str) and value.strip().isdigit():
            day = int(value.strip())
        else:
            raise ValueError(f"Invalid weekday: {value!r}")
        if day < 0 or day >= DAYS_IN_WEEK:
            raise ValueError(f"Invalid weekday: {value!r}")
        days.add(day)
    return sorted(days)


# ============================================================================
# Schemas
# ============================================================================


class EndCondition(BaseModel):
    """
    Terminating rule of a series.

    Fields:
        type: "endDate" or "occurrences"
        value: ISO 8601 instant (endDate) or positive integer (occurrences)

    The keyed form {"endDate": ...} or {"occurrences": ...} is accepted as
    well; declaring more than one condition is reported by the validator.
    """

    model_config = ConfigDict(extra="allow")

    type: Optional[Any] = Field(default=None)
    value: Optional[Any] = Field(default=None)

    def entries(self) -> List[Tuple[Any, Any]]:
        """(type, value) pairs declared by the condition, in either form."""
        found = []
        if self.type not in (None, "") or self.value not in (None, ""):
            found.append((self.type, self.value))
        extra = self.model_extra or {}
        for mode in EndConditionType:
            if extra.get(mode.value) not in (None, ""):
                found.append((mode.value, extra[mode.value]))
        return found

    @property
    def mode(self) -> Optional[EndConditionType]:
        """Parsed type of the single declared condition, else None."""
        entries = self.entries()
        if len(entries) != 1:
            return None
        try:
            return EndConditionType(entries[0][0])
        except ValueError:
            return None

    @property
    def raw_value(self) -> Any:
        entries = self.entries()
        return entries[0][1] if len(entries) == 1 else None

    def is_empty(self) -> bool:
        return not self.entries()


class RecurrencePattern(BaseModel):
    """
    Recurrence pattern of an event.

    Fields:
        frequency: "daily" or "weekly"
        interval: Step in days (daily) or weeks (weekly), default 1
        days_of_week: Sunday-based weekdays (weekly only)
        recurring_start_date: First instant of the series; defaults to the
            event start
        end_condition: EndCondition
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    frequency: Optional[Any] = Field(default=None)
    interval: Optional[Any] = Field(default=None)
    days_of_week: Optional[List[Any]] = Field(default=None, alias="daysOfWeek")
    recurring_start_date: Optional[Any] = Field(default=None, alias="recurringStartDate")
    end_condition: Optional[EndCondition] = Field(default=None, alias="endCondition")

    def is_empty(self) -> bool:
        """True when no field carries a value (an empty object is allowed on one-off events)."""
        for name in type(self).model_fields:
            value = getattr(self, name)
            if isinstance(value, EndCondition):
                if not value.is_empty():
                    return False
            elif value not in (None, "", [], {}):
                return False
        return True

    @property
    def frequency_enum(self) -> Optional[Frequency]:
        try:
            return Frequency(self.frequency)
        except ValueError:
            return None

    @property
    def end_mode(self) -> Optional[EndConditionType]:
        if self.end_condition is None:
            return None
        return self.end_condition.mode

    def normalized(self) -> "RecurrencePattern":
        """
        Strict copy of the pattern.

        Raises:
            ValueError: If any field cannot be coerced
            InvalidDate: If an instant cannot be parsed
        """
        frequency = Frequency(self.frequency)
        interval = 1 if self.interval in (None, "") else coerce_positive_int(self.interval)
        days = None
        if frequency == Frequency.WEEKLY:
            days = coerce_weekdays(self.days_of_week)
        elif self.days_of_week:
            days = coerce_weekdays(self.days_of_week)

        start = None
        if self.recurring_start_date not in (None, ""):
            start = to_utc(self.recurring_start_date)

        if self.end_condition is None or self.end_condition.mode is None:
            raise ValueError("End condition type must be endDate or occurrences")
        if self.end_condition.mode == EndConditionType.END_DATE:
            value = to_utc(self.end_condition.raw_value)
        else:
            value = coerce_positive_int(self.end_condition.raw_value)

        return RecurrencePattern(
            frequency=frequency,
            interval=interval,
            days_of_week=days,
            recurring_start_date=start,
            end_condition=EndCondition(type=self.end_condition.mode, value=value),
        )

    def merged(self, delta: "RecurrencePattern") -> "RecurrencePattern":
        """Copy with the fields explicitly set on delta applied on top."""
        updates = {name: getattr(delta, name) for name in delta.model_fields_set}
        return self.model_copy(update=updates)

    def to_storage(self) -> Dict[str, Any]:
        """JSON-safe camelCase dict for the events.recurrence_pattern column."""
        data: Dict[str, Any] = {}
        if self.frequency is not None:
            data["frequency"] = _plain(self.frequency)
        if self.interval is not None:
            data["interval"] = self.interval
        if self.days_of_week is not None:
            data["daysOfWeek"] = list(self.days_of_week)
        if self.recurring_start_date is not None:
            data["recurringStartDate"] = _plain(self.recurring_start_date)
        if self.end_condition is not None:
            data["endCondition"] = {
                "type": _plain(self.end_condition.type),
                "value": _plain(self.end_condition.value),
            }
        return data

    @classmethod
    def from_storage(cls, data: Optional[Dict[str, Any]]) -> Optional["RecurrencePattern"]:
        """Strict pattern from a stored JSON dict, or None."""
        if not data:
            return None
        return cls.model_validate(data).normalized()


def _plain(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, datetime):
        return isoformat_z(value)
    return value
