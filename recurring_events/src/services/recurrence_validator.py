"""
Recurrence validator for event drafts and update deltas.

Checks a candidate event against the scheduling, recurrence, registration
and attendee rules and returns either a normalized copy of the draft or a
ValidationError listing every broken rule. Nothing is persisted and the
wall clock is never read: the reference instant is passed in.

Rules:
    1. Multi-day events cannot be recurring
    2. Start and end must be in the future; end must follow start
    3. Recurring events need a pattern with exactly one end condition
       (endDate in the future, after the start, at the event's end time;
       or a positive occurrences count), a daily/weekly frequency, a
       positive interval and, for weekly patterns, a weekday set
    4. One-off events carry no pattern
    5. Registration windows: none for restricted events; required, in the
       future, ordered and before the event start otherwise
    6. Attendee lists only on restricted events, and required there when
       attendees are enrolled automatically

The check_* functions are reused by the update propagation engine to re-run
subsets of the rules against merged values.
"""

from datetime import datetime
from typing import Any, Iterable, List, Optional, Set, Tuple

from recurring_events.src.schemas.event import (
    EventDraft,
    EventUpdate,
    LOCATION_FIELDS,
    ONLINE_FIELDS,
)
from recurring_events.src.schemas.recurrence import (
    EndConditionType,
    Frequency,
    RecurrencePattern,
    coerce_positive_int,
    coerce_weekdays,
)
from recurring_events.src.services import messages
from recurring_events.src.services.exceptions import RuleViolation, ValidationError
from recurring_events.src.utils.calendar import InvalidDate, time_of_day, to_utc, utc_date
from recurring_events.src.utils.logging_config import get_logger


logger = get_logger("engine")

EVENT_TYPES = ("online", "offline")


def violation(code: str, field: Optional[str] = None) -> RuleViolation:
    """Build a RuleViolation with the default message for code."""
    return RuleViolation(code=code, message=messages.message_for(code), field=field)


def parse_field(value: Any, field: str, violations: List[RuleViolation],
                code: str = messages.DATE_FORMAT_INVALID) -> Optional[datetime]:
    """Parse an optional instant, recording a violation when malformed."""
    if value is None or value == "":
        return None
    try:
        return to_utc(value)
    except InvalidDate:
        violations.append(violation(code, field))
        return None


# ============================================================================
# Rule groups
# ============================================================================


def check_schedule(start: datetime, end: datetime, is_recurring: bool,
                   now: datetime) -> List[RuleViolation]:
    """Rules 1 and 2 over parsed instants."""
    violations = []
    if is_recurring and utc_date(start) != utc_date(end):
        violations.append(violation(messages.MULTIDAY_EVENT_NOT_RECURRING, "end_date_time"))
    if start <= now or end <= now:
        violations.append(violation(messages.START_DATE_INVALID, "start_date_time"))
    if end <= start:
        violations.append(violation(messages.END_DATE_INVALID, "end_date_time"))
    return violations


def check_pattern(
    pattern: Optional[RecurrencePattern],
    start: Optional[datetime],
    end: Optional[datetime],
    now: datetime,
    require_after_start: bool = True,
) -> Tuple[List[RuleViolation], Optional[RecurrencePattern]]:
    """
    Rule 3 for a recurring event.

    Args:
        pattern: Candidate pattern (loose values)
        start / end: Parsed event window, or None when unparsable (checks
            that depend on them are skipped)
        now: Reference instant
        require_after_start: Enforce endDate > start (creation and pattern
            edits anchored at the edited occurrence)

    Returns:
        (violations, normalized pattern or None when any check failed)
    """
    violations: List[RuleViolation] = []
    if pattern is None or pattern.is_empty():
        return [violation(messages.RECURRING_PATTERN_REQUIRED, "recurrence_pattern")], None

    if pattern.frequency_enum is None:
        violations.append(violation(messages.RECURRENCE_FREQUENCY_INVALID, "recurrence_pattern.frequency"))

    if pattern.interval not in (None, ""):
        try:
            coerce_positive_int(pattern.interval)
        except ValueError:
            violations.append(violation(messages.RECURRENCE_INTERVAL_INVALID, "recurrence_pattern.interval"))

    if pattern.frequency_enum == Frequency.WEEKLY or pattern.days_of_week:
        try:
            coerce_weekdays(pattern.days_of_week)
        except ValueError:
            violations.append(violation(messages.RECURRENCE_DAYS_INVALID, "recurrence_pattern.daysOfWeek"))

    recurring_start = parse_field(
        pattern.recurring_start_date, "recurrence_pattern.recurringStartDate", violations
    )
    if recurring_start is not None and start is not None:
        if time_of_day(recurring_start) != time_of_day(start):
            violations.append(violation(
                messages.STARTTIME_DOES_NOT_MATCH, "recurrence_pattern.recurringStartDate"
            ))
        if utc_date(recurring_start) < utc_date(start):
            violations.append(violation(
                messages.RECURRENCE_START_DATE_INVALID, "recurrence_pattern.recurringStartDate"
            ))

    violations.extend(_check_end_condition(pattern, start, end, now, require_after_start))

    if violations:
        return violations, None

    normalized = pattern.normalized()
    if normalized.recurring_start_date is None and start is not None:
        normalized = normalized.model_copy(update={"recurring_start_date": start})
    return violations, normalized


def _check_end_condition(pattern, start, end, now, require_after_start) -> List[RuleViolation]:
    field = "recurrence_pattern.endCondition"
    condition = pattern.end_condition
    if condition is None or condition.is_empty():
        return [violation(messages.RECURRING_PATTERN_REQUIRED, field)]

    entries = condition.entries()
    if len(entries) > 1:
        return [violation(messages.RECURRENCE_END_CONDITION_AMBIGUOUS, field)]

    kind, value = entries[0]
    if kind in (None, "") or value in (None, ""):
        return [violation(messages.RECURRING_PATTERN_REQUIRED, field)]
    if condition.mode is None:
        return [violation(messages.RECURRENCE_PATTERN_INVALID, field)]

    if condition.mode == EndConditionType.OCCURRENCES:
        try:
            coerce_positive_int(value)
        except ValueError:
            return [violation(messages.RECURRENCE_OCCURRENCES_INVALID, field)]
        return []

    violations: List[RuleViolation] = []
    end_date = parse_field(value, field, violations, code=messages.RECURRENCE_END_DATE_INVALID)
    if end_date is None:
        return violations
    if end_date <= now:
        violations.append(violation(
            messages.RECURRENCE_END_DATE_SHOULD_BE_GREATER_THAN_CURRENT_DATE, field
        ))
    if require_after_start and start is not None and end_date <= start:
        violations.append(violation(messages.RECURRENCE_END_DATE_AFTER_EVENT_DATE, field))
    if end is not None and time_of_day(end_date) != time_of_day(end):
        violations.append(violation(messages.ENDTIME_DOES_NOT_MATCH, field))
    return violations


def check_no_pattern(pattern: Optional[RecurrencePattern]) -> List[RuleViolation]:
    """Rule 4: a one-off event carries no populated pattern."""
    if pattern is not None and not pattern.is_empty():
        return [violation(messages.RECURRING_PATTERN_NOT_REQUIRED, "recurrence_pattern")]
    return []


def check_registration(
    is_restricted: bool,
    registration_start: Optional[datetime],
    registration_end: Optional[datetime],
    event_start: Optional[datetime],
    now: datetime,
    created_at: Optional[datetime] = None,
    changed: Optional[Iterable[str]] = None,
) -> List[RuleViolation]:
    """
    Rule 5 over parsed instants.

    Args:
        changed: When given, only these registration fields are held to the
            "not in the past" checks (used for edits of live events)
        created_at: Creation instant of an existing event; the window may
            not open before it
    """
    if is_restricted:
        if registration_start is not None or registration_end is not None:
            return [violation(messages.RESTRICTED_EVENT_NO_REGISTRATION_DATE, "registration_start_date")]
        return []

    if registration_start is None or registration_end is None:
        return [violation(messages.REGISTRATION_DATE_REQUIRED, "registration_start_date")]

    checked: Set[str] = set(changed) if changed is not None else {
        "registration_start_date", "registration_end_date"
    }
    violations = []
    if "registration_start_date" in checked and registration_start < now:
        violations.append(violation(messages.REGISTRATION_START_DATE_INVALID, "registration_start_date"))
    if "registration_end_date" in checked and registration_end < now:
        violations.append(violation(messages.REGISTRATION_END_DATE_INVALID, "registration_end_date"))
    if registration_start > registration_end:
        violations.append(violation(
            messages.REGISTRATION_START_DATE_BEFORE_END_DATE, "registration_start_date"
        ))
    if event_start is not None:
        if registration_start > event_start:
            violations.append(violation(
                messages.REGISTRATION_START_DATE_BEFORE_EVENT_DATE, "registration_start_date"
            ))
        if registration_end > event_start:
            violations.append(violation(
                messages.REGISTRATION_END_DATE_BEFORE_EVENT_DATE, "registration_end_date"
            ))
    if created_at is not None and registration_start < created_at:
        violations.append(violation(
            messages.REGISTRATION_WINDOW_BEFORE_CREATION, "registration_start_date"
        ))
    return violations


def check_attendees(is_restricted: bool, attendees: Optional[List[str]],
                    auto_enroll: bool = False) -> List[RuleViolation]:
    """Rule 6: attendee lists belong to restricted events only."""
    if not is_restricted:
        if attendees:
            return [violation(messages.ATTENDEES_NOT_REQUIRED, "attendees")]
        return []
    if auto_enroll and not attendees:
        return [violation(messages.ATTENDEES_REQUIRED, "attendees")]
    return []


def check_event_type(event_type: Optional[str]) -> List[RuleViolation]:
    if event_type not in EVENT_TYPES:
        return [violation(messages.EVENT_TYPE_INVALID, "event_type")]
    return []


def check_update_kind(current_type: str, delta: EventUpdate) -> List[RuleViolation]:
    """
    Kind-specific restrictions on an update.

    The event type is fixed once created; online events take no venue and
    offline events take no meeting data.
    """
    provided = delta.provided()
    violations = []
    if "event_type" in provided and delta.event_type != current_type:
        violations.append(violation(messages.EVENT_TYPE_CHANGE_NOT_SUPPORTED, "event_type"))
    if current_type == "online" and provided & set(LOCATION_FIELDS):
        violations.append(violation(
            messages.CANNOT_UPDATE_LOCATION_DETAILS_FOR_ONLINE_EVENT, "location"
        ))
    if current_type == "offline" and provided & set(ONLINE_FIELDS):
        violations.append(violation(
            messages.CANNOT_UPDATE_ONLINE_DETAILS_FOR_OFFLINE_EVENT, "online_details"
        ))
    return violations


# ============================================================================
# Draft validation
# ============================================================================


def validate_draft(draft: EventDraft, now: datetime) -> EventDraft:
    """
    Validate a creation draft against every rule.

    Args:
        draft: Candidate event
        now: Reference instant (aware UTC)

    Returns:
        Normalized copy of the draft: parsed instants, strict pattern with
        recurring_start_date filled in, recurrence_end_date set for endDate
        patterns, online-only fields cleared on offline events

    Raises:
        ValidationError: With one violation per broken rule
    """
    now = to_utc(now)
    violations: List[RuleViolation] = []

    start = parse_field(draft.start_date_time, "start_date_time", violations)
    end = parse_field(draft.end_date_time, "end_date_time", violations)
    if draft.start_date_time in (None, ""):
        violations.append(violation(messages.DATE_FORMAT_INVALID, "start_date_time"))
    if draft.end_date_time in (None, ""):
        violations.append(violation(messages.DATE_FORMAT_INVALID, "end_date_time"))

    if start is not None and end is not None:
        violations.extend(check_schedule(start, end, draft.is_recurring, now))

    pattern = None
    if draft.is_recurring:
        pattern_violations, pattern = check_pattern(draft.recurrence_pattern, start, end, now)
        violations.extend(pattern_violations)
    else:
        violations.extend(check_no_pattern(draft.recurrence_pattern))

    violations.extend(check_event_type(draft.event_type))

    registration_start = parse_field(draft.registration_start_date, "registration_start_date", violations)
    registration_end = parse_field(draft.registration_end_date, "registration_end_date", violations)
    violations.extend(check_registration(
        draft.is_restricted, registration_start, registration_end, start, now
    ))
    violations.extend(check_attendees(draft.is_restricted, draft.attendees, draft.auto_enroll))

    if violations:
        logger.info(
            f"Rejected event draft '{draft.title}': "
            f"{', '.join(v.code for v in violations)}"
        )
        raise ValidationError(violations)

    updates = {
        "start_date_time": start,
        "end_date_time": end,
        "registration_start_date": registration_start,
        "registration_end_date": registration_end,
        "recurrence_pattern": pattern,
        "recurrence_end_date": None,
    }
    if pattern is not None and pattern.end_mode == EndConditionType.END_DATE:
        updates["recurrence_end_date"] = pattern.end_condition.value
    if draft.event_type == "offline":
        updates.update(online_provider=None, meeting_details=None, recordings=None)
    return draft.model_copy(update=updates)
