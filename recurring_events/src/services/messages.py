"""
Error codes and their human readable messages.

Codes are stable identifiers returned in RuleViolation.code; callers may
translate them, the text below is the default wording.
"""

# Schedule
MULTIDAY_EVENT_NOT_RECURRING = "MULTIDAY_EVENT_NOT_RECURRING"
START_DATE_INVALID = "START_DATE_INVALID"
END_DATE_INVALID = "END_DATE_INVALID"
DATE_FORMAT_INVALID = "DATE_FORMAT_INVALID"

# Recurrence pattern
RECURRING_PATTERN_REQUIRED = "RECURRING_PATTERN_REQUIRED"
RECURRING_PATTERN_NOT_REQUIRED = "RECURRING_PATTERN_NOT_REQUIRED"
RECURRENCE_END_CONDITION_AMBIGUOUS = "RECURRENCE_END_CONDITION_AMBIGUOUS"
RECURRENCE_END_DATE_INVALID = "RECURRENCE_END_DATE_INVALID"
RECURRENCE_END_DATE_SHOULD_BE_GREATER_THAN_CURRENT_DATE = (
    "RECURRENCE_END_DATE_SHOULD_BE_GREATER_THAN_CURRENT_DATE"
)
RECURRENCE_END_DATE_AFTER_EVENT_DATE = "RECURRENCE_END_DATE_AFTER_EVENT_DATE"
ENDTIME_DOES_NOT_MATCH = "ENDTIME_DOES_NOT_MATCH"
STARTTIME_DOES_NOT_MATCH = "STARTTIME_DOES_NOT_MATCH"
RECURRENCE_START_DATE_INVALID = "RECURRENCE_START_DATE_INVALID"
RECURRENCE_OCCURRENCES_INVALID = "RECURRENCE_OCCURRENCES_INVALID"
RECURRENCE_PATTERN_INVALID = "RECURRENCE_PATTERN_INVALID"
RECURRENCE_FREQUENCY_INVALID = "RECURRENCE_FREQUENCY_INVALID"
RECURRENCE_INTERVAL_INVALID = "RECURRENCE_INTERVAL_INVALID"
RECURRENCE_DAYS_INVALID = "RECURRENCE_DAYS_INVALID"

# Registration and attendees
RESTRICTED_EVENT_NO_REGISTRATION_DATE = "RESTRICTED_EVENT_NO_REGISTRATION_DATE"
REGISTRATION_DATE_REQUIRED = "REGISTRATION_DATE_REQUIRED"
REGISTRATION_START_DATE_INVALID = "REGISTRATION_START_DATE_INVALID"
REGISTRATION_END_DATE_INVALID = "REGISTRATION_END_DATE_INVALID"
REGISTRATION_START_DATE_BEFORE_END_DATE = "REGISTRATION_START_DATE_BEFORE_END_DATE"
REGISTRATION_START_DATE_BEFORE_EVENT_DATE = "REGISTRATION_START_DATE_BEFORE_EVENT_DATE"
REGISTRATION_END_DATE_BEFORE_EVENT_DATE = "REGISTRATION_END_DATE_BEFORE_EVENT_DATE"
REGISTRATION_WINDOW_BEFORE_CREATION = "REGISTRATION_WINDOW_BEFORE_CREATION"
ATTENDEES_NOT_REQUIRED = "ATTENDEES_NOT_REQUIRED"
ATTENDEES_REQUIRED = "ATTENDEES_REQUIRED"

# Event kind
EVENT_TYPE_INVALID = "EVENT_TYPE_INVALID"
EVENT_TYPE_CHANGE_NOT_SUPPORTED = "EVENT_TYPE_CHANGE_NOT_SUPPORTED"
CANNOT_UPDATE_LOCATION_DETAILS_FOR_ONLINE_EVENT = "CANNOT_UPDATE_LOCATION_DETAILS_FOR_ONLINE_EVENT"
CANNOT_UPDATE_ONLINE_DETAILS_FOR_OFFLINE_EVENT = "CANNOT_UPDATE_ONLINE_DETAILS_FOR_OFFLINE_EVENT"

# Update guards
CANNOT_EDIT_ARCHIVED_EVENTS = "CANNOT_EDIT_ARCHIVED_EVENTS"
CANNOT_PREPONE_PAST_EVENTS = "CANNOT_PREPONE_PAST_EVENTS"
END_DATE_CANNOT_CHANGE = "END_DATE_CANNOT_CHANGE"
RECURRING_FLAG_CHANGE_NOT_SUPPORTED = "RECURRING_FLAG_CHANGE_NOT_SUPPORTED"
RECURRENCE_PATTERN_MISSING = "RECURRENCE_PATTERN_MISSING"
OCCURRENCE_DURATION_MISMATCH = "OCCURRENCE_DURATION_MISMATCH"
OCCURRENCE_OVERLAP = "OCCURRENCE_OVERLAP"
SERIES_DATE_CHANGE_NOT_SUPPORTED = "SERIES_DATE_CHANGE_NOT_SUPPORTED"
PAST_OCCURRENCE_IMMUTABLE = "PAST_OCCURRENCE_IMMUTABLE"
PATTERN_CHANGE_REQUIRES_SERIES_SCOPE = "PATTERN_CHANGE_REQUIRES_SERIES_SCOPE"

# Expansion
CREATION_COUNT_EXCEEDED = "CREATION_COUNT_EXCEEDED"
RECURRENCE_PERIOD_INSUFFICIENT = "RECURRENCE_PERIOD_INSUFFICIENT"

# Lookup
EVENT_NOT_FOUND = "EVENT_NOT_FOUND"


ERROR_MESSAGES = {
    MULTIDAY_EVENT_NOT_RECURRING: "Multiday events cannot be recurring",
    START_DATE_INVALID: "Start and End date must be in the future",
    END_DATE_INVALID: "End date time should be greater than start date time",
    DATE_FORMAT_INVALID: "Date must be a valid ISO 8601 date string",
    RECURRING_PATTERN_REQUIRED: "Recurrence Pattern required for event",
    RECURRING_PATTERN_NOT_REQUIRED: "Recurrence Pattern not required for non recurring event",
    RECURRENCE_END_CONDITION_AMBIGUOUS: (
        "Recurrence end condition must be exactly one of endDate or occurrences"
    ),
    RECURRENCE_END_DATE_INVALID: "Recurrence end date must be a valid ISO 8601 date string",
    RECURRENCE_END_DATE_SHOULD_BE_GREATER_THAN_CURRENT_DATE: (
        "Recurrence end date should be greater than current date"
    ),
    RECURRENCE_END_DATE_AFTER_EVENT_DATE: "Recurrence end date must be after the event start date",
    ENDTIME_DOES_NOT_MATCH: "Event End time does not match with Recurrence End time",
    STARTTIME_DOES_NOT_MATCH: "Event Start time does not match with Recurrence Start time",
    RECURRENCE_START_DATE_INVALID: "Recurrence start date must not be before the event start date",
    RECURRENCE_OCCURRENCES_INVALID: "Recurrence occurrences must be greater than 0",
    RECURRENCE_PATTERN_INVALID: "Recurrence pattern invalid",
    RECURRENCE_FREQUENCY_INVALID: "Recurrence frequency must be daily or weekly",
    RECURRENCE_INTERVAL_INVALID: "Recurrence interval must be a positive integer",
    RECURRENCE_DAYS_INVALID: "Weekly recurrence requires days of week between 0 and 6",
    RESTRICTED_EVENT_NO_REGISTRATION_DATE: "Cannot have registration date for restricted event",
    REGISTRATION_DATE_REQUIRED: "Registration start and end date required for event",
    REGISTRATION_START_DATE_INVALID: "Registration start date must be in the future",
    REGISTRATION_END_DATE_INVALID: "Registration end date must be in the future",
    REGISTRATION_START_DATE_BEFORE_END_DATE: (
        "Registration start date must be before registration end date"
    ),
    REGISTRATION_START_DATE_BEFORE_EVENT_DATE: (
        "Registration start date must be before the event start date"
    ),
    REGISTRATION_END_DATE_BEFORE_EVENT_DATE: (
        "Registration end date must be on or before the event start date"
    ),
    REGISTRATION_WINDOW_BEFORE_CREATION: (
        "Registration window must not start before the event was created"
    ),
    ATTENDEES_NOT_REQUIRED: "Attendees not required for public event",
    ATTENDEES_REQUIRED: "Attendees required for private event",
    EVENT_TYPE_INVALID: "Event type must be online or offline",
    EVENT_TYPE_CHANGE_NOT_SUPPORTED: "Event type change not supported",
    CANNOT_UPDATE_LOCATION_DETAILS_FOR_ONLINE_EVENT: (
        "Cannot update location or latitude or longitude details for an online event"
    ),
    CANNOT_UPDATE_ONLINE_DETAILS_FOR_OFFLINE_EVENT: "Cannot update online details for an offline event",
    CANNOT_EDIT_ARCHIVED_EVENTS: "Cannot Edit archived events",
    CANNOT_PREPONE_PAST_EVENTS: "Cannot update events prepone not allowed for past events",
    END_DATE_CANNOT_CHANGE: "End Date cannot be changed because it is passed away",
    RECURRING_FLAG_CHANGE_NOT_SUPPORTED: "Changing whether an event is recurring is not supported",
    RECURRENCE_PATTERN_MISSING: "Recurring Pattern is missing for this event",
    OCCURRENCE_DURATION_MISMATCH: "Occurrence duration must match the series duration",
    OCCURRENCE_OVERLAP: "Occurrence must not overlap another occurrence of the series",
    SERIES_DATE_CHANGE_NOT_SUPPORTED: (
        "Series edits may change the time of day only; change the pattern to move dates"
    ),
    PAST_OCCURRENCE_IMMUTABLE: "Cannot edit an occurrence that has already ended",
    PATTERN_CHANGE_REQUIRES_SERIES_SCOPE: (
        "Recurrence pattern can only change for this and following or the entire series"
    ),
    CREATION_COUNT_EXCEEDED: "Event Creation Count exceeded",
    RECURRENCE_PERIOD_INSUFFICIENT: "Event recurrence period insufficient",
    EVENT_NOT_FOUND: "Event not found",
}


def message_for(code: str) -> str:
    """Default text for an error code."""
    return ERROR_MESSAGES.get(code, code)
