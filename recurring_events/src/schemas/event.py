"""
Pydantic schemas for event drafts, update deltas and read models.

Provides data validation and serialization for:
- Event creation drafts (one-off and recurring)
- Update deltas with presence tracking (only fields explicitly sent apply)
- Occurrence search filters and paged results
- Read models for events and occurrences

Design:
- Drafts accept instants as datetimes or ISO 8601 strings; the recurrence
  validator parses them so every malformed value is reported at once
- Field names are snake_case with camelCase aliases matching the event API
- GUIDs are exposed, never internal IDs
"""

import enum
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from recurring_events.src.schemas.recurrence import RecurrencePattern
from recurring_events.src.utils.calendar import isoformat_z, to_utc


# ============================================================================
# Enums
# ============================================================================


class UpdateScope(str, enum.Enum):
    """Which occurrences an update or delete applies to."""
    THIS_OCCURRENCE = "this_occurrence"
    THIS_AND_FOLLOWING = "this_and_following"
    ENTIRE_SERIES = "entire_series"


# ============================================================================
# Field groups
# ============================================================================


# Delta field -> EventDetail column
DETAIL_FIELD_MAP = {
    "title": "title",
    "short_description": "short_description",
    "description": "description",
    "event_type": "event_type",
    "is_restricted": "is_restricted",
    "location": "location",
    "latitude": "latitude",
    "longitude": "longitude",
    "online_provider": "online_provider",
    "meeting_details": "meeting_details",
    "recordings": "recordings",
    "max_attendees": "max_attendees",
    "status": "status",
    "attendees": "attendees",
    "ideal_time": "ideal_time",
    "metadata": "metadata_json",
}

# Merged into EventRepetition rows; the last three live in online_details
OCCURRENCE_FIELDS = ("online_details", "er_metadata", "meeting_type", "approval_type", "timezone")
ONLINE_DETAIL_KEYS = {
    "meeting_type": "meetingType",
    "approval_type": "approvalType",
    "timezone": "timezone",
}

TIME_FIELDS = ("start_date_time", "end_date_time")
REGISTRATION_FIELDS = ("registration_start_date", "registration_end_date")
EVENT_FIELDS = ("auto_enroll", "platform_integration")
LOCATION_FIELDS = ("location", "latitude", "longitude")
ONLINE_FIELDS = ("online_provider", "meeting_details", "online_details")


# ============================================================================
# Request Schemas
# ============================================================================


class EventDraft(BaseModel):
    """
    Candidate event submitted for creation.

    Required:
        title: Event title
        start_date_time: First occurrence start (alias startDatetime)
        end_date_time: First occurrence end (alias endDatetime)

    Optional:
        event_type: "online" or "offline" (default offline)
        is_restricted: Restricted events list attendees and have no
            registration window
        is_recurring: Whether recurrence_pattern applies
        recurrence_pattern: RecurrencePattern
        registration_start_date / registration_end_date: Registration window
        attendees: Attendee identifiers (restricted events only)
        online_details / er_metadata: Defaults copied to every occurrence
    """

    title: str = Field(..., min_length=1, max_length=255)
    short_description: Optional[str] = Field(default=None, alias="shortDescription", max_length=255)
    description: Optional[str] = Field(default=None)
    event_type: Optional[str] = Field(default="offline", alias="eventType")
    is_restricted: bool = Field(default=False, alias="isRestricted")

    location: Optional[str] = Field(default=None, max_length=255)
    latitude: Optional[float] = Field(default=None)
    longitude: Optional[float] = Field(default=None)
    online_provider: Optional[str] = Field(default=None, alias="onlineProvider")
    meeting_details: Optional[Dict[str, Any]] = Field(default=None, alias="meetingDetails")
    recordings: Optional[Dict[str, Any]] = Field(default=None)

    max_attendees: int = Field(default=0, alias="maxAttendees", ge=0)
    status: str = Field(default="live")
    attendees: Optional[List[str]] = Field(default=None)
    ideal_time: Optional[int] = Field(default=None, alias="idealTime")
    metadata: Optional[Dict[str, Any]] = Field(default=None)

    start_date_time: Any = Field(..., alias="startDatetime")
    end_date_time: Any = Field(..., alias="endDatetime")

    is_recurring: bool = Field(default=False, alias="isRecurring")
    recurrence_pattern: Optional[RecurrencePattern] = Field(default=None, alias="recurrencePattern")
    recurrence_end_date: Optional[datetime] = Field(default=None, alias="recurrenceEndDate")

    registration_start_date: Optional[Any] = Field(default=None, alias="registrationStartDate")
    registration_end_date: Optional[Any] = Field(default=None, alias="registrationEndDate")
    auto_enroll: bool = Field(default=False, alias="autoEnroll")
    platform_integration: bool = Field(default=True, alias="platformIntegration")

    online_details: Optional[Dict[str, Any]] = Field(default=None, alias="onlineDetails")
    er_metadata: Optional[Dict[str, Any]] = Field(default=None, alias="erMetaData")

    created_by: Optional[str] = Field(default=None, alias="createdBy")

    @field_validator("title")
    @classmethod
    def validate_title_not_whitespace(cls, v: str) -> str:
        """Ensure title is not just whitespace."""
        if not v.strip():
            raise ValueError("Title cannot be empty or whitespace")
        return v.strip()

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "title": "Weekly standup",
                "eventType": "online",
                "isRestricted": True,
                "attendees": ["user-1", "user-2"],
                "startDatetime": "2024-12-18T10:00:00Z",
                "endDatetime": "2024-12-18T11:00:00Z",
                "isRecurring": True,
                "recurrencePattern": {
                    "frequency": "weekly",
                    "interval": 1,
                    "daysOfWeek": [3, 5],
                    "endCondition": {"type": "occurrences", "value": "4"},
                },
            }
        },
    )


class EventUpdate(BaseModel):
    """
    Partial update for an event, an occurrence or a tail of a series.

    All fields are optional; only fields explicitly provided apply (a field
    sent as null clears it). Use UpdateScope to pick the occurrences.

    Fields:
        title ... metadata: Shared detail fields (see DETAIL_FIELD_MAP)
        start_date_time / end_date_time: New occurrence window
        is_recurring: Accepted only when unchanged
        recurrence_pattern: Pattern fields merged over the stored pattern
        registration_start_date / registration_end_date: Registration window
        online_details / er_metadata / meeting_type / approval_type /
            timezone: Occurrence-local values merged into each affected row
        expected_version: Reject the update if the target row moved on
    """

    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = Field(default=None, max_length=255)
    short_description: Optional[str] = Field(default=None, alias="shortDescription", max_length=255)
    description: Optional[str] = Field(default=None)
    event_type: Optional[str] = Field(default=None, alias="eventType")
    is_restricted: Optional[bool] = Field(default=None, alias="isRestricted")

    location: Optional[str] = Field(default=None, max_length=255)
    latitude: Optional[float] = Field(default=None)
    longitude: Optional[float] = Field(default=None)
    online_provider: Optional[str] = Field(default=None, alias="onlineProvider")
    meeting_details: Optional[Dict[str, Any]] = Field(default=None, alias="meetingDetails")
    recordings: Optional[Dict[str, Any]] = Field(default=None)

    max_attendees: Optional[int] = Field(default=None, alias="maxAttendees", ge=0)
    status: Optional[str] = Field(default=None)
    attendees: Optional[List[str]] = Field(default=None)
    ideal_time: Optional[int] = Field(default=None, alias="idealTime")
    metadata: Optional[Dict[str, Any]] = Field(default=None)

    start_date_time: Optional[Any] = Field(default=None, alias="startDatetime")
    end_date_time: Optional[Any] = Field(default=None, alias="endDatetime")

    is_recurring: Optional[bool] = Field(default=None, alias="isRecurring")
    recurrence_pattern: Optional[RecurrencePattern] = Field(default=None, alias="recurrencePattern")

    registration_start_date: Optional[Any] = Field(default=None, alias="registrationStartDate")
    registration_end_date: Optional[Any] = Field(default=None, alias="registrationEndDate")
    auto_enroll: Optional[bool] = Field(default=None, alias="autoEnroll")
    platform_integration: Optional[bool] = Field(default=None, alias="platformIntegration")

    online_details: Optional[Dict[str, Any]] = Field(default=None, alias="onlineDetails")
    er_metadata: Optional[Dict[str, Any]] = Field(default=None, alias="erMetaData")
    meeting_type: Optional[str] = Field(default=None, alias="meetingType")
    approval_type: Optional[str] = Field(default=None, alias="approvalType")
    timezone: Optional[str] = Field(default=None)

    expected_version: Optional[int] = Field(default=None, alias="expectedVersion")
    updated_by: Optional[str] = Field(default=None, alias="updatedBy")

    def provided(self) -> Set[str]:
        """Names of data fields explicitly present in the delta."""
        return set(self.model_fields_set) - {"expected_version", "updated_by"}

    def detail_changes(self) -> Dict[str, Any]:
        """EventDetail column -> new value for provided shared fields."""
        return {
            column: getattr(self, field)
            for field, column in DETAIL_FIELD_MAP.items()
            if field in self.model_fields_set
        }

    def occurrence_fields(self) -> Set[str]:
        return self.provided() & set(OCCURRENCE_FIELDS)

    def time_fields(self) -> Set[str]:
        return self.provided() & set(TIME_FIELDS)

    def registration_fields(self) -> Set[str]:
        return self.provided() & set(REGISTRATION_FIELDS)

    def event_fields(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in EVENT_FIELDS if name in self.model_fields_set}

    @property
    def changes_pattern(self) -> bool:
        return (
            "recurrence_pattern" in self.model_fields_set
            and self.recurrence_pattern is not None
            and not self.recurrence_pattern.is_empty()
        )


class DateRange(BaseModel):
    """Inclusive instant range; either bound may be omitted."""

    after: Optional[datetime] = None
    before: Optional[datetime] = None

    @field_validator("after", "before")
    @classmethod
    def normalize_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_utc(v) if v is not None else None


class OccurrenceSearch(BaseModel):
    """
    Filters for searching occurrences across all events.

    Date filters:
        date: Occurrences overlapping the range
        start_date: Occurrences starting within the range
        end_date: Occurrences ending within the range
        start_date + end_date: Occurrences overlapping
            [start_date.after, end_date.before]

    Other filters:
        event_type: Any of the given kinds
        title: Case-insensitive substring of the title in effect
        status: Any of the given detail statuses (default ["live"])
        cohort_id: metadata.cohortId of the detail in effect
        created_by: Creator of the occurrence

    With no filter at all only live occurrences that have not ended match.
    """

    model_config = ConfigDict(populate_by_name=True)

    date: Optional[DateRange] = Field(default=None)
    start_date: Optional[DateRange] = Field(default=None, alias="startDate")
    end_date: Optional[DateRange] = Field(default=None, alias="endDate")
    event_type: Optional[List[str]] = Field(default=None, alias="eventType")
    title: Optional[str] = Field(default=None)
    status: Optional[List[str]] = Field(default=None)
    cohort_id: Optional[str] = Field(default=None, alias="cohortId")
    created_by: Optional[str] = Field(default=None, alias="createdBy")

    limit: int = Field(default=200, ge=1)
    offset: int = Field(default=0, ge=0)

    def has_filters(self) -> bool:
        return bool(self.model_fields_set - {"limit", "offset"})


# ============================================================================
# Response Schemas
# ============================================================================


class OccurrenceResponse(BaseModel):
    """One occurrence with the GUID of the detail in effect for it."""

    guid: str = Field(..., description="Occurrence GUID (rep_xxx)")
    detail_guid: str = Field(..., description="EventDetail GUID (edt_xxx)")
    start_date_time: datetime
    end_date_time: datetime
    online_details: Optional[Dict[str, Any]] = None
    er_metadata: Optional[Dict[str, Any]] = None
    version: int

    @field_serializer("start_date_time", "end_date_time")
    @classmethod
    def serialize_datetime_utc(cls, v: datetime) -> str:
        """Serialize datetime as ISO 8601 with explicit UTC timezone."""
        return isoformat_z(v)

    @classmethod
    def from_model(cls, repetition) -> "OccurrenceResponse":
        return cls(
            guid=repetition.guid,
            detail_guid=repetition.detail.guid,
            start_date_time=repetition.start_date_time,
            end_date_time=repetition.end_date_time,
            online_details=repetition.online_details,
            er_metadata=repetition.er_metadata,
            version=repetition.version,
        )


class EventDetailResponse(BaseModel):
    """Shared content of an event."""

    guid: str = Field(..., description="EventDetail GUID (edt_xxx)")
    title: str
    short_description: Optional[str] = None
    description: Optional[str] = None
    event_type: str
    is_restricted: bool
    location: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    online_provider: Optional[str] = None
    max_attendees: int
    status: str
    attendees: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="metadata_json")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class EventResponse(BaseModel):
    """
    Event with its main detail and ordered occurrences.
    """

    guid: str = Field(..., description="Event GUID (evt_xxx)")
    is_recurring: bool
    recurrence_pattern: Optional[Dict[str, Any]] = None
    recurrence_end_date: Optional[datetime] = None
    registration_start_date: Optional[datetime] = None
    registration_end_date: Optional[datetime] = None
    auto_enroll: bool
    platform_integration: bool
    version: int
    detail: EventDetailResponse
    occurrences: List[OccurrenceResponse]

    @field_serializer("recurrence_end_date", "registration_start_date", "registration_end_date")
    @classmethod
    def serialize_datetime_utc(cls, v: Optional[datetime]) -> Optional[str]:
        """Serialize datetime as ISO 8601 with explicit UTC timezone."""
        return isoformat_z(v) if v else None

    @classmethod
    def from_aggregate(cls, aggregate) -> "EventResponse":
        event = aggregate.event
        return cls(
            guid=event.guid,
            is_recurring=event.is_recurring,
            recurrence_pattern=event.recurrence_pattern,
            recurrence_end_date=event.recurrence_end_date,
            registration_start_date=event.registration_start_date,
            registration_end_date=event.registration_end_date,
            auto_enroll=event.auto_enroll,
            platform_integration=event.platform_integration,
            version=event.version,
            detail=EventDetailResponse.model_validate(aggregate.detail),
            occurrences=[OccurrenceResponse.from_model(r) for r in aggregate.occurrences],
        )


class OccurrenceSearchItem(OccurrenceResponse):
    """Search hit: the occurrence with its event and the detail in effect."""

    event_guid: str = Field(..., description="Event GUID (evt_xxx)")
    title: str
    event_type: str
    status: str
    is_ended: bool

    @classmethod
    def from_search(cls, repetition, now: datetime) -> "OccurrenceSearchItem":
        detail = repetition.detail
        return cls(
            **dict(OccurrenceResponse.from_model(repetition)),
            event_guid=repetition.event.guid,
            title=detail.title,
            event_type=detail.event_type,
            status=detail.status,
            is_ended=repetition.has_ended(now),
        )


class OccurrenceSearchResponse(BaseModel):
    """One page of search hits and the number of hits over all pages."""

    total_count: int
    occurrences: List[OccurrenceSearchItem]
