"""
EventDetail model for the content shared by occurrences.

One EventDetail is created with every Event and referenced by the Event and
all of its EventRepetition rows. When a single occurrence (or a tail of the
series) diverges, the detail is cloned and the diverging rows are repointed
to the clone; forked_from_id records where the clone came from.

Design Rationale:
- Occurrences hold a foreign key to the detail, never a copy, so one update
  to the shared detail is visible to every occurrence that references it
- Forks are plain EventDetail rows; the reference count is derived from the
  repetitions table, not stored
- status "archived" freezes the whole aggregate against edits
"""

import enum
from typing import Any, Dict

from sqlalchemy import (
    Column, Integer, String, Boolean, Float, Text, ForeignKey
)
from sqlalchemy.orm import relationship

from recurring_events.src.models import Base
from recurring_events.src.models.mixins import GuidMixin, AuditMixin
from recurring_events.src.models.types import JSONBType


class EventType(enum.Enum):
    """Event kind."""
    ONLINE = "online"
    OFFLINE = "offline"


class DetailStatus(enum.Enum):
    """Lifecycle status of an event detail."""
    LIVE = "live"
    DRAFT = "draft"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


# Columns copied verbatim when a detail is forked or cloned
SHARED_FIELDS = (
    "title",
    "short_description",
    "description",
    "event_type",
    "is_restricted",
    "location",
    "latitude",
    "longitude",
    "online_provider",
    "max_attendees",
    "recordings",
    "status",
    "attendees",
    "meeting_details",
    "ideal_time",
    "metadata_json",
)


class EventDetail(Base, GuidMixin, AuditMixin):
    """
    Shared event content.

    Attributes:
        id: Primary key (internal, never exposed)
        uuid: UUIDv7 for external identification (inherited from GuidMixin)
        guid: GUID string property (edt_xxx, inherited from GuidMixin)
        title: Event title
        short_description: One line summary
        description: Full description
        event_type: "online" or "offline"
        is_restricted: Restricted events have an explicit attendee list and
            no public registration window
        location / latitude / longitude: Venue for offline events
        online_provider: Meeting provider name for online events
        max_attendees: Capacity (0 = unlimited)
        recordings: Recording metadata (JSON)
        status: live, draft, inactive or archived
        attendees: Attendee identifiers for restricted events (JSON list)
        meeting_details: Provider meeting configuration (JSON)
        ideal_time: Suggested duration in minutes
        metadata_json: Free-form metadata (JSON)
        forked_from_id: Detail this one was cloned from (NULL for originals)
    """

    __tablename__ = "event_details"

    GUID_PREFIX = "edt"

    id = Column(Integer, primary_key=True, autoincrement=True)

    title = Column(String(255), nullable=False)
    short_description = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    event_type = Column(String(20), nullable=False, default=EventType.OFFLINE.value)
    is_restricted = Column(Boolean, nullable=False, default=False)

    # Offline venue
    location = Column(String(255), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    # Online meeting
    online_provider = Column(String(255), nullable=True)
    meeting_details = Column(JSONBType, nullable=True)
    recordings = Column(JSONBType, nullable=True)

    max_attendees = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=DetailStatus.LIVE.value, index=True)
    attendees = Column(JSONBType, nullable=True)
    ideal_time = Column(Integer, nullable=True)
    metadata_json = Column("metadata", JSONBType, nullable=True)

    forked_from_id = Column(
        Integer,
        ForeignKey("event_details.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    forked_from = relationship("EventDetail", remote_side=[id])

    @property
    def is_archived(self) -> bool:
        return self.status == DetailStatus.ARCHIVED.value

    @property
    def is_online(self) -> bool:
        return self.event_type == EventType.ONLINE.value

    def shared_values(self) -> Dict[str, Any]:
        """Copy of the shared columns, used to build forks."""
        values = {}
        for name in SHARED_FIELDS:
            value = getattr(self, name)
            if isinstance(value, dict):
                value = dict(value)
            elif isinstance(value, list):
                value = list(value)
            values[name] = value
        return values

    def __repr__(self) -> str:
        return (
            f"<EventDetail("
            f"id={self.id}, "
            f"title='{self.title}', "
            f"type={self.event_type}, "
            f"status={self.status}"
            f")>"
        )
