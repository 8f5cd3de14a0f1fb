"""
Event model, the recurrence root of an aggregate.

An Event owns exactly one main EventDetail and the EventRepetition rows that
materialize its occurrences. Recurring events store their pattern as JSON in
the camelCase shape accepted by the API:

    {
        "frequency": "weekly",
        "interval": 1,
        "daysOfWeek": [3, 5],
        "recurringStartDate": "2024-12-18T10:00:00Z",
        "endCondition": {"type": "occurrences", "value": "4"}
    }

Design Rationale:
- recurrence_end_date is denormalized from the pattern for range filtering
- version is an optimistic concurrency counter managed by the ORM; a stale
  flush raises StaleDataError, mapped to ConflictError by the store
- Non-recurring events store no pattern (NULL)
"""

from typing import Optional

from sqlalchemy import Column, Integer, Boolean, ForeignKey, Index
from sqlalchemy.orm import relationship

from recurring_events.src.models import Base
from recurring_events.src.models.mixins import GuidMixin, AuditMixin
from recurring_events.src.models.types import JSONBType, UTCDateTime


class Event(Base, GuidMixin, AuditMixin):
    """
    Recurrence root.

    Attributes:
        id: Primary key (internal, never exposed)
        uuid: UUIDv7 for external identification (inherited from GuidMixin)
        guid: GUID string property (evt_xxx, inherited from GuidMixin)
        event_detail_id: FK to the main EventDetail
        is_recurring: Whether the event repeats
        recurrence_pattern: Pattern JSON (NULL for non-recurring events)
        recurrence_end_date: End of the last occurrence the pattern allows
        auto_enroll: Enroll restricted attendees automatically
        registration_start_date / registration_end_date: Registration window
        platform_integration: False when reusing an existing provider meeting
        version: Optimistic concurrency counter

    Relationships:
        detail: Main EventDetail (many-to-one, CASCADE on delete)
        repetitions: Occurrences ordered by start (one-to-many, CASCADE)
    """

    __tablename__ = "events"

    GUID_PREFIX = "evt"

    id = Column(Integer, primary_key=True, autoincrement=True)

    event_detail_id = Column(
        Integer,
        ForeignKey("event_details.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    is_recurring = Column(Boolean, nullable=False, default=False)
    recurrence_pattern = Column(JSONBType, nullable=True)
    recurrence_end_date = Column(UTCDateTime(), nullable=True, index=True)

    auto_enroll = Column(Boolean, nullable=False, default=False)
    registration_start_date = Column(UTCDateTime(), nullable=True)
    registration_end_date = Column(UTCDateTime(), nullable=True)
    platform_integration = Column(Boolean, nullable=False, default=True)

    version = Column(Integer, nullable=False, default=1)

    detail = relationship("EventDetail", foreign_keys=[event_detail_id])
    repetitions = relationship(
        "EventRepetition",
        back_populates="event",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="EventRepetition.start_date_time",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_events_recurring_end", "is_recurring", "recurrence_end_date"),
    )

    @property
    def end_condition(self) -> Optional[dict]:
        if not self.recurrence_pattern:
            return None
        return self.recurrence_pattern.get("endCondition")

    def __repr__(self) -> str:
        return (
            f"<Event("
            f"id={self.id}, "
            f"recurring={self.is_recurring}, "
            f"end={self.recurrence_end_date}, "
            f"version={self.version}"
            f")>"
        )
