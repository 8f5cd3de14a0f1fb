"""
EventRepetition model for concrete occurrences.

Every event, recurring or not, has at least one repetition row. Rows of one
Event are strictly ordered by start and never overlap.

online_details holds the per-occurrence meeting binding (meeting id, join
url, and the meetingType/approvalType/timezone settings), since generated
provider meetings differ per occurrence. er_metadata is free-form
occurrence metadata.
"""

from datetime import datetime, timedelta

from sqlalchemy import Column, Integer, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import relationship

from recurring_events.src.models import Base
from recurring_events.src.models.mixins import GuidMixin, AuditMixin
from recurring_events.src.models.types import JSONBType, UTCDateTime


class EventRepetition(Base, GuidMixin, AuditMixin):
    """
    One occurrence of an event.

    Attributes:
        id: Primary key (internal, never exposed)
        uuid: UUIDv7 for external identification (inherited from GuidMixin)
        guid: GUID string property (rep_xxx, inherited from GuidMixin)
        event_id: FK to the owning Event
        event_detail_id: FK to the detail in effect for this occurrence;
            equals the Event's detail unless forked
        online_details: Per-occurrence meeting binding (JSON)
        er_metadata: Per-occurrence metadata (JSON)
        start_date_time / end_date_time: Occurrence window (UTC)
        version: Optimistic concurrency counter
    """

    __tablename__ = "event_repetitions"

    GUID_PREFIX = "rep"

    id = Column(Integer, primary_key=True, autoincrement=True)

    event_id = Column(
        Integer,
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    event_detail_id = Column(
        Integer,
        ForeignKey("event_details.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    online_details = Column(JSONBType, nullable=True)
    er_metadata = Column(JSONBType, nullable=True)

    start_date_time = Column(UTCDateTime(), nullable=False)
    end_date_time = Column(UTCDateTime(), nullable=False)

    version = Column(Integer, nullable=False, default=1)

    event = relationship("Event", back_populates="repetitions")
    detail = relationship("EventDetail", foreign_keys=[event_detail_id])

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_repetitions_event_start", "event_id", "start_date_time"),
        CheckConstraint(
            "start_date_time < end_date_time",
            name="ck_repetitions_window_order"
        ),
    )

    @property
    def duration(self) -> timedelta:
        return self.end_date_time - self.start_date_time

    def has_ended(self, now: datetime) -> bool:
        """True once the occurrence end is at or before now."""
        return self.end_date_time <= now

    def __repr__(self) -> str:
        return (
            f"<EventRepetition("
            f"id={self.id}, "
            f"event_id={self.event_id}, "
            f"start={self.start_date_time}, "
            f"end={self.end_date_time}"
            f")>"
        )
