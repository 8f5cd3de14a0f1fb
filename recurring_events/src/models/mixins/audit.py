"""
Audit mixin for SQLAlchemy models.

Records who created and last modified each aggregate row, plus the
timestamps of both. Users live in an external identity service, so the
attribution columns hold opaque user identifiers rather than foreign keys.

Design:
- created_by / created_at: set once on creation, never modified afterwards
- updated_by / updated_at: refreshed on every mutation
- Both user columns are nullable for system-initiated writes
"""

from sqlalchemy import Column, String

from recurring_events.src.models.types import UTCDateTime, utcnow


class AuditMixin:
    """
    Mixin providing attribution and timestamp columns.

    Usage:
        class Event(Base, GuidMixin, AuditMixin):
            __tablename__ = "events"
    """

    created_by = Column(String(64), nullable=True)
    updated_by = Column(String(64), nullable=True)

    created_at = Column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False)

    def touch(self, user_id=None) -> None:
        """Mark the row as modified now, optionally by the given user."""
        self.updated_at = utcnow()
        if user_id is not None:
            self.updated_by = user_id

    @property
    def audit(self) -> dict:
        """Attribution summary used in service responses."""
        return {
            "created_by": self.created_by,
            "created_at": self.created_at,
            "updated_by": self.updated_by,
            "updated_at": self.updated_at,
        }
