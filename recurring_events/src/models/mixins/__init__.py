"""
Model mixins for shared functionality across aggregate entities.

This module provides reusable SQLAlchemy mixins inherited by the
Event, EventDetail and EventRepetition models.
"""

from recurring_events.src.models.mixins.guid import GuidMixin
from recurring_events.src.models.mixins.audit import AuditMixin

__all__ = ["GuidMixin", "AuditMixin"]
