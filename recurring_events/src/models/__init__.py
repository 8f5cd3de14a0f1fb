"""
SQLAlchemy models for the recurring events engine.

This module provides the declarative base class and imports all models
to ensure they are registered with SQLAlchemy's metadata.
"""

from sqlalchemy.orm import declarative_base

# Create the declarative base class
# All models will inherit from this Base class
Base = declarative_base()


# Import all models here so they are registered with Base.metadata
# This is required for Alembic autogenerate to detect models
from recurring_events.src.models.event_detail import (
    EventDetail, EventType, DetailStatus, SHARED_FIELDS
)
from recurring_events.src.models.event import Event
from recurring_events.src.models.event_repetition import EventRepetition

__all__ = [
    "Base",
    "EventDetail",
    "EventType",
    "DetailStatus",
    "SHARED_FIELDS",
    "Event",
    "EventRepetition",
]
