"""
Pydantic schemas for the recurring events engine.

This module provides request and response models:
- recurrence: RecurrencePattern, EndCondition, Frequency, EndConditionType
- event: EventDraft, EventUpdate, UpdateScope, OccurrenceSearch and read models
"""

from recurring_events.src.schemas.recurrence import (
    EndCondition,
    EndConditionType,
    Frequency,
    RecurrencePattern,
)
from recurring_events.src.schemas.event import (
    DateRange,
    EventDetailResponse,
    EventDraft,
    EventResponse,
    EventUpdate,
    OccurrenceResponse,
    OccurrenceSearch,
    OccurrenceSearchItem,
    OccurrenceSearchResponse,
    UpdateScope,
)

__all__ = [
    "EndCondition",
    "EndConditionType",
    "Frequency",
    "RecurrencePattern",
    "DateRange",
    "EventDetailResponse",
    "EventDraft",
    "EventResponse",
    "EventUpdate",
    "OccurrenceResponse",
    "OccurrenceSearch",
    "OccurrenceSearchItem",
    "OccurrenceSearchResponse",
    "UpdateScope",
]
