"""
Service layer for the recurring events engine.

Only lightweight modules are re-exported here; models import the GUID
service at class definition time. Import the engine services directly:

    from recurring_events.src.services.event_service import EventService
"""

from recurring_events.src.services.exceptions import (
    ConflictError,
    GenerationError,
    GuardError,
    NotFoundError,
    OperationCancelledError,
    RuleViolation,
    ServiceError,
    StoreError,
    ValidationError,
)
from recurring_events.src.services.guid import GuidService

__all__ = [
    "ConflictError",
    "GenerationError",
    "GuardError",
    "NotFoundError",
    "OperationCancelledError",
    "RuleViolation",
    "ServiceError",
    "StoreError",
    "ValidationError",
    "GuidService",
]
