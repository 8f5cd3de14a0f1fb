"""
Custom exceptions for service layer.

Provides specific exception types for scheduling errors so callers can map
them to their own responses. Rule violations carry a stable code from
services.messages alongside the human readable text.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional


@dataclass(frozen=True)
class RuleViolation:
    """A single broken rule."""

    code: str
    message: str
    field: Optional[str] = None


class ServiceError(Exception):
    """Base exception for service layer errors."""
    pass


class _ViolationError(ServiceError):

    def __init__(self, violations: Iterable[RuleViolation]):
        self.violations: List[RuleViolation] = list(violations)
        self.message = "; ".join(v.message for v in self.violations)
        super().__init__(self.message)

    @property
    def codes(self) -> List[str]:
        return [v.code for v in self.violations]

    def has_code(self, code: str) -> bool:
        return code in self.codes


class ValidationError(_ViolationError):
    """Raised when a draft or delta breaks one or more rules."""


class GuardError(_ViolationError):
    """Raised when an update targets immutable or archived state."""


class GenerationError(ServiceError):
    """Raised when a pattern reaching the generator is contradictory."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(ServiceError):
    """Raised when a requested resource is not found."""

    def __init__(self, resource: str, identifier: any):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} {identifier} not found")


class StoreError(ServiceError):
    """Raised when the persistence layer fails."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConflictError(ServiceError):
    """Raised when a write races another write of the same aggregate."""

    def __init__(self, message: str, expected_version: Optional[int] = None,
                 actual_version: Optional[int] = None):
        self.message = message
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(message)


class OperationCancelledError(ServiceError):
    """Raised when the caller cancels an operation before it commits."""

    def __init__(self, message: str = "Operation cancelled before commit"):
        self.message = message
        super().__init__(message)
