"""
Event aggregate store.

Persists the Event / EventDetail / EventRepetition aggregate and exposes the
queries used by the update propagation engine. AggregateStore is the
contract; SqlAlchemyAggregateStore implements it over one SQLAlchemy
session.

Design:
- Every multi-row write of a request runs inside transaction(): commit on
  success, rollback on any error, so no partial aggregate is ever visible
- SQLAlchemy failures surface as StoreError and stale version counters as
  ConflictError; nothing is retried here
- Callers may pass should_cancel; it is consulted right before the commit
  and a cancelled unit of work is rolled back
- Internal integer ids never leave the store; lookups go through GUIDs
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from recurring_events.src.models import DetailStatus, Event, EventDetail, EventRepetition
from recurring_events.src.schemas.event import DateRange, OccurrenceSearch
from recurring_events.src.services.exceptions import (
    ConflictError,
    NotFoundError,
    OperationCancelledError,
    StoreError,
)
from recurring_events.src.services.guid import GuidService
from recurring_events.src.services.occurrence_generator import OccurrenceWindow
from recurring_events.src.utils.logging_config import get_logger


logger = get_logger("db")

CancelCheck = Callable[[], bool]


@dataclass(frozen=True)
class AggregateId:
    """Identity of a stored aggregate: Event GUID and its occurrence GUIDs in order."""

    event_guid: str
    occurrence_guids: Tuple[str, ...] = ()


@dataclass
class EventAggregate:
    """An Event with its main detail and ordered occurrences."""

    event: Event
    detail: EventDetail
    occurrences: List[EventRepetition] = field(default_factory=list)

    @property
    def windows(self) -> List[OccurrenceWindow]:
        return [OccurrenceWindow(r.start_date_time, r.end_date_time) for r in self.occurrences]

    @property
    def forked_details(self) -> List[EventDetail]:
        """Distinct details other than the main one referenced by occurrences."""
        seen: Dict[int, EventDetail] = {}
        for occurrence in self.occurrences:
            if occurrence.event_detail_id != self.detail.id:
                seen.setdefault(occurrence.event_detail_id, occurrence.detail)
        return list(seen.values())


class AggregateStore(ABC):
    """Persistence contract of the scheduling engine."""

    @abstractmethod
    def transaction(self, should_cancel: Optional[CancelCheck] = None):
        """Context manager delimiting one atomic unit of work."""

    @abstractmethod
    def create_aggregate(
        self,
        detail: EventDetail,
        event: Event,
        windows: Sequence[OccurrenceWindow],
        occurrence_defaults: Optional[Dict] = None,
        should_cancel: Optional[CancelCheck] = None,
    ) -> AggregateId:
        """Insert detail, event and one repetition per window, all or nothing."""

    @abstractmethod
    def load_aggregate(self, event_guid: str) -> EventAggregate:
        """Load an aggregate or raise NotFoundError."""

    @abstractmethod
    def get_occurrence(self, occurrence_guid: str) -> EventRepetition:
        """Load one occurrence or raise NotFoundError."""

    @abstractmethod
    def list_occurrences(self, event_id: int, after: Optional[datetime] = None) -> List[EventRepetition]:
        """Occurrences of an event ordered by start, optionally starting at or after an instant."""

    @abstractmethod
    def search_occurrences(self, filters: OccurrenceSearch,
                           now: datetime) -> Tuple[int, List[EventRepetition]]:
        """One page of occurrences matching filters and the total match count."""

    @abstractmethod
    def fork_detail_for_occurrence(self, occurrence: EventRepetition,
                                   user_id: Optional[str] = None) -> EventDetail:
        """Clone the occurrence's detail and repoint the occurrence to the clone."""

    @abstractmethod
    def add_occurrences(self, event: Event, detail: EventDetail,
                        windows: Sequence[OccurrenceWindow],
                        defaults: Optional[Dict] = None,
                        user_id: Optional[str] = None) -> List[EventRepetition]:
        """Materialize windows as repetitions of event."""

    @abstractmethod
    def delete_occurrences(self, occurrences: Iterable[EventRepetition]) -> List[str]:
        """Delete repetitions and the forks only they referenced."""

    @abstractmethod
    def delete_aggregate(self, event: Event) -> List[str]:
        """Delete an event, its repetitions, its detail and its forks."""


class SqlAlchemyAggregateStore(AggregateStore):
    """
    AggregateStore over a SQLAlchemy session.

    Usage:
        >>> store = SqlAlchemyAggregateStore(db_session)
        >>> aggregate_id = store.create_aggregate(detail, event, windows)
        >>> aggregate = store.load_aggregate(aggregate_id.event_guid)
    """

    def __init__(self, db: Session):
        """
        Initialize the store.

        Args:
            db: SQLAlchemy database session
        """
        self.db = db

    # ========================================================================
    # Transactions
    # ========================================================================

    @contextmanager
    def transaction(self, should_cancel: Optional[CancelCheck] = None) -> Iterator["SqlAlchemyAggregateStore"]:
        """
        Run the enclosed writes as one unit.

        Raises:
            OperationCancelledError: should_cancel() returned True before commit
            ConflictError: A versioned row changed underneath this session
            StoreError: Any other SQLAlchemy failure
        """
        try:
            yield self
            self.db.flush()
            if should_cancel is not None and should_cancel():
                raise OperationCancelledError()
            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            logger.warning(f"Concurrent modification detected: {e}")
            raise ConflictError("Event was modified by another request") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Event store failure, rolled back: {e}")
            raise StoreError(f"Event store failure: {e}") from e
        except Exception:
            self.db.rollback()
            raise

    # ========================================================================
    # Creation
    # ========================================================================

    def create_aggregate(
        self,
        detail: EventDetail,
        event: Event,
        windows: Sequence[OccurrenceWindow],
        occurrence_defaults: Optional[Dict] = None,
        should_cancel: Optional[CancelCheck] = None,
    ) -> AggregateId:
        """
        Insert a new aggregate atomically.

        Args:
            detail: Transient EventDetail
            event: Transient Event (its detail is set here)
            windows: Ordered occurrence windows (at least one)
            occurrence_defaults: online_details / er_metadata copied to every row
            should_cancel: Optional cancellation check consulted before commit

        Returns:
            AggregateId with the event GUID and ordered occurrence GUIDs
        """
        if not windows:
            raise ValueError("An aggregate needs at least one occurrence")

        with self.transaction(should_cancel):
            self.db.add(detail)
            event.detail = detail
            self.db.add(event)
            self.db.flush()
            repetitions = self.add_occurrences(
                event, detail, windows, occurrence_defaults, user_id=event.created_by
            )

        aggregate_id = AggregateId(
            event_guid=event.guid,
            occurrence_guids=tuple(r.guid for r in repetitions),
        )
        logger.info(
            f"Stored event {aggregate_id.event_guid} with "
            f"{len(aggregate_id.occurrence_guids)} occurrence(s)"
        )
        return aggregate_id

    def add_occurrences(
        self,
        event: Event,
        detail: EventDetail,
        windows: Sequence[OccurrenceWindow],
        defaults: Optional[Dict] = None,
        user_id: Optional[str] = None,
    ) -> List[EventRepetition]:
        """Stage one repetition per window (flushed, not committed)."""
        defaults = defaults or {}
        repetitions = []
        for window in windows:
            repetition = EventRepetition(
                event=event,
                detail=detail,
                start_date_time=window.start,
                end_date_time=window.end,
                online_details=_copy_json(defaults.get("online_details")),
                er_metadata=_copy_json(defaults.get("er_metadata")),
                created_by=user_id,
                updated_by=user_id,
            )
            self.db.add(repetition)
            repetitions.append(repetition)
        self.db.flush()
        return repetitions

    # ========================================================================
    # Queries
    # ========================================================================

    def get_event(self, event_guid: str) -> Event:
        """
        Get an event by GUID.

        Raises:
            NotFoundError: If the GUID is malformed or unknown
        """
        if not GuidService.validate_guid(event_guid, Event.GUID_PREFIX):
            raise NotFoundError("Event", event_guid)
        event = (
            self.db.query(Event)
            .filter(Event.uuid == Event.parse_guid(event_guid))
            .first()
        )
        if not event:
            raise NotFoundError("Event", event_guid)
        return event

    def load_aggregate(self, event_guid: str) -> EventAggregate:
        event = self.get_event(event_guid)
        return EventAggregate(
            event=event,
            detail=event.detail,
            occurrences=self.list_occurrences(event.id),
        )

    def get_occurrence(self, occurrence_guid: str) -> EventRepetition:
        if not GuidService.validate_guid(occurrence_guid, EventRepetition.GUID_PREFIX):
            raise NotFoundError("EventRepetition", occurrence_guid)
        occurrence = (
            self.db.query(EventRepetition)
            .filter(EventRepetition.uuid == EventRepetition.parse_guid(occurrence_guid))
            .first()
        )
        if not occurrence:
            raise NotFoundError("EventRepetition", occurrence_guid)
        return occurrence

    def list_occurrences(self, event_id: int, after: Optional[datetime] = None) -> List[EventRepetition]:
        query = self.db.query(EventRepetition).filter(EventRepetition.event_id == event_id)
        if after is not None:
            query = query.filter(EventRepetition.start_date_time >= after)
        return query.order_by(EventRepetition.start_date_time.asc()).all()

    def search_occurrences(self, filters: OccurrenceSearch,
                           now: datetime) -> Tuple[int, List[EventRepetition]]:
        """
        Search occurrences of every event.

        Filters apply to the occurrence window and to the detail in effect
        for the occurrence (its fork if it has one).

        Args:
            filters: OccurrenceSearch
            now: Reference instant for the default upcoming-only search

        Returns:
            (total number of matches, requested page ordered by start)
        """
        query = self.db.query(EventRepetition).join(EventRepetition.detail)
        start = EventRepetition.start_date_time
        end = EventRepetition.end_date_time

        if not filters.has_filters():
            query = query.filter(end > now)

        if filters.date is not None:
            query = _overlapping(query, filters.date.after, filters.date.before)
        if filters.start_date is not None and filters.end_date is not None:
            query = _overlapping(query, filters.start_date.after, filters.end_date.before)
        elif filters.start_date is not None:
            query = _within(query, start, filters.start_date)
        elif filters.end_date is not None:
            query = _within(query, end, filters.end_date)

        if filters.event_type:
            query = query.filter(EventDetail.event_type.in_(filters.event_type))
        if filters.title:
            query = query.filter(EventDetail.title.icontains(filters.title, autoescape=True))
        query = query.filter(EventDetail.status.in_(filters.status or [DetailStatus.LIVE.value]))
        if filters.cohort_id:
            query = query.filter(EventDetail.metadata_json["cohortId"].as_string() == filters.cohort_id)
        if filters.created_by:
            query = query.filter(EventRepetition.created_by == filters.created_by)

        total = query.count()
        rows = (
            query.order_by(start.asc(), EventRepetition.id.asc())
            .offset(filters.offset)
            .limit(filters.limit)
            .all()
        )
        logger.debug(f"Occurrence search matched {total}, returning {len(rows)}")
        return total, rows

    def first_upcoming_occurrence(self, event_id: int, now: datetime) -> Optional[EventRepetition]:
        """Earliest occurrence that has not ended yet."""
        return (
            self.db.query(EventRepetition)
            .filter(
                EventRepetition.event_id == event_id,
                EventRepetition.end_date_time > now,
            )
            .order_by(EventRepetition.start_date_time.asc())
            .first()
        )

    def count_detail_references(self, detail_id: int) -> int:
        """Number of repetitions pointing at a detail."""
        return (
            self.db.query(func.count(EventRepetition.id))
            .filter(EventRepetition.event_detail_id == detail_id)
            .scalar() or 0
        )

    # ========================================================================
    # Forks and clones
    # ========================================================================

    def clone_detail(self, detail: EventDetail, user_id: Optional[str] = None) -> EventDetail:
        """Stage a copy of detail that records its origin."""
        clone = EventDetail(
            **detail.shared_values(),
            forked_from_id=detail.id,
            created_by=user_id or detail.created_by,
            updated_by=user_id,
        )
        self.db.add(clone)
        self.db.flush()
        return clone

    def fork_detail_for_occurrence(self, occurrence: EventRepetition,
                                   user_id: Optional[str] = None) -> EventDetail:
        fork = self.clone_detail(occurrence.detail, user_id)
        occurrence.detail = fork
        occurrence.touch(user_id)
        self.db.flush()
        logger.info(f"Forked detail {fork.guid} for occurrence {occurrence.guid}")
        return fork

    def repoint_occurrences(self, occurrences: Iterable[EventRepetition], detail: EventDetail,
                            user_id: Optional[str] = None) -> None:
        for occurrence in occurrences:
            occurrence.detail = detail
            occurrence.touch(user_id)
        self.db.flush()

    def clone_event(self, event: Event, detail: EventDetail,
                    user_id: Optional[str] = None) -> Event:
        """Stage a new series root copying event's settings onto detail."""
        clone = Event(
            detail=detail,
            is_recurring=event.is_recurring,
            recurrence_pattern=_copy_json(event.recurrence_pattern),
            recurrence_end_date=event.recurrence_end_date,
            auto_enroll=event.auto_enroll,
            registration_start_date=event.registration_start_date,
            registration_end_date=event.registration_end_date,
            platform_integration=event.platform_integration,
            created_by=user_id or event.created_by,
            updated_by=user_id,
        )
        self.db.add(clone)
        self.db.flush()
        return clone

    # ========================================================================
    # Deletion
    # ========================================================================

    def delete_occurrences(self, occurrences: Iterable[EventRepetition]) -> List[str]:
        occurrences = list(occurrences)
        if not occurrences:
            return []
        removed = [o.guid for o in occurrences]
        detail_ids = {o.event_detail_id for o in occurrences}
        event_ids = {o.event_id for o in occurrences}
        for occurrence in occurrences:
            self.db.delete(occurrence)
        self.db.flush()
        self._expire_repetitions(event_ids)
        self._prune_details(detail_ids)
        return removed

    def delete_aggregate(self, event: Event) -> List[str]:
        occurrences = self.list_occurrences(event.id)
        removed = [o.guid for o in occurrences]
        detail_ids = {o.event_detail_id for o in occurrences} | {event.event_detail_id}
        for occurrence in occurrences:
            self.db.delete(occurrence)
        self.db.flush()
        self.db.expire(event, ["repetitions"])
        self.db.delete(event)
        self.db.flush()
        self._prune_details(detail_ids)
        logger.info(f"Deleted event {event.guid} and {len(removed)} occurrence(s)")
        return removed

    def _prune_details(self, detail_ids: Set[int]) -> None:
        """Delete details that no event or repetition references any more."""
        for detail_id in detail_ids:
            referenced = (
                self.db.query(Event.id).filter(Event.event_detail_id == detail_id).first()
                or self.db.query(EventRepetition.id)
                .filter(EventRepetition.event_detail_id == detail_id)
                .first()
            )
            if referenced:
                continue
            detail = self.db.get(EventDetail, detail_id)
            if detail is not None:
                self.db.delete(detail)
        self.db.flush()

    def _expire_repetitions(self, event_ids: Set[int]) -> None:
        for event_id in event_ids:
            event = self.db.get(Event, event_id)
            if event is not None:
                self.db.expire(event, ["repetitions"])

    def referenced_outside(self, detail_id: int, occurrence_ids: Set[int]) -> bool:
        """True if a repetition outside occurrence_ids uses detail_id."""
        query = self.db.query(EventRepetition.id).filter(EventRepetition.event_detail_id == detail_id)
        if occurrence_ids:
            query = query.filter(EventRepetition.id.notin_(occurrence_ids))
        return query.first() is not None


def _copy_json(value):
    if isinstance(value, dict):
        return {k: _copy_json(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_copy_json(v) for v in value]
    return value


def _overlapping(query, after: Optional[datetime], before: Optional[datetime]):
    if before is not None:
        query = query.filter(EventRepetition.start_date_time <= before)
    if after is not None:
        query = query.filter(EventRepetition.end_date_time >= after)
    return query


def _within(query, column, bounds: DateRange):
    if bounds.after is not None:
        query = query.filter(column >= bounds.after)
    if bounds.before is not None:
        query = query.filter(column <= bounds.before)
    return query
