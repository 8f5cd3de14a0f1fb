"""
Event service for creating, updating and deleting recurring events.

Entry point of the scheduling engine. Wires the recurrence validator, the
occurrence generator, the aggregate store and the update propagation engine
together and owns the transaction boundary of every request.

Design:
- Creation is two-phase: validate_and_expand() checks a draft and produces
  its occurrence windows without touching the database; create_series()
  persists them atomically
- Updates and deletes address one occurrence plus an UpdateScope
- search_occurrences() reads across events with date, kind, title,
  status, cohort and creator filters
- Every multi-row write runs in one store transaction; nothing partial is
  ever committed
- An optional publish hook is notified after each commit; hook failures are
  logged and never undo the commit
"""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from recurring_events.src.config.settings import AppSettings, get_settings
from recurring_events.src.models import Event, EventDetail
from recurring_events.src.schemas.event import (
    EventDraft,
    EventResponse,
    EventUpdate,
    OccurrenceResponse,
    OccurrenceSearch,
    OccurrenceSearchItem,
    OccurrenceSearchResponse,
    UpdateScope,
)
from recurring_events.src.services import messages
from recurring_events.src.services.aggregate_store import (
    AggregateId,
    CancelCheck,
    SqlAlchemyAggregateStore,
)
from recurring_events.src.services.exceptions import GuardError, ValidationError
from recurring_events.src.services.occurrence_generator import (
    OccurrenceWindow,
    generate_occurrences,
    single_occurrence,
)
from recurring_events.src.services.recurrence_validator import validate_draft, violation
from recurring_events.src.services.update_propagation import (
    UpdateOutcome,
    UpdatePropagationEngine,
)
from recurring_events.src.utils.calendar import Clock, SystemClock, to_utc
from recurring_events.src.utils.logging_config import get_logger


logger = get_logger("services")


class LifecycleAction(str, enum.Enum):
    """Kind of change announced to the publish hook."""
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class LifecycleNotice:
    """
    Announcement of a committed change.

    Attributes:
        action: LifecycleAction
        event_guid: Event the change belongs to (evt_xxx)
        occurrence_guids: Occurrences created, changed or removed
        scope: UpdateScope of updates and deletes, None on creation
    """

    action: LifecycleAction
    event_guid: str
    occurrence_guids: Tuple[str, ...] = ()
    scope: Optional[UpdateScope] = None


Publisher = Callable[[LifecycleNotice], Any]


class EventService:
    """
    Service for managing recurring events.

    Usage:
        >>> service = EventService(db_session)
        >>> draft, windows = service.validate_and_expand(EventDraft(**payload))
        >>> aggregate_id = service.create_series(draft, windows)
        >>> outcome = service.propose_update(
        ...     aggregate_id.occurrence_guids[2],
        ...     UpdateScope.THIS_AND_FOLLOWING,
        ...     EventUpdate(title="Renamed"),
        ... )
    """

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        settings: Optional[AppSettings] = None,
        publish: Optional[Publisher] = None,
    ):
        """
        Initialize event service.

        Args:
            db: SQLAlchemy database session
            clock: Source of the current instant (default: system UTC clock)
            settings: Engine settings (default: get_settings())
            publish: Optional hook called with a LifecycleNotice after commit
        """
        self.db = db
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
        self.publish = publish
        self.store = SqlAlchemyAggregateStore(db)
        self.engine = UpdatePropagationEngine(self.store, self.creation_limit)

    @property
    def creation_limit(self) -> int:
        return self.settings.event_creation_limit

    # =========================================================================
    # Create Operations
    # =========================================================================

    def validate_and_expand(self, draft: EventDraft) -> Tuple[EventDraft, List[OccurrenceWindow]]:
        """
        Validate a draft and expand it into occurrence windows.

        Args:
            draft: Candidate event

        Returns:
            (normalized draft, ordered occurrence windows)

        Raises:
            ValidationError: If any rule is broken, the expansion exceeds
                the creation limit or produces no occurrence
        """
        validated = validate_draft(draft, self.clock.now())

        if not validated.is_recurring:
            return validated, single_occurrence(validated.start_date_time, validated.end_date_time)

        windows = generate_occurrences(
            validated.recurrence_pattern,
            validated.start_date_time,
            validated.end_date_time,
            limit=self.creation_limit,
        )
        if len(windows) > self.creation_limit:
            logger.info(
                f"Rejected event draft '{validated.title}': more than "
                f"{self.creation_limit} occurrences"
            )
            raise ValidationError([violation(messages.CREATION_COUNT_EXCEEDED, "recurrence_pattern")])
        if not windows:
            raise ValidationError([violation(messages.RECURRENCE_PERIOD_INSUFFICIENT, "recurrence_pattern")])

        if validated.recurrence_end_date is None:
            validated = validated.model_copy(update={"recurrence_end_date": windows[-1].end})
        return validated, windows

    def create_series(
        self,
        draft: EventDraft,
        windows: List[OccurrenceWindow],
        user_id: Optional[str] = None,
        should_cancel: Optional[CancelCheck] = None,
    ) -> AggregateId:
        """
        Persist a validated draft and its windows as one aggregate.

        Args:
            draft: Draft returned by validate_and_expand
            windows: Windows returned by validate_and_expand
            user_id: Acting user recorded in the audit columns
                (default: draft.created_by)
            should_cancel: Optional cancellation check consulted before commit

        Returns:
            AggregateId with the new event GUID and ordered occurrence GUIDs
        """
        user_id = user_id or draft.created_by
        now = self.clock.now()

        detail = EventDetail(
            title=draft.title,
            short_description=draft.short_description,
            description=draft.description,
            event_type=draft.event_type,
            is_restricted=draft.is_restricted,
            location=draft.location,
            latitude=draft.latitude,
            longitude=draft.longitude,
            online_provider=draft.online_provider,
            meeting_details=draft.meeting_details,
            recordings=draft.recordings,
            max_attendees=draft.max_attendees,
            status=draft.status,
            attendees=draft.attendees,
            ideal_time=draft.ideal_time,
            metadata_json=draft.metadata,
            created_by=user_id,
            updated_by=user_id,
            created_at=now,
            updated_at=now,
        )
        event = Event(
            is_recurring=draft.is_recurring,
            recurrence_pattern=(
                draft.recurrence_pattern.to_storage() if draft.recurrence_pattern else None
            ),
            recurrence_end_date=draft.recurrence_end_date,
            auto_enroll=draft.auto_enroll,
            registration_start_date=draft.registration_start_date,
            registration_end_date=draft.registration_end_date,
            platform_integration=draft.platform_integration,
            created_by=user_id,
            updated_by=user_id,
            created_at=now,
            updated_at=now,
        )

        aggregate_id = self.store.create_aggregate(
            detail,
            event,
            windows,
            occurrence_defaults={
                "online_details": draft.online_details,
                "er_metadata": draft.er_metadata,
            },
            should_cancel=should_cancel,
        )

        logger.info(
            f"Created event: {aggregate_id.event_guid} - {draft.title} "
            f"({len(aggregate_id.occurrence_guids)} occurrences)"
        )
        self._publish(LifecycleNotice(
            action=LifecycleAction.CREATED,
            event_guid=aggregate_id.event_guid,
            occurrence_guids=aggregate_id.occurrence_guids,
        ))
        return aggregate_id

    def create_event(self, draft: EventDraft,
                     should_cancel: Optional[CancelCheck] = None) -> AggregateId:
        """Validate, expand and persist a draft in one call."""
        validated, windows = self.validate_and_expand(draft)
        return self.create_series(validated, windows, should_cancel=should_cancel)

    # =========================================================================
    # Read Operations
    # =========================================================================

    def get_event(self, event_guid: str) -> EventResponse:
        """
        Get an event with its detail and occurrences.

        Raises:
            NotFoundError: If the event does not exist
        """
        return EventResponse.from_aggregate(self.store.load_aggregate(event_guid))

    def get_occurrence(self, occurrence_guid: str) -> OccurrenceResponse:
        return OccurrenceResponse.from_model(self.store.get_occurrence(occurrence_guid))

    def list_occurrences(
        self,
        event_guid: str,
        after: Optional[Union[datetime, str]] = None,
    ) -> List[OccurrenceWindow]:
        """
        Occurrence windows of an event in start order.

        Args:
            event_guid: Event GUID (evt_xxx)
            after: Only occurrences starting at or after this instant

        Raises:
            NotFoundError: If the event does not exist
            InvalidDate: If after is malformed
        """
        event = self.store.get_event(event_guid)
        after = to_utc(after) if after is not None else None
        return [
            OccurrenceWindow(r.start_date_time, r.end_date_time)
            for r in self.store.list_occurrences(event.id, after=after)
        ]

    def search_occurrences(
        self,
        filters: Optional[Union[OccurrenceSearch, Dict[str, Any]]] = None,
    ) -> OccurrenceSearchResponse:
        """
        Search occurrences across events.

        Args:
            filters: OccurrenceSearch or its camelCase dict form; None or an
                empty dict lists the live occurrences that have not ended

        Returns:
            OccurrenceSearchResponse with the total match count and one page
            of hits ordered by start
        """
        if not isinstance(filters, OccurrenceSearch):
            filters = OccurrenceSearch.model_validate(filters or {})
        now = self.clock.now()
        total, rows = self.store.search_occurrences(filters, now)
        return OccurrenceSearchResponse(
            total_count=total,
            occurrences=[OccurrenceSearchItem.from_search(r, now) for r in rows],
        )

    # =========================================================================
    # Update Operations
    # =========================================================================

    def propose_update(
        self,
        occurrence_guid: str,
        scope: Union[UpdateScope, str],
        delta: Union[EventUpdate, Dict[str, Any]],
        should_cancel: Optional[CancelCheck] = None,
    ) -> UpdateOutcome:
        """
        Apply a partial update to an occurrence and the occurrences in scope.

        Args:
            occurrence_guid: Target occurrence GUID (rep_xxx)
            scope: this_occurrence, this_and_following or entire_series
            delta: EventUpdate, or a dict validated into one
            should_cancel: Optional cancellation check consulted before commit

        Returns:
            UpdateOutcome

        Raises:
            NotFoundError: If the occurrence does not exist
            GuardError: Archived, ended or recurring-flag violations
            ValidationError: Rule violations of the merged values
            ConflictError: Version mismatch
            OperationCancelledError: should_cancel() returned True
        """
        if not isinstance(delta, EventUpdate):
            delta = EventUpdate.model_validate(delta)
        scope = UpdateScope(scope)

        occurrence = self.store.get_occurrence(occurrence_guid)
        now = self.clock.now()
        with self.store.transaction(should_cancel):
            outcome = self.engine.propagate(occurrence, scope, delta, now)

        self._publish(LifecycleNotice(
            action=LifecycleAction.UPDATED,
            event_guid=outcome.event_guid,
            occurrence_guids=tuple(outcome.affected if not outcome.split_event_guid else ()),
            scope=outcome.scope,
        ))
        if outcome.split_event_guid:
            self._publish(LifecycleNotice(
                action=LifecycleAction.CREATED,
                event_guid=outcome.split_event_guid,
                occurrence_guids=tuple(outcome.affected),
                scope=outcome.scope,
            ))
        return outcome

    def update_by_event(
        self,
        event_guid: str,
        scope: Union[UpdateScope, str],
        delta: Union[EventUpdate, Dict[str, Any]],
        should_cancel: Optional[CancelCheck] = None,
    ) -> UpdateOutcome:
        """
        Update an event through its first occurrence that has not ended.

        A series whose occurrences have all ended targets its last
        occurrence, which the past-occurrence guard then rejects.
        """
        event = self.store.get_event(event_guid)
        target = self.store.first_upcoming_occurrence(event.id, self.clock.now())
        if target is None:
            target = self.store.list_occurrences(event.id)[-1]
        return self.propose_update(target.guid, scope, delta, should_cancel=should_cancel)

    # =========================================================================
    # Delete Operations
    # =========================================================================

    def delete_occurrences(
        self,
        occurrence_guid: str,
        scope: Union[UpdateScope, str] = UpdateScope.THIS_OCCURRENCE,
        hard: bool = True,
        user_id: Optional[str] = None,
        should_cancel: Optional[CancelCheck] = None,
    ) -> List[str]:
        """
        Delete an occurrence and the occurrences in scope.

        Args:
            occurrence_guid: Target occurrence GUID (rep_xxx)
            scope: Delete scope:
                - this_occurrence: Only this occurrence
                - this_and_following: This and every later occurrence; the
                  series' end condition is truncated to what remains
                - entire_series: Every occurrence that has not ended
            hard: Remove rows (True) or archive them through a status update
            user_id: Acting user recorded in the audit columns

        Returns:
            GUIDs of removed (or archived) occurrences

        Raises:
            NotFoundError: If the occurrence does not exist
            GuardError: If the target occurrence already ended or its event
                is archived

        Note:
            When no occurrence remains the whole aggregate is deleted.
        """
        scope = UpdateScope(scope)
        if not hard:
            outcome = self.propose_update(
                occurrence_guid,
                scope,
                EventUpdate(status="archived", updated_by=user_id),
                should_cancel=should_cancel,
            )
            logger.info(
                f"Archived {len(outcome.affected)} occurrence(s) of event {outcome.event_guid} "
                f"(scope: {scope.value})"
            )
            return outcome.affected

        occurrence = self.store.get_occurrence(occurrence_guid)
        now = self.clock.now()
        guards = []
        if occurrence.event.detail.is_archived or occurrence.detail.is_archived:
            guards.append(violation(messages.CANNOT_EDIT_ARCHIVED_EVENTS, "status"))
        if occurrence.has_ended(now):
            guards.append(violation(messages.PAST_OCCURRENCE_IMMUTABLE))
        if guards:
            logger.info(
                f"Delete of occurrence {occurrence_guid} blocked: "
                f"{', '.join(g.code for g in guards)}"
            )
            raise GuardError(guards)

        event = occurrence.event
        event_guid = event.guid
        rows = self.store.list_occurrences(event.id)
        if not event.is_recurring or scope == UpdateScope.ENTIRE_SERIES:
            doomed = [r for r in rows if not r.has_ended(now)]
        elif scope == UpdateScope.THIS_AND_FOLLOWING:
            doomed = [r for r in rows if r.start_date_time >= occurrence.start_date_time]
        else:
            doomed = [occurrence]
        doomed_ids = {r.id for r in doomed}
        kept = [r for r in rows if r.id not in doomed_ids]

        with self.store.transaction(should_cancel):
            if not kept:
                removed = self.store.delete_aggregate(event)
            else:
                removed = self.store.delete_occurrences(doomed)
                if scope != UpdateScope.THIS_OCCURRENCE:
                    self.engine.truncate(event, kept, user_id)

        logger.info(
            f"Deleted {len(removed)} occurrence(s) of event {event_guid} (scope: {scope.value})"
            + ("" if kept else ", event removed")
        )
        self._publish(LifecycleNotice(
            action=LifecycleAction.DELETED,
            event_guid=event_guid,
            occurrence_guids=tuple(removed),
            scope=scope,
        ))
        return removed

    def delete_event(self, event_guid: str,
                     should_cancel: Optional[CancelCheck] = None) -> List[str]:
        """
        Delete an event, all its occurrences, its detail and every fork.

        Returns:
            GUIDs of removed occurrences

        Raises:
            NotFoundError: If the event does not exist
        """
        event = self.store.get_event(event_guid)
        with self.store.transaction(should_cancel):
            removed = self.store.delete_aggregate(event)

        self._publish(LifecycleNotice(
            action=LifecycleAction.DELETED,
            event_guid=event_guid,
            occurrence_guids=tuple(removed),
        ))
        return removed

    # =========================================================================
    # Helpers
    # =========================================================================

    def _publish(self, notice: LifecycleNotice) -> None:
        if self.publish is None:
            return
        try:
            self.publish(notice)
        except Exception:
            logger.exception(
                f"Publish hook failed for {notice.action.value} event {notice.event_guid}"
            )
