"""
Update propagation engine.

Given one occurrence, an UpdateScope and a partial EventUpdate, decides
which stored occurrences change and how, then stages the writes through the
aggregate store. The caller owns the transaction (see
EventService.propose_update); nothing here commits.

Order of work:
    1. Guards (archived detail, ended occurrence, recurring flag flip):
       collected and raised together as GuardError before anything else
    2. Validation of the delta against merged values: collected and raised
       together as ValidationError
    3. Effects, in this order: event-level fields, pattern regeneration or
       re-timing, shared detail fields, occurrence-local fields

Scopes:
    this_occurrence     - only the target row; shared fields fork its detail
    this_and_following  - rows starting at or after the target
    entire_series       - rows starting at or after the first occurrence
                          that has not ended yet

When a series edit changes the pattern or the clock time and earlier
occurrences are kept, the series is split: the old Event keeps the head and
its end condition is truncated, a new Event with a cloned detail owns the
tail.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from recurring_events.src.models import Event, EventDetail, EventRepetition
from recurring_events.src.schemas.event import (
    ONLINE_DETAIL_KEYS,
    EventUpdate,
    UpdateScope,
)
from recurring_events.src.schemas.recurrence import (
    EndCondition,
    EndConditionType,
    RecurrencePattern,
)
from recurring_events.src.services import messages
from recurring_events.src.services.aggregate_store import SqlAlchemyAggregateStore
from recurring_events.src.services.exceptions import (
    ConflictError,
    GuardError,
    RuleViolation,
    ValidationError,
)
from recurring_events.src.services.occurrence_generator import (
    OccurrenceWindow,
    generate_occurrences,
)
from recurring_events.src.services.recurrence_validator import (
    check_attendees,
    check_pattern,
    check_registration,
    check_schedule,
    check_update_kind,
    parse_field,
    violation,
)
from recurring_events.src.utils.calendar import combine_date_time, time_of_day, to_utc, utc_date
from recurring_events.src.utils.logging_config import get_logger


logger = get_logger("engine")


@dataclass
class UpdateOutcome:
    """
    Result of one propagated update.

    Attributes:
        event_guid: Event the target occurrence belonged to
        scope: Scope that was applied
        affected: GUIDs of occurrences in scope after the update (kept or new)
        created: GUIDs of occurrences generated by a pattern change
        removed: GUIDs of occurrences deleted by a pattern change
        forked_details: GUIDs of EventDetail clones created by this update
        split_event_guid: Event that took over the tail of a split series
    """

    event_guid: str
    scope: UpdateScope
    affected: List[str] = field(default_factory=list)
    created: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    forked_details: List[str] = field(default_factory=list)
    split_event_guid: Optional[str] = None


@dataclass
class _Plan:
    """Resolved request: who is in scope and what the new values are."""

    scope: UpdateScope
    event: Event
    target: EventRepetition
    rows: List[EventRepetition]
    anchor: EventRepetition
    anchor_index: int
    new_start: datetime
    new_end: datetime
    time_change: bool = False
    pattern: Optional[RecurrencePattern] = None
    registration: Dict[str, Optional[datetime]] = field(default_factory=dict)

    @property
    def series_scope(self) -> bool:
        return self.scope != UpdateScope.THIS_OCCURRENCE and self.event.is_recurring

    @property
    def clock(self) -> Tuple[Any, timedelta]:
        return time_of_day(self.new_start), self.new_end - self.new_start


class UpdatePropagationEngine:
    """
    Applies scoped updates to a stored aggregate.

    Usage:
        >>> engine = UpdatePropagationEngine(store, creation_limit=500)
        >>> with store.transaction():
        ...     outcome = engine.propagate(occurrence, UpdateScope.ENTIRE_SERIES, delta, now)
    """

    def __init__(self, store: SqlAlchemyAggregateStore, creation_limit: int):
        self.store = store
        self.creation_limit = creation_limit

    def propagate(
        self,
        occurrence: EventRepetition,
        scope: UpdateScope,
        delta: EventUpdate,
        now: datetime,
    ) -> UpdateOutcome:
        """
        Apply delta to the occurrences selected by scope.

        Args:
            occurrence: Target occurrence
            scope: UpdateScope chosen by the caller
            delta: Partial update (only provided fields apply)
            now: Reference instant

        Returns:
            UpdateOutcome

        Raises:
            ConflictError: expected_version does not match the target
            GuardError: Archived, ended or recurring-flag violations
            ValidationError: Rule violations of the merged values
        """
        now = to_utc(now)
        scope = UpdateScope(scope)
        event = occurrence.event

        if delta.expected_version is not None and delta.expected_version != occurrence.version:
            raise ConflictError(
                f"Occurrence {occurrence.guid} is at version {occurrence.version}",
                expected_version=delta.expected_version,
                actual_version=occurrence.version,
            )

        self._check_guards(event, occurrence, delta, now)

        if not event.is_recurring:
            # A one-off event has a single row; shared fields go to its detail.
            scope = UpdateScope.ENTIRE_SERIES

        outcome = UpdateOutcome(event_guid=event.guid, scope=scope)
        if not delta.provided():
            outcome.affected = [occurrence.guid]
            return outcome

        plan = self._resolve(event, occurrence, scope, delta, now)
        self._validate(plan, delta, now)

        user_id = delta.updated_by
        self._apply_event_fields(plan, delta, user_id)

        rows = plan.rows
        if plan.series_scope and plan.pattern is not None:
            rows = self._regenerate(plan, delta, outcome, user_id)
        elif plan.time_change:
            rows = self._retime(plan, outcome, user_id)

        self._apply_detail_changes(plan, rows, delta, outcome, now, user_id)
        self._apply_occurrence_fields(rows, delta, now, user_id)

        outcome.affected = [r.guid for r in rows]
        logger.info(
            f"Updated event {outcome.event_guid} ({scope.value}): "
            f"{len(outcome.affected)} affected, {len(outcome.created)} created, "
            f"{len(outcome.removed)} removed, {len(outcome.forked_details)} forked"
            + (f", split into {outcome.split_event_guid}" if outcome.split_event_guid else "")
        )
        return outcome

    # ========================================================================
    # Guards and validation
    # ========================================================================

    def _check_guards(self, event: Event, occurrence: EventRepetition,
                      delta: EventUpdate, now: datetime) -> None:
        provided = delta.provided()
        guards: List[RuleViolation] = []

        if event.detail.is_archived or occurrence.detail.is_archived:
            guards.append(violation(messages.CANNOT_EDIT_ARCHIVED_EVENTS, "status"))

        if provided and occurrence.has_ended(now):
            if "start_date_time" in provided:
                guards.append(violation(messages.CANNOT_PREPONE_PAST_EVENTS, "start_date_time"))
            if "end_date_time" in provided:
                guards.append(violation(messages.END_DATE_CANNOT_CHANGE, "end_date_time"))
            if not provided & {"start_date_time", "end_date_time"}:
                guards.append(violation(messages.PAST_OCCURRENCE_IMMUTABLE))

        if "is_recurring" in provided and delta.is_recurring != event.is_recurring:
            guards.append(violation(messages.RECURRING_FLAG_CHANGE_NOT_SUPPORTED, "is_recurring"))

        if guards:
            logger.info(
                f"Update of occurrence {occurrence.guid} blocked: "
                f"{', '.join(g.code for g in guards)}"
            )
            raise GuardError(guards)

    def _resolve(self, event: Event, occurrence: EventRepetition, scope: UpdateScope,
                 delta: EventUpdate, now: datetime) -> _Plan:
        all_rows = self.store.list_occurrences(event.id)
        if scope == UpdateScope.THIS_OCCURRENCE:
            anchor, rows = occurrence, [occurrence]
        elif scope == UpdateScope.THIS_AND_FOLLOWING:
            anchor = occurrence
            rows = [r for r in all_rows if r.start_date_time >= occurrence.start_date_time]
        else:
            anchor = next(r for r in all_rows if not r.has_ended(now))
            rows = [r for r in all_rows if r.start_date_time >= anchor.start_date_time]

        return _Plan(
            scope=scope,
            event=event,
            target=occurrence,
            rows=rows,
            anchor=anchor,
            anchor_index=all_rows.index(anchor),
            new_start=occurrence.start_date_time,
            new_end=occurrence.end_date_time,
        )

    def _validate(self, plan: _Plan, delta: EventUpdate, now: datetime) -> None:
        provided = delta.provided()
        event = plan.event
        detail = plan.target.detail
        violations: List[RuleViolation] = list(check_update_kind(event.detail.event_type, delta))

        if {"is_restricted", "attendees", "auto_enroll"} & provided:
            is_restricted = delta.is_restricted if "is_restricted" in provided else detail.is_restricted
            attendees = delta.attendees if "attendees" in provided else detail.attendees
            auto_enroll = delta.auto_enroll if "auto_enroll" in provided else event.auto_enroll
            violations.extend(check_attendees(is_restricted, attendees, auto_enroll))

        if delta.time_fields():
            violations.extend(self._validate_time(plan, delta, now))

        if delta.changes_pattern:
            violations.extend(self._validate_pattern(plan, delta, now))

        if delta.registration_fields() or "is_restricted" in provided:
            violations.extend(self._validate_registration(plan, delta, now))

        if violations:
            logger.info(
                f"Update of occurrence {plan.target.guid} rejected: "
                f"{', '.join(v.code for v in violations)}"
            )
            raise ValidationError(violations)

    def _validate_time(self, plan: _Plan, delta: EventUpdate, now: datetime) -> List[RuleViolation]:
        violations: List[RuleViolation] = []
        target = plan.target
        new_start = target.start_date_time
        new_end = target.end_date_time
        if "start_date_time" in delta.provided():
            new_start = parse_field(delta.start_date_time, "start_date_time", violations)
        if "end_date_time" in delta.provided():
            new_end = parse_field(delta.end_date_time, "end_date_time", violations)
        if new_start is None or new_end is None:
            if not violations:
                violations.append(violation(messages.DATE_FORMAT_INVALID, "start_date_time"))
            return violations

        plan.new_start, plan.new_end = new_start, new_end
        plan.time_change = (new_start, new_end) != (target.start_date_time, target.end_date_time)
        violations.extend(check_schedule(new_start, new_end, plan.event.is_recurring, now))
        if violations or not plan.event.is_recurring:
            return violations

        if plan.series_scope:
            if RecurrencePattern.from_storage(plan.event.recurrence_pattern) is None:
                violations.append(violation(messages.RECURRENCE_PATTERN_MISSING, "recurrence_pattern"))
            elif utc_date(new_start) != utc_date(target.start_date_time):
                violations.append(violation(messages.SERIES_DATE_CHANGE_NOT_SUPPORTED, "start_date_time"))
            elif any(w.start <= now for w in self._retimed_windows(plan)):
                violations.append(violation(messages.START_DATE_INVALID, "start_date_time"))
            return violations

        if new_end - new_start != target.duration:
            violations.append(violation(messages.OCCURRENCE_DURATION_MISMATCH, "end_date_time"))
        siblings = [r for r in self.store.list_occurrences(plan.event.id) if r.id != target.id]
        if any(r.start_date_time < new_end and r.end_date_time > new_start for r in siblings):
            violations.append(violation(messages.OCCURRENCE_OVERLAP, "start_date_time"))
        return violations

    def _validate_pattern(self, plan: _Plan, delta: EventUpdate, now: datetime) -> List[RuleViolation]:
        event = plan.event
        if not event.is_recurring:
            return [violation(messages.RECURRING_PATTERN_NOT_REQUIRED, "recurrence_pattern")]
        if plan.scope == UpdateScope.THIS_OCCURRENCE:
            return [violation(messages.PATTERN_CHANGE_REQUIRES_SERIES_SCOPE, "recurrence_pattern")]
        stored = RecurrencePattern.from_storage(event.recurrence_pattern)
        if stored is None:
            return [violation(messages.RECURRENCE_PATTERN_MISSING, "recurrence_pattern")]

        anchor_start, anchor_end = self._anchor_window(plan)
        merged = stored.merged(delta.recurrence_pattern)
        pattern_delta = delta.recurrence_pattern.model_fields_set
        if "recurring_start_date" not in pattern_delta:
            merged = merged.model_copy(update={"recurring_start_date": anchor_start})
        if "end_condition" not in pattern_delta:
            merged = merged.model_copy(update={
                "end_condition": self._remaining_condition(stored, len(plan.rows), anchor_end)
            })

        violations = check_schedule(anchor_start, anchor_end, True, now)
        pattern_violations, normalized = check_pattern(merged, anchor_start, anchor_end, now)
        violations.extend(pattern_violations)
        plan.pattern = normalized
        return violations

    def _validate_registration(self, plan: _Plan, delta: EventUpdate, now: datetime) -> List[RuleViolation]:
        event = plan.event
        provided = delta.provided()
        violations: List[RuleViolation] = []
        values = {}
        for name in ("registration_start_date", "registration_end_date"):
            if name in provided:
                values[name] = parse_field(getattr(delta, name), name, violations)
            else:
                values[name] = getattr(event, name)
        if violations:
            return violations

        plan.registration = {k: v for k, v in values.items() if k in provided}
        is_restricted = delta.is_restricted if "is_restricted" in provided else event.detail.is_restricted
        first = self.store.first_upcoming_occurrence(event.id, now) or plan.target
        violations.extend(check_registration(
            is_restricted,
            values["registration_start_date"],
            values["registration_end_date"],
            first.start_date_time,
            now,
            created_at=event.created_at,
            changed=delta.registration_fields(),
        ))
        return violations

    # ========================================================================
    # Window helpers
    # ========================================================================

    def _anchor_window(self, plan: _Plan) -> Tuple[datetime, datetime]:
        if plan.anchor is plan.target:
            return plan.new_start, plan.new_end
        clock, duration = plan.clock
        start = combine_date_time(utc_date(plan.anchor.start_date_time), clock)
        return start, start + duration

    def _retimed_windows(self, plan: _Plan) -> List[OccurrenceWindow]:
        clock, duration = plan.clock
        windows = []
        for row in plan.rows:
            start = combine_date_time(utc_date(row.start_date_time), clock)
            windows.append(OccurrenceWindow(start, start + duration))
        return windows

    @staticmethod
    def _remaining_condition(stored: RecurrencePattern, remaining: int,
                             anchor_end: datetime) -> EndCondition:
        """
        End condition for the part of the series regenerated from the anchor.

        In occurrences mode the count is the number of rows still stored from
        the anchor on, so occurrences deleted earlier stay deleted.
        """
        condition = stored.end_condition
        if condition.mode == EndConditionType.OCCURRENCES:
            remaining = max(remaining, 1)
            return EndCondition(type=EndConditionType.OCCURRENCES, value=remaining)
        end_date = combine_date_time(utc_date(condition.raw_value), time_of_day(anchor_end))
        return EndCondition(type=EndConditionType.END_DATE, value=end_date)

    # ========================================================================
    # Effects
    # ========================================================================

    def _apply_event_fields(self, plan: _Plan, delta: EventUpdate, user_id: Optional[str]) -> None:
        changes = dict(delta.event_fields())
        changes.update(plan.registration)
        if not changes:
            return
        for name, value in changes.items():
            setattr(plan.event, name, value)
        plan.event.touch(user_id)

    def truncate(self, event: Event, kept: List[EventRepetition], user_id: Optional[str] = None) -> None:
        """
        End a recurring series at its last kept occurrence.

        The end condition keeps its mode: occurrences becomes len(kept),
        endDate becomes the end of the last kept row.
        """
        stored = RecurrencePattern.from_storage(event.recurrence_pattern)
        last_end = kept[-1].end_date_time
        if stored is not None:
            if stored.end_mode == EndConditionType.OCCURRENCES:
                truncated = EndCondition(type=EndConditionType.OCCURRENCES, value=len(kept))
            else:
                truncated = EndCondition(type=EndConditionType.END_DATE, value=last_end)
            event.recurrence_pattern = stored.model_copy(update={"end_condition": truncated}).to_storage()
        event.recurrence_end_date = last_end
        event.touch(user_id)

    def _split(self, plan: _Plan, tail_pattern: RecurrencePattern,
               outcome: UpdateOutcome, user_id: Optional[str]) -> Event:
        """Truncate the series before the anchor and open a new Event for the tail."""
        event = plan.event
        head = self.store.list_occurrences(event.id)[:plan.anchor_index]
        self.truncate(event, head, user_id)

        tail_detail = self.store.clone_detail(event.detail, user_id)
        tail_event = self.store.clone_event(event, tail_detail, user_id)
        tail_event.recurrence_pattern = tail_pattern.to_storage()
        outcome.split_event_guid = tail_event.guid
        logger.info(
            f"Split event {event.guid} after {len(head)} occurrence(s) into {tail_event.guid}"
        )
        return tail_event

    def _regenerate(self, plan: _Plan, delta: EventUpdate, outcome: UpdateOutcome,
                    user_id: Optional[str]) -> List[EventRepetition]:
        """Replace the rows in scope with a fresh expansion of the merged pattern."""
        pattern = plan.pattern
        anchor_start, anchor_end = self._anchor_window(plan)
        windows = generate_occurrences(pattern, anchor_start, anchor_end, limit=self.creation_limit)
        if len(windows) > self.creation_limit:
            raise ValidationError([violation(messages.CREATION_COUNT_EXCEEDED, "recurrence_pattern")])
        if not windows:
            raise ValidationError([violation(messages.RECURRENCE_PERIOD_INSUFFICIENT, "recurrence_pattern")])

        event = plan.event
        outcome.removed = self.store.delete_occurrences(plan.rows)
        if plan.anchor_index > 0:
            owner = self._split(plan, pattern, outcome, user_id)
            detail = owner.detail
        else:
            owner = event
            detail = event.detail
            owner.recurrence_pattern = pattern.to_storage()
            owner.touch(user_id)
        owner.recurrence_end_date = _end_date(pattern, windows)

        created = self.store.add_occurrences(owner, detail, windows, user_id=user_id)
        outcome.created = [r.guid for r in created]
        return created

    def _retime(self, plan: _Plan, outcome: UpdateOutcome,
                user_id: Optional[str]) -> List[EventRepetition]:
        """Move rows in scope to the new clock time, keeping their dates and GUIDs."""
        if not plan.series_scope:
            row = plan.target
            row.start_date_time, row.end_date_time = plan.new_start, plan.new_end
            row.touch(user_id)
            return plan.rows

        for row, window in zip(plan.rows, self._retimed_windows(plan)):
            row.start_date_time, row.end_date_time = window.start, window.end
            row.touch(user_id)

        event = plan.event
        stored = RecurrencePattern.from_storage(event.recurrence_pattern)
        anchor_start, anchor_end = self._anchor_window(plan)
        tail_pattern = stored.model_copy(update={
            "recurring_start_date": anchor_start,
            "end_condition": self._remaining_condition(stored, len(plan.rows), anchor_end),
        })

        if plan.anchor_index > 0:
            owner = self._split(plan, tail_pattern, outcome, user_id)
            main_rows = [r for r in plan.rows if r.event_detail_id == event.event_detail_id]
            for row in plan.rows:
                row.event = owner
            self.store.repoint_occurrences(main_rows, owner.detail, user_id)
        else:
            owner = event
            owner.recurrence_pattern = tail_pattern.to_storage()
        owner.recurrence_end_date = _end_date(tail_pattern, self._retimed_windows(plan))
        owner.touch(user_id)
        return plan.rows

    def _apply_detail_changes(self, plan: _Plan, rows: List[EventRepetition], delta: EventUpdate,
                              outcome: UpdateOutcome, now: datetime, user_id: Optional[str]) -> None:
        changes = delta.detail_changes()
        if not changes:
            return

        if plan.scope == UpdateScope.THIS_OCCURRENCE:
            row = plan.target
            owner_detail_id = row.event.event_detail_id
            detail = row.detail
            if detail.id == owner_detail_id or self.store.count_detail_references(detail.id) > 1:
                detail = self.store.fork_detail_for_occurrence(row, user_id)
                outcome.forked_details.append(detail.guid)
            _assign(detail, changes, user_id)
            return

        live = [r for r in rows if not r.has_ended(now)]
        groups: Dict[int, List[EventRepetition]] = {}
        for row in live:
            groups.setdefault(row.event_detail_id, []).append(row)

        live_ids = {r.id for r in live}
        for detail_id, members in groups.items():
            detail = members[0].detail
            if self.store.referenced_outside(detail_id, live_ids):
                shared = detail
                detail = self.store.clone_detail(shared, user_id)
                self.store.repoint_occurrences(members, detail, user_id)
                outcome.forked_details.append(detail.guid)
                owner = members[0].event
                if plan.scope == UpdateScope.ENTIRE_SERIES and owner.event_detail_id == shared.id:
                    owner.detail = detail
            _assign(detail, changes, user_id)

    def _apply_occurrence_fields(self, rows: List[EventRepetition], delta: EventUpdate,
                                 now: datetime, user_id: Optional[str]) -> None:
        provided = delta.occurrence_fields()
        if not provided:
            return
        for row in rows:
            if row.has_ended(now):
                continue
            online = dict(row.online_details or {})
            if "online_details" in provided and delta.online_details:
                online.update(delta.online_details)
            for name, key in ONLINE_DETAIL_KEYS.items():
                if name in provided:
                    online[key] = getattr(delta, name)
            row.online_details = online
            if "er_metadata" in provided and delta.er_metadata:
                metadata = dict(row.er_metadata or {})
                metadata.update(delta.er_metadata)
                row.er_metadata = metadata
            row.touch(user_id)


def _assign(detail: EventDetail, changes: Dict[str, Any], user_id: Optional[str]) -> None:
    for column, value in changes.items():
        setattr(detail, column, value)
    detail.touch(user_id)


def _end_date(pattern: RecurrencePattern, windows: List[OccurrenceWindow]) -> datetime:
    if pattern.end_mode == EndConditionType.END_DATE:
        return pattern.end_condition.raw_value
    return windows[-1].end
