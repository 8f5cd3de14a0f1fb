"""
Unit tests for the update propagation engine.

Series used throughout: weekly on Wednesday and Friday, 10:00-11:00 UTC,
four occurrences from Wednesday 2024-12-18 (12/18, 12/20, 12/25, 12/27),
with the clock at 2024-12-01 unless a test advances it.
"""

import pytest
from datetime import datetime, timezone

from recurring_events.src.config.settings import AppSettings
from recurring_events.src.schemas.event import EventDraft, EventUpdate, UpdateScope
from recurring_events.src.services import messages
from recurring_events.src.services.event_service import EventService
from recurring_events.src.services.exceptions import (
    ConflictError,
    GuardError,
    ValidationError,
)
from recurring_events.src.services.update_propagation import UpdatePropagationEngine


UTC = timezone.utc


def at(day, hour=10, month=12, year=2024):
    return datetime(year, month, day, hour, 0, tzinfo=UTC)


@pytest.fixture
def series(create_series, weekly_pattern):
    """Stored weekly Wed/Fri series of four occurrences."""
    return create_series(weekly_pattern())


def _occurrence(service, guid):
    return service.store.get_occurrence(guid)


def _starts(service, event_guid):
    return [w.start for w in service.list_occurrences(event_guid)]


# ============================================================================
# Shared detail fields
# ============================================================================


class TestDetailPropagation:
    """Tests for shared-field edits per scope."""

    def test_this_occurrence_forks_detail(self, event_service, series):
        """Test a single-occurrence edit leaves the rest of the series alone."""
        target = series.occurrence_guids[1]

        outcome = event_service.propose_update(
            target, UpdateScope.THIS_OCCURRENCE, EventUpdate(title="Outdoor yoga")
        )

        assert outcome.affected == [target]
        assert len(outcome.forked_details) == 1
        assert _occurrence(event_service, target).detail.title == "Outdoor yoga"
        assert _occurrence(event_service, target).detail.guid == outcome.forked_details[0]
        for guid in (series.occurrence_guids[0], series.occurrence_guids[2]):
            assert _occurrence(event_service, guid).detail.title == "Weekly yoga"
        assert event_service.get_event(series.event_guid).detail.title == "Weekly yoga"

    def test_second_edit_reuses_private_fork(self, event_service, series):
        """Test an occurrence that already owns its detail is edited in place."""
        target = series.occurrence_guids[1]
        event_service.propose_update(target, UpdateScope.THIS_OCCURRENCE, EventUpdate(title="First"))

        outcome = event_service.propose_update(
            target, UpdateScope.THIS_OCCURRENCE, EventUpdate(description="Bring a mat")
        )

        assert outcome.forked_details == []
        detail = _occurrence(event_service, target).detail
        assert detail.title == "First"
        assert detail.description == "Bring a mat"

    def test_this_and_following_forks_tail(self, event_service, series):
        """Test the tail gets its own detail and the head keeps the original."""
        outcome = event_service.propose_update(
            series.occurrence_guids[2], UpdateScope.THIS_AND_FOLLOWING, EventUpdate(title="Winter yoga")
        )

        assert outcome.affected == list(series.occurrence_guids[2:])
        assert len(outcome.forked_details) == 1
        assert outcome.split_event_guid is None
        titles = [_occurrence(event_service, g).detail.title for g in series.occurrence_guids]
        assert titles == ["Weekly yoga", "Weekly yoga", "Winter yoga", "Winter yoga"]
        assert event_service.get_event(series.event_guid).detail.title == "Weekly yoga"

    def test_entire_series_updates_main_detail(self, event_service, series):
        """Test a whole-series edit writes the shared detail without forking."""
        outcome = event_service.propose_update(
            series.occurrence_guids[2], UpdateScope.ENTIRE_SERIES, EventUpdate(location="Main gym")
        )

        assert outcome.affected == list(series.occurrence_guids)
        assert outcome.forked_details == []
        assert event_service.get_event(series.event_guid).detail.location == "Main gym"

    def test_entire_series_reaches_forked_occurrences(self, event_service, series):
        """Test a whole-series edit also overwrites values on forks."""
        forked = series.occurrence_guids[1]
        event_service.propose_update(forked, UpdateScope.THIS_OCCURRENCE, EventUpdate(title="Special"))

        event_service.propose_update(
            series.occurrence_guids[0], UpdateScope.ENTIRE_SERIES, EventUpdate(title="Renamed")
        )

        titles = [_occurrence(event_service, g).detail.title for g in series.occurrence_guids]
        assert titles == ["Renamed"] * 4
        assert _occurrence(event_service, forked).detail.guid != (
            event_service.get_event(series.event_guid).detail.guid
        )

    def test_entire_series_keeps_ended_occurrences(self, event_service, fixed_clock, series):
        """Test ended occurrences keep the detail they ran with."""
        fixed_clock.advance(days=18)  # 2024-12-19, first occurrence is over

        outcome = event_service.propose_update(
            series.occurrence_guids[2], UpdateScope.ENTIRE_SERIES, EventUpdate(title="Renamed")
        )

        assert outcome.affected == list(series.occurrence_guids[1:])
        assert len(outcome.forked_details) == 1
        assert _occurrence(event_service, series.occurrence_guids[0]).detail.title == "Weekly yoga"
        event = event_service.get_event(series.event_guid)
        assert event.detail.title == "Renamed"
        assert event.detail.guid == outcome.forked_details[0]

    def test_one_off_event_edits_in_place(self, event_service, create_series):
        """Test a non-recurring event is always edited as a whole."""
        aggregate_id = create_series()

        outcome = event_service.propose_update(
            aggregate_id.occurrence_guids[0], UpdateScope.THIS_OCCURRENCE, EventUpdate(title="Talk")
        )

        assert outcome.scope == UpdateScope.ENTIRE_SERIES
        assert outcome.forked_details == []
        assert event_service.get_event(aggregate_id.event_guid).detail.title == "Talk"


# ============================================================================
# Occurrence-local and event-level fields
# ============================================================================


class TestLocalFields:
    """Tests for occurrence-local and event-level fields."""

    def test_er_metadata_merged_into_rows_in_scope(self, event_service, series):
        """Test occurrence metadata is merged only into rows in scope."""
        event_service.propose_update(
            series.occurrence_guids[2],
            UpdateScope.THIS_AND_FOLLOWING,
            EventUpdate(er_metadata={"room": "B"}),
        )

        metadata = [_occurrence(event_service, g).er_metadata for g in series.occurrence_guids]
        assert metadata == [None, None, {"room": "B"}, {"room": "B"}]

    def test_meeting_settings_stored_in_online_details(self, event_service, create_series, weekly_pattern):
        """Test meeting type lands in each occurrence's online details."""
        aggregate_id = create_series(
            weekly_pattern(), event_type="online", location=None,
            online_details={"url": "https://meet.example/abc"},
        )

        event_service.propose_update(
            aggregate_id.occurrence_guids[0], UpdateScope.ENTIRE_SERIES, EventUpdate(meeting_type="2")
        )

        for guid in aggregate_id.occurrence_guids:
            assert _occurrence(event_service, guid).online_details == {
                "url": "https://meet.example/abc",
                "meetingType": "2",
            }

    def test_registration_window_update(self, event_service, series):
        """Test registration dates are stored on the event."""
        event_service.propose_update(
            series.occurrence_guids[0],
            UpdateScope.ENTIRE_SERIES,
            EventUpdate(registration_end_date="2024-12-10T00:00:00Z"),
        )
        event = event_service.get_event(series.event_guid)
        assert event.registration_end_date == datetime(2024, 12, 10, tzinfo=UTC)

    def test_registration_must_close_before_first_upcoming(self, event_service, series):
        """Test a registration window ending after the next occurrence is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            event_service.propose_update(
                series.occurrence_guids[0],
                UpdateScope.ENTIRE_SERIES,
                EventUpdate(registration_end_date="2024-12-30T00:00:00Z"),
            )
        assert exc_info.value.has_code(messages.REGISTRATION_END_DATE_BEFORE_EVENT_DATE)


# ============================================================================
# Guards
# ============================================================================


class TestGuards:
    """Tests for updates blocked before validation."""

    def test_archived_series_is_frozen(self, event_service, series):
        """Test archived events reject further edits."""
        event_service.propose_update(
            series.occurrence_guids[0], UpdateScope.ENTIRE_SERIES, EventUpdate(status="archived")
        )

        with pytest.raises(GuardError) as exc_info:
            event_service.propose_update(
                series.occurrence_guids[1], UpdateScope.THIS_OCCURRENCE, EventUpdate(title="Again")
            )
        assert exc_info.value.codes == [messages.CANNOT_EDIT_ARCHIVED_EVENTS]

    def test_ended_occurrence_is_immutable(self, event_service, fixed_clock, series):
        """Test an ended occurrence rejects edits."""
        fixed_clock.advance(days=18)
        with pytest.raises(GuardError) as exc_info:
            event_service.propose_update(
                series.occurrence_guids[0], UpdateScope.THIS_OCCURRENCE, EventUpdate(title="Late")
            )
        assert exc_info.value.codes == [messages.PAST_OCCURRENCE_IMMUTABLE]

    def test_ended_occurrence_cannot_move(self, event_service, fixed_clock, series):
        """Test moving an ended occurrence reports both time guards."""
        fixed_clock.advance(days=18)
        with pytest.raises(GuardError) as exc_info:
            event_service.propose_update(
                series.occurrence_guids[0],
                UpdateScope.THIS_OCCURRENCE,
                EventUpdate(start_date_time="2024-12-21T10:00:00Z", end_date_time="2024-12-21T11:00:00Z"),
            )
        assert set(exc_info.value.codes) == {
            messages.CANNOT_PREPONE_PAST_EVENTS,
            messages.END_DATE_CANNOT_CHANGE,
        }

    def test_recurring_flag_flip_rejected(self, event_service, series):
        """Test guards are raised before validation errors."""
        with pytest.raises(GuardError) as exc_info:
            event_service.propose_update(
                series.occurrence_guids[0],
                UpdateScope.ENTIRE_SERIES,
                EventUpdate(is_recurring=False, event_type="online"),
            )
        assert exc_info.value.codes == [messages.RECURRING_FLAG_CHANGE_NOT_SUPPORTED]

    def test_version_mismatch(self, event_service, series):
        """Test a stale expected version is a conflict."""
        with pytest.raises(ConflictError) as exc_info:
            event_service.propose_update(
                series.occurrence_guids[0],
                UpdateScope.THIS_OCCURRENCE,
                EventUpdate(title="x", expected_version=5),
            )
        assert exc_info.value.actual_version == 1

    def test_matching_version_applies(self, event_service, series):
        """Test a matching expected version applies and bumps the version."""
        guid = series.occurrence_guids[0]
        event_service.propose_update(
            guid, UpdateScope.THIS_OCCURRENCE, EventUpdate(er_metadata={"a": 1}, expected_version=1)
        )
        assert _occurrence(event_service, guid).version == 2

    def test_empty_delta_is_a_no_op(self, event_service, series):
        """Test an empty delta changes nothing."""
        outcome = event_service.propose_update(
            series.occurrence_guids[1], UpdateScope.ENTIRE_SERIES, EventUpdate()
        )
        assert outcome.affected == [series.occurrence_guids[1]]
        assert _occurrence(event_service, series.occurrence_guids[1]).version == 1


# ============================================================================
# Validation of deltas
# ============================================================================


class TestDeltaValidation:
    """Tests for rule violations of merged values."""

    def test_event_type_is_fixed(self, event_service, series):
        with pytest.raises(ValidationError) as exc_info:
            event_service.propose_update(
                series.occurrence_guids[0], UpdateScope.ENTIRE_SERIES, EventUpdate(event_type="online")
            )
        assert exc_info.value.codes == [messages.EVENT_TYPE_CHANGE_NOT_SUPPORTED]

    def test_online_fields_on_offline_event(self, event_service, series):
        with pytest.raises(ValidationError) as exc_info:
            event_service.propose_update(
                series.occurrence_guids[0],
                UpdateScope.ENTIRE_SERIES,
                EventUpdate(online_details={"url": "https://meet.example"}),
            )
        assert exc_info.value.has_code(messages.CANNOT_UPDATE_ONLINE_DETAILS_FOR_OFFLINE_EVENT)

    def test_attendees_on_public_event(self, event_service, series):
        with pytest.raises(ValidationError) as exc_info:
            event_service.propose_update(
                series.occurrence_guids[0], UpdateScope.ENTIRE_SERIES, EventUpdate(attendees=["user-9"])
            )
        assert exc_info.value.codes == [messages.ATTENDEES_NOT_REQUIRED]

    def test_rejected_update_changes_nothing(self, event_service, series):
        """Test a rejected delta leaves stored values untouched."""
        with pytest.raises(ValidationError):
            event_service.propose_update(
                series.occurrence_guids[0],
                UpdateScope.ENTIRE_SERIES,
                EventUpdate(title="Never stored", attendees=["user-9"]),
            )
        assert event_service.get_event(series.event_guid).detail.title == "Weekly yoga"


# ============================================================================
# Re-timing
# ============================================================================


class TestRetiming:
    """Tests for time changes of one occurrence or of the series clock."""

    def test_move_single_occurrence(self, event_service, series):
        """Test one occurrence can move to another day with the same duration."""
        outcome = event_service.propose_update(
            series.occurrence_guids[1],
            UpdateScope.THIS_OCCURRENCE,
            EventUpdate(start_date_time="2024-12-21T10:00:00Z", end_date_time="2024-12-21T11:00:00Z"),
        )

        assert outcome.affected == [series.occurrence_guids[1]]
        assert _starts(event_service, series.event_guid) == [at(18), at(21), at(25), at(27)]

    def test_single_occurrence_duration_must_match(self, event_service, series):
        with pytest.raises(ValidationError) as exc_info:
            event_service.propose_update(
                series.occurrence_guids[1],
                UpdateScope.THIS_OCCURRENCE,
                EventUpdate(end_date_time="2024-12-20T12:00:00Z"),
            )
        assert exc_info.value.codes == [messages.OCCURRENCE_DURATION_MISMATCH]

    def test_single_occurrence_must_not_overlap(self, event_service, series):
        with pytest.raises(ValidationError) as exc_info:
            event_service.propose_update(
                series.occurrence_guids[1],
                UpdateScope.THIS_OCCURRENCE,
                EventUpdate(start_date_time="2024-12-18T10:30:00Z", end_date_time="2024-12-18T11:30:00Z"),
            )
        assert exc_info.value.codes == [messages.OCCURRENCE_OVERLAP]

    def test_recurring_occurrence_cannot_span_days(self, event_service, series):
        with pytest.raises(ValidationError) as exc_info:
            event_service.propose_update(
                series.occurrence_guids[1],
                UpdateScope.THIS_OCCURRENCE,
                EventUpdate(start_date_time="2024-12-20T23:30:00Z", end_date_time="2024-12-21T00:30:00Z"),
            )
        assert messages.MULTIDAY_EVENT_NOT_RECURRING in exc_info.value.codes

    def test_entire_series_new_clock_time(self, event_service, series):
        """Test a series re-time keeps dates and GUIDs and updates the pattern."""
        outcome = event_service.propose_update(
            series.occurrence_guids[0],
            UpdateScope.ENTIRE_SERIES,
            EventUpdate(start_date_time="2024-12-18T14:00:00Z", end_date_time="2024-12-18T15:00:00Z"),
        )

        assert outcome.affected == list(series.occurrence_guids)
        assert outcome.split_event_guid is None
        assert _starts(event_service, series.event_guid) == [at(18, 14), at(20, 14), at(25, 14), at(27, 14)]
        event = event_service.get_event(series.event_guid)
        assert event.recurrence_pattern["recurringStartDate"] == "2024-12-18T14:00:00Z"
        assert event.recurrence_end_date == at(27, 15)

    def test_series_edit_cannot_change_date(self, event_service, series):
        with pytest.raises(ValidationError) as exc_info:
            event_service.propose_update(
                series.occurrence_guids[0],
                UpdateScope.ENTIRE_SERIES,
                EventUpdate(start_date_time="2024-12-19T10:00:00Z", end_date_time="2024-12-19T11:00:00Z"),
            )
        assert exc_info.value.codes == [messages.SERIES_DATE_CHANGE_NOT_SUPPORTED]

    def test_this_and_following_new_clock_time_splits(self, event_service, published, series):
        """Test re-timing a tail splits the series at the target."""
        outcome = event_service.propose_update(
            series.occurrence_guids[2],
            UpdateScope.THIS_AND_FOLLOWING,
            EventUpdate(start_date_time="2024-12-25T14:00:00Z", end_date_time="2024-12-25T15:00:00Z"),
        )

        tail_guid = outcome.split_event_guid
        assert tail_guid is not None and tail_guid != series.event_guid
        assert outcome.affected == list(series.occurrence_guids[2:])

        head = event_service.get_event(series.event_guid)
        assert [o.guid for o in head.occurrences] == list(series.occurrence_guids[:2])
        assert head.recurrence_pattern["endCondition"] == {"type": "occurrences", "value": 2}
        assert head.recurrence_end_date == at(20, 11)

        tail = event_service.get_event(tail_guid)
        assert [o.start_date_time for o in tail.occurrences] == [at(25, 14), at(27, 14)]
        assert tail.recurrence_pattern["endCondition"] == {"type": "occurrences", "value": 2}
        assert tail.recurrence_pattern["recurringStartDate"] == "2024-12-25T14:00:00Z"
        assert tail.detail.guid != head.detail.guid

        assert [n.action.value for n in published[-2:]] == ["updated", "created"]
        assert published[-1].event_guid == tail_guid


# ============================================================================
# Pattern changes
# ============================================================================


class TestPatternChanges:
    """Tests for recurrence pattern edits."""

    def test_entire_series_regenerates(self, event_service, series):
        """Test new weekdays replace every occurrence of the series."""
        outcome = event_service.propose_update(
            series.occurrence_guids[0],
            UpdateScope.ENTIRE_SERIES,
            EventUpdate(recurrence_pattern={"daysOfWeek": [1]}),
        )

        assert outcome.removed == list(series.occurrence_guids)
        assert len(outcome.created) == 4
        assert outcome.affected == outcome.created
        assert _starts(event_service, series.event_guid) == [
            at(23), at(30), at(6, month=1, year=2025), at(13, month=1, year=2025)
        ]
        event = event_service.get_event(series.event_guid)
        assert event.recurrence_pattern["daysOfWeek"] == [1]
        assert event.recurrence_end_date == at(13, 11, month=1, year=2025)

    def test_this_and_following_pattern_change_splits(self, event_service, series):
        """Test a tail pattern change keeps the head on the original event."""
        outcome = event_service.propose_update(
            series.occurrence_guids[2],
            UpdateScope.THIS_AND_FOLLOWING,
            EventUpdate(recurrence_pattern={"daysOfWeek": [1]}),
        )

        assert outcome.removed == list(series.occurrence_guids[2:])
        assert _starts(event_service, series.event_guid) == [at(18), at(20)]
        assert _starts(event_service, outcome.split_event_guid) == [
            at(30), at(6, month=1, year=2025)
        ]

    def test_deleted_occurrence_stays_deleted_after_tail_change(self, event_service, series):
        """Test a tail pattern change regenerates only the occurrences still stored."""
        event_service.delete_occurrences(series.occurrence_guids[1])

        outcome = event_service.propose_update(
            series.occurrence_guids[2],
            UpdateScope.THIS_AND_FOLLOWING,
            EventUpdate(recurrence_pattern={"daysOfWeek": [1]}),
        )

        assert _starts(event_service, series.event_guid) == [at(18)]
        assert _starts(event_service, outcome.split_event_guid) == [
            at(30), at(6, month=1, year=2025)
        ]
        head = event_service.get_event(series.event_guid)
        tail = event_service.get_event(outcome.split_event_guid)
        assert head.recurrence_pattern["endCondition"] == {"type": "occurrences", "value": 1}
        assert tail.recurrence_pattern["endCondition"] == {"type": "occurrences", "value": 2}

    def test_deleted_occurrence_stays_deleted_after_series_change(self, event_service, series):
        """Test an entire-series pattern change keeps the series at its stored size."""
        event_service.delete_occurrences(series.occurrence_guids[3])

        outcome = event_service.propose_update(
            series.occurrence_guids[0],
            UpdateScope.ENTIRE_SERIES,
            EventUpdate(recurrence_pattern={"daysOfWeek": [1]}),
        )

        assert len(outcome.created) == 3
        assert _starts(event_service, series.event_guid) == [
            at(23), at(30), at(6, month=1, year=2025)
        ]
        event = event_service.get_event(series.event_guid)
        assert event.recurrence_pattern["endCondition"]["value"] == 3

    def test_pattern_change_needs_series_scope(self, event_service, series):
        with pytest.raises(ValidationError) as exc_info:
            event_service.propose_update(
                series.occurrence_guids[0],
                UpdateScope.THIS_OCCURRENCE,
                EventUpdate(recurrence_pattern={"interval": 2}),
            )
        assert exc_info.value.codes == [messages.PATTERN_CHANGE_REQUIRES_SERIES_SCOPE]

    def test_pattern_on_one_off_event(self, event_service, create_series):
        aggregate_id = create_series()
        with pytest.raises(ValidationError) as exc_info:
            event_service.propose_update(
                aggregate_id.occurrence_guids[0],
                UpdateScope.ENTIRE_SERIES,
                EventUpdate(recurrence_pattern={"interval": 2}),
            )
        assert exc_info.value.codes == [messages.RECURRING_PATTERN_NOT_REQUIRED]

    def test_invalid_merged_pattern(self, event_service, series):
        with pytest.raises(ValidationError) as exc_info:
            event_service.propose_update(
                series.occurrence_guids[0],
                UpdateScope.ENTIRE_SERIES,
                EventUpdate(recurrence_pattern={"daysOfWeek": [9]}),
            )
        assert exc_info.value.codes == [messages.RECURRENCE_DAYS_INVALID]

    def test_regeneration_respects_creation_limit(
        self, test_db_session, fixed_clock, sample_draft_data, daily_pattern
    ):
        """Test a pattern change expanding past the limit is rejected."""
        service = EventService(
            test_db_session, clock=fixed_clock, settings=AppSettings(EVENT_CREATION_LIMIT=5)
        )
        aggregate_id = service.create_event(
            EventDraft(**sample_draft_data(is_recurring=True, pattern=daily_pattern(end_value="5")))
        )

        with pytest.raises(ValidationError) as exc_info:
            service.propose_update(
                aggregate_id.occurrence_guids[0],
                UpdateScope.ENTIRE_SERIES,
                EventUpdate(recurrence_pattern={"endCondition": {"type": "occurrences", "value": "10"}}),
            )
        assert exc_info.value.codes == [messages.CREATION_COUNT_EXCEEDED]
        assert len(service.list_occurrences(aggregate_id.event_guid)) == 5


# ============================================================================
# Truncation
# ============================================================================


class TestTruncate:
    """Tests for ending a series at its last kept occurrence."""

    def test_truncate_end_date_mode(self, event_service, create_series, weekly_pattern):
        """Test an endDate series is truncated to the last kept end."""
        aggregate_id = create_series(
            weekly_pattern(end_type="endDate", end_value="2024-12-27T11:00:00Z")
        )
        store = event_service.store
        event = store.get_event(aggregate_id.event_guid)
        kept = store.list_occurrences(event.id)[:3]

        engine = UpdatePropagationEngine(store, creation_limit=500)
        with store.transaction():
            engine.truncate(event, kept)

        stored = event_service.get_event(aggregate_id.event_guid)
        assert stored.recurrence_pattern["endCondition"] == {
            "type": "endDate",
            "value": "2024-12-25T11:00:00Z",
        }
        assert stored.recurrence_end_date == at(25, 11)
