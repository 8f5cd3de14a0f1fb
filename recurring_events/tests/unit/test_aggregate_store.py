"""
Unit tests for the SQLAlchemy aggregate store.

Tests atomic creation, GUID lookups, occurrence queries, detail forks,
deletion with fork pruning, and the transaction error mapping.
"""

import pytest
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from recurring_events.src.models import Event, EventDetail, EventRepetition
from recurring_events.src.services.exceptions import (
    ConflictError,
    NotFoundError,
    OperationCancelledError,
    StoreError,
)
from recurring_events.src.services.occurrence_generator import OccurrenceWindow


UTC = timezone.utc
FIRST = datetime(2024, 12, 18, 10, 0, tzinfo=UTC)


def _windows(count, first=FIRST):
    return [
        OccurrenceWindow(first + timedelta(days=i), first + timedelta(days=i, hours=1))
        for i in range(count)
    ]


@pytest.fixture
def make_aggregate(test_store):
    """Factory storing a daily aggregate with the given number of occurrences."""
    def _create(count=3, defaults=None, title="Daily check-in"):
        detail = EventDetail(title=title, event_type="offline", created_by="user-1")
        event = Event(
            is_recurring=count > 1,
            recurrence_pattern={
                "frequency": "daily",
                "interval": 1,
                "endCondition": {"type": "occurrences", "value": count},
            } if count > 1 else None,
            created_by="user-1",
        )
        return test_store.create_aggregate(detail, event, _windows(count), occurrence_defaults=defaults)
    return _create


# ============================================================================
# Creation
# ============================================================================


class TestCreateAggregate:
    """Tests for create_aggregate."""

    def test_returns_guids_in_order(self, test_store, make_aggregate):
        """Test the AggregateId lists occurrences by start."""
        aggregate_id = make_aggregate(count=3)

        assert aggregate_id.event_guid.startswith("evt_")
        assert len(aggregate_id.occurrence_guids) == 3
        assert all(g.startswith("rep_") for g in aggregate_id.occurrence_guids)

        aggregate = test_store.load_aggregate(aggregate_id.event_guid)
        assert [r.guid for r in aggregate.occurrences] == list(aggregate_id.occurrence_guids)
        assert aggregate.windows == _windows(3)

    def test_every_occurrence_references_main_detail(self, test_store, make_aggregate):
        """Test a fresh aggregate has no forks."""
        aggregate = test_store.load_aggregate(make_aggregate().event_guid)
        assert {r.event_detail_id for r in aggregate.occurrences} == {aggregate.detail.id}
        assert aggregate.forked_details == []

    def test_defaults_copied_per_row(self, test_store, make_aggregate):
        """Test occurrence defaults are copied, not shared."""
        aggregate_id = make_aggregate(count=2, defaults={"online_details": {"url": "https://meet"}})
        aggregate = test_store.load_aggregate(aggregate_id.event_guid)

        first, second = aggregate.occurrences
        assert first.online_details == {"url": "https://meet"}
        first.online_details["url"] = "changed"
        assert second.online_details == {"url": "https://meet"}

    def test_stored_instants_are_aware_utc(self, test_db_session, test_store, make_aggregate):
        """Test instants come back timezone-aware after a round trip."""
        aggregate_id = make_aggregate(count=1)
        test_db_session.expire_all()
        occurrence = test_store.get_occurrence(aggregate_id.occurrence_guids[0])
        assert occurrence.start_date_time == FIRST
        assert occurrence.start_date_time.tzinfo is not None

    def test_requires_windows(self, test_store):
        """Test an aggregate needs at least one occurrence."""
        with pytest.raises(ValueError):
            test_store.create_aggregate(EventDetail(title="x"), Event(), [])

    def test_cancelled_creation_leaves_nothing(self, test_db_session, test_store):
        """Test cancellation before commit rolls the whole aggregate back."""
        with pytest.raises(OperationCancelledError):
            test_store.create_aggregate(
                EventDetail(title="Cancelled"), Event(), _windows(3), should_cancel=lambda: True
            )

        assert test_db_session.query(Event).count() == 0
        assert test_db_session.query(EventDetail).count() == 0
        assert test_db_session.query(EventRepetition).count() == 0


# ============================================================================
# Queries
# ============================================================================


class TestQueries:
    """Tests for lookups and occurrence queries."""

    def test_unknown_event(self, test_store):
        """Test an unknown but well formed GUID."""
        with pytest.raises(NotFoundError):
            test_store.load_aggregate("evt_" + "0" * 26)

    def test_malformed_guid(self, test_store):
        """Test a malformed GUID is reported as not found."""
        with pytest.raises(NotFoundError):
            test_store.get_event("evt_nope")

    def test_wrong_prefix(self, test_store, make_aggregate):
        """Test an occurrence GUID cannot address an event."""
        aggregate_id = make_aggregate()
        with pytest.raises(NotFoundError):
            test_store.get_event(aggregate_id.occurrence_guids[0])

    def test_list_after(self, test_store, make_aggregate):
        """Test the after filter is inclusive of the start."""
        event = test_store.get_event(make_aggregate(count=4).event_guid)
        rows = test_store.list_occurrences(event.id, after=FIRST + timedelta(days=2))
        assert [r.start_date_time for r in rows] == [w.start for w in _windows(4)[2:]]

    def test_first_upcoming_occurrence(self, test_store, make_aggregate):
        """Test an occurrence in progress counts as upcoming."""
        event = test_store.get_event(make_aggregate(count=3).event_guid)
        now = FIRST + timedelta(days=1, minutes=30)
        assert test_store.first_upcoming_occurrence(event.id, now).start_date_time == FIRST + timedelta(days=1)
        assert test_store.first_upcoming_occurrence(event.id, FIRST + timedelta(days=10)) is None


# ============================================================================
# Forks
# ============================================================================


class TestForks:
    """Tests for detail forks and clones."""

    def test_fork_detail_for_occurrence(self, test_db_session, test_store, make_aggregate):
        """Test a fork copies shared values and only moves the target row."""
        aggregate_id = make_aggregate(count=3, title="Original")
        target = test_store.get_occurrence(aggregate_id.occurrence_guids[1])
        main_detail_id = target.event_detail_id

        fork = test_store.fork_detail_for_occurrence(target, user_id="user-2")
        test_db_session.commit()

        assert fork.guid.startswith("edt_")
        assert fork.title == "Original"
        assert fork.forked_from_id == main_detail_id
        assert fork.updated_by == "user-2"
        assert target.event_detail_id == fork.id

        aggregate = test_store.load_aggregate(aggregate_id.event_guid)
        assert aggregate.detail.id == main_detail_id
        assert [d.id for d in aggregate.forked_details] == [fork.id]
        assert test_store.count_detail_references(main_detail_id) == 2

    def test_referenced_outside(self, test_store, make_aggregate):
        """Test detection of rows outside a set that share a detail."""
        aggregate = test_store.load_aggregate(make_aggregate(count=3).event_guid)
        ids = {r.id for r in aggregate.occurrences}
        assert not test_store.referenced_outside(aggregate.detail.id, ids)
        assert test_store.referenced_outside(aggregate.detail.id, {aggregate.occurrences[0].id})

    def test_clone_event(self, test_store, make_aggregate):
        """Test a cloned event copies settings onto the given detail."""
        aggregate = test_store.load_aggregate(make_aggregate(count=2).event_guid)
        detail = test_store.clone_detail(aggregate.detail)
        clone = test_store.clone_event(aggregate.event, detail)

        assert clone.guid != aggregate.event.guid
        assert clone.detail is detail
        assert clone.recurrence_pattern == aggregate.event.recurrence_pattern
        assert clone.recurrence_pattern is not aggregate.event.recurrence_pattern


# ============================================================================
# Deletion
# ============================================================================


class TestDeletion:
    """Tests for occurrence and aggregate deletion."""

    def test_delete_occurrences_prunes_orphan_forks(self, test_db_session, test_store, make_aggregate):
        """Test a fork used only by deleted rows is removed with them."""
        aggregate_id = make_aggregate(count=3)
        target = test_store.get_occurrence(aggregate_id.occurrence_guids[2])
        fork = test_store.fork_detail_for_occurrence(target)
        fork_id = fork.id

        removed = test_store.delete_occurrences([target])
        test_db_session.commit()

        assert removed == [aggregate_id.occurrence_guids[2]]
        assert test_db_session.get(EventDetail, fork_id) is None
        aggregate = test_store.load_aggregate(aggregate_id.event_guid)
        assert len(aggregate.occurrences) == 2
        assert aggregate.detail is not None

    def test_delete_aggregate_removes_everything(self, test_db_session, test_store, make_aggregate):
        """Test the event, its rows, its detail and forks are all removed."""
        aggregate_id = make_aggregate(count=3)
        test_store.fork_detail_for_occurrence(test_store.get_occurrence(aggregate_id.occurrence_guids[0]))
        event = test_store.get_event(aggregate_id.event_guid)

        removed = test_store.delete_aggregate(event)
        test_db_session.commit()

        assert removed == list(aggregate_id.occurrence_guids)
        assert test_db_session.query(Event).count() == 0
        assert test_db_session.query(EventRepetition).count() == 0
        assert test_db_session.query(EventDetail).count() == 0


# ============================================================================
# Transactions
# ============================================================================


class TestTransaction:
    """Tests for transaction error mapping."""

    def test_commit_on_success(self, test_db_session, test_store, make_aggregate):
        """Test changes made inside the block are committed and versioned."""
        aggregate_id = make_aggregate(count=1)
        occurrence = test_store.get_occurrence(aggregate_id.occurrence_guids[0])
        assert occurrence.version == 1

        with test_store.transaction():
            occurrence.er_metadata = {"note": "moved room"}

        test_db_session.expire_all()
        occurrence = test_store.get_occurrence(aggregate_id.occurrence_guids[0])
        assert occurrence.er_metadata == {"note": "moved room"}
        assert occurrence.version == 2

    def test_exception_rolls_back(self, test_db_session, test_store, make_aggregate):
        """Test an error inside the block discards the changes and propagates."""
        aggregate_id = make_aggregate(count=1)
        occurrence = test_store.get_occurrence(aggregate_id.occurrence_guids[0])

        with pytest.raises(RuntimeError):
            with test_store.transaction():
                occurrence.er_metadata = {"note": "lost"}
                raise RuntimeError("boom")

        test_db_session.expire_all()
        assert test_store.get_occurrence(aggregate_id.occurrence_guids[0]).er_metadata is None

    def test_sqlalchemy_error_becomes_store_error(self, mocker, test_db_session, test_store):
        """Test database failures surface as StoreError with the cause chained."""
        mocker.patch.object(
            test_db_session, "commit",
            side_effect=OperationalError("COMMIT", {}, Exception("disk full")),
        )
        with pytest.raises(StoreError) as exc_info:
            with test_store.transaction():
                pass
        assert isinstance(exc_info.value.__cause__, OperationalError)

    def test_stale_data_becomes_conflict(self, mocker, test_db_session, test_store):
        """Test concurrent modification surfaces as ConflictError."""
        mocker.patch.object(test_db_session, "commit", side_effect=StaleDataError("stale"))
        with pytest.raises(ConflictError):
            with test_store.transaction():
                pass
