"""
Pytest configuration and fixtures for recurring events tests.

Provides shared fixtures for:
- Test database sessions
- A fixed reference clock
- Engine settings and the event service
- Sample data factories
"""

import os
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app modules
os.environ['EVENT_SERVICE_DB_URL'] = 'sqlite:///:memory:'
os.environ.setdefault('EVENT_SERVICE_ENV', 'test')

from recurring_events.src.config.settings import AppSettings
from recurring_events.src.models import Base
from recurring_events.src.schemas.event import EventDraft
from recurring_events.src.services.aggregate_store import SqlAlchemyAggregateStore
from recurring_events.src.services.event_service import EventService
from recurring_events.src.utils.calendar import FixedClock


# Reference instant shared by every test: two and a half weeks before the
# sample series starts on Wednesday 2024-12-18.
NOW = "2024-12-01T00:00:00Z"


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture(scope='function')
def test_db_engine():
    """Create an in-memory SQLite database engine for testing."""
    from sqlalchemy import event

    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )

    # Enable foreign key constraints for SQLite
    def _fk_pragma_on_connect(dbapi_con, con_record):
        dbapi_con.execute('pragma foreign_keys=ON')

    event.listen(engine, 'connect', _fk_pragma_on_connect)

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope='function')
def test_db_session(test_db_engine):
    """Create a test database session."""
    TestingSessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_db_engine
    )
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def test_store(test_db_session):
    """Aggregate store bound to the test session."""
    return SqlAlchemyAggregateStore(test_db_session)


# ============================================================================
# Service Fixtures
# ============================================================================

@pytest.fixture
def fixed_clock():
    """Clock pinned to NOW."""
    return FixedClock(NOW)


@pytest.fixture
def test_settings():
    """Engine settings with the default creation limit."""
    return AppSettings(EVENT_CREATION_LIMIT=500)


@pytest.fixture
def published():
    """Collects lifecycle notices passed to the publish hook."""
    return []


@pytest.fixture
def event_service(test_db_session, fixed_clock, test_settings, published):
    """EventService wired to the test session, fixed clock and a recording hook."""
    return EventService(
        test_db_session,
        clock=fixed_clock,
        settings=test_settings,
        publish=published.append,
    )


# ============================================================================
# Sample Data Factories
# ============================================================================

@pytest.fixture
def sample_draft_data():
    """Factory for event draft payloads (public offline event by default)."""
    def _create(
        title='Weekly yoga',
        start='2024-12-18T10:00:00Z',
        end='2024-12-18T11:00:00Z',
        is_recurring=False,
        pattern=None,
        **overrides
    ):
        data = {
            'title': title,
            'event_type': 'offline',
            'is_restricted': False,
            'location': 'Community hall',
            'start_date_time': start,
            'end_date_time': end,
            'is_recurring': is_recurring,
            'recurrence_pattern': pattern,
            'registration_start_date': '2024-12-02T00:00:00Z',
            'registration_end_date': '2024-12-17T00:00:00Z',
            'created_by': 'user-1',
        }
        data.update(overrides)
        return data
    return _create


@pytest.fixture
def weekly_pattern():
    """Factory for weekly recurrence patterns in API (camelCase) form."""
    def _create(days=(3, 5), interval=1, end_type='occurrences', end_value='4', start=None):
        pattern = {
            'frequency': 'weekly',
            'interval': interval,
            'daysOfWeek': list(days),
            'endCondition': {'type': end_type, 'value': end_value},
        }
        if start is not None:
            pattern['recurringStartDate'] = start
        return pattern
    return _create


@pytest.fixture
def daily_pattern():
    """Factory for daily recurrence patterns in API (camelCase) form."""
    def _create(interval=1, end_type='occurrences', end_value='5', start=None):
        pattern = {
            'frequency': 'daily',
            'interval': interval,
            'endCondition': {'type': end_type, 'value': end_value},
        }
        if start is not None:
            pattern['recurringStartDate'] = start
        return pattern
    return _create


@pytest.fixture
def create_series(event_service, sample_draft_data):
    """Factory that creates a stored event through the service and returns its AggregateId."""
    def _create(pattern=None, **overrides):
        data = sample_draft_data(is_recurring=pattern is not None, pattern=pattern, **overrides)
        return event_service.create_event(EventDraft(**data))
    return _create
