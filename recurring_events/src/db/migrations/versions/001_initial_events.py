"""Initial event aggregate schema

Revision ID: 001_initial_events
Revises:
Create Date: 2026-10-19

Creates the three tables of the event aggregate:
- event_details: shared content, optionally forked from another detail
- events: recurrence roots with pattern, registration window and version
- event_repetitions: one row per occurrence, pointing at the detail in effect
- Indexes for occurrence range scans and recurrence end lookups
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '001_initial_events'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """
    Create event_details, events and event_repetitions.

    Foreign keys:
    - events.event_detail_id -> event_details.id (CASCADE)
    - event_repetitions.event_id -> events.id (CASCADE)
    - event_repetitions.event_detail_id -> event_details.id (CASCADE)
    - event_details.forked_from_id -> event_details.id (SET NULL)
    """

    op.create_table(
        'event_details',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('uuid', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('short_description', sa.String(length=255), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('event_type', sa.String(length=20), nullable=False, server_default='offline'),
        sa.Column('is_restricted', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('online_provider', sa.String(length=255), nullable=True),
        sa.Column('meeting_details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('recordings', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('max_attendees', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='live'),
        sa.Column('attendees', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('ideal_time', sa.Integer(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('forked_from_id', sa.Integer(), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('updated_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['forked_from_id'], ['event_details.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_event_details_uuid', 'event_details', ['uuid'], unique=True)
    op.create_index('ix_event_details_status', 'event_details', ['status'])
    op.create_index('ix_event_details_forked_from_id', 'event_details', ['forked_from_id'])

    op.create_table(
        'events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('uuid', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('event_detail_id', sa.Integer(), nullable=False),
        sa.Column('is_recurring', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('recurrence_pattern', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('recurrence_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('auto_enroll', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('registration_start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('registration_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('platform_integration', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('updated_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['event_detail_id'], ['event_details.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_events_uuid', 'events', ['uuid'], unique=True)
    op.create_index('ix_events_event_detail_id', 'events', ['event_detail_id'])
    op.create_index('ix_events_recurrence_end_date', 'events', ['recurrence_end_date'])
    op.create_index('idx_events_recurring_end', 'events', ['is_recurring', 'recurrence_end_date'])

    op.create_table(
        'event_repetitions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('uuid', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('event_id', sa.Integer(), nullable=False),
        sa.Column('event_detail_id', sa.Integer(), nullable=False),
        sa.Column('online_details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('er_metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('start_date_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('updated_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['event_detail_id'], ['event_details.id'], ondelete='CASCADE'),
        sa.CheckConstraint('start_date_time < end_date_time', name='ck_repetitions_window_order'),
    )
    op.create_index('ix_event_repetitions_uuid', 'event_repetitions', ['uuid'], unique=True)
    op.create_index('ix_event_repetitions_event_id', 'event_repetitions', ['event_id'])
    op.create_index('ix_event_repetitions_event_detail_id', 'event_repetitions', ['event_detail_id'])
    op.create_index('idx_repetitions_event_start', 'event_repetitions', ['event_id', 'start_date_time'])


def downgrade() -> None:
    """
    Drop the event aggregate tables.
    """
    op.drop_index('idx_repetitions_event_start', table_name='event_repetitions')
    op.drop_index('ix_event_repetitions_event_detail_id', table_name='event_repetitions')
    op.drop_index('ix_event_repetitions_event_id', table_name='event_repetitions')
    op.drop_index('ix_event_repetitions_uuid', table_name='event_repetitions')
    op.drop_table('event_repetitions')

    op.drop_index('idx_events_recurring_end', table_name='events')
    op.drop_index('ix_events_recurrence_end_date', table_name='events')
    op.drop_index('ix_events_event_detail_id', table_name='events')
    op.drop_index('ix_events_uuid', table_name='events')
    op.drop_table('events')

    op.drop_index('ix_event_details_forked_from_id', table_name='event_details')
    op.drop_index('ix_event_details_status', table_name='event_details')
    op.drop_index('ix_event_details_uuid', table_name='event_details')
    op.drop_table('event_details')
