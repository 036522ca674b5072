"""initial_schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id():
    return sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True)


def _master_fk(index=True, unique=False):
    return sa.Column(
        'master_id', postgresql.UUID(as_uuid=True),
        sa.ForeignKey('masters.id', ondelete='CASCADE'),
        nullable=False, index=index, unique=unique
    )


def upgrade() -> None:
    # Needed for the per-master no-overlap exclusion constraint
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")

    op.create_table(
        'users',
        _id(),
        sa.Column('username', sa.String(255), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('telegram_chat_id', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)

    op.create_table(
        'masters',
        _id(),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('display_name', sa.String(200), nullable=False),
        sa.Column('booking_slug', sa.String(64), nullable=False),
        sa.Column('timezone', sa.String(64), nullable=False, server_default='UTC'),
        sa.Column('cancel_policy_hours', sa.Integer(), nullable=False, server_default='24'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    )
    op.create_index('ix_masters_booking_slug', 'masters', ['booking_slug'], unique=True)

    op.create_table(
        'master_settings',
        _id(),
        _master_fk(index=False, unique=True),
        sa.Column('reminder_hours', sa.JSON(), nullable=False),
        sa.Column('quiet_hours_start', sa.String(5), nullable=True),
        sa.Column('quiet_hours_end', sa.String(5), nullable=True),
        sa.Column('first_visit_discount_percent', sa.Integer(), nullable=False, server_default='15'),
        sa.Column('min_booking_notice_minutes', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('apple_calendar_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('apple_calendar_token', sa.String(128), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    )

    op.create_table(
        'services',
        _id(),
        _master_fk(),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('buffer_before_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('buffer_after_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.CheckConstraint('duration_minutes >= 5', name='services_min_duration'),
        sa.CheckConstraint('buffer_before_minutes >= 0 AND buffer_after_minutes >= 0',
                           name='services_non_negative_buffers'),
    )
    op.create_index('ix_services_is_active', 'services', ['is_active'])

    op.create_table(
        'availability_rules',
        _id(),
        _master_fk(),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('slot_granularity_minutes', sa.Integer(), nullable=False, server_default='30'),
        sa.CheckConstraint('day_of_week BETWEEN 0 AND 6', name='availability_rules_day_of_week'),
        sa.CheckConstraint('start_time < end_time', name='availability_rules_time_order'),
    )

    op.create_table(
        'availability_windows',
        _id(),
        _master_fk(),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.UniqueConstraint('master_id', 'date', 'start_time', 'end_time', name='availability_windows_unique'),
        sa.CheckConstraint('start_time < end_time', name='availability_windows_time_order'),
    )

    op.create_table(
        'availability_exclusions',
        _id(),
        _master_fk(),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('reason', sa.String(255), nullable=True),
        sa.UniqueConstraint('master_id', 'date', name='availability_exclusions_unique'),
    )

    op.create_table(
        'master_blocks',
        _id(),
        _master_fk(),
        sa.Column('start_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('title', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.CheckConstraint('start_at < end_at', name='master_blocks_time_order'),
    )

    op.create_table(
        'bookings',
        _id(),
        _master_fk(),
        sa.Column('client_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('service_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('services.id'), nullable=False),
        sa.Column('extra_service_ids', sa.JSON(), nullable=False),
        sa.Column('start_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('source', sa.String(20), nullable=False, server_default='client_link'),
        sa.Column('client_note', sa.Text(), nullable=True),
        sa.Column('master_note', sa.Text(), nullable=True),
        sa.Column('service_price', sa.Numeric(10, 2), nullable=True),
        sa.Column('discount_percent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('final_price', sa.Numeric(10, 2), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('canceled_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('start_at < end_at', name='bookings_time_order'),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'completed', 'no_show', 'canceled')",
            name='bookings_status_values'
        ),
    )
    op.create_index('ix_bookings_status', 'bookings', ['status'])
    op.execute(
        "ALTER TABLE bookings ADD CONSTRAINT bookings_no_overlap_per_master "
        "EXCLUDE USING gist (master_id WITH =, tstzrange(start_at, end_at, '[)') WITH &&) "
        "WHERE (status <> 'canceled')"
    )

    op.create_table(
        'booking_reminders',
        _id(),
        sa.Column('booking_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('bookings.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('remind_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('sent', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.UniqueConstraint('booking_id', 'remind_at', name='booking_reminders_unique'),
    )
    op.create_index('ix_booking_reminders_due', 'booking_reminders', ['sent', 'remind_at'])

    op.create_table(
        'calendar_sync_bindings',
        _id(),
        _master_fk(index=False),
        sa.Column('provider', sa.String(20), nullable=False, server_default='google'),
        sa.Column('access_token_encrypted', sa.LargeBinary(), nullable=False),
        sa.Column('refresh_token_encrypted', sa.LargeBinary(), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('scope', sa.String(512), nullable=True),
        sa.Column('sync_mode', sa.String(10), nullable=False, server_default='push'),
        sa.Column('external_calendar_id', sa.String(255), nullable=False, server_default='primary'),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.UniqueConstraint('master_id', 'provider', name='calendar_sync_bindings_unique'),
        sa.CheckConstraint("sync_mode IN ('push', 'hybrid')", name='calendar_sync_bindings_mode'),
    )

    op.create_table(
        'external_event_mappings',
        _id(),
        sa.Column('booking_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('bookings.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('provider', sa.String(20), nullable=False, server_default='google'),
        sa.Column('external_event_id', sa.String(1024), nullable=False),
        sa.Column('last_pushed_hash', sa.String(64), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.UniqueConstraint('booking_id', 'provider', name='external_event_mappings_unique'),
    )


def downgrade() -> None:
    op.drop_table('external_event_mappings')
    op.drop_table('calendar_sync_bindings')
    op.drop_index('ix_booking_reminders_due', table_name='booking_reminders')
    op.drop_table('booking_reminders')
    op.execute("ALTER TABLE bookings DROP CONSTRAINT IF EXISTS bookings_no_overlap_per_master")
    op.drop_table('bookings')
    op.drop_table('master_blocks')
    op.drop_table('availability_exclusions')
    op.drop_table('availability_windows')
    op.drop_table('availability_rules')
    op.drop_table('services')
    op.drop_table('master_settings')
    op.drop_index('ix_masters_booking_slug', table_name='masters')
    op.drop_table('masters')
    op.drop_index('ix_users_username', table_name='users')
    op.drop_table('users')
