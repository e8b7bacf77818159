"""Initial schema with vehicles and reservations

Revision ID: 001_initial_schema
Revises: 
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

OCCUPYING = "('PENDING', 'APPROVED', 'CONFIRMED', 'ACTIVE')"


def upgrade() -> None:
    """Create initial database schema."""
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")

    # Create enum types
    op.execute("CREATE TYPE vehicle_status AS ENUM ('LISTABLE', 'INACTIVE', 'MAINTENANCE', 'PENDING_REVIEW', 'DELETED')")
    op.execute(
        "CREATE TYPE reservation_status AS ENUM "
        "('PENDING', 'APPROVED', 'CONFIRMED', 'ACTIVE', 'COMPLETED', 'CANCELLED', 'REJECTED', 'EXPIRED')"
    )
    op.execute("CREATE TYPE payment_method AS ENUM ('CASH', 'CARD')")
    op.execute("CREATE TYPE payment_status AS ENUM ('UNPAID', 'PENDING', 'PAID', 'FAILED', 'REFUNDED')")
    op.execute("CREATE TYPE cancelled_by AS ENUM ('RENTER', 'OWNER', 'ADMIN', 'SYSTEM')")

    # Vehicles mirror the listing subsystem
    op.create_table(
        'vehicles',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('owner_id', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False, server_default=''),
        sa.Column('daily_rate', sa.Integer(), nullable=False),
        sa.Column('deposit_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('delivery_fee', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('available_from', sa.DateTime(), nullable=True),
        sa.Column('available_to', sa.DateTime(), nullable=True),
        sa.Column('operational_status', postgresql.ENUM(name='vehicle_status', create_type=False), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('daily_rate > 0', name='check_positive_daily_rate'),
        sa.CheckConstraint('deposit_amount >= 0', name='check_nonnegative_deposit'),
        sa.CheckConstraint('delivery_fee >= 0', name='check_nonnegative_delivery_fee'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_vehicles_owner_id', 'vehicles', ['owner_id'])

    op.create_table(
        'reservations',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('vehicle_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('renter_id', sa.String(length=64), nullable=False),
        sa.Column('owner_id', sa.String(length=64), nullable=False),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('end_date', sa.DateTime(), nullable=False),
        sa.Column('daily_rate', sa.Integer(), nullable=False),
        sa.Column('duration_days', sa.Integer(), nullable=False),
        sa.Column('rental_subtotal', sa.Integer(), nullable=False),
        sa.Column('deposit_amount', sa.Integer(), nullable=False),
        sa.Column('delivery_fee', sa.Integer(), nullable=False),
        sa.Column('total_payable', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', postgresql.ENUM(name='reservation_status', create_type=False), nullable=False),
        sa.Column('payment_method', postgresql.ENUM(name='payment_method', create_type=False), nullable=False),
        sa.Column('payment_status', postgresql.ENUM(name='payment_status', create_type=False), nullable=False),
        sa.Column('payment_reference', sa.String(length=255), nullable=True),
        sa.Column('refunded_amount', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('delivery_requested', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('delivery_address', sa.String(length=300), nullable=True),
        sa.Column('pickup_location', sa.String(length=300), nullable=False),
        sa.Column('return_location', sa.String(length=300), nullable=False),
        sa.Column('renter_notes', sa.String(length=500), nullable=True),
        sa.Column('cancelled_by', postgresql.ENUM(name='cancelled_by', create_type=False), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('rejected_at', sa.DateTime(), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('activated_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('expired_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.CheckConstraint('start_date < end_date', name='check_date_range'),
        sa.CheckConstraint('duration_days >= 1', name='check_positive_duration'),
        sa.CheckConstraint('daily_rate > 0', name='check_reservation_positive_rate'),
        sa.CheckConstraint(
            'total_payable = rental_subtotal + deposit_amount + delivery_fee',
            name='check_total_payable',
        ),
        sa.CheckConstraint('renter_id <> owner_id', name='check_not_own_vehicle'),
        sa.CheckConstraint('refunded_amount <= total_payable', name='check_refund_within_total'),
        sa.ForeignKeyConstraint(['vehicle_id'], ['vehicles.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_reference'),
    )
    op.create_index('ix_reservations_vehicle_status', 'reservations', ['vehicle_id', 'status'])
    op.create_index('ix_reservations_vehicle_dates', 'reservations', ['vehicle_id', 'start_date', 'end_date'])
    op.create_index('ix_reservations_renter_created', 'reservations', ['renter_id', sa.text('created_at DESC')])
    op.create_index('ix_reservations_status_expires', 'reservations', ['status', 'expires_at'])

    # No two occupying reservations of one vehicle may overlap
    op.execute(
        f"""
        ALTER TABLE reservations ADD CONSTRAINT ex_reservations_no_overlap
        EXCLUDE USING gist (
            vehicle_id WITH =,
            tsrange(start_date, end_date, '[)') WITH &&
        ) WHERE (status IN {OCCUPYING})
        """
    )


def downgrade() -> None:
    """Drop all tables and types."""
    op.drop_table('reservations')
    op.drop_table('vehicles')

    op.execute('DROP TYPE IF EXISTS cancelled_by')
    op.execute('DROP TYPE IF EXISTS payment_status')
    op.execute('DROP TYPE IF EXISTS payment_method')
    op.execute('DROP TYPE IF EXISTS reservation_status')
    op.execute('DROP TYPE IF EXISTS vehicle_status')
