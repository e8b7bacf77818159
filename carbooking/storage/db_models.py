"""SQLAlchemy database models.

Maps domain models to PostgreSQL tables.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, relationship

from carbooking.models.reservation import (
    CancelledBy,
    PaymentMethod,
    PaymentStatus,
    ReservationStatus,
)
from carbooking.models.vehicle import VehicleStatus


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class VehicleTable(Base):
    """Vehicle listing mirrored from the listing subsystem. Read-only here."""

    __tablename__ = "vehicles"

    id = Column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    owner_id = Column(String(64), nullable=False, index=True)
    title = Column(String(200), nullable=False, default="")
    daily_rate = Column(Integer, nullable=False)
    deposit_amount = Column(Integer, nullable=False, default=0)
    delivery_fee = Column(Integer, nullable=False, default=0)
    available_from = Column(DateTime, nullable=True)
    available_to = Column(DateTime, nullable=True)
    operational_status = Column(
        Enum(VehicleStatus, native_enum=True, name="vehicle_status"),
        nullable=False,
        default=VehicleStatus.LISTABLE,
    )
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    reservations = relationship("ReservationTable", back_populates="vehicle")

    __table_args__ = (
        CheckConstraint("daily_rate > 0", name="check_positive_daily_rate"),
        CheckConstraint("deposit_amount >= 0", name="check_nonnegative_deposit"),
        CheckConstraint("delivery_fee >= 0", name="check_nonnegative_delivery_fee"),
    )


class ReservationTable(Base):
    """Reservation entity table. Rows are never deleted."""

    __tablename__ = "reservations"

    id = Column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    vehicle_id = Column(PG_UUID(as_uuid=True), ForeignKey("vehicles.id", ondelete="RESTRICT"), nullable=False)
    renter_id = Column(String(64), nullable=False)
    owner_id = Column(String(64), nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)

    daily_rate = Column(Integer, nullable=False)
    duration_days = Column(Integer, nullable=False)
    rental_subtotal = Column(Integer, nullable=False)
    deposit_amount = Column(Integer, nullable=False, default=0)
    delivery_fee = Column(Integer, nullable=False, default=0)
    total_payable = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="aed")

    status = Column(
        Enum(ReservationStatus, native_enum=True, name="reservation_status"),
        nullable=False,
        default=ReservationStatus.PENDING,
    )
    payment_method = Column(
        Enum(PaymentMethod, native_enum=True, name="payment_method"),
        nullable=False,
        default=PaymentMethod.CASH,
    )
    payment_status = Column(
        Enum(PaymentStatus, native_enum=True, name="payment_status"),
        nullable=False,
        default=PaymentStatus.UNPAID,
    )
    payment_reference = Column(String(255), nullable=True, unique=True)
    refunded_amount = Column(Integer, nullable=False, default=0)

    delivery_requested = Column(Boolean, nullable=False, default=False)
    delivery_address = Column(String(300), nullable=True)
    pickup_location = Column(String(300), nullable=False, default="To be determined")
    return_location = Column(String(300), nullable=False, default="To be determined")
    renter_notes = Column(String(500), nullable=True)

    cancelled_by = Column(Enum(CancelledBy, native_enum=True, name="cancelled_by"), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)
    activated_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    expired_at = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False, default=0)

    vehicle = relationship("VehicleTable", back_populates="reservations")

    __table_args__ = (
        CheckConstraint("start_date < end_date", name="check_date_range"),
        CheckConstraint("duration_days >= 1", name="check_positive_duration"),
        CheckConstraint("daily_rate > 0", name="check_reservation_positive_rate"),
        CheckConstraint(
            "total_payable = rental_subtotal + deposit_amount + delivery_fee",
            name="check_total_payable",
        ),
        CheckConstraint("renter_id <> owner_id", name="check_not_own_vehicle"),
        CheckConstraint("refunded_amount <= total_payable", name="check_refund_within_total"),
        Index("ix_reservations_vehicle_status", vehicle_id, status),
        Index("ix_reservations_vehicle_dates", vehicle_id, start_date, end_date),
        Index("ix_reservations_renter_created", renter_id, created_at.desc()),
        Index("ix_reservations_status_expires", status, expires_at),
    )


# Enum labels are stored by member name
OCCUPYING_STATUS_SQL = "('PENDING', 'APPROVED', 'CONFIRMED', 'ACTIVE')"

NO_OVERLAP_CONSTRAINT = "ex_reservations_no_overlap"

# Applied by Database.create_tables and by migration 001
NO_OVERLAP_DDL = (
    "CREATE EXTENSION IF NOT EXISTS btree_gist",
    f"""
    ALTER TABLE reservations ADD CONSTRAINT {NO_OVERLAP_CONSTRAINT}
    EXCLUDE USING gist (
        vehicle_id WITH =,
        tsrange(start_date, end_date, '[)') WITH &&
    ) WHERE (status IN {OCCUPYING_STATUS_SQL})
    """,
)
