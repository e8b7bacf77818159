"""Reservation domain model."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ReservationStatus(str, Enum):
    """Reservation lifecycle status."""

    PENDING = "pending"  # Waiting owner approval
    APPROVED = "approved"  # Owner approved, payment pending
    CONFIRMED = "confirmed"  # Payment confirmed
    ACTIVE = "active"  # Vehicle picked up, rental in progress
    COMPLETED = "completed"  # Vehicle returned
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    EXPIRED = "expired"  # Not answered within the approval window


# Statuses that hold the vehicle's calendar
OCCUPYING_STATUSES = frozenset(
    {
        ReservationStatus.PENDING,
        ReservationStatus.APPROVED,
        ReservationStatus.CONFIRMED,
        ReservationStatus.ACTIVE,
    }
)

TERMINAL_STATUSES = frozenset(
    {
        ReservationStatus.COMPLETED,
        ReservationStatus.CANCELLED,
        ReservationStatus.REJECTED,
        ReservationStatus.EXPIRED,
    }
)


class PaymentStatus(str, Enum):
    """Payment settlement status."""

    UNPAID = "unpaid"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    """Closed set of settlement methods."""

    CASH = "cash"
    CARD = "card"


class CancelledBy(str, Enum):
    """Party that cancelled a reservation."""

    RENTER = "renter"
    OWNER = "owner"
    ADMIN = "admin"
    SYSTEM = "system"


def to_naive_utc(value: datetime) -> datetime:
    """Normalize aware datetimes to naive UTC, the storage convention."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class PricingBreakdown(BaseModel):
    """Monetary terms of a reservation, in integer minor currency units."""

    model_config = ConfigDict(frozen=True)

    duration_days: int = Field(ge=1)
    daily_rate: int = Field(gt=0)
    rental_subtotal: int = Field(ge=0)
    deposit_amount: int = Field(ge=0)
    delivery_fee: int = Field(ge=0)
    total_payable: int = Field(ge=0)
    currency: str = Field(default="aed", min_length=3, max_length=3)

    @model_validator(mode="after")
    def validate_totals(self) -> "PricingBreakdown":
        """Ensure subtotal and total agree with their components."""
        if self.rental_subtotal != self.daily_rate * self.duration_days:
            raise ValueError(
                f"rental_subtotal {self.rental_subtotal} does not match "
                f"{self.daily_rate} x {self.duration_days} days"
            )
        expected = self.rental_subtotal + self.deposit_amount + self.delivery_fee
        if self.total_payable != expected:
            raise ValueError(
                f"total_payable {self.total_payable} does not match calculated total {expected}"
            )
        return self

    def verify(self) -> int:
        """Recompute the total from the snapshot components."""
        return self.daily_rate * self.duration_days + self.deposit_amount + self.delivery_fee


class ReservationOptions(BaseModel):
    """Optional details supplied with a reservation request."""

    delivery_requested: bool = False
    delivery_address: Optional[str] = Field(default=None, max_length=300)
    pickup_location: str = Field(default="To be determined", max_length=300)
    return_location: str = Field(default="To be determined", max_length=300)
    renter_notes: Optional[str] = Field(default=None, max_length=500)
    payment_method: PaymentMethod = PaymentMethod.CASH


class Reservation(BaseModel):
    """Reservation of a vehicle for a date range."""

    id: UUID = Field(default_factory=uuid4)
    vehicle_id: UUID
    renter_id: str = Field(min_length=1)
    owner_id: str = Field(min_length=1, description="Vehicle owner at request time")

    start_date: datetime
    end_date: datetime

    # Pricing snapshot, frozen once the booking leaves pending
    daily_rate: int = Field(gt=0)
    duration_days: int = Field(ge=1)
    rental_subtotal: int = Field(ge=0)
    deposit_amount: int = Field(ge=0)
    delivery_fee: int = Field(ge=0)
    total_payable: int = Field(ge=0)
    currency: str = Field(default="aed", min_length=3, max_length=3)

    status: ReservationStatus = ReservationStatus.PENDING
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    payment_reference: Optional[str] = Field(
        default=None, description="Processor transaction id, set once on success"
    )
    refunded_amount: int = Field(default=0, ge=0)

    delivery_requested: bool = False
    delivery_address: Optional[str] = None
    pickup_location: str = "To be determined"
    return_location: str = "To be determined"
    renter_notes: Optional[str] = None

    cancelled_by: Optional[CancelledBy] = None
    cancellation_reason: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None

    version: int = Field(default=0, ge=0)

    @field_validator("start_date", "end_date", "created_at")
    @classmethod
    def normalize_datetime(cls, v: datetime) -> datetime:
        return to_naive_utc(v)

    @field_validator("end_date")
    @classmethod
    def validate_range(cls, v: datetime, info) -> datetime:
        """Ensure start_date < end_date."""
        values = info.data
        if "start_date" in values and v <= values["start_date"]:
            raise ValueError("end_date must be after start_date")
        return v

    @model_validator(mode="after")
    def validate_parties(self) -> "Reservation":
        if self.renter_id == self.owner_id:
            raise ValueError("renter cannot book their own vehicle")
        return self

    @property
    def pricing(self) -> PricingBreakdown:
        """Frozen pricing snapshot as a value object."""
        return PricingBreakdown(
            duration_days=self.duration_days,
            daily_rate=self.daily_rate,
            rental_subtotal=self.rental_subtotal,
            deposit_amount=self.deposit_amount,
            delivery_fee=self.delivery_fee,
            total_payable=self.total_payable,
            currency=self.currency,
        )

    @property
    def is_occupying(self) -> bool:
        return self.status in OCCUPYING_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
