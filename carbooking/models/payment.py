"""Payment processor value objects."""

from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from carbooking.models.reservation import PaymentMethod, PaymentStatus, ReservationStatus


class ChargeIntent(BaseModel):
    """Charge created at the processor, awaiting client confirmation."""

    reference: str
    status: str
    amount: int = Field(ge=0)
    currency: str
    client_secret: Optional[str] = None
    reservation_id: Optional[UUID] = None


class RefundResult(BaseModel):
    reference: str
    status: str
    amount: int = Field(ge=0)


class PaymentOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PaymentEvent(BaseModel):
    """Verified processor event, reduced to what reconciliation needs."""

    event_id: str
    event_type: str
    reservation_id: Optional[UUID] = None
    processor_reference: Optional[str] = None
    outcome: Optional[PaymentOutcome] = None
    amount: Optional[int] = None


class AckOutcome(str, Enum):
    """What happened to a verified payment event."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    UNRECONCILED = "unreconciled"


class Ack(BaseModel):
    """Acknowledgement returned to the processor for a verified event."""

    received: bool = True
    outcome: AckOutcome
    event_id: Optional[str] = None
    reservation_id: Optional[UUID] = None


class PaymentInstruction(BaseModel):
    """Result of choosing a payment method for a reservation."""

    reservation_id: UUID
    method: PaymentMethod
    status: ReservationStatus
    payment_status: PaymentStatus
    amount: int
    currency: str
    processor_reference: Optional[str] = None
    client_secret: Optional[str] = None
