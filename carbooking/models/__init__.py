"""Models package - Pydantic domain models."""

from .actor import Actor, ActorRole
from .availability import OccupiedRange, VehicleAvailability
from .payment import (
    Ack,
    AckOutcome,
    ChargeIntent,
    PaymentEvent,
    PaymentInstruction,
    PaymentOutcome,
    RefundResult,
)
from .reservation import (
    OCCUPYING_STATUSES,
    TERMINAL_STATUSES,
    CancelledBy,
    PaymentMethod,
    PaymentStatus,
    PricingBreakdown,
    Reservation,
    ReservationOptions,
    ReservationStatus,
)
from .vehicle import AvailabilityWindow, Vehicle, VehicleStatus

__all__ = [
    "Actor",
    "ActorRole",
    "OccupiedRange",
    "VehicleAvailability",
    "Ack",
    "AckOutcome",
    "ChargeIntent",
    "PaymentEvent",
    "PaymentInstruction",
    "PaymentOutcome",
    "RefundResult",
    "OCCUPYING_STATUSES",
    "TERMINAL_STATUSES",
    "CancelledBy",
    "PaymentMethod",
    "PaymentStatus",
    "PricingBreakdown",
    "Reservation",
    "ReservationOptions",
    "ReservationStatus",
    "AvailabilityWindow",
    "Vehicle",
    "VehicleStatus",
]
