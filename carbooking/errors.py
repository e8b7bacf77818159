"""Exception taxonomy for the booking engine.

Every error carries a stable ``code`` and a message naming the rule that
was violated, so outer layers can show it to users as-is.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID


class BookingError(Exception):
    """Base class for all booking engine errors."""

    code = "BOOKING_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, **context: Any):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for API responses and log records."""
        return {
            "code": self.code,
            "message": self.message,
            "context": {
                key: str(value) if isinstance(value, (UUID, datetime)) else value
                for key, value in self.context.items()
            },
        }


class ValidationError(BookingError):
    """Malformed input. Always the caller's fault, never retried."""

    code = "VALIDATION_ERROR"


class InvalidRange(ValidationError):
    """End of a date range is not after its start."""

    code = "INVALID_RANGE"

    def __init__(self, start: datetime, end: datetime):
        super().__init__(
            "end date must be after start date",
            start_date=start,
            end_date=end,
        )


class NotFound(BookingError):
    """Referenced entity does not exist."""

    code = "NOT_FOUND"


class ReservationNotFound(NotFound):
    code = "BOOKING_NOT_FOUND"

    def __init__(self, reservation_id: UUID):
        super().__init__("booking not found", reservation_id=reservation_id)


class VehicleNotFound(NotFound):
    code = "VEHICLE_NOT_FOUND"

    def __init__(self, vehicle_id: UUID):
        super().__init__("vehicle not found", vehicle_id=vehicle_id)


class AvailabilityConflict(BookingError):
    """Requested range overlaps an occupying booking or leaves the listing window."""

    code = "DATES_UNAVAILABLE"

    def __init__(
        self,
        message: str = "dates unavailable",
        conflicting_reservation_id: Optional[UUID] = None,
        conflicting_start: Optional[datetime] = None,
        conflicting_end: Optional[datetime] = None,
        **context: Any,
    ):
        super().__init__(
            message,
            conflicting_reservation_id=conflicting_reservation_id,
            conflicting_start=conflicting_start,
            conflicting_end=conflicting_end,
            **context,
        )
        self.conflicting_reservation_id = conflicting_reservation_id
        self.conflicting_start = conflicting_start
        self.conflicting_end = conflicting_end


class IllegalTransition(BookingError):
    """Requested status change is not permitted from the current status."""

    code = "ILLEGAL_TRANSITION"

    def __init__(self, current: Any, desired: Any, message: Optional[str] = None):
        current_value = getattr(current, "value", current)
        desired_value = getattr(desired, "value", desired)
        super().__init__(
            message or f"cannot move booking from {current_value} to {desired_value}",
            current=current_value,
            desired=desired_value,
        )
        self.current = current
        self.desired = desired


class NotAuthorized(BookingError):
    """Actor lacks permission for the requested action."""

    code = "INSUFFICIENT_PERMISSIONS"


class PaymentProcessingError(BookingError):
    """External payment processor failure. The payment step may be retried."""

    code = "PAYMENT_PROCESSING_ERROR"

    def __init__(self, message: str, retryable: bool = False, **context: Any):
        super().__init__(message, retryable=retryable, **context)
        self.retryable = retryable


class WebhookVerificationError(BookingError):
    """Inbound payment event failed authenticity checks or could not be parsed."""

    code = "WEBHOOK_REJECTED"


class StoreConflict(BookingError):
    """Optimistic write lost a race; the record changed since it was read."""

    code = "STORE_CONFLICT"


class TransientStoreError(BookingError):
    """Store is unavailable or contended; the whole operation may be retried."""

    code = "STORE_UNAVAILABLE"
