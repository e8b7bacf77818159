"""Notification events emitted on booking transitions.

Delivery belongs to the dispatcher collaborator. Failures are logged and never
affect the transition that produced them.
"""

from enum import Enum
from typing import Any, Optional, Protocol

from carbooking.logging import get_logger
from carbooking.models.reservation import CancelledBy, Reservation, ReservationStatus

logger = get_logger(__name__)


class NotificationEvent(str, Enum):
    """Notification types sent to renters and owners."""

    BOOKING_CREATED = "booking_created"
    NEW_BOOKING_REQUEST = "new_booking_request"
    BOOKING_APPROVED = "booking_approved"
    BOOKING_REJECTED = "booking_rejected"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_EXPIRED = "booking_expired"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_STARTED = "booking_started"
    BOOKING_COMPLETED = "booking_completed"
    PAYMENT_SUCCESSFUL = "payment_successful"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_REFUNDED = "payment_refunded"


class NotificationDispatcher(Protocol):
    """Delivery channel (push, email, in-app) owned by another subsystem."""

    async def notify(
        self, user_id: str, event_type: NotificationEvent, context: dict[str, Any]
    ) -> None:
        ...


class LoggingNotificationDispatcher:
    """Dispatcher that only writes notifications to the log."""

    async def notify(
        self, user_id: str, event_type: NotificationEvent, context: dict[str, Any]
    ) -> None:
        logger.info(
            "notification_dispatched",
            user_id=user_id,
            event_type=event_type.value,
            **context,
        )


# Recipients per status entered: (renter event, owner event)
_TRANSITION_EVENTS: dict[
    ReservationStatus, tuple[Optional[NotificationEvent], Optional[NotificationEvent]]
] = {
    ReservationStatus.APPROVED: (NotificationEvent.BOOKING_APPROVED, None),
    ReservationStatus.REJECTED: (NotificationEvent.BOOKING_REJECTED, None),
    ReservationStatus.EXPIRED: (
        NotificationEvent.BOOKING_EXPIRED,
        NotificationEvent.BOOKING_EXPIRED,
    ),
    ReservationStatus.CONFIRMED: (
        NotificationEvent.PAYMENT_SUCCESSFUL,
        NotificationEvent.BOOKING_CONFIRMED,
    ),
    ReservationStatus.ACTIVE: (
        NotificationEvent.BOOKING_STARTED,
        NotificationEvent.BOOKING_STARTED,
    ),
    ReservationStatus.COMPLETED: (
        NotificationEvent.BOOKING_COMPLETED,
        NotificationEvent.BOOKING_COMPLETED,
    ),
}


class NotificationService:
    """Maps booking changes to recipients and hands them to the dispatcher."""

    def __init__(self, dispatcher: NotificationDispatcher):
        self.dispatcher = dispatcher

    async def notify(
        self,
        user_id: str,
        event_type: NotificationEvent,
        reservation: Reservation,
        **extra: Any,
    ) -> None:
        """Send one notification. Never raises."""
        context = {
            "reservation_id": str(reservation.id),
            "vehicle_id": str(reservation.vehicle_id),
            "status": reservation.status.value,
            **extra,
        }
        try:
            await self.dispatcher.notify(user_id, event_type, context)
        except Exception as e:
            logger.error(
                "notification_failed",
                user_id=user_id,
                event_type=event_type.value,
                reservation_id=str(reservation.id),
                error=str(e),
                exc_info=True,
            )

    async def notify_created(self, reservation: Reservation) -> None:
        await self.notify(reservation.renter_id, NotificationEvent.BOOKING_CREATED, reservation)
        await self.notify(
            reservation.owner_id, NotificationEvent.NEW_BOOKING_REQUEST, reservation
        )

    async def notify_transition(self, reservation: Reservation) -> None:
        """Notify the parties affected by the status the reservation just entered."""
        if reservation.status == ReservationStatus.CANCELLED:
            await self._notify_cancelled(reservation)
            return

        renter_event, owner_event = _TRANSITION_EVENTS.get(reservation.status, (None, None))
        if renter_event is not None:
            await self.notify(reservation.renter_id, renter_event, reservation)
        if owner_event is not None:
            await self.notify(reservation.owner_id, owner_event, reservation)

    async def _notify_cancelled(self, reservation: Reservation) -> None:
        # The cancelling party is told nothing; admin and system cancellations reach both
        extra = {
            "cancelled_by": reservation.cancelled_by.value if reservation.cancelled_by else None,
            "reason": reservation.cancellation_reason,
        }
        if reservation.cancelled_by != CancelledBy.RENTER:
            await self.notify(
                reservation.renter_id, NotificationEvent.BOOKING_CANCELLED, reservation, **extra
            )
        if reservation.cancelled_by != CancelledBy.OWNER:
            await self.notify(
                reservation.owner_id, NotificationEvent.BOOKING_CANCELLED, reservation, **extra
            )

    async def notify_payment_failed(self, reservation: Reservation) -> None:
        await self.notify(reservation.renter_id, NotificationEvent.PAYMENT_FAILED, reservation)

    async def notify_refunded(self, reservation: Reservation, amount: int) -> None:
        await self.notify(
            reservation.renter_id, NotificationEvent.PAYMENT_REFUNDED, reservation, amount=amount
        )
