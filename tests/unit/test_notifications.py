"""Unit tests for notification fan-out."""

from datetime import datetime

import pytest

from carbooking.models.reservation import CancelledBy, ReservationStatus
from carbooking.services.notifications import (
    LoggingNotificationDispatcher,
    NotificationEvent,
    NotificationService,
)
from conftest import make_reservation

MAR_1 = datetime(2024, 3, 1)
MAR_4 = datetime(2024, 3, 4)


class BrokenDispatcher:
    async def notify(self, user_id, event_type, context):
        raise ConnectionError("push gateway unreachable")


@pytest.fixture
def service(dispatcher):
    return NotificationService(dispatcher)


@pytest.mark.asyncio
async def test_confirmation_reaches_both_parties(service, dispatcher, vehicle):
    reservation = make_reservation(vehicle, "renter-1", MAR_1, MAR_4, status=ReservationStatus.CONFIRMED)

    await service.notify_transition(reservation)

    assert dispatcher.events_for("renter-1") == [NotificationEvent.PAYMENT_SUCCESSFUL]
    assert dispatcher.events_for("owner-1") == [NotificationEvent.BOOKING_CONFIRMED]
    _, _, context = dispatcher.sent[0]
    assert context["reservation_id"] == str(reservation.id)
    assert context["status"] == "confirmed"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "cancelled_by,renter_told,owner_told",
    [
        (CancelledBy.RENTER, False, True),
        (CancelledBy.OWNER, True, False),
        (CancelledBy.ADMIN, True, True),
        (CancelledBy.SYSTEM, True, True),
    ],
)
async def test_cancellation_skips_the_canceller(service, dispatcher, vehicle, cancelled_by, renter_told, owner_told):
    reservation = make_reservation(
        vehicle,
        "renter-1",
        MAR_1,
        MAR_4,
        status=ReservationStatus.CANCELLED,
        cancelled_by=cancelled_by,
        cancellation_reason="plans changed",
    )

    await service.notify_transition(reservation)

    assert bool(dispatcher.events_for("renter-1")) is renter_told
    assert bool(dispatcher.events_for("owner-1")) is owner_told
    assert all(context["reason"] == "plans changed" for _, _, context in dispatcher.sent)


@pytest.mark.asyncio
async def test_pending_status_sends_nothing(service, dispatcher, vehicle):
    await service.notify_transition(make_reservation(vehicle, "renter-1", MAR_1, MAR_4))

    assert dispatcher.sent == []


@pytest.mark.asyncio
async def test_dispatch_failure_is_swallowed(vehicle):
    service = NotificationService(BrokenDispatcher())

    await service.notify_created(make_reservation(vehicle, "renter-1", MAR_1, MAR_4))


@pytest.mark.asyncio
async def test_refund_notification_carries_amount(service, dispatcher, vehicle):
    await service.notify_refunded(make_reservation(vehicle, "renter-1", MAR_1, MAR_4), 35000)

    user_id, event, context = dispatcher.sent[0]
    assert (user_id, event) == ("renter-1", NotificationEvent.PAYMENT_REFUNDED)
    assert context["amount"] == 35000


@pytest.mark.asyncio
async def test_logging_dispatcher_accepts_context(vehicle):
    service = NotificationService(LoggingNotificationDispatcher())

    await service.notify_created(make_reservation(vehicle, "renter-1", MAR_1, MAR_4))
