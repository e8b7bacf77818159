"""Unit tests for requesting reservations."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from carbooking.errors import (
    AvailabilityConflict,
    InvalidRange,
    NotAuthorized,
    ValidationError,
    VehicleNotFound,
)
from carbooking.models.actor import Actor, ActorRole
from carbooking.models.reservation import PaymentStatus, ReservationOptions, ReservationStatus
from carbooking.models.vehicle import Vehicle, VehicleStatus
from carbooking.services.notifications import NotificationEvent

MAR_1 = datetime(2024, 3, 1)
MAR_4 = datetime(2024, 3, 4)


@pytest.mark.asyncio
async def test_request_creates_priced_pending_booking(engine, renter, vehicle, clock, dispatcher):
    reservation = await engine.request_reservation(renter, vehicle.id, MAR_1, MAR_4)

    assert reservation.status == ReservationStatus.PENDING
    assert reservation.payment_status == PaymentStatus.UNPAID
    assert reservation.owner_id == "owner-1"
    assert reservation.duration_days == 3
    assert reservation.rental_subtotal == 30000
    assert reservation.total_payable == 35000
    assert reservation.created_at == clock.now
    assert reservation.expires_at == clock.now + timedelta(hours=24)
    assert dispatcher.events_for("renter-1") == [NotificationEvent.BOOKING_CREATED]
    assert dispatcher.events_for("owner-1") == [NotificationEvent.NEW_BOOKING_REQUEST]


@pytest.mark.asyncio
async def test_delivery_adds_fee_and_requires_address(engine, renter, vehicle):
    with pytest.raises(ValidationError, match="delivery address"):
        await engine.request_reservation(
            renter, vehicle.id, MAR_1, MAR_4, ReservationOptions(delivery_requested=True)
        )

    reservation = await engine.request_reservation(
        renter,
        vehicle.id,
        MAR_1,
        MAR_4,
        ReservationOptions(delivery_requested=True, delivery_address="Marina Walk, Dubai"),
    )

    assert reservation.delivery_fee == 2500
    assert reservation.total_payable == 37500
    assert reservation.delivery_address == "Marina Walk, Dubai"


@pytest.mark.asyncio
async def test_aware_request_dates_stored_as_naive_utc(engine, renter, vehicle):
    gst = timezone(timedelta(hours=4))
    reservation = await engine.request_reservation(
        renter, vehicle.id, datetime(2024, 3, 1, 4, 0, tzinfo=gst), datetime(2024, 3, 2, 4, 0, tzinfo=gst)
    )

    assert reservation.start_date == MAR_1
    assert reservation.start_date.tzinfo is None


@pytest.mark.asyncio
async def test_overlapping_request_rejected(engine, renter, other_renter, vehicle):
    first = await engine.request_reservation(renter, vehicle.id, MAR_1, MAR_4)

    with pytest.raises(AvailabilityConflict) as exc_info:
        await engine.request_reservation(other_renter, vehicle.id, MAR_1 + timedelta(days=1), MAR_4 + timedelta(days=1))

    assert exc_info.value.conflicting_reservation_id == first.id


@pytest.mark.asyncio
async def test_back_to_back_request_allowed(engine, renter, other_renter, vehicle):
    await engine.request_reservation(renter, vehicle.id, MAR_1, MAR_4)

    second = await engine.request_reservation(other_renter, vehicle.id, MAR_4, MAR_4 + timedelta(days=2))

    assert second.status == ReservationStatus.PENDING


@pytest.mark.asyncio
async def test_dates_free_again_after_rejection(engine, renter, other_renter, owner, vehicle):
    first = await engine.request_reservation(renter, vehicle.id, MAR_1, MAR_4)
    await engine.transition(first.id, owner, ReservationStatus.REJECTED)

    second = await engine.request_reservation(other_renter, vehicle.id, MAR_1, MAR_4)

    assert second.status == ReservationStatus.PENDING


@pytest.mark.asyncio
async def test_inverted_range_rejected(engine, renter, vehicle):
    with pytest.raises(InvalidRange):
        await engine.request_reservation(renter, vehicle.id, MAR_4, MAR_1)


@pytest.mark.asyncio
async def test_unknown_vehicle(engine, renter):
    with pytest.raises(VehicleNotFound):
        await engine.request_reservation(renter, uuid4(), MAR_1, MAR_4)


@pytest.mark.asyncio
async def test_vehicle_in_maintenance_not_bookable(engine, renter, vehicle, vehicle_catalog):
    vehicle_catalog.add(vehicle.model_copy(update={"operational_status": VehicleStatus.MAINTENANCE}))

    with pytest.raises(ValidationError) as exc_info:
        await engine.request_reservation(renter, vehicle.id, MAR_1, MAR_4)

    assert exc_info.value.code == "VEHICLE_NOT_AVAILABLE"


@pytest.mark.asyncio
async def test_owner_cannot_book_own_vehicle(engine, vehicle, vehicle_catalog):
    owner_as_renter = Actor(id="owner-1", role=ActorRole.RENTER)

    with pytest.raises(NotAuthorized) as exc_info:
        await engine.request_reservation(owner_as_renter, vehicle.id, MAR_1, MAR_4)

    assert exc_info.value.code == "CANNOT_BOOK_OWN_VEHICLE"


@pytest.mark.asyncio
async def test_unapproved_renter_rejected(engine, vehicle):
    pending_account = Actor(id="renter-9", role=ActorRole.RENTER, is_approved=False)

    with pytest.raises(NotAuthorized) as exc_info:
        await engine.request_reservation(pending_account, vehicle.id, MAR_1, MAR_4)

    assert exc_info.value.code == "ACCOUNT_NOT_APPROVED"


@pytest.mark.asyncio
async def test_only_renters_request(engine, owner, vehicle_catalog):
    other = vehicle_catalog.add(
        Vehicle(owner_id="owner-2", title="Nissan Patrol", daily_rate=20000)
    )

    with pytest.raises(NotAuthorized):
        await engine.request_reservation(owner, other.id, MAR_1, MAR_4)


@pytest.mark.asyncio
async def test_get_reservation_checks_party(engine, renter, other_renter, owner, admin, vehicle):
    reservation = await engine.request_reservation(renter, vehicle.id, MAR_1, MAR_4)

    assert (await engine.get_reservation(reservation.id, owner)).id == reservation.id
    assert (await engine.get_reservation(reservation.id, admin)).id == reservation.id
    with pytest.raises(NotAuthorized):
        await engine.get_reservation(reservation.id, other_renter)


@pytest.mark.asyncio
async def test_list_my_reservations_newest_first(engine, renter, vehicle, clock):
    first = await engine.request_reservation(renter, vehicle.id, MAR_1, MAR_4)
    clock.advance(minutes=5)
    second = await engine.request_reservation(renter, vehicle.id, MAR_4, MAR_4 + timedelta(days=1))

    listed = await engine.list_my_reservations(renter)

    assert [r.id for r in listed] == [second.id, first.id]


@pytest.mark.asyncio
async def test_engine_availability_view(engine, renter, vehicle):
    reservation = await engine.request_reservation(renter, vehicle.id, MAR_1, MAR_4)

    availability = await engine.get_vehicle_availability(vehicle.id, MAR_1 - timedelta(days=7), MAR_4 + timedelta(days=7))

    assert [r.reservation_id for r in availability.occupied_ranges] == [reservation.id]
