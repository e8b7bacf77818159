"""In-process stores for tests and single-process deployments."""

import asyncio
from datetime import datetime
from typing import Optional
from uuid import UUID

from carbooking.errors import AvailabilityConflict, StoreConflict
from carbooking.logging import get_logger
from carbooking.models.reservation import Reservation, ReservationStatus
from carbooking.models.vehicle import Vehicle
from carbooking.storage.repository_base import ReservationStore

logger = get_logger(__name__)

_FROZEN_FIELDS = (
    "vehicle_id",
    "renter_id",
    "owner_id",
    "start_date",
    "end_date",
    "daily_rate",
    "duration_days",
    "rental_subtotal",
    "deposit_amount",
    "delivery_fee",
    "total_payable",
    "currency",
    "created_at",
)


class InMemoryReservationRepository(ReservationStore):
    """Reservation store held in a dict, serialized by an asyncio.Lock."""

    def __init__(self) -> None:
        self._records: dict[UUID, Reservation] = {}
        self._lock = asyncio.Lock()

    async def get_by_id(self, id: UUID) -> Optional[Reservation]:
        return self._records.get(id)

    async def create_if_available(self, reservation: Reservation) -> Reservation:
        async with self._lock:
            for existing in self._occupying(reservation.vehicle_id):
                if (
                    existing.start_date < reservation.end_date
                    and existing.end_date > reservation.start_date
                ):
                    raise AvailabilityConflict(
                        conflicting_reservation_id=existing.id,
                        conflicting_start=existing.start_date,
                        conflicting_end=existing.end_date,
                        vehicle_id=reservation.vehicle_id,
                    )

            self._records[reservation.id] = reservation

        logger.info(
            "reservation_created",
            reservation_id=str(reservation.id),
            vehicle_id=str(reservation.vehicle_id),
            renter_id=reservation.renter_id,
        )
        return reservation

    async def compare_and_set(
        self, reservation: Reservation, expected: Reservation
    ) -> Reservation:
        async with self._lock:
            current = self._records.get(expected.id)
            if (
                current is None
                or current.version != expected.version
                or current.status != expected.status
                or current.payment_reference != expected.payment_reference
            ):
                raise StoreConflict(
                    "booking changed since it was read",
                    reservation_id=expected.id,
                    expected_version=expected.version,
                )

            frozen = {name: getattr(current, name) for name in _FROZEN_FIELDS}
            stored = reservation.model_copy(
                update={**frozen, "version": current.version + 1}
            )
            self._records[stored.id] = stored
            return stored

    async def list_occupying_by_vehicle(
        self,
        vehicle_id: UUID,
        range_start: Optional[datetime] = None,
        range_end: Optional[datetime] = None,
    ) -> list[Reservation]:
        matches = [
            r
            for r in self._occupying(vehicle_id)
            if (range_end is None or r.start_date < range_end)
            and (range_start is None or r.end_date > range_start)
        ]
        return sorted(matches, key=lambda r: r.start_date)

    async def list_for_renter(self, renter_id: str, limit: int = 50) -> list[Reservation]:
        matches = [r for r in self._records.values() if r.renter_id == renter_id]
        matches.sort(key=lambda r: r.created_at, reverse=True)
        return matches[:limit]

    async def list_expirable(self, now: datetime) -> list[Reservation]:
        return [
            r
            for r in self._records.values()
            if r.status == ReservationStatus.PENDING
            and r.expires_at is not None
            and r.expires_at < now
        ]

    async def list_due_for_activation(self, now: datetime) -> list[Reservation]:
        return [
            r
            for r in self._records.values()
            if r.status == ReservationStatus.CONFIRMED and r.start_date <= now
        ]

    def _occupying(self, vehicle_id: UUID) -> list[Reservation]:
        return [
            r for r in self._records.values() if r.vehicle_id == vehicle_id and r.is_occupying
        ]


class InMemoryVehicleCatalog:
    """Vehicle catalog seeded in-process."""

    def __init__(self, vehicles: Optional[list[Vehicle]] = None):
        self._vehicles: dict[UUID, Vehicle] = {v.id: v for v in vehicles or []}

    def add(self, vehicle: Vehicle) -> Vehicle:
        self._vehicles[vehicle.id] = vehicle
        return vehicle

    async def get_vehicle(self, vehicle_id: UUID) -> Optional[Vehicle]:
        return self._vehicles.get(vehicle_id)


class InMemoryEventLedger:
    """Processed payment event ids kept in a set."""

    def __init__(self) -> None:
        self._claimed: set[str] = set()

    async def claim(self, event_id: str) -> bool:
        if event_id in self._claimed:
            return False
        self._claimed.add(event_id)
        return True

    async def release(self, event_id: str) -> None:
        self._claimed.discard(event_id)
