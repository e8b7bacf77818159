"""Availability checker for vehicle date ranges.

Answers are advisory: between a check and the store's atomic create another
request may take the range. The store has the final word.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from carbooking.errors import AvailabilityConflict, InvalidRange
from carbooking.logging import get_logger
from carbooking.models.availability import OccupiedRange, VehicleAvailability
from carbooking.models.reservation import Reservation, to_naive_utc
from carbooking.models.vehicle import Vehicle
from carbooking.storage.repository_base import ReservationStore

logger = get_logger(__name__)


def intervals_overlap(
    start: datetime, end: datetime, other_start: datetime, other_end: datetime
) -> bool:
    """Half-open [start, end) overlap; back-to-back ranges do not overlap."""
    return start < other_end and end > other_start


def within_window(vehicle: Vehicle, start_date: datetime, end_date: datetime) -> bool:
    """Check the range lies inside the vehicle's availability window."""
    return vehicle.availability_window.contains(start_date, end_date)


class AvailabilityChecker:
    """Checks candidate ranges against a vehicle's occupying reservations."""

    def __init__(self, reservation_repo: ReservationStore):
        self.reservation_repo = reservation_repo

    async def conflicting_reservation(
        self,
        vehicle_id: UUID,
        start_date: datetime,
        end_date: datetime,
        exclude_reservation_id: Optional[UUID] = None,
    ) -> Optional[Reservation]:
        """First occupying reservation overlapping [start_date, end_date), if any."""
        start_date, end_date = _normalize_range(start_date, end_date)
        occupying = await self.reservation_repo.list_occupying_by_vehicle(
            vehicle_id, range_start=start_date, range_end=end_date
        )
        for reservation in occupying:
            if reservation.id == exclude_reservation_id:
                continue
            if intervals_overlap(start_date, end_date, reservation.start_date, reservation.end_date):
                return reservation
        return None

    async def is_available(
        self,
        vehicle_id: UUID,
        start_date: datetime,
        end_date: datetime,
        exclude_reservation_id: Optional[UUID] = None,
    ) -> bool:
        conflict = await self.conflicting_reservation(
            vehicle_id, start_date, end_date, exclude_reservation_id
        )
        return conflict is None

    async def check(
        self,
        vehicle: Vehicle,
        start_date: datetime,
        end_date: datetime,
        exclude_reservation_id: Optional[UUID] = None,
    ) -> None:
        """
        Raise if the range cannot be booked on this vehicle.

        Raises:
            InvalidRange: end_date is not after start_date
            AvailabilityConflict: Range leaves the listing window or overlaps a booking
        """
        start_date, end_date = _normalize_range(start_date, end_date)

        if not within_window(vehicle, start_date, end_date):
            window = vehicle.availability_window
            raise AvailabilityConflict(
                "vehicle not available for selected dates",
                vehicle_id=vehicle.id,
                available_from=window.available_from,
                available_to=window.available_to,
            )

        conflict = await self.conflicting_reservation(
            vehicle.id, start_date, end_date, exclude_reservation_id
        )
        if conflict is not None:
            logger.info(
                "availability_conflict",
                vehicle_id=str(vehicle.id),
                conflicting_reservation_id=str(conflict.id),
            )
            raise AvailabilityConflict(
                "vehicle is already booked for selected dates",
                conflicting_reservation_id=conflict.id,
                conflicting_start=conflict.start_date,
                conflicting_end=conflict.end_date,
                vehicle_id=vehicle.id,
            )

    async def get_vehicle_availability(
        self, vehicle_id: UUID, range_from: datetime, range_to: datetime
    ) -> VehicleAvailability:
        """Occupied ranges of the vehicle that intersect [range_from, range_to)."""
        range_from, range_to = _normalize_range(range_from, range_to)
        occupying = await self.reservation_repo.list_occupying_by_vehicle(
            vehicle_id, range_start=range_from, range_end=range_to
        )
        occupied = sorted(
            (
                OccupiedRange(
                    reservation_id=r.id,
                    start_date=r.start_date,
                    end_date=r.end_date,
                    status=r.status,
                )
                for r in occupying
                if intervals_overlap(range_from, range_to, r.start_date, r.end_date)
            ),
            key=lambda o: o.start_date,
        )
        return VehicleAvailability(
            vehicle_id=vehicle_id,
            range_from=range_from,
            range_to=range_to,
            occupied_ranges=occupied,
        )


def _normalize_range(start_date: datetime, end_date: datetime) -> tuple[datetime, datetime]:
    start_date = to_naive_utc(start_date)
    end_date = to_naive_utc(end_date)
    if end_date <= start_date:
        raise InvalidRange(start_date, end_date)
    return start_date, end_date
