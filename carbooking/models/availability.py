"""Availability read models."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from carbooking.models.reservation import ReservationStatus


class OccupiedRange(BaseModel):
    """Date range held by an occupying reservation."""

    reservation_id: UUID
    start_date: datetime
    end_date: datetime
    status: ReservationStatus


class VehicleAvailability(BaseModel):
    """Occupied ranges of a vehicle inside a query range, sorted by start."""

    vehicle_id: UUID
    range_from: datetime
    range_to: datetime
    occupied_ranges: list[OccupiedRange] = Field(default_factory=list)

    @property
    def is_free(self) -> bool:
        return not self.occupied_ranges
