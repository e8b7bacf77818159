"""Repository base interfaces."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Protocol
from uuid import UUID

from carbooking.models.reservation import Reservation
from carbooking.models.vehicle import Vehicle


class ReservationStore(ABC):
    """Reservation store accessor.

    Creation is atomic with respect to the no-overlap invariant, and updates
    are compare-and-set on (version, status, payment_reference). Records are
    never deleted.
    """

    @abstractmethod
    async def get_by_id(self, id: UUID) -> Optional[Reservation]:
        """Retrieve reservation by ID."""
        pass

    @abstractmethod
    async def create_if_available(self, reservation: Reservation) -> Reservation:
        """
        Insert a reservation unless it overlaps an occupying one on the same vehicle.

        Raises:
            AvailabilityConflict: An occupying reservation overlaps the range
        """
        pass

    @abstractmethod
    async def compare_and_set(
        self, reservation: Reservation, expected: Reservation
    ) -> Reservation:
        """
        Persist `reservation` only if the stored record still matches `expected`.

        Pricing fields are never rewritten. The stored version is incremented.

        Raises:
            StoreConflict: The record changed since `expected` was read
        """
        pass

    @abstractmethod
    async def list_occupying_by_vehicle(
        self,
        vehicle_id: UUID,
        range_start: Optional[datetime] = None,
        range_end: Optional[datetime] = None,
    ) -> list[Reservation]:
        """Occupying reservations of a vehicle, optionally limited to those overlapping a range."""
        pass

    @abstractmethod
    async def list_for_renter(self, renter_id: str, limit: int = 50) -> list[Reservation]:
        """Reservations made by a renter, newest first."""
        pass

    @abstractmethod
    async def list_expirable(self, now: datetime) -> list[Reservation]:
        """Pending reservations whose expires_at has passed."""
        pass

    @abstractmethod
    async def list_due_for_activation(self, now: datetime) -> list[Reservation]:
        """Confirmed reservations whose start_date has been reached."""
        pass


class VehicleCatalog(Protocol):
    """Read-only view of the listing subsystem."""

    async def get_vehicle(self, vehicle_id: UUID) -> Optional[Vehicle]:
        ...


class EventLedger(Protocol):
    """Record of processed payment event ids."""

    async def claim(self, event_id: str) -> bool:
        """Return True if this call is the first to claim the event."""
        ...

    async def release(self, event_id: str) -> None:
        ...
