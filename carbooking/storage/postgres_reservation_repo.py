"""PostgreSQL repository for Reservation entities."""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Optional, TypeVar
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError

from carbooking.errors import AvailabilityConflict, StoreConflict, TransientStoreError
from carbooking.logging import get_logger
from carbooking.models.reservation import (
    OCCUPYING_STATUSES,
    Reservation,
    ReservationStatus,
)
from carbooking.storage.database import Database
from carbooking.storage.db_models import NO_OVERLAP_CONSTRAINT, ReservationTable
from carbooking.storage.repository_base import ReservationStore

logger = get_logger(__name__)

T = TypeVar("T")

# Written once at creation, never part of an UPDATE
_FROZEN_COLUMNS = frozenset(
    {
        "id",
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
        "version",
    }
)

_COLUMNS = [column.name for column in ReservationTable.__table__.columns]
_OCCUPYING = sorted(OCCUPYING_STATUSES, key=lambda status: status.value)


def vehicle_lock_key(vehicle_id: UUID) -> int:
    """Signed 64-bit key for pg_advisory_xact_lock derived from the vehicle id."""
    return int.from_bytes(vehicle_id.bytes[:8], "big", signed=True)


class PostgresReservationRepository(ReservationStore):
    """Reservation repository using PostgreSQL.

    Each call runs in its own transaction. Creation serializes per vehicle
    with a transaction-scoped advisory lock and is backed by the
    ex_reservations_no_overlap exclusion constraint.
    """

    def __init__(self, db: Database, timeout_seconds: float = 5.0):
        """Initialize repository with database connection manager."""
        self.db = db
        self.timeout_seconds = timeout_seconds

    async def _bounded(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.warning("store_timeout", operation=operation, timeout=self.timeout_seconds)
            raise TransientStoreError(
                f"reservation store timed out during {operation}", operation=operation
            ) from e
        except OperationalError as e:
            logger.warning("store_unavailable", operation=operation, error=str(e))
            raise TransientStoreError(
                f"reservation store unavailable during {operation}", operation=operation
            ) from e

    async def get_by_id(self, id: UUID) -> Optional[Reservation]:
        """Retrieve reservation by ID."""
        return await self._bounded("get_by_id", self._get_by_id(id))

    async def _get_by_id(self, id: UUID) -> Optional[Reservation]:
        async with self.db.session() as session:
            stmt = select(ReservationTable).where(ReservationTable.id == id)
            result = await session.execute(stmt)
            db_reservation = result.scalar_one_or_none()

        if not db_reservation:
            return None

        return self._to_domain_model(db_reservation)

    async def create_if_available(self, reservation: Reservation) -> Reservation:
        """Insert the reservation after re-checking overlap under the vehicle lock."""
        return await self._bounded("create_if_available", self._create_if_available(reservation))

    async def _create_if_available(self, reservation: Reservation) -> Reservation:
        try:
            async with self.db.session() as session:
                await session.execute(
                    select(func.pg_advisory_xact_lock(vehicle_lock_key(reservation.vehicle_id)))
                )

                stmt = (
                    select(ReservationTable)
                    .where(ReservationTable.vehicle_id == reservation.vehicle_id)
                    .where(ReservationTable.status.in_(_OCCUPYING))
                    .where(ReservationTable.start_date < reservation.end_date)
                    .where(ReservationTable.end_date > reservation.start_date)
                    .order_by(ReservationTable.start_date.asc())
                    .limit(1)
                )
                existing = (await session.execute(stmt)).scalar_one_or_none()
                if existing is not None:
                    raise AvailabilityConflict(
                        conflicting_reservation_id=existing.id,
                        conflicting_start=existing.start_date,
                        conflicting_end=existing.end_date,
                        vehicle_id=reservation.vehicle_id,
                    )

                db_reservation = ReservationTable(**reservation.model_dump())
                session.add(db_reservation)
                await session.flush()
        except IntegrityError as e:
            if NO_OVERLAP_CONSTRAINT in str(e.orig):
                raise AvailabilityConflict(vehicle_id=reservation.vehicle_id) from e
            raise

        logger.info(
            "reservation_created",
            reservation_id=str(reservation.id),
            vehicle_id=str(reservation.vehicle_id),
            renter_id=reservation.renter_id,
            start_date=reservation.start_date.isoformat(),
            end_date=reservation.end_date.isoformat(),
            total_payable=reservation.total_payable,
        )

        return self._to_domain_model(db_reservation)

    async def compare_and_set(
        self, reservation: Reservation, expected: Reservation
    ) -> Reservation:
        """Persist mutable fields if version, status and payment_reference are unchanged."""
        return await self._bounded("compare_and_set", self._compare_and_set(reservation, expected))

    async def _compare_and_set(
        self, reservation: Reservation, expected: Reservation
    ) -> Reservation:
        values: dict[str, Any] = {
            key: value
            for key, value in reservation.model_dump().items()
            if key in _COLUMNS and key not in _FROZEN_COLUMNS
        }
        values["version"] = expected.version + 1

        if expected.payment_reference is None:
            reference_matches = ReservationTable.payment_reference.is_(None)
        else:
            reference_matches = ReservationTable.payment_reference == expected.payment_reference

        stmt = (
            update(ReservationTable)
            .where(ReservationTable.id == expected.id)
            .where(ReservationTable.version == expected.version)
            .where(ReservationTable.status == expected.status)
            .where(reference_matches)
            .values(**values)
        )

        try:
            async with self.db.session() as session:
                result = await session.execute(stmt)
                if result.rowcount != 1:
                    raise StoreConflict(
                        "booking changed since it was read",
                        reservation_id=expected.id,
                        expected_version=expected.version,
                    )
        except IntegrityError as e:
            if NO_OVERLAP_CONSTRAINT in str(e.orig):
                raise AvailabilityConflict(vehicle_id=expected.vehicle_id) from e
            raise

        return reservation.model_copy(update={"version": expected.version + 1})

    async def list_occupying_by_vehicle(
        self,
        vehicle_id: UUID,
        range_start: Optional[datetime] = None,
        range_end: Optional[datetime] = None,
    ) -> list[Reservation]:
        """Occupying reservations for a vehicle, ordered by start date."""
        stmt = (
            select(ReservationTable)
            .where(ReservationTable.vehicle_id == vehicle_id)
            .where(ReservationTable.status.in_(_OCCUPYING))
        )
        if range_end is not None:
            stmt = stmt.where(ReservationTable.start_date < range_end)
        if range_start is not None:
            stmt = stmt.where(ReservationTable.end_date > range_start)
        stmt = stmt.order_by(ReservationTable.start_date.asc())

        return await self._bounded("list_occupying_by_vehicle", self._fetch(stmt))

    async def list_for_renter(self, renter_id: str, limit: int = 50) -> list[Reservation]:
        """Get reservations for a renter, newest first."""
        stmt = (
            select(ReservationTable)
            .where(ReservationTable.renter_id == renter_id)
            .order_by(ReservationTable.created_at.desc())
            .limit(limit)
        )
        return await self._bounded("list_for_renter", self._fetch(stmt))

    async def list_expirable(self, now: datetime) -> list[Reservation]:
        """Pending reservations past their approval deadline."""
        stmt = (
            select(ReservationTable)
            .where(ReservationTable.status == ReservationStatus.PENDING)
            .where(ReservationTable.expires_at.is_not(None))
            .where(ReservationTable.expires_at < now)
            .order_by(ReservationTable.expires_at.asc())
        )
        return await self._bounded("list_expirable", self._fetch(stmt))

    async def list_due_for_activation(self, now: datetime) -> list[Reservation]:
        """Confirmed reservations whose rental has started."""
        stmt = (
            select(ReservationTable)
            .where(ReservationTable.status == ReservationStatus.CONFIRMED)
            .where(ReservationTable.start_date <= now)
            .order_by(ReservationTable.start_date.asc())
        )
        return await self._bounded("list_due_for_activation", self._fetch(stmt))

    async def _fetch(self, stmt) -> list[Reservation]:
        async with self.db.session() as session:
            result = await session.execute(stmt)
            db_reservations = result.scalars().all()

        return [self._to_domain_model(db_res) for db_res in db_reservations]

    def _to_domain_model(self, db_reservation: ReservationTable) -> Reservation:
        """Convert database model to domain model."""
        return Reservation.model_validate(
            {name: getattr(db_reservation, name) for name in _COLUMNS}
        )

