"""PostgreSQL read-only access to mirrored vehicle listings."""

from typing import Optional
from uuid import UUID

from sqlalchemy import select

from carbooking.models.vehicle import AvailabilityWindow, Vehicle
from carbooking.storage.database import Database
from carbooking.storage.db_models import VehicleTable


class PostgresVehicleRepository:
    """Vehicle catalog backed by the vehicles table."""

    def __init__(self, db: Database):
        self.db = db

    async def get_vehicle(self, vehicle_id: UUID) -> Optional[Vehicle]:
        """Retrieve vehicle by ID."""
        async with self.db.session() as session:
            stmt = select(VehicleTable).where(VehicleTable.id == vehicle_id)
            result = await session.execute(stmt)
            db_vehicle = result.scalar_one_or_none()

        if not db_vehicle:
            return None

        return self._to_domain_model(db_vehicle)

    def _to_domain_model(self, db_vehicle: VehicleTable) -> Vehicle:
        """Convert database model to domain model."""
        return Vehicle(
            id=db_vehicle.id,
            owner_id=db_vehicle.owner_id,
            title=db_vehicle.title,
            daily_rate=db_vehicle.daily_rate,
            deposit_amount=db_vehicle.deposit_amount,
            delivery_fee=db_vehicle.delivery_fee,
            availability_window=AvailabilityWindow(
                available_from=db_vehicle.available_from,
                available_to=db_vehicle.available_to,
            ),
            operational_status=db_vehicle.operational_status,
        )
