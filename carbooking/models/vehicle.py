"""Vehicle domain model (read-only mirror of the listing subsystem)."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator


class VehicleStatus(str, Enum):
    """Operational status of a vehicle listing."""

    LISTABLE = "listable"
    INACTIVE = "inactive"
    MAINTENANCE = "maintenance"
    PENDING_REVIEW = "pending_review"
    DELETED = "deleted"


class AvailabilityWindow(BaseModel):
    """Period during which the owner accepts bookings. Open-ended when a bound is None."""

    available_from: Optional[datetime] = None
    available_to: Optional[datetime] = None

    @field_validator("available_to")
    @classmethod
    def validate_window(cls, v: Optional[datetime], info) -> Optional[datetime]:
        start = info.data.get("available_from")
        if v is not None and start is not None and v <= start:
            raise ValueError("available_to must be after available_from")
        return v

    def contains(self, start: datetime, end: datetime) -> bool:
        """Check that [start, end) lies fully inside the window."""
        if self.available_from is not None and start < self.available_from:
            return False
        if self.available_to is not None and end > self.available_to:
            return False
        return True


class Vehicle(BaseModel):
    """Vehicle listing as seen by the booking engine."""

    id: UUID = Field(default_factory=uuid4)
    owner_id: str = Field(min_length=1)
    title: str = Field(default="", max_length=200)
    daily_rate: int = Field(gt=0, description="Minor currency units per day")
    deposit_amount: int = Field(default=0, ge=0)
    delivery_fee: int = Field(default=0, ge=0)
    availability_window: AvailabilityWindow = Field(default_factory=AvailabilityWindow)
    operational_status: VehicleStatus = VehicleStatus.LISTABLE

    @property
    def is_listable(self) -> bool:
        return self.operational_status == VehicleStatus.LISTABLE
