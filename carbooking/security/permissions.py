"""Permission checks for booking actions."""

from enum import Enum
from typing import Optional

from carbooking.models.actor import Actor, ActorRole
from carbooking.models.reservation import Reservation
from carbooking.models.vehicle import Vehicle


class Party(str, Enum):
    """Relationship of an actor to a specific reservation."""

    RENTER = "renter"
    OWNER = "owner"
    ADMIN = "admin"
    SYSTEM = "system"


class PermissionChecker:
    """Check actor permissions for booking actions."""

    def __init__(self, admin_user_ids: list[str] | None = None):
        """Initialize permission checker."""
        self.admin_user_ids = admin_user_ids or []

    def is_admin(self, actor: Actor) -> bool:
        """Admin by role, or by configured user id."""
        return actor.role == ActorRole.ADMIN or actor.id in self.admin_user_ids

    def party_for(self, actor: Actor, reservation: Reservation) -> Optional[Party]:
        """Resolve which side of the reservation the actor acts for, if any."""
        if actor.role == ActorRole.SYSTEM:
            return Party.SYSTEM
        if self.is_admin(actor):
            return Party.ADMIN
        if actor.id == reservation.owner_id:
            return Party.OWNER
        if actor.id == reservation.renter_id:
            return Party.RENTER
        return None

    def can_view_reservation(self, actor: Actor, reservation: Reservation) -> bool:
        return self.party_for(actor, reservation) is not None

    def can_request_reservation(self, actor: Actor, vehicle: Vehicle) -> bool:
        """Approved renters may book vehicles they do not own."""
        return (
            actor.role == ActorRole.RENTER
            and actor.is_approved
            and actor.id != vehicle.owner_id
        )

    def can_refund(self, actor: Actor) -> bool:
        return actor.role == ActorRole.SYSTEM or self.is_admin(actor)
