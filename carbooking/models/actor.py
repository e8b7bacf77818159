"""Acting party context supplied by the identity collaborator."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ActorRole(str, Enum):
    """Roles that can act on a reservation."""

    RENTER = "renter"
    OWNER = "owner"
    ADMIN = "admin"
    SYSTEM = "system"


class Actor(BaseModel):
    """Authenticated caller. Passed in as context, never re-derived here."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    role: ActorRole
    is_approved: bool = Field(default=True, description="Account approved for booking")

    @classmethod
    def system(cls) -> "Actor":
        """Actor used by the payment reconciler and background sweeps."""
        return cls(id="system", role=ActorRole.SYSTEM)
