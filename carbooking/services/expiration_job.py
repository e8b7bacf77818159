"""Expiration job service.

Background job that expires pending bookings nobody answered in time and
starts confirmed rentals whose start date has arrived. Both go through the
state machine as the system actor.
"""

from carbooking.errors import IllegalTransition, NotAuthorized
from carbooking.logging import get_logger
from carbooking.models.actor import Actor
from carbooking.models.reservation import ReservationStatus
from carbooking.services.booking_state_machine import BookingStateMachine
from carbooking.storage.repository_base import ReservationStore

logger = get_logger(__name__)


class ExpirationJob:
    """Background job to expire and activate reservations."""

    def __init__(self, reservation_repo: ReservationStore, state_machine: BookingStateMachine):
        """
        Initialize expiration job.

        Args:
            reservation_repo: Store queried for due reservations
            state_machine: Applies the transitions
        """
        self.reservation_repo = reservation_repo
        self.state_machine = state_machine
        self.system = Actor.system()

    async def run(self) -> dict[str, int]:
        """
        Execute expiration job.

        Returns:
            Dictionary with counts: {"expired", "activated", "skipped", "failed"}
        """
        logger.info("expiration_job_started")
        counts = {"expired": 0, "activated": 0, "skipped": 0, "failed": 0}
        now = self.state_machine.clock()

        try:
            expirable = await self.reservation_repo.list_expirable(now)
            due = await self.reservation_repo.list_due_for_activation(now)
        except Exception as e:
            logger.error("expiration_job_error", error=str(e), exc_info=True)
            return counts

        for reservation in expirable:
            await self._advance(reservation.id, ReservationStatus.EXPIRED, "expired", counts)
        for reservation in due:
            await self._advance(reservation.id, ReservationStatus.ACTIVE, "activated", counts)

        logger.info("expiration_job_completed", **counts)
        return counts

    async def _advance(
        self, reservation_id, desired: ReservationStatus, counter: str, counts: dict[str, int]
    ) -> None:
        try:
            await self.state_machine.transition(
                reservation_id, self.system, desired, reason="automatic"
            )
            counts[counter] += 1
        except (IllegalTransition, NotAuthorized) as e:
            # Someone else moved the booking since the query
            counts["skipped"] += 1
            logger.info(
                "reservation_sweep_skipped",
                reservation_id=str(reservation_id),
                desired_status=desired.value,
                reason=e.message,
            )
        except Exception as e:
            counts["failed"] += 1
            logger.error(
                "reservation_sweep_failed",
                reservation_id=str(reservation_id),
                desired_status=desired.value,
                error=str(e),
                exc_info=True,
            )

    async def run_once(self) -> dict[str, int]:
        """Run the job once (for manual trigger or testing)."""
        return await self.run()
