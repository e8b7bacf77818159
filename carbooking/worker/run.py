"""Background worker entry point: booking expiry and activation sweep."""

import asyncio

from carbooking.config import load_settings
from carbooking.logging import get_logger, setup_logging
from carbooking.security.permissions import PermissionChecker
from carbooking.services.booking_state_machine import BookingStateMachine
from carbooking.services.expiration_job import ExpirationJob
from carbooking.services.notifications import LoggingNotificationDispatcher, NotificationService
from carbooking.services.scheduler import SchedulerService
from carbooking.storage.database import Database
from carbooking.storage.postgres_reservation_repo import PostgresReservationRepository


async def main() -> None:
    """Initialize storage and run the scheduler until stopped."""
    settings = load_settings()
    setup_logging(settings.log_level)
    logger = get_logger(__name__)

    logger.info("worker_starting", app_name=settings.app_name, environment=settings.environment)

    db = Database(settings)
    await db.connect()

    reservation_repo = PostgresReservationRepository(db, timeout_seconds=settings.store_timeout_seconds)
    state_machine = BookingStateMachine(
        reservation_repo,
        NotificationService(LoggingNotificationDispatcher()),
        permissions=PermissionChecker(admin_user_ids=settings.admin_user_ids),
        pending_expiry_hours=settings.pending_expiry_hours,
        max_attempts=settings.store_retry_attempts,
    )
    job = ExpirationJob(reservation_repo, state_machine)
    scheduler = SchedulerService(job, interval_seconds=settings.expiration_check_interval_seconds)

    scheduler_task = asyncio.create_task(scheduler.start())

    try:
        await scheduler_task
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        logger.info("worker_shutting_down")
    finally:
        await scheduler.stop()
        scheduler_task.cancel()
        await db.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
