"""Reservation flow service: request a vehicle for a date range."""

from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

from carbooking.errors import AvailabilityConflict, NotAuthorized, ValidationError, VehicleNotFound
from carbooking.logging import get_logger
from carbooking.logging.audit import AuditLogger
from carbooking.models.actor import Actor, ActorRole
from carbooking.models.reservation import (
    PaymentStatus,
    Reservation,
    ReservationOptions,
    ReservationStatus,
    to_naive_utc,
)
from carbooking.security.permissions import PermissionChecker
from carbooking.services.availability import AvailabilityChecker
from carbooking.services.notifications import NotificationService
from carbooking.services.pricing import DEFAULT_PRICING, PricingConfig, calculate_for_vehicle
from carbooking.storage.repository_base import ReservationStore, VehicleCatalog

logger = get_logger(__name__)


class ReservationFlowService:
    """Creates pending reservations without double-booking a vehicle."""

    def __init__(
        self,
        reservation_repo: ReservationStore,
        vehicle_catalog: VehicleCatalog,
        availability: AvailabilityChecker,
        notifications: NotificationService,
        pricing_config: PricingConfig = DEFAULT_PRICING,
        pending_expiry_hours: int = 24,
        clock: Callable[[], datetime] = datetime.utcnow,
        permissions: Optional[PermissionChecker] = None,
    ):
        """Initialize reservation flow service."""
        self.reservation_repo = reservation_repo
        self.vehicle_catalog = vehicle_catalog
        self.availability = availability
        self.notifications = notifications
        self.permissions = permissions or PermissionChecker()
        self.pricing_config = pricing_config
        self.pending_expiry = timedelta(hours=pending_expiry_hours)
        self.clock = clock

    async def request_reservation(
        self,
        actor: Actor,
        vehicle_id: UUID,
        start_date: datetime,
        end_date: datetime,
        options: Optional[ReservationOptions] = None,
    ) -> Reservation:
        """
        Create a pending reservation.

        The availability check here is a fast path for a friendly error; the
        store's atomic create decides under concurrency.

        Raises:
            NotAuthorized: Actor is not an approved renter, or owns the vehicle
            VehicleNotFound: Unknown vehicle
            ValidationError: Bad range, unlisted vehicle, missing delivery address
            AvailabilityConflict: Range taken or outside the listing window
        """
        options = options or ReservationOptions()
        start_date = to_naive_utc(start_date)
        end_date = to_naive_utc(end_date)

        vehicle = await self.vehicle_catalog.get_vehicle(vehicle_id)
        if vehicle is None:
            raise VehicleNotFound(vehicle_id)
        if not self.permissions.can_request_reservation(actor, vehicle):
            AuditLogger.log_permission_denied(actor.id, "vehicle", vehicle_id, "request booking")
            raise self._request_denied(actor)
        if not vehicle.is_listable:
            raise ValidationError(
                "vehicle is not available for booking",
                code="VEHICLE_NOT_AVAILABLE",
                vehicle_id=vehicle_id,
                operational_status=vehicle.operational_status.value,
            )
        if options.delivery_requested and not options.delivery_address:
            raise ValidationError("delivery address is required when delivery is requested")

        pricing = calculate_for_vehicle(
            vehicle,
            start_date,
            end_date,
            delivery_requested=options.delivery_requested,
            config=self.pricing_config,
        )

        await self.availability.check(vehicle, start_date, end_date)

        now = self.clock()
        reservation = Reservation(
            vehicle_id=vehicle.id,
            renter_id=actor.id,
            owner_id=vehicle.owner_id,
            start_date=start_date,
            end_date=end_date,
            **pricing.model_dump(),
            status=ReservationStatus.PENDING,
            payment_method=options.payment_method,
            payment_status=PaymentStatus.UNPAID,
            delivery_requested=options.delivery_requested,
            delivery_address=options.delivery_address if options.delivery_requested else None,
            pickup_location=options.pickup_location,
            return_location=options.return_location,
            renter_notes=options.renter_notes,
            created_at=now,
            updated_at=now,
            expires_at=now + self.pending_expiry,
        )

        try:
            reservation = await self.reservation_repo.create_if_available(reservation)
        except AvailabilityConflict:
            logger.info(
                "reservation_request_lost_race",
                vehicle_id=str(vehicle_id),
                renter_id=actor.id,
            )
            raise

        AuditLogger.log_reservation_requested(
            actor_id=actor.id,
            reservation_id=reservation.id,
            vehicle_id=vehicle.id,
            total_payable=reservation.total_payable,
            currency=reservation.currency,
        )
        await self.notifications.notify_created(reservation)

        return reservation

    @staticmethod
    def _request_denied(actor: Actor) -> NotAuthorized:
        if actor.role != ActorRole.RENTER:
            return NotAuthorized("only renters can request bookings")
        if not actor.is_approved:
            return NotAuthorized(
                "your account must be approved before you can book",
                code="ACCOUNT_NOT_APPROVED",
            )
        return NotAuthorized("you cannot book your own vehicle", code="CANNOT_BOOK_OWN_VEHICLE")

