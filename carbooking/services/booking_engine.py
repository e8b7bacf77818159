"""Booking engine facade exposed to the HTTP/CLI surface."""

from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

from carbooking.config.settings import Settings
from carbooking.errors import NotAuthorized
from carbooking.logging.audit import AuditLogger
from carbooking.models.actor import Actor
from carbooking.models.availability import VehicleAvailability
from carbooking.models.payment import Ack, PaymentInstruction
from carbooking.models.reservation import (
    PaymentMethod,
    Reservation,
    ReservationOptions,
    ReservationStatus,
)
from carbooking.security.permissions import PermissionChecker
from carbooking.services.availability import AvailabilityChecker
from carbooking.services.booking_state_machine import BookingStateMachine
from carbooking.services.notifications import NotificationDispatcher, NotificationService
from carbooking.services.payment_reconciler import PaymentProcessor, PaymentReconciler
from carbooking.services.reservation_flow import ReservationFlowService
from carbooking.storage.repository_base import EventLedger, ReservationStore, VehicleCatalog


class BookingEngine:
    """Single entry point over the flow, state machine and reconciler."""

    def __init__(
        self,
        reservation_repo: ReservationStore,
        availability: AvailabilityChecker,
        flow: ReservationFlowService,
        state_machine: BookingStateMachine,
        reconciler: PaymentReconciler,
    ):
        self.reservation_repo = reservation_repo
        self.availability = availability
        self.flow = flow
        self.state_machine = state_machine
        self.reconciler = reconciler

    async def request_reservation(
        self,
        actor: Actor,
        vehicle_id: UUID,
        start_date: datetime,
        end_date: datetime,
        options: Optional[ReservationOptions] = None,
    ) -> Reservation:
        return await self.flow.request_reservation(actor, vehicle_id, start_date, end_date, options)

    async def transition(
        self,
        reservation_id: UUID,
        actor: Actor,
        desired_status: ReservationStatus,
        reason: Optional[str] = None,
    ) -> Reservation:
        return await self.state_machine.transition(reservation_id, actor, desired_status, reason)

    async def reconcile_payment(self, reservation_id: UUID, processor_reference: str) -> Reservation:
        return await self.reconciler.reconcile_payment(reservation_id, processor_reference)

    async def handle_payment_event(self, raw_payload: bytes | str, signature_header: str) -> Ack:
        return await self.reconciler.handle_payment_event(raw_payload, signature_header)

    async def process_payment(
        self, reservation_id: UUID, actor: Actor, method: PaymentMethod
    ) -> PaymentInstruction:
        return await self.reconciler.process_payment(reservation_id, actor, method)

    async def record_cash_payment(self, reservation_id: UUID, actor: Actor) -> Reservation:
        return await self.state_machine.record_cash_payment(reservation_id, actor)

    async def refund_payment(
        self, reservation_id: UUID, actor: Actor, amount: Optional[int] = None
    ) -> Reservation:
        return await self.reconciler.refund_payment(reservation_id, actor, amount)

    async def get_vehicle_availability(
        self, vehicle_id: UUID, range_from: datetime, range_to: datetime
    ) -> VehicleAvailability:
        return await self.availability.get_vehicle_availability(vehicle_id, range_from, range_to)

    async def get_reservation(self, reservation_id: UUID, actor: Actor) -> Reservation:
        """Fetch a reservation visible to the actor."""
        reservation = await self.state_machine.get(reservation_id)
        if not self.state_machine.permissions.can_view_reservation(actor, reservation):
            AuditLogger.log_permission_denied(actor.id, "reservation", reservation_id, "view booking")
            raise NotAuthorized("not a party to this booking", reservation_id=reservation_id)
        return reservation

    async def list_my_reservations(self, actor: Actor, limit: int = 50) -> list[Reservation]:
        return await self.reservation_repo.list_for_renter(actor.id, limit=limit)


def build_booking_engine(
    settings: Settings,
    reservation_repo: ReservationStore,
    vehicle_catalog: VehicleCatalog,
    processor: PaymentProcessor,
    ledger: EventLedger,
    dispatcher: NotificationDispatcher,
    clock: Callable[[], datetime] = datetime.utcnow,
) -> BookingEngine:
    """Wire the engine from settings and collaborators."""
    notifications = NotificationService(dispatcher)
    permissions = PermissionChecker(admin_user_ids=settings.admin_user_ids)
    availability = AvailabilityChecker(reservation_repo)
    flow = ReservationFlowService(
        reservation_repo,
        vehicle_catalog,
        availability,
        notifications,
        pricing_config=settings.pricing_config(),
        pending_expiry_hours=settings.pending_expiry_hours,
        clock=clock,
        permissions=permissions,
    )
    state_machine = BookingStateMachine(
        reservation_repo,
        notifications,
        permissions=permissions,
        pending_expiry_hours=settings.pending_expiry_hours,
        max_attempts=settings.store_retry_attempts,
        clock=clock,
    )
    reconciler = PaymentReconciler(state_machine, processor, ledger)
    return BookingEngine(reservation_repo, availability, flow, state_machine, reconciler)
