"""Booking state machine.

Every status change goes through this module. A change is planned against a
fresh read of the reservation and written with compare-and-set; when another
writer got there first the plan is re-evaluated against the new state.
"""

from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

from carbooking.errors import (
    IllegalTransition,
    NotAuthorized,
    ReservationNotFound,
    StoreConflict,
    TransientStoreError,
    ValidationError,
)
from carbooking.logging import get_logger
from carbooking.logging.audit import AuditLogger
from carbooking.models.actor import Actor
from carbooking.models.reservation import (
    TERMINAL_STATUSES,
    CancelledBy,
    PaymentMethod,
    PaymentStatus,
    Reservation,
    ReservationStatus,
)
from carbooking.security.permissions import Party, PermissionChecker
from carbooking.services.notifications import NotificationService
from carbooking.storage.repository_base import ReservationStore

logger = get_logger(__name__)

S = ReservationStatus

TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    S.PENDING: frozenset({S.APPROVED, S.REJECTED, S.CANCELLED, S.EXPIRED, S.CONFIRMED}),
    S.APPROVED: frozenset({S.CONFIRMED, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.ACTIVE, S.CANCELLED}),
    S.ACTIVE: frozenset({S.COMPLETED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
    S.REJECTED: frozenset(),
    S.EXPIRED: frozenset(),
}

AUTHORITY: dict[tuple[ReservationStatus, ReservationStatus], frozenset[Party]] = {
    (S.PENDING, S.APPROVED): frozenset({Party.OWNER, Party.ADMIN}),
    (S.PENDING, S.REJECTED): frozenset({Party.OWNER, Party.ADMIN}),
    (S.PENDING, S.CONFIRMED): frozenset({Party.SYSTEM}),
    (S.APPROVED, S.CONFIRMED): frozenset({Party.SYSTEM}),
    (S.PENDING, S.CANCELLED): frozenset({Party.RENTER, Party.OWNER, Party.ADMIN}),
    (S.APPROVED, S.CANCELLED): frozenset({Party.RENTER, Party.ADMIN}),
    (S.CONFIRMED, S.CANCELLED): frozenset({Party.RENTER, Party.ADMIN}),
    (S.PENDING, S.EXPIRED): frozenset({Party.SYSTEM}),
    (S.CONFIRMED, S.ACTIVE): frozenset({Party.OWNER, Party.ADMIN, Party.SYSTEM}),
    (S.ACTIVE, S.COMPLETED): frozenset({Party.OWNER, Party.ADMIN, Party.SYSTEM}),
}

# Audit timestamp written when a status is entered
_STAMPS: dict[ReservationStatus, str] = {
    S.APPROVED: "approved_at",
    S.REJECTED: "rejected_at",
    S.CONFIRMED: "confirmed_at",
    S.ACTIVE: "activated_at",
    S.COMPLETED: "completed_at",
    S.CANCELLED: "cancelled_at",
    S.EXPIRED: "expired_at",
}

_PAYABLE_STATUSES = frozenset({S.PENDING, S.APPROVED})

# Returns the record to write, or None when the current state already satisfies the request
Plan = Callable[[Reservation], Optional[Reservation]]


def allowed_transitions(status: ReservationStatus) -> frozenset[ReservationStatus]:
    return TRANSITIONS[status]


def is_terminal(status: ReservationStatus) -> bool:
    return status in TERMINAL_STATUSES


class BookingStateMachine:
    """Applies legal, authorized status changes to stored reservations."""

    def __init__(
        self,
        reservation_repo: ReservationStore,
        notifications: NotificationService,
        permissions: Optional[PermissionChecker] = None,
        pending_expiry_hours: int = 24,
        max_attempts: int = 3,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.reservation_repo = reservation_repo
        self.notifications = notifications
        self.permissions = permissions or PermissionChecker()
        self.pending_expiry = timedelta(hours=pending_expiry_hours)
        self.max_attempts = max_attempts
        self.clock = clock

    async def get(self, reservation_id: UUID) -> Reservation:
        reservation = await self.reservation_repo.get_by_id(reservation_id)
        if reservation is None:
            raise ReservationNotFound(reservation_id)
        return reservation

    async def transition(
        self,
        reservation_id: UUID,
        actor: Actor,
        desired_status: ReservationStatus,
        reason: Optional[str] = None,
    ) -> Reservation:
        """
        Move a reservation to `desired_status` on behalf of `actor`.

        Raises:
            ReservationNotFound: No reservation with this id
            NotAuthorized: Actor is not a party, or the party may not take this edge
            IllegalTransition: Edge not in the transition table or precondition unmet
            TransientStoreError: Write kept losing races
        """
        now = self.clock()
        previous_status: list[ReservationStatus] = []

        def plan(current: Reservation) -> Reservation:
            previous_status.append(current.status)
            return self._plan_transition(current, actor, desired_status, reason, now)

        reservation, _ = await self._apply(reservation_id, plan, action=f"transition_to_{desired_status.value}")

        logger.info(
            "reservation_transitioned",
            reservation_id=str(reservation_id),
            actor_id=actor.id,
            from_status=previous_status[-1].value,
            to_status=reservation.status.value,
        )
        AuditLogger.log_transition(
            actor_id=actor.id,
            reservation_id=reservation_id,
            from_status=previous_status[-1].value,
            to_status=reservation.status.value,
            reason=reason,
        )
        await self.notifications.notify_transition(reservation)
        return reservation

    def _plan_transition(
        self,
        current: Reservation,
        actor: Actor,
        desired: ReservationStatus,
        reason: Optional[str],
        now: datetime,
    ) -> Reservation:
        party = self._require_party(actor, current, f"move booking to {desired.value}")

        if desired not in TRANSITIONS[current.status]:
            if current.status != S.PENDING and desired in (S.APPROVED, S.REJECTED):
                raise IllegalTransition(
                    current.status,
                    desired,
                    f"booking already has a response: cannot move from "
                    f"{current.status.value} to {desired.value}",
                )
            raise IllegalTransition(current.status, desired)

        if party not in AUTHORITY[(current.status, desired)]:
            AuditLogger.log_permission_denied(
                actor.id, "reservation", current.id, f"move booking to {desired.value}"
            )
            raise NotAuthorized(
                f"{party.value} may not move booking from {current.status.value} to {desired.value}",
                reservation_id=current.id,
            )

        if desired == S.EXPIRED and now <= current.created_at + self.pending_expiry:
            raise IllegalTransition(
                current.status, desired, "booking has not reached its approval deadline"
            )
        if desired == S.CONFIRMED and current.payment_status != PaymentStatus.PAID:
            raise IllegalTransition(current.status, desired, "payment has not been confirmed")
        if desired == S.ACTIVE and party == Party.SYSTEM and now < current.start_date:
            raise IllegalTransition(current.status, desired, "rental period has not started")

        update: dict = {"status": desired, "updated_at": now, _STAMPS[desired]: now}
        if desired == S.CANCELLED:
            update["cancelled_by"] = CancelledBy(party.value)
            update["cancellation_reason"] = reason
        return current.model_copy(update=update)

    async def apply_payment_success(
        self, reservation_id: UUID, reference: str, now: Optional[datetime] = None
    ) -> tuple[Reservation, bool]:
        """
        Record a confirmed payment and confirm the booking if it is awaiting payment.

        Returns:
            (reservation, applied); applied is False when the payment was already
            recorded or the booking carries a different reference
        """
        now = now or self.clock()

        def plan(current: Reservation) -> Optional[Reservation]:
            if current.payment_reference is not None:
                if current.payment_reference != reference:
                    logger.warning(
                        "payment_reference_mismatch",
                        reservation_id=str(current.id),
                        recorded_reference=current.payment_reference,
                        received_reference=reference,
                    )
                return None

            update: dict = {
                "payment_status": PaymentStatus.PAID,
                "payment_reference": reference,
                "payment_method": PaymentMethod.CARD,
                "paid_at": now,
                "updated_at": now,
            }
            if current.status in _PAYABLE_STATUSES:
                update["status"] = S.CONFIRMED
                update["confirmed_at"] = now
            else:
                logger.warning(
                    "payment_received_for_inactive_reservation",
                    reservation_id=str(current.id),
                    status=current.status.value,
                    payment_reference=reference,
                )
            return current.model_copy(update=update)

        reservation, applied = await self._apply(reservation_id, plan, action="payment_success")
        if applied:
            AuditLogger.log_payment_confirmed(reservation_id, reference, reservation.total_payable)
            if reservation.status == S.CONFIRMED:
                logger.info(
                    "reservation_confirmed",
                    reservation_id=str(reservation_id),
                    payment_reference=reference,
                )
                await self.notifications.notify_transition(reservation)
        return reservation, applied

    async def apply_payment_failure(
        self, reservation_id: UUID, reference: Optional[str] = None
    ) -> tuple[Reservation, bool]:
        """
        Mark the payment failed. Status is unchanged; the renter may retry.

        A failure for an abandoned card attempt on a booking since switched to
        cash is not applied.
        """
        now = self.clock()

        def plan(current: Reservation) -> Optional[Reservation]:
            if current.payment_method != PaymentMethod.CARD:
                logger.info(
                    "payment_failure_ignored",
                    reservation_id=str(current.id),
                    payment_method=current.payment_method.value,
                    payment_reference=reference,
                )
                return None
            if current.payment_reference is not None or current.payment_status in (
                PaymentStatus.PAID,
                PaymentStatus.REFUNDED,
                PaymentStatus.FAILED,
            ):
                return None
            return current.model_copy(
                update={"payment_status": PaymentStatus.FAILED, "updated_at": now}
            )

        reservation, applied = await self._apply(reservation_id, plan, action="payment_failure")
        if applied:
            logger.info(
                "payment_failed",
                reservation_id=str(reservation_id),
                payment_reference=reference,
            )
            AuditLogger.log_payment_failed(reservation_id, reference)
            await self.notifications.notify_payment_failed(reservation)
        return reservation, applied

    async def apply_cash_selection(self, reservation_id: UUID, actor: Actor) -> Reservation:
        """Settle on pickup: payment pending, and a pending booking moves straight to approved."""
        now = self.clock()
        previous_status: list[ReservationStatus] = []

        def plan(current: Reservation) -> Optional[Reservation]:
            previous_status.append(current.status)
            self._require_payer(actor, current)
            update: dict = {
                "payment_method": PaymentMethod.CASH,
                "payment_status": PaymentStatus.PENDING,
                "updated_at": now,
            }
            if current.status == S.PENDING:
                update["status"] = S.APPROVED
                update["approved_at"] = now
            elif (
                current.payment_method == PaymentMethod.CASH
                and current.payment_status == PaymentStatus.PENDING
            ):
                return None
            return current.model_copy(update=update)

        reservation, applied = await self._apply(reservation_id, plan, action="cash_selection")
        if applied and reservation.status != previous_status[-1]:
            AuditLogger.log_transition(
                actor_id=actor.id,
                reservation_id=reservation_id,
                from_status=previous_status[-1].value,
                to_status=reservation.status.value,
                reason="cash payment selected",
            )
            await self.notifications.notify_transition(reservation)
        return reservation

    async def record_cash_payment(self, reservation_id: UUID, actor: Actor) -> Reservation:
        """
        Record cash handed over at pickup and confirm the booking.

        Raises:
            NotAuthorized: Actor is not the owner or an admin
            IllegalTransition: Booking is not an approved cash booking awaiting payment
        """
        now = self.clock()

        def plan(current: Reservation) -> Optional[Reservation]:
            party = self._require_party(actor, current, "record cash payment")
            if party not in (Party.OWNER, Party.ADMIN):
                AuditLogger.log_permission_denied(
                    actor.id, "reservation", current.id, "record cash payment"
                )
                raise NotAuthorized(
                    "only the owner can record a cash payment", reservation_id=current.id
                )
            if current.payment_method != PaymentMethod.CASH:
                raise IllegalTransition(
                    current.status, S.CONFIRMED, "booking is not paid in cash"
                )
            if current.payment_status == PaymentStatus.PAID:
                return None
            if current.status != S.APPROVED or current.payment_status != PaymentStatus.PENDING:
                raise IllegalTransition(
                    current.status,
                    S.CONFIRMED,
                    f"booking in status {current.status.value} is not awaiting cash payment",
                )
            return current.model_copy(
                update={
                    "status": S.CONFIRMED,
                    "payment_status": PaymentStatus.PAID,
                    "paid_at": now,
                    "confirmed_at": now,
                    "updated_at": now,
                }
            )

        reservation, applied = await self._apply(reservation_id, plan, action="cash_payment")
        if applied:
            logger.info(
                "cash_payment_recorded",
                reservation_id=str(reservation_id),
                actor_id=actor.id,
                amount=reservation.total_payable,
            )
            AuditLogger.log_cash_received(actor.id, reservation_id, reservation.total_payable)
            AuditLogger.log_transition(
                actor_id=actor.id,
                reservation_id=reservation_id,
                from_status=S.APPROVED.value,
                to_status=reservation.status.value,
                reason="cash payment received",
            )
            await self.notifications.notify_transition(reservation)
        return reservation

    async def apply_card_selection(self, reservation_id: UUID, actor: Actor) -> Reservation:
        """Record that a card charge is in flight. payment_reference stays unset."""
        now = self.clock()

        def plan(current: Reservation) -> Optional[Reservation]:
            self._require_payer(actor, current)
            if (
                current.payment_method == PaymentMethod.CARD
                and current.payment_status == PaymentStatus.PENDING
            ):
                return None
            return current.model_copy(
                update={
                    "payment_method": PaymentMethod.CARD,
                    "payment_status": PaymentStatus.PENDING,
                    "updated_at": now,
                }
            )

        reservation, _ = await self._apply(reservation_id, plan, action="card_selection")
        return reservation

    def ensure_payable(self, reservation: Reservation, actor: Actor) -> None:
        """Raise unless `actor` may pay for `reservation` now."""
        self._require_payer(actor, reservation)

    async def mark_refunded(self, reservation_id: UUID, amount: int) -> Reservation:
        """Add `amount` to the refunded total; refunded once the whole payment is returned."""
        now = self.clock()

        def plan(current: Reservation) -> Reservation:
            if current.payment_status != PaymentStatus.PAID:
                raise IllegalTransition(
                    current.status,
                    current.status,
                    f"cannot refund a booking whose payment is {current.payment_status.value}",
                )
            refunded = current.refunded_amount + amount
            if amount <= 0 or refunded > current.total_payable:
                raise ValidationError(
                    "refund amount must be positive and no more than the amount still held",
                    amount=amount,
                    refundable=current.total_payable - current.refunded_amount,
                )
            update: dict = {"refunded_amount": refunded, "updated_at": now}
            if refunded == current.total_payable:
                update["payment_status"] = PaymentStatus.REFUNDED
            return current.model_copy(update=update)

        reservation, _ = await self._apply(reservation_id, plan, action="refund")
        return reservation

    def _require_party(self, actor: Actor, reservation: Reservation, action: str) -> Party:
        party = self.permissions.party_for(actor, reservation)
        if party is None:
            AuditLogger.log_permission_denied(actor.id, "reservation", reservation.id, action)
            raise NotAuthorized("not a party to this booking", reservation_id=reservation.id)
        return party

    def _require_payer(self, actor: Actor, reservation: Reservation) -> None:
        party = self._require_party(actor, reservation, "pay for booking")
        if party not in (Party.RENTER, Party.ADMIN):
            AuditLogger.log_permission_denied(actor.id, "reservation", reservation.id, "pay for booking")
            raise NotAuthorized("only the renter can pay for a booking", reservation_id=reservation.id)
        if reservation.status not in _PAYABLE_STATUSES:
            raise IllegalTransition(
                reservation.status,
                S.CONFIRMED,
                f"booking in status {reservation.status.value} is not awaiting payment",
            )
        if reservation.payment_status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
            raise IllegalTransition(
                reservation.status, S.CONFIRMED, "booking has already been paid"
            )

    async def _apply(
        self, reservation_id: UUID, plan: Plan, action: str
    ) -> tuple[Reservation, bool]:
        """Read, plan, compare-and-set; re-plan on a lost race up to max_attempts."""
        for attempt in range(1, self.max_attempts + 1):
            current = await self.get(reservation_id)
            updated = plan(current)
            if updated is None:
                return current, False

            try:
                stored = await self.reservation_repo.compare_and_set(updated, current)
            except StoreConflict:
                logger.info(
                    "reservation_write_conflict",
                    reservation_id=str(reservation_id),
                    action=action,
                    attempt=attempt,
                )
                continue
            return stored, True

        logger.error(
            "reservation_write_contention",
            reservation_id=str(reservation_id),
            action=action,
            attempts=self.max_attempts,
        )
        raise TransientStoreError(
            "booking is being modified concurrently, try again",
            reservation_id=reservation_id,
            action=action,
        )
