"""Payment reconciliation.

Brings processor-side payment facts (synchronous confirmations and webhook
events, possibly duplicated or out of order) into the booking state machine.
The reservation's payment_reference is the durable idempotency anchor; the
event ledger only short-circuits redelivered events.
"""

from typing import Optional, Protocol, assert_never
from uuid import UUID

from carbooking.errors import (
    IllegalTransition,
    NotAuthorized,
    PaymentProcessingError,
    ReservationNotFound,
    TransientStoreError,
    ValidationError,
    WebhookVerificationError,
)
from carbooking.logging import get_logger
from carbooking.logging.audit import AuditLogger
from carbooking.models.actor import Actor
from carbooking.models.payment import (
    Ack,
    AckOutcome,
    ChargeIntent,
    PaymentEvent,
    PaymentInstruction,
    PaymentOutcome,
    RefundResult,
)
from carbooking.models.reservation import (
    PaymentMethod,
    PaymentStatus,
    Reservation,
    ReservationStatus,
)
from carbooking.services.booking_state_machine import BookingStateMachine
from carbooking.storage.repository_base import EventLedger

logger = get_logger(__name__)

SUCCEEDED = "succeeded"
REFUND_FAILED_STATUSES = frozenset({"failed", "canceled"})


class PaymentProcessor(Protocol):
    """External card processor."""

    async def create_charge_intent(
        self, amount: int, currency: str, metadata: dict[str, str]
    ) -> ChargeIntent:
        ...

    async def get_charge_status(self, reference: str) -> ChargeIntent:
        ...

    async def refund(self, reference: str, amount: Optional[int] = None) -> RefundResult:
        ...

    def construct_event(self, payload: bytes | str, signature: str) -> PaymentEvent:
        ...


class PaymentReconciler:
    """Applies payment outcomes to reservations exactly once."""

    def __init__(
        self,
        state_machine: BookingStateMachine,
        processor: PaymentProcessor,
        ledger: EventLedger,
    ):
        self.state_machine = state_machine
        self.processor = processor
        self.ledger = ledger

    async def reconcile_payment(
        self, reservation_id: UUID, processor_reference: str
    ) -> Reservation:
        """
        Confirm a booking from a synchronous payment confirmation.

        Raises:
            ReservationNotFound: No reservation with this id
            PaymentProcessingError: Processor unreachable, payment not succeeded,
                or payment belongs to another booking
            TransientStoreError: Payment could not be recorded; logged as payment_unreconciled
        """
        reservation = await self.state_machine.get(reservation_id)
        intent = await self.processor.get_charge_status(processor_reference)

        if intent.reservation_id is not None and intent.reservation_id != reservation_id:
            raise PaymentProcessingError(
                "payment belongs to a different booking",
                reservation_id=reservation_id,
                processor_reference=processor_reference,
            )
        if intent.status != SUCCEEDED:
            raise PaymentProcessingError(
                f"payment has not succeeded (status: {intent.status})",
                reservation_id=reservation_id,
                processor_reference=processor_reference,
                processor_status=intent.status,
            )
        if intent.amount != reservation.total_payable:
            logger.warning(
                "payment_amount_mismatch",
                reservation_id=str(reservation_id),
                processor_reference=processor_reference,
                expected=reservation.total_payable,
                received=intent.amount,
            )

        try:
            reservation, _ = await self.state_machine.apply_payment_success(
                reservation_id, processor_reference
            )
        except TransientStoreError:
            self._log_unreconciled(reservation_id, processor_reference)
            raise
        return reservation

    async def handle_payment_event(self, raw_payload: bytes | str, signature_header: str) -> Ack:
        """
        Verify and apply an asynchronous processor event.

        Raises:
            WebhookVerificationError: Event could not be authenticated or parsed
        """
        try:
            event = self.processor.construct_event(raw_payload, signature_header)
        except WebhookVerificationError as e:
            logger.warning("payment_event_rejected", reason=e.message)
            AuditLogger.log_webhook_rejected(e.message)
            raise

        if event.outcome is None:
            logger.info("payment_event_ignored", event_id=event.event_id, event_type=event.event_type)
            return Ack(outcome=AckOutcome.IGNORED, event_id=event.event_id)
        if event.reservation_id is None or event.processor_reference is None:
            logger.warning(
                "payment_event_without_reservation",
                event_id=event.event_id,
                event_type=event.event_type,
            )
            return Ack(outcome=AckOutcome.IGNORED, event_id=event.event_id)

        if not await self.ledger.claim(event.event_id):
            logger.info("payment_event_duplicate", event_id=event.event_id)
            return Ack(
                outcome=AckOutcome.DUPLICATE,
                event_id=event.event_id,
                reservation_id=event.reservation_id,
            )

        try:
            applied = await self._apply_event(event)
        except ReservationNotFound:
            logger.warning(
                "payment_event_unknown_reservation",
                event_id=event.event_id,
                reservation_id=str(event.reservation_id),
            )
            return Ack(outcome=AckOutcome.IGNORED, event_id=event.event_id)
        except TransientStoreError:
            self._log_unreconciled(event.reservation_id, event.processor_reference, event.event_id)
            await self.ledger.release(event.event_id)
            return Ack(
                outcome=AckOutcome.UNRECONCILED,
                event_id=event.event_id,
                reservation_id=event.reservation_id,
            )
        except Exception:
            await self.ledger.release(event.event_id)
            raise

        return Ack(
            outcome=AckOutcome.APPLIED if applied else AckOutcome.DUPLICATE,
            event_id=event.event_id,
            reservation_id=event.reservation_id,
        )

    async def _apply_event(self, event: PaymentEvent) -> bool:
        if event.outcome == PaymentOutcome.SUCCEEDED:
            _, applied = await self.state_machine.apply_payment_success(
                event.reservation_id, event.processor_reference
            )
        else:
            _, applied = await self.state_machine.apply_payment_failure(
                event.reservation_id, event.processor_reference
            )
        logger.info(
            "payment_event_processed",
            event_id=event.event_id,
            event_type=event.event_type,
            reservation_id=str(event.reservation_id),
            applied=applied,
        )
        return applied

    async def process_payment(
        self, reservation_id: UUID, actor: Actor, method: PaymentMethod
    ) -> PaymentInstruction:
        """Select how a booking is paid and start the payment."""
        reservation = await self.state_machine.get(reservation_id)

        match method:
            case PaymentMethod.CASH:
                reservation = await self.state_machine.apply_cash_selection(reservation_id, actor)
                intent = None
            case PaymentMethod.CARD:
                self.state_machine.ensure_payable(reservation, actor)
                intent = await self.processor.create_charge_intent(
                    amount=reservation.total_payable,
                    currency=reservation.currency,
                    metadata={
                        "reservation_id": str(reservation.id),
                        "renter_id": reservation.renter_id,
                        "vehicle_id": str(reservation.vehicle_id),
                    },
                )
                reservation = await self.state_machine.apply_card_selection(reservation_id, actor)
            case _:
                assert_never(method)

        logger.info(
            "payment_method_selected",
            reservation_id=str(reservation_id),
            method=method.value,
            status=reservation.status.value,
        )
        return PaymentInstruction(
            reservation_id=reservation.id,
            method=method,
            status=reservation.status,
            payment_status=reservation.payment_status,
            amount=reservation.total_payable,
            currency=reservation.currency,
            processor_reference=intent.reference if intent else None,
            client_secret=intent.client_secret if intent else None,
        )

    async def refund_payment(
        self, reservation_id: UUID, actor: Actor, amount: Optional[int] = None
    ) -> Reservation:
        """
        Refund a cancelled card booking through the processor.

        Refunds may be partial; amount defaults to whatever is still held.
        Payment status becomes refunded once the whole payment is returned.

        Raises:
            NotAuthorized: Actor is not an admin
            IllegalTransition: Booking is not a cancelled, card-paid booking
            ValidationError: Amount not positive or above the refundable balance
            PaymentProcessingError: Processor refused or failed the refund
        """
        if not self.state_machine.permissions.can_refund(actor):
            AuditLogger.log_permission_denied(actor.id, "reservation", reservation_id, "refund payment")
            raise NotAuthorized("only admins can refund payments", reservation_id=reservation_id)

        reservation = await self.state_machine.get(reservation_id)
        if reservation.payment_status == PaymentStatus.REFUNDED:
            return reservation
        if (
            reservation.status != ReservationStatus.CANCELLED
            or reservation.payment_method != PaymentMethod.CARD
            or reservation.payment_status != PaymentStatus.PAID
            or reservation.payment_reference is None
        ):
            raise IllegalTransition(
                reservation.status,
                reservation.status,
                "only cancelled bookings paid by card can be refunded",
            )

        refundable = reservation.total_payable - reservation.refunded_amount
        refund_amount = refundable if amount is None else amount
        if refund_amount <= 0 or refund_amount > refundable:
            raise ValidationError(
                "refund amount must be positive and no more than the amount still held",
                amount=refund_amount,
                refundable=refundable,
            )

        result = await self.processor.refund(reservation.payment_reference, refund_amount)
        if result.status in REFUND_FAILED_STATUSES:
            logger.warning(
                "refund_not_completed",
                reservation_id=str(reservation_id),
                refund_reference=result.reference,
                refund_status=result.status,
            )
            raise PaymentProcessingError(
                f"refund was not completed (status: {result.status})",
                reservation_id=reservation_id,
                refund_reference=result.reference,
            )

        reservation = await self.state_machine.mark_refunded(reservation_id, refund_amount)
        AuditLogger.log_payment_refunded(actor.id, reservation_id, result.reference, refund_amount)
        await self.state_machine.notifications.notify_refunded(reservation, refund_amount)
        return reservation

    def _log_unreconciled(
        self, reservation_id: UUID, processor_reference: str, event_id: Optional[str] = None
    ) -> None:
        logger.error(
            "payment_unreconciled",
            reservation_id=str(reservation_id),
            processor_reference=processor_reference,
            event_id=event_id,
        )
