"""Unit tests for payment reconciliation and webhook handling."""

from datetime import datetime
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
import pytest_asyncio

from carbooking.errors import (
    IllegalTransition,
    NotAuthorized,
    PaymentProcessingError,
    TransientStoreError,
    ValidationError,
    WebhookVerificationError,
)
from carbooking.models.payment import AckOutcome
from carbooking.models.reservation import PaymentMethod, PaymentStatus, ReservationStatus
from carbooking.services.notifications import NotificationEvent
from conftest import payment_event_payload, sign_payload

MAR_1 = datetime(2024, 3, 1)
MAR_4 = datetime(2024, 3, 4)


@pytest_asyncio.fixture
async def booking(engine, renter, vehicle):
    return await engine.request_reservation(renter, vehicle.id, MAR_1, MAR_4)


async def _deliver(engine, event_type, reservation_id, reference, event_id=None):
    payload = payment_event_payload(event_type, reservation_id, reference, event_id=event_id)
    return await engine.handle_payment_event(payload, sign_payload(payload))


@pytest.mark.asyncio
async def test_card_payment_creates_intent(engine, booking, renter, processor):
    instruction = await engine.process_payment(booking.id, renter, PaymentMethod.CARD)

    assert instruction.processor_reference == "pi_1"
    assert instruction.client_secret == "pi_1_secret_abc"
    assert instruction.amount == 35000
    assert instruction.status == ReservationStatus.PENDING
    assert instruction.payment_status == PaymentStatus.PENDING
    assert processor.intents["pi_1"].reservation_id == booking.id

    stored = await engine.get_reservation(booking.id, renter)
    assert stored.payment_method == PaymentMethod.CARD
    assert stored.payment_reference is None


@pytest.mark.asyncio
async def test_cash_payment_approves_pending(engine, booking, renter, processor):
    instruction = await engine.process_payment(booking.id, renter, PaymentMethod.CASH)

    assert instruction.status == ReservationStatus.APPROVED
    assert instruction.payment_status == PaymentStatus.PENDING
    assert instruction.processor_reference is None
    assert processor.intents == {}


@pytest.mark.asyncio
async def test_other_renter_cannot_pay(engine, booking, other_renter):
    with pytest.raises(NotAuthorized):
        await engine.process_payment(booking.id, other_renter, PaymentMethod.CARD)


@pytest.mark.asyncio
async def test_reconcile_confirms_booking(engine, booking, renter, processor, dispatcher):
    await engine.process_payment(booking.id, renter, PaymentMethod.CARD)
    processor.settle("pi_1", 35000, booking.id)

    confirmed = await engine.reconcile_payment(booking.id, "pi_1")
    again = await engine.reconcile_payment(booking.id, "pi_1")

    assert confirmed.status == ReservationStatus.CONFIRMED
    assert confirmed.payment_status == PaymentStatus.PAID
    assert confirmed.payment_reference == "pi_1"
    assert again.version == confirmed.version
    assert dispatcher.count(NotificationEvent.PAYMENT_SUCCESSFUL) == 1
    assert dispatcher.count(NotificationEvent.BOOKING_CONFIRMED) == 1


@pytest.mark.asyncio
async def test_reconcile_rejects_unsettled_payment(engine, booking, renter):
    await engine.process_payment(booking.id, renter, PaymentMethod.CARD)

    with pytest.raises(PaymentProcessingError, match="requires_payment_method"):
        await engine.reconcile_payment(booking.id, "pi_1")

    stored = await engine.get_reservation(booking.id, renter)
    assert stored.status == ReservationStatus.PENDING


@pytest.mark.asyncio
async def test_reconcile_rejects_payment_for_other_booking(engine, booking, processor):
    processor.settle("pi_9", 35000, uuid4())

    with pytest.raises(PaymentProcessingError, match="different booking"):
        await engine.reconcile_payment(booking.id, "pi_9")


@pytest.mark.asyncio
async def test_reconcile_store_failure_surfaces_transient(engine, booking, processor, reservation_repo):
    processor.settle("pi_1", 35000, booking.id)
    reservation_repo.compare_and_set = AsyncMock(side_effect=TransientStoreError("store timed out"))

    with pytest.raises(TransientStoreError):
        await engine.reconcile_payment(booking.id, "pi_1")


@pytest.mark.asyncio
async def test_webhook_success_applied_once(engine, booking, renter, dispatcher):
    first = await _deliver(engine, "payment_intent.succeeded", booking.id, "px_1", event_id="evt_1")
    redelivered = await _deliver(engine, "payment_intent.succeeded", booking.id, "px_1", event_id="evt_1")
    second_event = await _deliver(engine, "payment_intent.succeeded", booking.id, "px_1", event_id="evt_2")

    assert first.received and first.outcome == AckOutcome.APPLIED
    assert first.reservation_id == booking.id
    assert redelivered.outcome == AckOutcome.DUPLICATE
    assert second_event.outcome == AckOutcome.DUPLICATE

    stored = await engine.get_reservation(booking.id, renter)
    assert stored.status == ReservationStatus.CONFIRMED
    assert stored.payment_reference == "px_1"
    assert dispatcher.count(NotificationEvent.PAYMENT_SUCCESSFUL) == 1


@pytest.mark.asyncio
async def test_webhook_failure_keeps_booking_payable(engine, booking, renter, dispatcher):
    await engine.process_payment(booking.id, renter, PaymentMethod.CARD)

    ack = await _deliver(engine, "payment_intent.payment_failed", booking.id, "pi_1")

    assert ack.outcome == AckOutcome.APPLIED
    stored = await engine.get_reservation(booking.id, renter)
    assert stored.status == ReservationStatus.PENDING
    assert stored.payment_status == PaymentStatus.FAILED
    assert dispatcher.events_for("renter-1")[-1] == NotificationEvent.PAYMENT_FAILED


@pytest.mark.asyncio
async def test_abandoned_card_failure_leaves_cash_booking_alone(engine, booking, renter, dispatcher):
    await engine.process_payment(booking.id, renter, PaymentMethod.CARD)
    await engine.process_payment(booking.id, renter, PaymentMethod.CASH)

    ack = await _deliver(engine, "payment_intent.payment_failed", booking.id, "pi_1")

    assert ack.received is True
    assert ack.outcome == AckOutcome.DUPLICATE
    stored = await engine.get_reservation(booking.id, renter)
    assert stored.status == ReservationStatus.APPROVED
    assert stored.payment_method == PaymentMethod.CASH
    assert stored.payment_status == PaymentStatus.PENDING
    assert dispatcher.count(NotificationEvent.PAYMENT_FAILED) == 0


@pytest.mark.asyncio
async def test_failure_then_success_out_of_order(engine, booking, renter):
    await _deliver(engine, "payment_intent.succeeded", booking.id, "px_1")
    late_failure = await _deliver(engine, "payment_intent.payment_failed", booking.id, "px_1")

    assert late_failure.outcome == AckOutcome.DUPLICATE
    stored = await engine.get_reservation(booking.id, renter)
    assert stored.payment_status == PaymentStatus.PAID


@pytest.mark.asyncio
async def test_invalid_signature_rejected(engine, booking, renter):
    payload = payment_event_payload("payment_intent.succeeded", booking.id, "px_1")
    header = sign_payload(payload, secret="whsec_wrong")

    with pytest.raises(WebhookVerificationError):
        await engine.handle_payment_event(payload, header)

    stored = await engine.get_reservation(booking.id, renter)
    assert stored.status == ReservationStatus.PENDING
    assert stored.payment_reference is None


@pytest.mark.asyncio
async def test_stale_signature_rejected(engine, booking):
    payload = payment_event_payload("payment_intent.succeeded", booking.id, "px_1")
    header = sign_payload(payload, timestamp=1_000_000)

    with pytest.raises(WebhookVerificationError):
        await engine.handle_payment_event(payload, header)


@pytest.mark.asyncio
async def test_malformed_payload_rejected(engine):
    payload = "not json"

    with pytest.raises(WebhookVerificationError):
        await engine.handle_payment_event(payload, sign_payload(payload))


@pytest.mark.asyncio
async def test_unhandled_event_type_ignored(engine, booking):
    ack = await _deliver(engine, "charge.refunded", booking.id, "px_1")

    assert ack.outcome == AckOutcome.IGNORED


@pytest.mark.asyncio
async def test_event_for_unknown_reservation_ignored(engine, ledger):
    ack = await _deliver(engine, "payment_intent.succeeded", uuid4(), "px_1", event_id="evt_x")

    assert ack.outcome == AckOutcome.IGNORED


@pytest.mark.asyncio
async def test_store_failure_acks_unreconciled_and_allows_redelivery(engine, booking, renter, reservation_repo):
    real_cas = reservation_repo.compare_and_set
    reservation_repo.compare_and_set = AsyncMock(side_effect=TransientStoreError("store timed out"))

    ack = await _deliver(engine, "payment_intent.succeeded", booking.id, "px_1", event_id="evt_1")

    assert ack.received is True
    assert ack.outcome == AckOutcome.UNRECONCILED

    reservation_repo.compare_and_set = real_cas
    retry = await _deliver(engine, "payment_intent.succeeded", booking.id, "px_1", event_id="evt_1")

    assert retry.outcome == AckOutcome.APPLIED
    assert (await engine.get_reservation(booking.id, renter)).status == ReservationStatus.CONFIRMED


@pytest.mark.asyncio
async def test_unexpected_error_releases_claim(engine, booking, reservation_repo, ledger):
    reservation_repo.compare_and_set = AsyncMock(side_effect=RuntimeError("boom"))

    with pytest.raises(RuntimeError):
        await _deliver(engine, "payment_intent.succeeded", booking.id, "px_1", event_id="evt_1")

    assert await ledger.claim("evt_1") is True


async def _cancelled_paid_booking(engine, booking, renter):
    await _deliver(engine, "payment_intent.succeeded", booking.id, "px_1")
    return await engine.transition(booking.id, renter, ReservationStatus.CANCELLED)


@pytest.mark.asyncio
async def test_admin_refunds_cancelled_card_booking(engine, booking, renter, admin, processor, dispatcher):
    await _cancelled_paid_booking(engine, booking, renter)

    refunded = await engine.refund_payment(booking.id, admin)
    again = await engine.refund_payment(booking.id, admin)

    assert refunded.payment_status == PaymentStatus.REFUNDED
    assert again.version == refunded.version
    assert len(processor.refunds) == 1
    assert processor.refunds[0].amount == 35000
    assert dispatcher.count(NotificationEvent.PAYMENT_REFUNDED) == 1


@pytest.mark.asyncio
async def test_renter_cannot_refund(engine, booking, renter):
    await _cancelled_paid_booking(engine, booking, renter)

    with pytest.raises(NotAuthorized):
        await engine.refund_payment(booking.id, renter)


@pytest.mark.asyncio
async def test_refund_requires_cancelled_booking(engine, booking, admin):
    await _deliver(engine, "payment_intent.succeeded", booking.id, "px_1")

    with pytest.raises(IllegalTransition, match="cancelled bookings"):
        await engine.refund_payment(booking.id, admin)


@pytest.mark.asyncio
async def test_refund_amount_bounded_by_total(engine, booking, renter, admin, processor):
    await _cancelled_paid_booking(engine, booking, renter)

    with pytest.raises(ValidationError):
        await engine.refund_payment(booking.id, admin, amount=35001)
    with pytest.raises(ValidationError):
        await engine.refund_payment(booking.id, admin, amount=0)

    assert processor.refunds == []


@pytest.mark.asyncio
async def test_partial_refund_leaves_remainder_refundable(engine, booking, renter, admin, processor, dispatcher):
    await _cancelled_paid_booking(engine, booking, renter)

    partial = await engine.refund_payment(booking.id, admin, amount=30000)

    assert partial.refunded_amount == 30000
    assert partial.payment_status == PaymentStatus.PAID
    with pytest.raises(ValidationError):
        await engine.refund_payment(booking.id, admin, amount=5001)

    rest = await engine.refund_payment(booking.id, admin)

    assert rest.refunded_amount == 35000
    assert rest.payment_status == PaymentStatus.REFUNDED
    assert [r.amount for r in processor.refunds] == [30000, 5000]
    assert dispatcher.count(NotificationEvent.PAYMENT_REFUNDED) == 2


@pytest.mark.asyncio
async def test_failed_refund_is_not_recorded(engine, booking, renter, admin, processor, dispatcher):
    await _cancelled_paid_booking(engine, booking, renter)
    processor.refund_status = "failed"

    with pytest.raises(PaymentProcessingError, match="not completed"):
        await engine.refund_payment(booking.id, admin)

    stored = await engine.get_reservation(booking.id, renter)
    assert stored.payment_status == PaymentStatus.PAID
    assert stored.refunded_amount == 0
    assert dispatcher.count(NotificationEvent.PAYMENT_REFUNDED) == 0
