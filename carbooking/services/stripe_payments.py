"""Stripe PaymentIntent adapter."""

from typing import Any, Optional
from uuid import UUID

import stripe

from carbooking.errors import PaymentProcessingError, WebhookVerificationError
from carbooking.logging import get_logger
from carbooking.models.payment import ChargeIntent, PaymentEvent, PaymentOutcome, RefundResult

logger = get_logger(__name__)

EVENT_OUTCOMES = {
    "payment_intent.succeeded": PaymentOutcome.SUCCEEDED,
    "payment_intent.payment_failed": PaymentOutcome.FAILED,
}


def _handle_stripe_error(exc: stripe.StripeError) -> None:
    """Map Stripe SDK errors onto PaymentProcessingError."""
    if isinstance(exc, stripe.CardError):
        raise PaymentProcessingError(exc.user_message or "Your card was declined.") from exc
    if isinstance(exc, (stripe.RateLimitError, stripe.APIConnectionError, stripe.APIError)):
        raise PaymentProcessingError(
            "Temporary payment processor error, please retry.", retryable=True
        ) from exc
    if isinstance(exc, (stripe.AuthenticationError, stripe.PermissionError)):
        raise PaymentProcessingError(
            "Payment processor credentials are invalid or unauthorized."
        ) from exc
    if isinstance(exc, stripe.InvalidRequestError):
        raise PaymentProcessingError(exc.user_message or "Invalid payment request.") from exc
    raise PaymentProcessingError(exc.user_message or "Payment processor failure.") from exc


def _object_value(data: Any, field: str, default: Any = None) -> Any:
    """Safely fetch a field from a Stripe object or dict payload."""
    if data is None:
        return default
    if isinstance(data, dict):
        return data.get(field, default)
    return getattr(data, field, default)


def _reservation_id_from(metadata: Any) -> Optional[UUID]:
    raw = _object_value(metadata, "reservation_id")
    if not raw:
        return None
    try:
        return UUID(str(raw))
    except ValueError:
        logger.warning("payment_metadata_invalid_reservation_id", value=str(raw))
        return None


class StripePaymentProcessor:
    """Creates PaymentIntents, reads their status, refunds and verifies webhooks."""

    def __init__(self, secret_key: str, webhook_secret: str, tolerance_seconds: int = 300):
        """Initialize Stripe processor."""
        stripe.api_key = secret_key
        self.webhook_secret = webhook_secret
        self.tolerance_seconds = tolerance_seconds

    async def create_charge_intent(
        self, amount: int, currency: str, metadata: dict[str, str]
    ) -> ChargeIntent:
        """Create a PaymentIntent for `amount` minor units."""
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=currency,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as exc:
            logger.warning("payment_intent_create_failed", error=str(exc), **metadata)
            _handle_stripe_error(exc)

        logger.info("payment_intent_created", payment_intent_id=intent.id, amount=amount, **metadata)
        return ChargeIntent(
            reference=intent.id,
            status=intent.status,
            amount=intent.amount,
            currency=intent.currency,
            client_secret=intent.client_secret,
            reservation_id=_reservation_id_from(metadata),
        )

    async def get_charge_status(self, reference: str) -> ChargeIntent:
        """Retrieve a PaymentIntent by id."""
        try:
            intent = stripe.PaymentIntent.retrieve(reference)
        except stripe.StripeError as exc:
            logger.warning("payment_intent_retrieve_failed", payment_intent_id=reference, error=str(exc))
            _handle_stripe_error(exc)

        return ChargeIntent(
            reference=intent.id,
            status=intent.status,
            amount=intent.amount,
            currency=intent.currency,
            reservation_id=_reservation_id_from(_object_value(intent, "metadata")),
        )

    async def refund(self, reference: str, amount: Optional[int] = None) -> RefundResult:
        """Refund a captured PaymentIntent, fully when amount is None."""
        params: dict[str, Any] = {"payment_intent": reference}
        if amount is not None:
            params["amount"] = amount
        try:
            refund = stripe.Refund.create(**params)
        except stripe.StripeError as exc:
            logger.warning("refund_failed", payment_intent_id=reference, error=str(exc))
            _handle_stripe_error(exc)

        return RefundResult(reference=refund.id, status=refund.status, amount=refund.amount)

    def construct_event(self, payload: bytes | str, signature: str) -> PaymentEvent:
        """
        Verify a webhook signature and reduce the event to a PaymentEvent.

        Raises:
            WebhookVerificationError: Signature invalid or payload malformed
        """
        if not self.webhook_secret:
            raise WebhookVerificationError("webhook signing secret is not configured")
        try:
            event = stripe.Webhook.construct_event(
                payload=payload,
                sig_header=signature,
                secret=self.webhook_secret,
                tolerance=self.tolerance_seconds,
            )
        except ValueError as exc:
            raise WebhookVerificationError("malformed payment event payload") from exc
        except stripe.SignatureVerificationError as exc:
            raise WebhookVerificationError("payment event signature verification failed") from exc

        event_id = _object_value(event, "id")
        event_type = _object_value(event, "type")
        if not event_id or not event_type:
            raise WebhookVerificationError("payment event is missing id or type")

        data_object = _object_value(_object_value(event, "data"), "object")
        return PaymentEvent(
            event_id=event_id,
            event_type=event_type,
            reservation_id=_reservation_id_from(_object_value(data_object, "metadata")),
            processor_reference=_object_value(data_object, "id"),
            outcome=EVENT_OUTCOMES.get(event_type),
            amount=_object_value(data_object, "amount"),
        )
