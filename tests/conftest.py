"""Pytest configuration and shared fixtures."""

import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID, uuid4

import pytest

from carbooking.config.settings import Settings
from carbooking.models.actor import Actor, ActorRole
from carbooking.models.payment import ChargeIntent, RefundResult
from carbooking.models.reservation import Reservation
from carbooking.models.vehicle import Vehicle
from carbooking.services.booking_engine import build_booking_engine
from carbooking.services.notifications import NotificationEvent
from carbooking.services.pricing import calculate_pricing
from carbooking.services.stripe_payments import StripePaymentProcessor
from carbooking.storage.memory_reservation_repo import (
    InMemoryEventLedger,
    InMemoryReservationRepository,
    InMemoryVehicleCatalog,
)

WEBHOOK_SECRET = "whsec_testsecret123456"


class FakeClock:
    """Settable clock handed to services instead of datetime.utcnow."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now += timedelta(**kwargs)


class RecordingDispatcher:
    """Notification dispatcher that remembers what it was asked to send."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, NotificationEvent, dict[str, Any]]] = []

    async def notify(self, user_id: str, event_type: NotificationEvent, context: dict[str, Any]) -> None:
        self.sent.append((user_id, event_type, context))

    def events_for(self, user_id: str) -> list[NotificationEvent]:
        return [event for uid, event, _ in self.sent if uid == user_id]

    def count(self, event_type: NotificationEvent) -> int:
        return sum(1 for _, event, _ in self.sent if event == event_type)


class FakePaymentProcessor(StripePaymentProcessor):
    """Stripe processor with in-memory charges; webhook verification stays real."""

    def __init__(self, webhook_secret: str = WEBHOOK_SECRET):
        super().__init__(secret_key="sk_test_fake", webhook_secret=webhook_secret)
        self.intents: dict[str, ChargeIntent] = {}
        self.refunds: list[RefundResult] = []
        self.refund_status = "succeeded"

    async def create_charge_intent(self, amount: int, currency: str, metadata: dict[str, str]) -> ChargeIntent:
        reference = f"pi_{len(self.intents) + 1}"
        intent = ChargeIntent(
            reference=reference,
            status="requires_payment_method",
            amount=amount,
            currency=currency,
            client_secret=f"{reference}_secret_abc",
            reservation_id=UUID(metadata["reservation_id"]),
        )
        self.intents[reference] = intent
        return intent

    async def get_charge_status(self, reference: str) -> ChargeIntent:
        return self.intents[reference]

    async def refund(self, reference: str, amount: Optional[int] = None) -> RefundResult:
        result = RefundResult(reference=f"re_{len(self.refunds) + 1}", status=self.refund_status, amount=amount or 0)
        self.refunds.append(result)
        return result

    def settle(self, reference: str, amount: int, reservation_id: UUID, status: str = "succeeded") -> None:
        self.intents[reference] = ChargeIntent(
            reference=reference,
            status=status,
            amount=amount,
            currency="aed",
            reservation_id=reservation_id,
        )


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header for the payload."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def payment_event_payload(
    event_type: str,
    reservation_id: UUID,
    reference: str,
    amount: int = 35000,
    event_id: Optional[str] = None,
) -> str:
    """Serialized PaymentIntent webhook event."""
    return json.dumps(
        {
            "id": event_id or f"evt_{uuid4().hex[:12]}",
            "object": "event",
            "type": event_type,
            "data": {
                "object": {
                    "id": reference,
                    "object": "payment_intent",
                    "amount": amount,
                    "currency": "aed",
                    "metadata": {"reservation_id": str(reservation_id)},
                }
            },
        }
    )


def make_reservation(vehicle: Vehicle, renter_id: str, start: datetime, end: datetime, **overrides: Any) -> Reservation:
    """Pending reservation priced from the vehicle."""
    pricing = calculate_pricing(vehicle.daily_rate, start, end, deposit_amount=vehicle.deposit_amount)
    fields: dict[str, Any] = {
        "vehicle_id": vehicle.id,
        "renter_id": renter_id,
        "owner_id": vehicle.owner_id,
        "start_date": start,
        "end_date": end,
        **pricing.model_dump(),
        "created_at": datetime(2024, 2, 1, 9, 0),
        "updated_at": datetime(2024, 2, 1, 9, 0),
        "expires_at": datetime(2024, 2, 2, 9, 0),
    }
    fields.update(overrides)
    return Reservation(**fields)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 2, 1, 9, 0))


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        stripe_secret_key="sk_test_fake",
        stripe_webhook_secret=WEBHOOK_SECRET,
        admin_user_ids=[],
    )


@pytest.fixture
def vehicle():
    """Vehicle at 100.00 per day with a 50.00 deposit and 25.00 delivery fee."""
    return Vehicle(
        owner_id="owner-1",
        title="Toyota Land Cruiser 2022",
        daily_rate=10000,
        deposit_amount=5000,
        delivery_fee=2500,
    )


@pytest.fixture
def renter():
    return Actor(id="renter-1", role=ActorRole.RENTER)


@pytest.fixture
def other_renter():
    return Actor(id="renter-2", role=ActorRole.RENTER)


@pytest.fixture
def owner():
    return Actor(id="owner-1", role=ActorRole.OWNER)


@pytest.fixture
def admin():
    return Actor(id="admin-1", role=ActorRole.ADMIN)


@pytest.fixture
def reservation_repo():
    return InMemoryReservationRepository()


@pytest.fixture
def vehicle_catalog(vehicle):
    return InMemoryVehicleCatalog([vehicle])


@pytest.fixture
def ledger():
    return InMemoryEventLedger()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def processor():
    return FakePaymentProcessor()


@pytest.fixture
def engine(settings, reservation_repo, vehicle_catalog, processor, ledger, dispatcher, clock):
    """Booking engine over in-memory stores."""
    return build_booking_engine(
        settings,
        reservation_repo=reservation_repo,
        vehicle_catalog=vehicle_catalog,
        processor=processor,
        ledger=ledger,
        dispatcher=dispatcher,
        clock=clock,
    )
