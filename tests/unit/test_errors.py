"""Unit tests for error codes and serialization."""

from datetime import datetime
from uuid import uuid4

import pytest

from carbooking.errors import (
    AvailabilityConflict,
    BookingError,
    IllegalTransition,
    InvalidRange,
    NotAuthorized,
    PaymentProcessingError,
    ReservationNotFound,
    TransientStoreError,
    ValidationError,
)
from carbooking.models.reservation import ReservationStatus


def test_every_error_is_a_booking_error():
    for cls in (ValidationError, InvalidRange, NotAuthorized, PaymentProcessingError, TransientStoreError):
        assert issubclass(cls, BookingError)


def test_illegal_transition_names_both_statuses():
    error = IllegalTransition(ReservationStatus.CONFIRMED, ReservationStatus.REJECTED)

    assert str(error) == "cannot move booking from confirmed to rejected"
    assert error.to_dict()["context"] == {"current": "confirmed", "desired": "rejected"}


def test_conflict_serializes_interval():
    reservation_id = uuid4()
    error = AvailabilityConflict(
        conflicting_reservation_id=reservation_id,
        conflicting_start=datetime(2024, 3, 1),
        conflicting_end=datetime(2024, 3, 4),
    )

    payload = error.to_dict()

    assert payload["code"] == "DATES_UNAVAILABLE"
    assert payload["context"]["conflicting_reservation_id"] == str(reservation_id)
    assert payload["context"]["conflicting_start"] == "2024-03-01 00:00:00"


def test_code_override():
    error = NotAuthorized("your account must be approved before you can book", code="ACCOUNT_NOT_APPROVED")

    assert error.code == "ACCOUNT_NOT_APPROVED"
    assert NotAuthorized("x").code == "INSUFFICIENT_PERMISSIONS"


def test_not_found_message():
    reservation_id = uuid4()

    with pytest.raises(ReservationNotFound, match="booking not found") as exc_info:
        raise ReservationNotFound(reservation_id)

    assert exc_info.value.context["reservation_id"] == reservation_id


def test_payment_error_retryable_flag():
    assert PaymentProcessingError("timeout", retryable=True).to_dict()["context"]["retryable"] is True
    assert PaymentProcessingError("declined").retryable is False
