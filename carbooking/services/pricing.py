"""Pricing calculator.

All amounts are integers in the minor unit of the configured currency
(fils for AED, cents for USD). Nothing here touches storage or globals.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from carbooking.errors import InvalidRange, ValidationError
from carbooking.models.reservation import PricingBreakdown, to_naive_utc
from carbooking.models.vehicle import Vehicle

ONE_DAY = timedelta(days=1)


class PricingConfig(BaseModel):
    """Currency settings handed explicitly to the calculator."""

    model_config = ConfigDict(frozen=True)

    currency: str = Field(default="aed", min_length=3, max_length=3)
    minor_unit_exponent: int = Field(default=2, ge=0, le=4)
    default_delivery_fee: int = Field(default=0, ge=0)


DEFAULT_PRICING = PricingConfig()


def rental_duration_days(start_date: datetime, end_date: datetime) -> int:
    """Whole days billed for [start_date, end_date); partial days round up."""
    start_date = to_naive_utc(start_date)
    end_date = to_naive_utc(end_date)
    if end_date <= start_date:
        raise InvalidRange(start_date, end_date)

    days, remainder = divmod(end_date - start_date, ONE_DAY)
    if remainder:
        days += 1
    return max(days, 1)


def _require_amount(name: str, value: int, allow_zero: bool = True) -> None:
    # bool is an int subclass but never a valid amount
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(
            f"{name} must be an integer amount in minor units", field=name
        )
    if value < 0 or (value == 0 and not allow_zero):
        qualifier = "non-negative" if allow_zero else "positive"
        raise ValidationError(f"{name} must be {qualifier}", field=name, value=value)


def calculate_pricing(
    daily_rate: int,
    start_date: datetime,
    end_date: datetime,
    deposit_amount: int = 0,
    delivery_requested: bool = False,
    delivery_fee: int = 0,
    config: PricingConfig = DEFAULT_PRICING,
) -> PricingBreakdown:
    """
    Compute the monetary terms of a reservation.

    Args:
        daily_rate: Price per day in minor units, must be positive
        start_date: Rental start
        end_date: Rental end, strictly after start_date
        deposit_amount: Refundable deposit in minor units
        delivery_requested: Whether the delivery fee applies
        delivery_fee: Fee charged when delivery is requested
        config: Currency settings

    Returns:
        PricingBreakdown with total_payable = subtotal + deposit + delivery fee

    Raises:
        InvalidRange: end_date is not after start_date
        ValidationError: daily_rate is not positive or an amount is negative
    """
    _require_amount("daily_rate", daily_rate, allow_zero=False)
    _require_amount("deposit_amount", deposit_amount)
    _require_amount("delivery_fee", delivery_fee)

    duration_days = rental_duration_days(start_date, end_date)
    rental_subtotal = daily_rate * duration_days
    applied_delivery_fee = delivery_fee if delivery_requested else 0

    return PricingBreakdown(
        duration_days=duration_days,
        daily_rate=daily_rate,
        rental_subtotal=rental_subtotal,
        deposit_amount=deposit_amount,
        delivery_fee=applied_delivery_fee,
        total_payable=rental_subtotal + deposit_amount + applied_delivery_fee,
        currency=config.currency,
    )


def calculate_for_vehicle(
    vehicle: Vehicle,
    start_date: datetime,
    end_date: datetime,
    delivery_requested: bool = False,
    config: PricingConfig = DEFAULT_PRICING,
    delivery_fee: Optional[int] = None,
) -> PricingBreakdown:
    """Price a reservation using the rates on the vehicle listing."""
    if delivery_fee is None:
        delivery_fee = vehicle.delivery_fee or config.default_delivery_fee
    return calculate_pricing(
        daily_rate=vehicle.daily_rate,
        start_date=start_date,
        end_date=end_date,
        deposit_amount=vehicle.deposit_amount,
        delivery_requested=delivery_requested,
        delivery_fee=delivery_fee,
        config=config,
    )


def to_major_units(amount: int, config: PricingConfig = DEFAULT_PRICING) -> Decimal:
    """Convert a minor-unit amount for display, e.g. 35000 -> Decimal('350.00')."""
    return Decimal(amount).scaleb(-config.minor_unit_exponent)
