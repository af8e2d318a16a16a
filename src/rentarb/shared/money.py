# src/rentarb/shared/money.py
"""
Money Utilities - Rounding, Booking Pricing and Currency Conversion

Plain numeric helpers shared by the rate engine and the ledger services.
All rounding goes through Decimal with ROUND_HALF_UP so that 2-decimal
amounts behave like the cents a guest actually pays.

Files that USE this module:
- rentarb.application.rate_engine (percent_change for rate deltas)
- rentarb.application.booking_service (price_booking for new and edited bookings)
- rentarb.application.finance_service (convert_amount for frozen USDT/ARS amounts)
- tests.test_money (unit tests)

Files that this module USES:
- rentarb.domain.models (RentalType)
- rentarb.domain.errors (InvalidBookingError, InvalidRateError)
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Tuple

from rentarb.domain.errors import InvalidBookingError, InvalidRateError
from rentarb.domain.models import RentalType

DEPOSIT_RATIO = Decimal("0.30")
_CENTS = Decimal("0.01")


def _dec(value: float) -> Decimal:
    # str() keeps the shortest repr, so 0.1 stays 0.1 instead of 0.1000000000000000055...
    return Decimal(str(value))


def round2(value: float) -> float:
    """Round to 2 decimals, half away from zero."""
    return float(_dec(value).quantize(_CENTS, rounding=ROUND_HALF_UP))


def split_total(total: float) -> Tuple[float, float]:
    """
    Split a booking total into the 30% deposit and the 70% remaining.

    The remaining part absorbs the rounding cent, so
    deposit + remaining == round2(total) for every total.

    Args:
        total: Booking total in BRL

    Returns:
        (deposit_amount, remaining_amount), both rounded to 2 decimals
    """
    rounded_total = _dec(total).quantize(_CENTS, rounding=ROUND_HALF_UP)
    deposit = (_dec(total) * DEPOSIT_RATIO).quantize(_CENTS, rounding=ROUND_HALF_UP)
    return float(deposit), float(rounded_total - deposit)


def count_nights(check_in: date, check_out: date) -> int:
    return max(0, (check_out - check_in).days)


def count_months(check_in: date, check_out: date) -> int:
    """Calendar-month difference ignoring the day of month, minimum 1."""
    months = (check_out.year - check_in.year) * 12 + (check_out.month - check_in.month)
    return max(1, months)


@dataclass(frozen=True)
class BookingPricing:
    """Units and amounts of a priced booking."""
    units: int
    total: float
    deposit: float
    remaining: float


def price_booking(rental_type: RentalType, rate: float, check_in: date, check_out: date) -> BookingPricing:
    """
    Price a stay: nights x daily rate, or months x monthly rate.

    Raises:
        InvalidBookingError: If check-out is not after check-in or the rate is not positive
    """
    if check_out <= check_in:
        raise InvalidBookingError(f"check-out {check_out} must be after check-in {check_in}")
    if rate is None or not math.isfinite(rate) or rate <= 0:
        raise InvalidBookingError(f"rate must be positive, got {rate!r}")

    if rental_type == RentalType.MONTHLY:
        units = count_months(check_in, check_out)
    else:
        units = count_nights(check_in, check_out)

    total = float((_dec(rate) * units).quantize(_CENTS, rounding=ROUND_HALF_UP))
    deposit, remaining = split_total(total)
    return BookingPricing(units=units, total=total, deposit=deposit, remaining=remaining)


def percent_change(current: Optional[float], previous: Optional[float]) -> float:
    """
    Percentage change from previous to current.

    Returns 0.0 when either side is missing or previous is not positive,
    so a first publish never shows a spurious jump.
    """
    if current is None or previous is None or previous <= 0:
        return 0.0
    return (current - previous) / previous * 100


def convert_amount(amount: float, rate: Optional[float]) -> float:
    """
    Convert an amount with a TC quoted as units of `amount` per target unit.

    Example: 540 BRL at TC 5.40 BRL/USDT -> 100.00 USDT.

    Raises:
        InvalidRateError: If the rate is missing, zero or negative
    """
    if rate is None or not math.isfinite(rate) or rate <= 0:
        raise InvalidRateError(f"conversion rate must be positive, got {rate!r}")
    return round2(amount / rate)
