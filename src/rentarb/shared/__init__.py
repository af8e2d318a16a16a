# src/rentarb/shared/__init__.py
"""
Shared Utilities - Cross-cutting Concerns

This package contains shared utilities used across all layers:
- Money (rounding, booking pricing, currency conversion)
- Validation
- Logging configuration
"""

from rentarb.shared.money import (
    BookingPricing,
    convert_amount,
    count_months,
    count_nights,
    percent_change,
    price_booking,
    round2,
    split_total,
)
from rentarb.shared.validators import (
    sanitize_text,
    validate_amount,
    validate_http_url,
    validate_log_level,
    validate_price,
    validate_ws_url,
)

__all__ = [
    "BookingPricing",
    "convert_amount",
    "count_months",
    "count_nights",
    "percent_change",
    "price_booking",
    "round2",
    "split_total",
    "sanitize_text",
    "validate_amount",
    "validate_http_url",
    "validate_log_level",
    "validate_price",
    "validate_ws_url",
]
