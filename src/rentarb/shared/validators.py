# src/rentarb/shared/validators.py
"""
Input Validation Utilities - Configuration and Data Validation

This module provides validation helpers for configuration values and for
data entering the system: endpoint URLs, log levels, market prices and
free-text ledger fields.

Files that USE this module:
- rentarb.config.settings (URL and log level validation in Settings field validators)
- rentarb.application.rate_engine (validate_price for incoming ticks)
- rentarb.application.booking_service (sanitize_text for guest names and notes)
- rentarb.application.finance_service (sanitize_text, validate_amount)

Files that this module USES:
- None (pure utility functions)
"""
import math
import re
from typing import Any, Optional

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def validate_ws_url(url: str) -> bool:
    """
    Validate a websocket endpoint URL.

    Args:
        url: URL to validate

    Returns:
        True if it is a ws:// or wss:// URL with a host, False otherwise
    """
    if not url:
        return False
    return bool(re.match(r'^wss?://[^\s/]+(/\S*)?$', url))


def validate_http_url(url: str) -> bool:
    """
    Validate an HTTP endpoint URL.

    Args:
        url: URL to validate

    Returns:
        True if it is an http:// or https:// URL with a host, False otherwise
    """
    if not url:
        return False
    return bool(re.match(r'^https?://[^\s/]+(/\S*)?$', url))


def validate_log_level(level: str) -> bool:
    return bool(level) and level.upper() in LOG_LEVELS


def validate_price(value: Any) -> Optional[float]:
    """
    Coerce a quoted price to float.

    Args:
        value: Raw price (number or numeric string)

    Returns:
        The price as float, or None if it is not a finite number greater than zero.
        A zero price means "no data", never a real market level.
    """
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price) or price <= 0:
        return None
    return price


def validate_amount(value: Any, allow_zero: bool = False) -> bool:
    """
    Validate a ledger amount.

    Args:
        value: Amount to validate
        allow_zero: Whether 0 is acceptable

    Returns:
        True if value is a finite number, positive (or zero when allowed)
    """
    try:
        num_val = float(value)
    except (TypeError, ValueError):
        return False
    if not math.isfinite(num_val):
        return False
    return num_val >= 0 if allow_zero else num_val > 0


def sanitize_text(text: Optional[str], max_length: int = 500) -> Optional[str]:
    """
    Sanitize free text stored in the ledger (guest names, notes, descriptions).

    Args:
        text: Input text to sanitize
        max_length: Maximum allowed length

    Returns:
        Sanitized text, or None when nothing is left
    """
    if not text:
        return None

    # Strip control characters; keep accents (ñ, ç, ã) untouched
    sanitized = re.sub(r'[\x00-\x1f\x7f]', ' ', text)

    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length]

    sanitized = sanitized.strip()
    return sanitized or None
