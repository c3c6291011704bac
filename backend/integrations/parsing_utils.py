"""Shared parsing utilities for provider clients.

Centralises the number and timestamp conversions every price provider
needs: JSON floats to Decimal, Unix timestamps to UTC datetimes, and
timezone normalisation.
"""

import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional


def to_decimal(value, places: int = 6) -> Optional[Decimal]:
    """Convert a provider number (int, float or numeric string) to Decimal.

    Floats are rounded to ``places`` decimals before conversion so binary
    noise (e.g. ``150.24999999``) does not leak into stored prices.

    Returns:
        The Decimal, or None if the value is missing, NaN or not numeric.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return Decimal(str(round(number, places)))


def parse_unix_timestamp(value) -> datetime | None:
    """Parse a Unix epoch timestamp (seconds) to a UTC-aware datetime.

    Args:
        value: An int, float, string-encoded number, or None.

    Returns:
        A timezone-aware UTC datetime, or None if the value cannot be parsed.
    """
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (ValueError, TypeError, OSError):
        return None


def ensure_utc(dt: datetime) -> datetime:
    """Ensure a datetime is timezone-aware (UTC).

    If the datetime is naive, attach UTC; otherwise return as-is.
    SQLite drops tzinfo on round-trip, so rows read back from the durable
    cache pass through here.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def utc_now() -> datetime:
    """Current time as a UTC-aware datetime."""
    return datetime.now(timezone.utc)
