"""Shared query parameter parsing utilities."""

from fastapi import HTTPException

from integrations.market_data_protocol import HistoryRange


def parse_history_days(days: str | None, default: int = 30) -> HistoryRange:
    """Parse a history range query parameter.

    Args:
        days: A positive day count, ``"max"``, or None.

    Returns:
        The day count as an int, or ``"max"``.

    Raises:
        HTTPException: If the value is neither ``"max"`` nor a positive integer.
    """
    if days is None or not days.strip():
        return default
    value = days.strip().lower()
    if value == "max":
        return "max"
    try:
        parsed = int(value)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid history range: {days}",
        )
    if parsed < 1:
        raise HTTPException(
            status_code=400,
            detail=f"History range must be at least 1 day: {days}",
        )
    return parsed
