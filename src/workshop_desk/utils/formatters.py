"""Formatting utilities for display values."""

from typing import Optional

from workshop_desk.utils.constants import STATUS_LABELS


def format_currency(value: Optional[float], symbol: str = "£") -> str:
    """Format a major-unit amount as currency."""
    return f"{symbol}{(value or 0):,.2f}"


def format_hours(value: Optional[float]) -> str:
    """Format a labour duration, e.g. 1.5 -> '1h 30m'."""
    if not value:
        return "0h"
    total_minutes = int(round(value * 60))
    hours, minutes = divmod(total_minutes, 60)
    if minutes:
        return f"{hours}h {minutes:02d}m"
    return f"{hours}h"


def format_status(status: str) -> str:
    """Human label for a job/order/part status key."""
    return STATUS_LABELS.get(status, status.replace("_", " ").title())
