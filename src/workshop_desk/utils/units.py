"""Conversions between stored integer units and caller-facing values.

Money is persisted as integer minor units (pence) and labour durations as
integer minutes. Callers always see major units (pounds) and hours; the
repository converts at the boundary in both directions.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

_ONE = Decimal("1")
MINOR_UNITS_PER_MAJOR = 100
MINUTES_PER_HOUR = 60


def _to_decimal(value) -> Decimal:
    # str() first so 19.99 stays 19.99 rather than its binary expansion
    d = value if isinstance(value, Decimal) else Decimal(str(value))
    if not d.is_finite():
        raise ValueError(f"Not a finite number: {value!r}")
    return d


def to_minor_units(amount) -> Optional[int]:
    """Convert a major-unit amount (e.g. 19.99) to integer pence (1999).

    Rounds half away from zero, so 0.005 becomes 1.
    """
    if amount is None:
        return None
    scaled = _to_decimal(amount) * MINOR_UNITS_PER_MAJOR
    return int(scaled.quantize(_ONE, rounding=ROUND_HALF_UP))


def to_major_units(minor: Optional[int]) -> Optional[float]:
    """Convert stored integer pence back to a major-unit amount."""
    if minor is None:
        return None
    return int(minor) / MINOR_UNITS_PER_MAJOR


def hours_to_minutes(hours) -> Optional[int]:
    """Convert a labour duration in hours to whole minutes."""
    if hours is None:
        return None
    scaled = _to_decimal(hours) * MINUTES_PER_HOUR
    return int(scaled.quantize(_ONE, rounding=ROUND_HALF_UP))


def minutes_to_hours(minutes: Optional[int]) -> Optional[float]:
    """Convert stored minutes back to hours."""
    if minutes is None:
        return None
    return int(minutes) / MINUTES_PER_HOUR
