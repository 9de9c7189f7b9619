"""Conversion between decimal major-unit amounts and integer minor units.

All monetary arithmetic in the service is done on integers (cents). Amounts
arriving from clients as strings or numbers are converted exactly once, at the
request boundary, rounding half up to the nearest minor unit.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

MINOR_UNITS_PER_MAJOR = 100

# stored in 64-bit integer columns
MAX_MINOR_UNITS = 2 ** 63 - 1

Amount = Union[str, int, float, Decimal]


def parse_decimal(value: Amount) -> Decimal:
    """Parse a client supplied amount. Raises ValueError for anything that is not a finite number."""
    if isinstance(value, bool):
        raise ValueError("amount must be a number")
    try:
        # str() keeps floats like 64.99 from turning into 64.98999...
        parsed = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError("amount must be a number")
    if not parsed.is_finite():
        raise ValueError("amount must be a number")
    return parsed


def to_minor_units(value: Amount) -> int:
    """Convert a major-unit amount (e.g. "64.99") to integer minor units (6499).

    Raises ValueError when the result does not fit in a 64-bit integer.
    """
    scaled = parse_decimal(value) * MINOR_UNITS_PER_MAJOR
    if abs(scaled) > MAX_MINOR_UNITS:
        raise ValueError("amount is too large")
    try:
        return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation:
        raise ValueError("amount is too large")


def format_minor_units(amount: int, currency: str = "") -> str:
    major = Decimal(amount) / MINOR_UNITS_PER_MAJOR
    text = f"{major:.2f}"
    return f"{currency} {text}".strip()
