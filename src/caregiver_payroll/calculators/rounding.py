"""Decimal helpers shared by every calculator.

Money is rounded to cents with ROUND_HALF_UP at the point it is computed and
never carried as float.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

Number = Union[Decimal, int, float, str]

ZERO = Decimal("0")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_decimal(value: Number | None) -> Decimal:
    """Convert a number to Decimal, treating None as zero.

    Floats go through ``str`` so 0.1 stays 0.1 instead of its binary expansion.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        result = Decimal(value)
    if not result.is_finite():
        raise ValueError(f"Non-finite amount: {value!r}")
    return result


def round_money(value: Number | None) -> Decimal:
    """Round to cents, half up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_hours(value: Number | None) -> Decimal:
    """Round hours to hundredths, half up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def non_negative(value: Decimal) -> Decimal:
    return value if value > ZERO else ZERO


def percent_of(base: Decimal, percentage: Number | None) -> Decimal:
    """Apply a percent number (5 means 5%) to ``base``, unrounded."""
    return base * to_decimal(percentage) / HUNDRED
