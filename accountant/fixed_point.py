"""
fixed_point.py - Decimal fixed-point helpers with explicit rounding direction.

Every helper that can lose precision takes the rounding mode as a parameter
so that each call site states which side keeps the dust. The accountant's
convention is that rounding always favors the pool:

    mul_div_down   amounts paid out (fees, junior yield, claimable amounts)
    mul_div_up     amounts owed to the pool

Sums and differences of quantized values are exact under the 50-digit
context configured in core.py.
"""

from __future__ import annotations
from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_UP
from typing import Union

from .core import ZERO, ONE, NAV_DECIMAL_PLACES, WAD_DECIMAL_PLACES


Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """
    Convert a number to Decimal.

    Floats go through str() so that 0.1 becomes Decimal("0.1") rather than
    its binary expansion.

    Raises:
        ValueError: If the value cannot be parsed as a number
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Expected a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Expected a number, got {value!r}") from None


def quantum(places: int) -> Decimal:
    """Smallest representable step for the given number of decimal places."""
    return Decimal(1).scaleb(-places)


def quantize(value: Decimal, places: int = NAV_DECIMAL_PLACES, rounding: str = ROUND_DOWN) -> Decimal:
    """Round value to a fixed number of decimal places in the given direction."""
    if not value.is_finite():
        return value
    return value.quantize(quantum(places), rounding=rounding)


def mul_div(
    x: Decimal,
    y: Decimal,
    d: Decimal,
    rounding: str = ROUND_DOWN,
    places: int = NAV_DECIMAL_PLACES,
) -> Decimal:
    """
    Compute x * y / d rounded to `places` decimal places.

    The product is formed at full context precision before dividing, so the
    only rounding that happens is the final quantize in the requested
    direction.

    Raises:
        ZeroDivisionError: If d is zero
    """
    if d == ZERO:
        raise ZeroDivisionError("mul_div: division by zero")
    return quantize(x * y / d, places, rounding)


def mul_div_down(x: Decimal, y: Decimal, d: Decimal, places: int = NAV_DECIMAL_PLACES) -> Decimal:
    """x * y / d, rounded toward zero."""
    return mul_div(x, y, d, ROUND_DOWN, places)


def mul_div_up(x: Decimal, y: Decimal, d: Decimal, places: int = NAV_DECIMAL_PLACES) -> Decimal:
    """x * y / d, rounded away from zero."""
    return mul_div(x, y, d, ROUND_UP, places)


def clamp_fraction(value: Number) -> Decimal:
    """
    Clamp a fraction into [0, 1] and quantize it to WAD precision (floor).

    NaN is treated as zero.
    """
    fraction = to_decimal(value)
    if fraction.is_nan():
        return ZERO
    if fraction <= ZERO:
        return ZERO
    if fraction >= ONE:
        return ONE
    return quantize(fraction, WAD_DECIMAL_PLACES, ROUND_DOWN)
