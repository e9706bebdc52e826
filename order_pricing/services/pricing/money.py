"""
Monetary rounding helpers.

Every monetary figure is rounded to two decimal places after each
arithmetic step. Rounding is half-up on ``Decimal`` values so that stored
totals are reproduced exactly.

Non-finite input (NaN, Infinity) is carried through rounding unchanged and
resolved by ``clamp``: NaN and negative infinity fall to the lower bound,
positive infinity to the upper bound.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

TWO_PLACES = Decimal("0.01")
WHOLE_UNITS = Decimal("1")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")
NAN = Decimal("NaN")


def to_decimal(value: Any) -> Decimal:
    """
    Convert a numeric value to Decimal.

    Floats go through ``str`` so that ``0.1`` becomes ``Decimal("0.1")``
    rather than its binary expansion. ``None`` and empty strings become zero.
    Signaling NaN is normalized to quiet NaN so comparisons never trap.

    Args:
        value: int, float, str, Decimal or None

    Returns:
        Decimal value

    Raises:
        ValueError: If value cannot be interpreted as a number
    """
    if value is None or value == "":
        return ZERO
    if isinstance(value, float):
        value = str(value)
    if not isinstance(value, Decimal):
        try:
            value = Decimal(value)
        except (InvalidOperation, TypeError) as e:
            raise ValueError(f"Invalid monetary value: {value!r}") from e
    if value.is_nan():
        return NAN
    return value


def round2(value: Any) -> Decimal:
    """Round to two decimal places, half-up."""
    value = to_decimal(value)
    if not value.is_finite():
        return value
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def round_whole(value: Any) -> Decimal:
    """Round to whole currency units, half-up."""
    value = to_decimal(value)
    if not value.is_finite():
        return value
    return value.quantize(WHOLE_UNITS, rounding=ROUND_HALF_UP)


def clamp(value: Decimal, lower: Decimal, upper: Optional[Decimal] = None) -> Decimal:
    """
    Clamp value into [lower, upper]; upper is unbounded when None.

    NaN and negative infinity clamp to ``lower``. Positive infinity clamps
    to ``upper``, or to ``lower`` when there is no upper bound.
    """
    if value.is_nan():
        return lower
    if value.is_infinite():
        if value.is_signed() or upper is None:
            return lower
        return upper
    if value < lower:
        return lower
    if upper is not None and value > upper:
        return upper
    return value
