"""Conversion between the price an administrator types and the stored integer.

FIXED_AMOUNT prices are kept in cents. PERCENTAGE prices are kept as whole
percentage points: fractional input is truncated, so a display -> storage ->
display round trip is lossy for percentages.
"""
from __future__ import annotations

from decimal import Decimal, DecimalException, ROUND_DOWN, ROUND_HALF_UP
from typing import Union

from warranty_admin.models import PriceType

Number = Union[Decimal, int, float, str]

_CENTS = Decimal("100")
_TWO_PLACES = Decimal("0.01")


def _as_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # str() keeps 12.34 as 12.34 instead of its binary expansion
        return Decimal(str(value))
    return Decimal(value)


def to_storage(display_value: Number, price_type: PriceType | str) -> int:
    price_type = PriceType(price_type)
    try:
        amount = _as_decimal(display_value)
        if price_type == PriceType.FIXED_AMOUNT:
            return int((amount * _CENTS).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        return int(amount.quantize(Decimal("1"), rounding=ROUND_DOWN))
    except DecimalException as exc:
        raise ValueError(f"Price {display_value!r} cannot be stored") from exc


def to_display(stored_value: int, price_type: PriceType | str) -> Decimal:
    price_type = PriceType(price_type)
    if price_type == PriceType.FIXED_AMOUNT:
        return (Decimal(int(stored_value)) / _CENTS).quantize(_TWO_PLACES)
    return Decimal(int(stored_value))


def format_display(stored_value: int, price_type: PriceType | str) -> str:
    """Human readable price, e.g. ``"9.99"`` or ``"10%"``."""
    value = to_display(stored_value, price_type)
    if PriceType(price_type) == PriceType.PERCENTAGE:
        return f"{value}%"
    return f"{value}"


__all__ = ["to_storage", "to_display", "format_display"]
