"""Decimal money helpers shared by gateways, invoices and messages."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")


def to_decimal(value: Number) -> Decimal:
    """Coerce a number to a two-place Decimal, rounding half up."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(value: Number) -> int:
    """
    Convert a dollar amount to integer cents.

    Example:
        >>> to_minor_units(Decimal("59.99"))
        5999
    """
    return int((to_decimal(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(cents: int) -> Decimal:
    return to_decimal(Decimal(cents) / 100)


def format_money(value: Number) -> str:
    """Format an amount for customer facing messages, e.g. ``$2,000.00``."""
    return f"${to_decimal(value):,.2f}"


def format_plain(value: Number) -> str:
    """Format an amount as a bare two-decimal string for provider payloads."""
    return f"{to_decimal(value):.2f}"
