"""
Money helpers.

Balances and amounts are stored as integer minor units (cents); services work
with ``Decimal`` values quantized to two places.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

TWO_PLACES = Decimal("0.01")
MINOR_UNITS = 100

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """Convert user input to a finite Decimal without float artefacts."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        try:
            result = Decimal(value)
        except (InvalidOperation, TypeError) as exc:
            raise ValueError(f"Not a decimal amount: {value!r}") from exc

    if not result.is_finite():
        raise ValueError(f"Not a finite amount: {value!r}")
    return result


def quantize_currency(value: Number) -> Decimal:
    """Round monetary values to cents."""
    try:
        return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError(f"Amount out of range: {value!r}") from exc


def parse_cents(value: Number) -> Decimal:
    """Parse an amount that must already be expressed in whole cents."""
    amount = to_decimal(value)
    quantized = quantize_currency(amount)
    if quantized != amount:
        raise ValueError(f"Amount has sub-cent precision: {value!r}")
    return quantized


def to_minor(value: Number) -> int:
    """Convert an amount to integer minor units, rounding half up to cents."""
    return int(quantize_currency(value) * MINOR_UNITS)


def from_minor(value: int) -> Decimal:
    """Convert stored minor units back to a two-place Decimal."""
    return (Decimal(int(value)) / MINOR_UNITS).quantize(TWO_PLACES)


def format_odds(value: Number) -> str:
    """Normalise odds to the two-place text stored in the database."""
    try:
        return str(to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP))
    except InvalidOperation as exc:
        raise ValueError(f"Odds out of range: {value!r}") from exc
