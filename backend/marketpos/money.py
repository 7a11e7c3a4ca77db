"""
Money helpers.

Amounts are stored as integer cents everywhere in the database and in the
services. The API speaks decimal strings with exactly two places ("4.50").
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

CENT = Decimal("0.01")

# Maximum price: 99,999,999.99 (9,999,999,999 cents)
MAX_AMOUNT_CENTS = 9_999_999_999


class MoneyError(ValueError):
    """Raised when a value cannot be read as an amount of money."""


def to_cents(value) -> int:
    """
    Convert a decimal string / int / Decimal / float to integer cents.

    Rejects more than two decimal places, negatives, NaN and infinities.
    Floats are read through their shortest repr, so 1.1 is 110 cents.
    """
    if isinstance(value, bool) or value is None:
        raise MoneyError("amount must be a number")
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise MoneyError("amount must be a decimal number")

    if not amount.is_finite():
        raise MoneyError("amount must be a finite number")
    if amount < 0:
        raise MoneyError("amount must not be negative")
    if amount != amount.quantize(CENT):
        raise MoneyError("amount must have at most two decimal places")

    cents = int(amount * 100)
    if cents > MAX_AMOUNT_CENTS:
        raise MoneyError("amount is too large")
    return cents


def cents_to_decimal(cents: int | None) -> Decimal:
    if cents is None:
        cents = 0
    return (Decimal(cents) / 100).quantize(CENT)


def format_cents(cents: int | None) -> str:
    """12345 -> "123.45"."""
    return str(cents_to_decimal(cents))
