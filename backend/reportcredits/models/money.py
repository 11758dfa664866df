"""Money helpers for the credit ledger.

Amounts are Decimal in Python and Decimal128 in MongoDB.
1 credit = 1 TL, stored with two decimal places.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from bson.decimal128 import Decimal128

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: Any) -> Decimal:
    """Coerce a stored or user-supplied value to a quantized Decimal."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal128):
        value = value.to_decimal()
    if isinstance(value, float):
        # Route floats through str so 49.9 does not become 49.899999...
        value = str(value)
    try:
        return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"Not a monetary amount: {value!r}")


def to_decimal128(value: Any) -> Decimal128:
    return Decimal128(to_decimal(value))


def is_positive_amount(value: Decimal) -> bool:
    return value.is_finite() and value > ZERO
