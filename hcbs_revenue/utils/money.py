"""Currency helpers. All money is Decimal rounded half-up to cents."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Union

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Amounts closer than this are considered equal
TOLERANCE = Decimal("0.01")

Number = Union[Decimal, int, float, str]


def to_money(value: Number) -> Decimal:
    """Convert to a two-place Decimal."""
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        raise ValueError(f"Invalid monetary amount: {value!r}") from e


def money_sum(values: Iterable[Decimal]) -> Decimal:
    return to_money(sum(values, ZERO))


def amounts_equal(a: Decimal, b: Decimal) -> bool:
    return abs(to_money(a) - to_money(b)) < TOLERANCE
