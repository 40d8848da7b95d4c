"""Money arithmetic for the ledger.

Amounts are ``Decimal`` values quantized to minor units (two places).
Floats are accepted only at the edges and are converted through ``str``
so that binary rounding never reaches the ledger.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

from susu.errors import InvalidAmountError

BOXES_PER_PAGE = 31

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Largest single posting; 17 digits keep any one amount inside a signed 64-bit minor-unit column.
MAX_AMOUNT = Decimal("999999999999999.99")

MoneyLike = Union[Decimal, int, float, str]


def to_money(value: MoneyLike) -> Decimal:
    try:
        if isinstance(value, float):
            value = str(value)
        return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except (ArithmeticError, ValueError, TypeError) as exc:
        raise InvalidAmountError(f"Invalid amount: {value!r}") from exc


def to_amount(value: MoneyLike, label: str = "Amount") -> Decimal:
    """Money value for a single posting: positive and no larger than ``MAX_AMOUNT``."""
    amount = to_money(value)
    if amount <= 0:
        raise InvalidAmountError(f"{label} must be greater than 0")
    if amount > MAX_AMOUNT:
        raise InvalidAmountError(f"{label} exceeds the maximum of {MAX_AMOUNT}")
    return amount


def page_threshold(rate: Decimal) -> Decimal:
    """Currency value of one full page (31 boxes at ``rate``)."""
    return to_money(rate * BOXES_PER_PAGE)


def to_minor_units(amount: Decimal) -> int:
    return int(to_money(amount) * 100)


def from_minor_units(units: int) -> Decimal:
    return (Decimal(units) / 100).quantize(CENT)
