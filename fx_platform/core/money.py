"""
Currencies and fixed-point money helpers.

All balances, fees and converted amounts carry exactly two decimal places.
Rounding is half-up and happens once, at the point an amount is produced.
"""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Union

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")

AmountLike = Union[Decimal, int, str]


class Currency(str, Enum):
    """Supported currency codes."""

    USD = "USD"
    NGN = "NGN"
    USDC = "USDC"

    @property
    def is_fiat(self) -> bool:
        return self in (Currency.USD, Currency.NGN)

    @property
    def is_stablecoin(self) -> bool:
        return self is Currency.USDC


def round_half_up(value: Decimal) -> Decimal:
    """Round to two decimal places, half away from zero."""
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_amount(value: AmountLike) -> Decimal:
    """
    Parse a money amount.

    Floats are rejected so binary rounding never leaks into balances, and so
    are values with more than two decimal places: the caller is never
    charged a rounded amount it did not ask for.

    Raises:
        ValueError: If the value is not a finite decimal with at most two places
    """
    if isinstance(value, float):
        raise ValueError("Money amounts must be Decimal, int or str, not float")
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Invalid amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    rounded = round_half_up(amount)
    if rounded != amount:
        raise ValueError(f"Amount {value!r} has more than two decimal places")
    return rounded
