"""
Tests for money parsing and rounding.
"""
from decimal import Decimal

import pytest

from fx_platform.core.money import Currency, round_half_up, to_amount


class TestMoney:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("10", Decimal("10.00")),
            ("0.5", Decimal("0.50")),
            ("1.500", Decimal("1.50")),
            (7, Decimal("7.00")),
            (Decimal("2.35"), Decimal("2.35")),
        ],
    )
    def test_to_amount_normalizes_to_two_places(self, value: object, expected: Decimal) -> None:
        assert to_amount(value) == expected

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "value", [1.5, "abc", "NaN", "Infinity", None, "0.005", "100.005", Decimal("2.345")]
    )
    def test_to_amount_rejects(self, value: object) -> None:
        with pytest.raises(ValueError):
            to_amount(value)

    @pytest.mark.unit
    def test_negative_half_rounds_away_from_zero(self) -> None:
        assert round_half_up(Decimal("-0.125")) == Decimal("-0.13")

    @pytest.mark.unit
    def test_currency_kinds(self) -> None:
        assert Currency.USD.is_fiat and Currency.NGN.is_fiat
        assert Currency.USDC.is_stablecoin
        assert not Currency.USDC.is_fiat
