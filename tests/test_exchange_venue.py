"""
Tests for the simulated exchange venue.
"""
from decimal import Decimal

import pytest

from fx_platform.core.exchange import (
    INSUFFICIENT_LIQUIDITY_MESSAGE,
    QUOTE_EXPIRED_MESSAGE,
    QUOTE_NOT_FOUND_MESSAGE,
    QUOTE_UNAVAILABLE_MESSAGE,
    ExchangeVenue,
    calculate_fee,
    exchange_rate,
)
from fx_platform.core.money import Currency


class TestRatesAndFees:
    """Fixed rate table and fee tiers."""

    @pytest.mark.unit
    def test_rates_are_not_reciprocal(self) -> None:
        assert exchange_rate(Currency.USD, Currency.NGN) == Decimal("1500.00")
        assert exchange_rate(Currency.NGN, Currency.USD) == Decimal("0.00067")
        assert exchange_rate(Currency.USD, Currency.NGN) * exchange_rate(
            Currency.NGN, Currency.USD
        ) != Decimal("1")

    @pytest.mark.unit
    def test_same_currency_rate_is_one(self) -> None:
        assert exchange_rate(Currency.NGN, Currency.NGN) == Decimal("1")

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "source,target,expected",
        [
            (Currency.USD, Currency.USDC, Decimal("0.50")),
            (Currency.USDC, Currency.USD, Decimal("0.50")),
            (Currency.NGN, Currency.USDC, Decimal("0.50")),
            (Currency.USD, Currency.NGN, Decimal("1.00")),
            (Currency.NGN, Currency.USD, Decimal("1.00")),
            (Currency.USD, Currency.USD, Decimal("1.00")),
        ],
    )
    def test_fee_tiers(self, source: Currency, target: Currency, expected: Decimal) -> None:
        assert calculate_fee(source, target, Decimal("100.00")) == expected

    @pytest.mark.unit
    def test_fee_rounds_half_up(self) -> None:
        # 0.5% of 1.00 is 0.005
        assert calculate_fee(Currency.USD, Currency.USDC, Decimal("1.00")) == Decimal("0.01")
        # 1% of 33.35 is 0.3335
        assert calculate_fee(Currency.USD, Currency.NGN, Decimal("33.35")) == Decimal("0.33")


class TestExchangeVenue:
    """Quote issuance and execution."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_quote(self, venue: ExchangeVenue, clock) -> None:
        quote = await venue.get_quote(Currency.USD, Currency.NGN, Decimal("100.00"))

        assert quote.available is True
        assert quote.quote_id.startswith("quote_")
        assert quote.rate == Decimal("1500.00")
        assert quote.fee == Decimal("1.00")
        assert (quote.expires_at - clock.now).total_seconds() == 30
        assert venue.open_quotes == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_quote_rejects_non_positive_amount(self, venue: ExchangeVenue) -> None:
        with pytest.raises(ValueError, match="Amount must be positive"):
            await venue.get_quote(Currency.USD, Currency.NGN, Decimal("0"))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unavailable_quote_is_not_stored(self, venue: ExchangeVenue) -> None:
        venue.quote_unavailable_rate = 1.0

        quote = await venue.get_quote(Currency.USD, Currency.NGN, Decimal("100.00"))

        assert quote.available is False
        assert quote.quote_id is None
        assert quote.message == QUOTE_UNAVAILABLE_MESSAGE
        assert venue.open_quotes == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_execute_trade(self, venue: ExchangeVenue) -> None:
        quote = await venue.get_quote(Currency.USD, Currency.USDC, Decimal("100.00"))

        result = await venue.execute_trade(quote.quote_id)

        assert result.success is True
        assert result.transaction_id.startswith("tx_")
        assert result.quote_id == quote.quote_id

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_quote_is_single_use(self, venue: ExchangeVenue) -> None:
        quote = await venue.get_quote(Currency.USD, Currency.NGN, Decimal("100.00"))

        first = await venue.execute_trade(quote.quote_id)
        second = await venue.execute_trade(quote.quote_id)

        assert first.success is True
        assert second.success is False
        assert second.message == QUOTE_NOT_FOUND_MESSAGE
        assert venue.open_quotes == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_quote(self, venue: ExchangeVenue) -> None:
        result = await venue.execute_trade("quote_does_not_exist")

        assert result.success is False
        assert result.transaction_id is None
        assert result.message == QUOTE_NOT_FOUND_MESSAGE

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_expired_quote(self, venue: ExchangeVenue, clock) -> None:
        quote = await venue.get_quote(Currency.USD, Currency.NGN, Decimal("100.00"))
        clock.advance(31)

        result = await venue.execute_trade(quote.quote_id)
        retry = await venue.execute_trade(quote.quote_id)

        assert result.success is False
        assert result.message == QUOTE_EXPIRED_MESSAGE
        assert retry.message == QUOTE_NOT_FOUND_MESSAGE

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_expired_quotes_are_purged_on_next_quote(
        self, venue: ExchangeVenue, clock
    ) -> None:
        await venue.get_quote(Currency.USD, Currency.NGN, Decimal("100.00"))
        clock.advance(31)

        await venue.get_quote(Currency.USD, Currency.NGN, Decimal("50.00"))

        assert venue.open_quotes == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_liquidity_failure_consumes_quote(self, venue: ExchangeVenue) -> None:
        quote = await venue.get_quote(Currency.USD, Currency.NGN, Decimal("100.00"))
        venue.execution_failure_rate = 1.0

        result = await venue.execute_trade(quote.quote_id)

        assert result.success is False
        assert result.message == INSUFFICIENT_LIQUIDITY_MESSAGE
        assert venue.open_quotes == 0
