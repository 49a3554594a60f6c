"""
Simulated exchange venue.

Issues time-boxed, single-use quotes from a fixed rate table and executes
trades against them. Availability and liquidity failures are simulated at
configurable rates so callers can exercise their failure paths.

Rates are fixed per direction and deliberately not reciprocal:
NGN -> USD is 0.00067 while USD -> NGN is 1500.00.
"""
import asyncio
import random
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Dict, Optional, Tuple

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from fx_platform.config import Settings
from fx_platform.core.money import ZERO, Currency, round_half_up

logger = structlog.get_logger(__name__)

RATES: Dict[Tuple[Currency, Currency], Decimal] = {
    (Currency.USD, Currency.NGN): Decimal("1500.00"),
    (Currency.NGN, Currency.USD): Decimal("0.00067"),
    (Currency.USD, Currency.USDC): Decimal("1"),
    (Currency.USDC, Currency.USD): Decimal("1"),
    (Currency.USDC, Currency.NGN): Decimal("1500.00"),
    (Currency.NGN, Currency.USDC): Decimal("0.00067"),
}

STABLECOIN_FEE = Decimal("0.005")  # 0.5% between fiat and stablecoin
STANDARD_FEE = Decimal("0.01")  # 1% everything else

QUOTE_UNAVAILABLE_MESSAGE = "Exchange temporarily unavailable"
QUOTE_NOT_FOUND_MESSAGE = "Quote not found or expired"
QUOTE_EXPIRED_MESSAGE = "Quote has expired"
INSUFFICIENT_LIQUIDITY_MESSAGE = "Execution failed due to insufficient liquidity"


class WireModel(BaseModel):
    """Base for venue payloads, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class Quote(WireModel):
    """A time-boxed, single-use price offer."""

    quote_id: Optional[str] = None
    from_currency: Currency
    to_currency: Currency
    amount: Decimal
    rate: Decimal = ZERO
    fee: Decimal = ZERO
    available: bool
    expires_at: Optional[datetime] = None
    message: str = ""


class TradeResult(WireModel):
    """Outcome of executing a quote."""

    success: bool
    transaction_id: Optional[str] = None
    quote_id: Optional[str] = None
    message: str = ""


class ExecuteTradeRequest(WireModel):
    """Body of an execute call."""

    quote_id: str = Field(..., min_length=1)


def exchange_rate(from_currency: Currency, to_currency: Currency) -> Decimal:
    """
    Look up the fixed rate for a currency pair.

    Raises:
        ValueError: If the pair is not supported
    """
    if from_currency == to_currency:
        return Decimal("1")
    try:
        return RATES[(from_currency, to_currency)]
    except KeyError:
        raise ValueError(f"Unsupported currency pair: {from_currency} to {to_currency}")


def calculate_fee(from_currency: Currency, to_currency: Currency, amount: Decimal) -> Decimal:
    """Fee for converting ``amount``, rounded half-up to two places."""
    stablecoin_leg = (from_currency.is_fiat and to_currency.is_stablecoin) or (
        from_currency.is_stablecoin and to_currency.is_fiat
    )
    percentage = STABLECOIN_FEE if stablecoin_leg else STANDARD_FEE
    return round_half_up(amount * percentage)


class ExchangeVenue:
    """
    In-memory exchange venue.

    Quotes live in a table keyed by quote id. A quote is removed the first
    time it is looked up for execution, so it can never be executed twice.
    """

    def __init__(
        self,
        quote_ttl_seconds: int = 30,
        quote_unavailable_rate: float = 0.05,
        execution_failure_rate: float = 0.03,
        latency_seconds: Tuple[float, float] = (0.1, 0.3),
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the venue.

        Args:
            quote_ttl_seconds: Seconds a quote stays executable
            quote_unavailable_rate: Probability a quote request is declined
            execution_failure_rate: Probability an execution fails for liquidity
            latency_seconds: Bounds of the simulated network latency
            rng: Random source (seed it for reproducible runs)
            clock: Returns the current UTC time
        """
        self.quote_ttl = timedelta(seconds=quote_ttl_seconds)
        self.quote_unavailable_rate = quote_unavailable_rate
        self.execution_failure_rate = execution_failure_rate
        self.latency_seconds = latency_seconds
        self._rng = rng or random.Random()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._quotes: Dict[str, Quote] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExchangeVenue":
        return cls(
            quote_ttl_seconds=settings.quote_ttl_seconds,
            quote_unavailable_rate=settings.quote_unavailable_rate,
            execution_failure_rate=settings.execution_failure_rate,
            latency_seconds=(
                settings.exchange_latency_min_seconds,
                settings.exchange_latency_max_seconds,
            ),
        )

    @property
    def open_quotes(self) -> int:
        return len(self._quotes)

    async def _simulate_latency(self) -> None:
        low, high = self.latency_seconds
        if high > 0:
            await asyncio.sleep(self._rng.uniform(low, high))

    def _purge_expired(self, now: datetime) -> None:
        expired = [qid for qid, quote in self._quotes.items() if quote.expires_at < now]
        for quote_id in expired:
            del self._quotes[quote_id]
        if expired:
            logger.debug("expired_quotes_purged", count=len(expired))

    async def get_quote(
        self, from_currency: Currency, to_currency: Currency, amount: Decimal
    ) -> Quote:
        """
        Issue a quote for converting ``amount``.

        Raises:
            ValueError: If the currency pair is unsupported or amount is not positive
        """
        await self._simulate_latency()

        from_currency, to_currency = Currency(from_currency), Currency(to_currency)
        if amount <= 0:
            raise ValueError("Amount must be positive")
        rate = exchange_rate(from_currency, to_currency)

        if self._rng.random() < self.quote_unavailable_rate:
            logger.info(
                "quote_unavailable",
                from_currency=from_currency.value,
                to_currency=to_currency.value,
            )
            return Quote(
                from_currency=from_currency,
                to_currency=to_currency,
                amount=amount,
                available=False,
                message=QUOTE_UNAVAILABLE_MESSAGE,
            )

        now = self._clock()
        self._purge_expired(now)

        quote = Quote(
            quote_id=f"quote_{uuid.uuid4()}",
            from_currency=from_currency,
            to_currency=to_currency,
            amount=amount,
            rate=rate,
            fee=calculate_fee(from_currency, to_currency, amount),
            available=True,
            expires_at=now + self.quote_ttl,
            message="Quote generated successfully",
        )
        self._quotes[quote.quote_id] = quote

        logger.info(
            "quote_issued",
            quote_id=quote.quote_id,
            from_currency=from_currency.value,
            to_currency=to_currency.value,
            amount=str(amount),
            rate=str(rate),
            fee=str(quote.fee),
        )
        return quote

    async def execute_trade(self, quote_id: str) -> TradeResult:
        """Execute a previously issued quote."""
        await self._simulate_latency()

        quote = self._quotes.pop(quote_id, None)
        if quote is None:
            logger.warning("trade_quote_not_found", quote_id=quote_id)
            return TradeResult(success=False, quote_id=quote_id, message=QUOTE_NOT_FOUND_MESSAGE)

        if quote.expires_at < self._clock():
            logger.warning("trade_quote_expired", quote_id=quote_id)
            return TradeResult(success=False, quote_id=quote_id, message=QUOTE_EXPIRED_MESSAGE)

        if self._rng.random() < self.execution_failure_rate:
            logger.warning("trade_liquidity_failure", quote_id=quote_id)
            return TradeResult(
                success=False, quote_id=quote_id, message=INSUFFICIENT_LIQUIDITY_MESSAGE
            )

        transaction_id = f"tx_{uuid.uuid4()}"
        logger.info("trade_executed", quote_id=quote_id, transaction_id=transaction_id)
        return TradeResult(
            success=True,
            transaction_id=transaction_id,
            quote_id=quote_id,
            message="Trade executed successfully",
        )
