"""
Conversion transaction engine.

Orchestrates one conversion:
1. Lock the account row
2. Validate the source balance
3. Request a quote from the venue
4. Execute the quote
5. Apply debit and credit in a single commit
6. Release the lock

The venue calls happen while the row lock is held, so conversions on the
same account are totally ordered and never interleave. The venue is not
transactional: once ``execute_trade`` reports success the trade is done.
Nothing is written locally before that point, so every failure up to and
including a failed execution leaves the account untouched.

Failures are returned as a declined ``ConversionResult`` rather than raised.
"""
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from fx_platform.core.accounts import (
    AccountNotFoundError,
    AccountStore,
    NegativeBalanceError,
    StaleAccountError,
)
from fx_platform.core.exchange import Quote, TradeResult
from fx_platform.core.money import ZERO, AmountLike, Currency, round_half_up, to_amount
from fx_platform.integrations.exchange_client import (
    ExchangeClient,
    ExchangeError,
    ExchangeErrorType,
)
from fx_platform.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class DeclineReason(str, Enum):
    """Why a conversion did not go through."""

    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    QUOTE_UNAVAILABLE = "QUOTE_UNAVAILABLE"
    AMOUNT_TOO_SMALL = "AMOUNT_TOO_SMALL"
    TRADE_EXECUTION_FAILED = "TRADE_EXECUTION_FAILED"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"


class ConversionError(Exception):
    """Base exception for declined conversions."""

    reason: DeclineReason

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConversionValidationError(ValueError):
    """Raised when conversion input is malformed."""

    pass


class UnknownAccountError(ConversionError):
    """No account exists for the user."""

    reason = DeclineReason.ACCOUNT_NOT_FOUND


class InsufficientFundsError(ConversionError):
    reason = DeclineReason.INSUFFICIENT_FUNDS

    def __init__(self, currency: Currency, balance: Decimal, required: Decimal):
        super().__init__(
            f"Insufficient {currency.value} balance. Current: {balance}, Required: {required}"
        )
        self.currency = currency
        self.balance = balance
        self.required = required


class QuoteUnavailableError(ConversionError):
    reason = DeclineReason.QUOTE_UNAVAILABLE


class AmountTooSmallError(ConversionError):
    reason = DeclineReason.AMOUNT_TOO_SMALL


class TradeExecutionFailedError(ConversionError):
    """
    The venue did not confirm the trade.

    ``outcome_unknown`` is set when the call timed out: the venue may have
    executed the trade even though no success was observed.
    """

    reason = DeclineReason.TRADE_EXECUTION_FAILED

    def __init__(self, message: str, quote_id: Optional[str], outcome_unknown: bool = False):
        super().__init__(message)
        self.quote_id = quote_id
        self.outcome_unknown = outcome_unknown


class ConcurrentModificationError(ConversionError):
    reason = DeclineReason.CONCURRENT_MODIFICATION


@dataclass(frozen=True)
class ConversionResult:
    """Outcome of a conversion request."""

    success: bool
    user_id: int
    from_currency: Currency
    to_currency: Currency
    original_amount: Decimal
    message: str
    converted_amount: Decimal = ZERO
    rate: Decimal = ZERO
    fee: Decimal = ZERO
    transaction_id: Optional[str] = None
    reason: Optional[DeclineReason] = None
    outcome_unknown: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def converted_amount(amount: Decimal, rate: Decimal, fee: Decimal) -> Decimal:
    """``amount * rate - fee`` rounded half-up to two places, once."""
    return round_half_up(amount * rate - fee)


class ConversionEngine:
    """Converts balances between currencies through the exchange venue."""

    def __init__(self, account_store: AccountStore, exchange_client: ExchangeClient):
        self.account_store = account_store
        self.exchange_client = exchange_client

    @staticmethod
    def _validate_request(
        from_currency: Currency | str, to_currency: Currency | str, amount: AmountLike
    ) -> tuple[Currency, Currency, Decimal]:
        """
        Normalize conversion input.

        Raises:
            ConversionValidationError: If a currency is unknown or amount is not positive
        """
        try:
            source, target = Currency(from_currency), Currency(to_currency)
        except ValueError as e:
            raise ConversionValidationError(f"Unsupported currency: {e}") from e
        try:
            parsed = to_amount(amount)
        except ValueError as e:
            raise ConversionValidationError(str(e)) from e
        if parsed <= ZERO:
            raise ConversionValidationError("Amount must be greater than 0")
        return source, target, parsed

    async def _request_quote(
        self, from_currency: Currency, to_currency: Currency, amount: Decimal
    ) -> Quote:
        started = time.perf_counter()
        try:
            quote = await self.exchange_client.get_quote(from_currency, to_currency, amount)
        except ExchangeError as e:
            metrics.record_exchange_call("quote", e.error_type.value, time.perf_counter() - started)
            raise QuoteUnavailableError(f"Exchange unavailable: {e}") from e

        status = "available" if quote.available else "unavailable"
        metrics.record_exchange_call("quote", status, time.perf_counter() - started)
        if not quote.available or not quote.quote_id:
            raise QuoteUnavailableError("Exchange cannot fulfill this conversion")
        return quote

    async def _execute_trade(self, quote: Quote) -> TradeResult:
        started = time.perf_counter()
        try:
            trade = await self.exchange_client.execute_trade(quote.quote_id)
        except ExchangeError as e:
            metrics.record_exchange_call(
                "execute", e.error_type.value, time.perf_counter() - started
            )
            raise TradeExecutionFailedError(
                f"Trade execution failed: {e}",
                quote_id=quote.quote_id,
                outcome_unknown=e.error_type == ExchangeErrorType.TIMEOUT,
            ) from e

        metrics.record_exchange_call(
            "execute", "success" if trade.success else "failed", time.perf_counter() - started
        )
        if not trade.success:
            raise TradeExecutionFailedError(
                f"Trade execution failed: {trade.message}", quote_id=quote.quote_id
            )
        return trade

    async def convert(
        self,
        user_id: int,
        from_currency: Currency | str,
        to_currency: Currency | str,
        amount: AmountLike,
    ) -> ConversionResult:
        """
        Convert ``amount`` of ``from_currency`` into ``to_currency``.

        Args:
            user_id: Account owner
            from_currency: Currency debited
            to_currency: Currency credited
            amount: Amount debited, two decimal places

        Returns:
            ConversionResult: Success with amounts, or declined with a reason

        Raises:
            ConversionValidationError: If the request is malformed
        """
        source, target, amount = self._validate_request(from_currency, to_currency, amount)
        correlation_id = str(uuid.uuid4())
        log = logger.bind(
            correlation_id=correlation_id,
            user_id=user_id,
            from_currency=source.value,
            to_currency=target.value,
            amount=str(amount),
        )
        started = time.perf_counter()
        log.info("conversion_started")
        try:
            async with self.account_store.begin() as tx:
                try:
                    account = await tx.lock_account(user_id)
                except AccountNotFoundError as e:
                    raise UnknownAccountError(str(e)) from e

                balance = account.balance(source)
                if balance < amount:
                    raise InsufficientFundsError(source, balance, amount)

                quote = await self._request_quote(source, target, amount)
                credited = converted_amount(amount, quote.rate, quote.fee)
                if credited <= ZERO:
                    raise AmountTooSmallError(
                        f"Converted amount {credited} {target.value} is not positive after fees"
                    )

                trade = await self._execute_trade(quote)

                tx.debit(source, amount)
                tx.credit(target, credited)
                try:
                    await tx.commit()
                except (StaleAccountError, NegativeBalanceError) as e:
                    log.error(
                        "trade_executed_but_not_applied",
                        quote_id=quote.quote_id,
                        transaction_id=trade.transaction_id,
                        error=str(e),
                    )
                    raise ConcurrentModificationError(str(e)) from e
                except SQLAlchemyError as e:
                    log.error(
                        "trade_executed_but_not_applied",
                        quote_id=quote.quote_id,
                        transaction_id=trade.transaction_id,
                        error=str(e),
                    )
                    raise TradeExecutionFailedError(
                        "Trade executed but balances could not be updated",
                        quote_id=quote.quote_id,
                        outcome_unknown=True,
                    ) from e

        except ConversionError as e:
            duration = time.perf_counter() - started
            metrics.record_conversion("declined", e.reason.value, duration)
            outcome_unknown = getattr(e, "outcome_unknown", False)
            if outcome_unknown:
                log.warning(
                    "trade_outcome_unknown",
                    quote_id=getattr(e, "quote_id", None),
                    reason=e.reason.value,
                    error=e.message,
                )
            else:
                log.info("conversion_declined", reason=e.reason.value, error=e.message)
            return ConversionResult(
                success=False,
                user_id=user_id,
                from_currency=source,
                to_currency=target,
                original_amount=amount,
                message=e.message,
                reason=e.reason,
                outcome_unknown=outcome_unknown,
            )

        duration = time.perf_counter() - started
        metrics.record_conversion("succeeded", "none", duration)
        log.info(
            "conversion_completed",
            converted_amount=str(credited),
            rate=str(quote.rate),
            fee=str(quote.fee),
            transaction_id=trade.transaction_id,
            duration_seconds=duration,
        )
        return ConversionResult(
            success=True,
            user_id=user_id,
            from_currency=source,
            to_currency=target,
            original_amount=amount,
            converted_amount=credited,
            rate=quote.rate,
            fee=quote.fee,
            transaction_id=trade.transaction_id,
            message="Conversion successful",
        )
