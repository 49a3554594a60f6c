"""
Exchange venue clients.

Every call carries an explicit timeout. A timeout is reported as
``ExchangeErrorType.TIMEOUT`` because the venue's real outcome is unknown;
callers must not assume the request had no effect.

No client retries on its own: a failed call is surfaced and the caller
decides whether to start over with a fresh quote.
"""
import asyncio
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Protocol

import httpx
import structlog
from pydantic import ValidationError

from fx_platform.config import Settings
from fx_platform.core.exchange import ExchangeVenue, ExecuteTradeRequest, Quote, TradeResult
from fx_platform.core.money import Currency

logger = structlog.get_logger(__name__)


class ExchangeErrorType(Enum):
    """Classification of exchange call failures."""

    TIMEOUT = "timeout"  # Outcome at the venue unknown
    UNAVAILABLE = "unavailable"  # Venue unreachable or returned an error status
    PROTOCOL = "protocol"  # Venue answered with something we cannot read


class ExchangeError(Exception):
    """Raised when a call to the exchange venue fails."""

    def __init__(
        self,
        message: str,
        error_type: ExchangeErrorType,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize exchange error.

        Args:
            message: Error message
            error_type: Classification of error
            original_error: Underlying exception
        """
        super().__init__(message)
        self.error_type = error_type
        self.original_error = original_error


class ExchangeClient(Protocol):
    """Interface the conversion engine uses to reach the venue."""

    async def get_quote(
        self, from_currency: Currency, to_currency: Currency, amount: Decimal
    ) -> Quote:
        """Request a quote."""
        ...

    async def execute_trade(self, quote_id: str) -> TradeResult:
        """Execute a quote."""
        ...


class LocalExchangeClient:
    """Calls an in-process ``ExchangeVenue`` under a timeout."""

    def __init__(self, venue: ExchangeVenue, timeout_seconds: float = 5.0):
        self.venue = venue
        self.timeout_seconds = timeout_seconds

    async def _call(self, operation: str, coro: Any) -> Any:
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.warning("exchange_call_timeout", operation=operation, timeout=self.timeout_seconds)
            raise ExchangeError(
                f"Exchange {operation} timed out after {self.timeout_seconds}s",
                ExchangeErrorType.TIMEOUT,
                original_error=e,
            ) from e
        except ValueError as e:
            raise ExchangeError(str(e), ExchangeErrorType.PROTOCOL, original_error=e) from e

    async def get_quote(
        self, from_currency: Currency, to_currency: Currency, amount: Decimal
    ) -> Quote:
        return await self._call("quote", self.venue.get_quote(from_currency, to_currency, amount))

    async def execute_trade(self, quote_id: str) -> TradeResult:
        return await self._call("execute", self.venue.execute_trade(quote_id))


class HttpExchangeClient:
    """
    Calls a remote venue over HTTP.

    Endpoints:
    - ``GET /api/quote?from=&to=&amount=``
    - ``POST /api/execute`` with ``{"quoteId": ...}``
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize HTTP client.

        Args:
            base_url: Venue base URL
            timeout_seconds: Timeout applied to connect, read and write
            transport: Optional transport (tests mount an ASGI app here)
        """
        self.timeout_seconds = timeout_seconds
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

        logger.info("http_exchange_client_initialized", base_url=base_url)

    async def _request(self, operation: str, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            logger.warning("exchange_call_timeout", operation=operation, timeout=self.timeout_seconds)
            raise ExchangeError(
                f"Exchange {operation} timed out after {self.timeout_seconds}s",
                ExchangeErrorType.TIMEOUT,
                original_error=e,
            ) from e
        except httpx.HTTPError as e:
            logger.error("exchange_call_failed", operation=operation, error=str(e))
            raise ExchangeError(
                f"Exchange service unavailable: {e}",
                ExchangeErrorType.UNAVAILABLE,
                original_error=e,
            ) from e
        except ValueError as e:
            raise ExchangeError(
                f"Invalid response from exchange: {e}",
                ExchangeErrorType.PROTOCOL,
                original_error=e,
            ) from e

    async def get_quote(
        self, from_currency: Currency, to_currency: Currency, amount: Decimal
    ) -> Quote:
        data = await self._request(
            "quote",
            "GET",
            "/api/quote",
            params={
                "from": Currency(from_currency).value,
                "to": Currency(to_currency).value,
                "amount": str(amount),
            },
        )
        try:
            return Quote.model_validate(data)
        except ValidationError as e:
            raise ExchangeError(
                f"Invalid quote payload: {e}", ExchangeErrorType.PROTOCOL, original_error=e
            ) from e

    async def execute_trade(self, quote_id: str) -> TradeResult:
        body = ExecuteTradeRequest(quote_id=quote_id).model_dump(by_alias=True)
        data = await self._request("execute", "POST", "/api/execute", json=body)
        try:
            return TradeResult.model_validate(data)
        except ValidationError as e:
            raise ExchangeError(
                f"Invalid trade payload: {e}", ExchangeErrorType.PROTOCOL, original_error=e
            ) from e

    async def aclose(self) -> None:
        await self._client.aclose()


def build_exchange_client(
    settings: Settings, venue: Optional[ExchangeVenue] = None
) -> ExchangeClient:
    """Pick the HTTP client when a venue URL is configured, else run the venue in-process."""
    if settings.uses_remote_exchange:
        return HttpExchangeClient(
            settings.exchange_base_url, timeout_seconds=settings.exchange_timeout_seconds
        )
    return LocalExchangeClient(
        venue or ExchangeVenue.from_settings(settings),
        timeout_seconds=settings.exchange_timeout_seconds,
    )
