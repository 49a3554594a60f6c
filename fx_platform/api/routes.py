"""
API routes for accounts, conversions, payments, the exchange venue and monitoring.
"""
from decimal import Decimal
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from fx_platform.core.accounts import (
    AccountAlreadyExistsError,
    AccountNotFoundError,
    AccountSnapshot,
    AccountStore,
)
from fx_platform.core.conversion import (
    ConversionEngine,
    ConversionValidationError,
    DeclineReason,
)
from fx_platform.core.exchange import ExchangeVenue, ExecuteTradeRequest, Quote, TradeResult
from fx_platform.core.money import Currency
from fx_platform.core.outbox import OutboxPublisher, OutboxSerializationError
from fx_platform.core.payments import (
    InvalidPaymentTransitionError,
    PaymentNotFoundError,
    PaymentService,
    PaymentValidationError,
)
from fx_platform.monitoring.health import HealthCheck

from .dependencies import (
    get_account_store,
    get_conversion_engine,
    get_exchange_venue,
    get_health_check,
    get_outbox_publisher,
    get_payment_service,
)
from .schemas import (
    AccountResponse,
    ConvertRequest,
    ConvertResponse,
    CreateAccountRequest,
    ErrorResponse,
    HealthCheckResponse,
    InitiatePaymentRequest,
    PaymentResponse,
    PendingOutboxResponse,
    UpdatePaymentStatusRequest,
)

logger = structlog.get_logger(__name__)

# Create routers
account_router = APIRouter(prefix="/api/v1/accounts", tags=["accounts"])
payment_router = APIRouter(prefix="/api/v1/payments", tags=["payments"])
exchange_router = APIRouter(prefix="/api", tags=["exchange"])
monitoring_router = APIRouter(tags=["monitoring"])

DECLINE_STATUS_CODES: Dict[DeclineReason, int] = {
    DeclineReason.ACCOUNT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    DeclineReason.INSUFFICIENT_FUNDS: status.HTTP_400_BAD_REQUEST,
    DeclineReason.AMOUNT_TOO_SMALL: status.HTTP_400_BAD_REQUEST,
    DeclineReason.QUOTE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    DeclineReason.TRADE_EXECUTION_FAILED: status.HTTP_502_BAD_GATEWAY,
    DeclineReason.CONCURRENT_MODIFICATION: status.HTTP_409_CONFLICT,
}


def _error_response(status_code: int, reason: str, message: str) -> JSONResponse:
    body = ErrorResponse(reason=reason, message=message).model_dump(by_alias=True)
    return JSONResponse(status_code=status_code, content=body)


def _account_to_dict(account: AccountSnapshot) -> Dict[str, Any]:
    return {
        "user_id": account.user_id,
        "usd_balance": account.balance(Currency.USD),
        "ngn_balance": account.balance(Currency.NGN),
        "usdc_balance": account.balance(Currency.USDC),
        "lock_version": account.lock_version,
    }


@account_router.post(
    "",
    response_model=AccountResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open an account",
)
async def create_account(
    request: CreateAccountRequest,
    account_store: AccountStore = Depends(get_account_store),
) -> Dict[str, Any]:
    """Open an account seeded with a USD balance."""
    try:
        account = await account_store.create_account(
            request.user_id, {Currency.USD: request.initial_usd_balance}
        )
    except AccountAlreadyExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return _account_to_dict(account)


@account_router.post(
    "/convert",
    response_model=ConvertResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
    summary="Convert between currencies",
)
async def convert(
    request: ConvertRequest,
    engine: ConversionEngine = Depends(get_conversion_engine),
) -> Any:
    """
    Convert part of a balance into another currency.

    Declined conversions return ``{reason, message}`` with a status matching
    the reason; the account is unchanged in that case.
    """
    logger.info(
        "api_convert_request",
        user_id=request.user_id,
        from_currency=request.from_currency.value,
        to_currency=request.to_currency.value,
        amount=str(request.amount),
    )
    try:
        result = await engine.convert(
            request.user_id, request.from_currency, request.to_currency, request.amount
        )
    except ConversionValidationError as e:
        return _error_response(status.HTTP_400_BAD_REQUEST, "INVALID_REQUEST", str(e))

    if not result.success:
        return _error_response(
            DECLINE_STATUS_CODES[result.reason], result.reason.value, result.message
        )

    return {
        "converted_amount": result.converted_amount,
        "exchange_rate": result.rate,
        "fees": result.fee,
        "from_currency": result.from_currency,
        "to_currency": result.to_currency,
        "original_amount": result.original_amount,
        "transaction_id": result.transaction_id,
        "timestamp": result.timestamp,
        "message": result.message,
    }


@account_router.get(
    "/{user_id}",
    response_model=AccountResponse,
    summary="Get account balances",
)
async def get_account(
    user_id: int,
    account_store: AccountStore = Depends(get_account_store),
) -> Dict[str, Any]:
    try:
        account = await account_store.get_account(user_id)
    except AccountNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return _account_to_dict(account)


@payment_router.post(
    "",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Initiate a payment",
    description="Create a PENDING payment and its PAYMENT_INITIATED event atomically",
)
async def initiate_payment(
    request: InitiatePaymentRequest,
    payment_service: PaymentService = Depends(get_payment_service),
) -> Dict[str, Any]:
    try:
        return await payment_service.initiate_payment(
            user_id=request.user_id,
            amount=request.amount,
            currency=request.currency,
            payment_type=request.payment_type,
            description=request.description,
            recipient_user_id=request.recipient_user_id,
        )
    except PaymentValidationError as e:
        logger.warning("api_initiate_payment_validation_error", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except OutboxSerializationError as e:
        logger.error("api_initiate_payment_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Payment could not be recorded",
        )


@payment_router.get(
    "/outbox/pending",
    response_model=PendingOutboxResponse,
    summary="Count unpublished outbox events",
)
async def get_pending_outbox_count(
    publisher: OutboxPublisher = Depends(get_outbox_publisher),
) -> Dict[str, Any]:
    return {"pending_events": await publisher.get_pending_count()}


@payment_router.get(
    "/{payment_id}",
    response_model=PaymentResponse,
    summary="Get a payment",
)
async def get_payment(
    payment_id: int,
    payment_service: PaymentService = Depends(get_payment_service),
) -> Dict[str, Any]:
    try:
        return await payment_service.get_payment(payment_id)
    except PaymentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@payment_router.patch(
    "/{payment_id}/status",
    response_model=PaymentResponse,
    summary="Move a payment to a new status",
)
async def update_payment_status(
    payment_id: int,
    request: UpdatePaymentStatusRequest,
    payment_service: PaymentService = Depends(get_payment_service),
) -> Dict[str, Any]:
    try:
        return await payment_service.update_payment_status(payment_id, request.status)
    except PaymentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidPaymentTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except OutboxSerializationError as e:
        logger.error("api_update_payment_status_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Payment status could not be recorded",
        )


@exchange_router.get(
    "/quote",
    response_model=Quote,
    summary="Request a quote",
)
async def get_quote(
    from_currency: Currency = Query(..., alias="from"),
    to_currency: Currency = Query(..., alias="to"),
    amount: Decimal = Query(..., gt=0),
    venue: ExchangeVenue = Depends(get_exchange_venue),
) -> Quote:
    try:
        return await venue.get_quote(from_currency, to_currency, amount)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@exchange_router.post(
    "/execute",
    response_model=TradeResult,
    summary="Execute a quote",
)
async def execute_trade(
    request: ExecuteTradeRequest,
    venue: ExchangeVenue = Depends(get_exchange_venue),
) -> TradeResult:
    return await venue.execute_trade(request.quote_id)


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
)
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
