"""
Pydantic schemas for API request/response models.

Field names are camelCase on the wire.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from fx_platform.core.events import PaymentStatus, PaymentType
from fx_platform.core.money import Currency


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateAccountRequest(CamelModel):
    """Request schema for opening an account."""

    user_id: int = Field(..., gt=0, description="Owner of the account")
    initial_usd_balance: Decimal = Field(
        default=Decimal("0"), ge=0, decimal_places=2, description="Seeded USD balance"
    )

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={"examples": [{"userId": 1, "initialUsdBalance": "1000.00"}]},
    )


class AccountResponse(CamelModel):
    """Account balances."""

    user_id: int
    usd_balance: Decimal
    ngn_balance: Decimal
    usdc_balance: Decimal
    lock_version: int


class ConvertRequest(CamelModel):
    """Request schema for a currency conversion."""

    user_id: int = Field(..., description="Account owner")
    from_currency: Currency = Field(..., description="Currency debited")
    to_currency: Currency = Field(..., description="Currency credited")
    amount: Decimal = Field(..., gt=0, decimal_places=2, description="Amount debited")

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {"userId": 1, "fromCurrency": "USD", "toCurrency": "NGN", "amount": "100.00"}
            ]
        },
    )


class ConvertResponse(CamelModel):
    """Successful conversion."""

    converted_amount: Decimal = Field(..., description="Amount credited")
    exchange_rate: Decimal = Field(..., description="Rate applied")
    fees: Decimal = Field(..., description="Fee charged, in the target currency")
    from_currency: Currency
    to_currency: Currency
    original_amount: Decimal
    transaction_id: Optional[str] = Field(default=None, description="Venue transaction id")
    timestamp: datetime
    message: str


class ErrorResponse(CamelModel):
    """Typed error body."""

    reason: str = Field(..., description="Machine-readable reason")
    message: str = Field(..., description="Human-readable message")


class InitiatePaymentRequest(CamelModel):
    """Request schema for initiating a payment."""

    user_id: int = Field(..., description="Paying user")
    amount: Decimal = Field(..., gt=0, decimal_places=2, description="Payment amount")
    currency: Currency = Field(..., description="Payment currency")
    payment_type: PaymentType = Field(..., description="Kind of payment")
    description: Optional[str] = Field(default=None, max_length=500)
    recipient_user_id: Optional[int] = Field(
        default=None, description="Receiving user, required for transfers"
    )


class PaymentResponse(CamelModel):
    """Stored payment."""

    id: int
    user_id: int
    amount: Decimal
    currency: Currency
    payment_type: PaymentType
    status: PaymentStatus
    description: Optional[str] = None
    recipient_user_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class UpdatePaymentStatusRequest(CamelModel):
    status: PaymentStatus


class PendingOutboxResponse(CamelModel):
    pending_events: int


class HealthCheckResponse(BaseModel):
    """Response schema for health check."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
