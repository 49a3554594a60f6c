"""Payment lifecycle types and the event published for every status change."""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from fx_platform.core.money import Currency


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self]


class PaymentType(str, Enum):
    CONVERSION = "CONVERSION"
    TRANSFER = "TRANSFER"
    WITHDRAWAL = "WITHDRAWAL"
    DEPOSIT = "DEPOSIT"
    REFUND = "REFUND"


class PaymentEventType(str, Enum):
    PAYMENT_INITIATED = "PAYMENT_INITIATED"
    PAYMENT_PROCESSING = "PAYMENT_PROCESSING"
    PAYMENT_COMPLETED = "PAYMENT_COMPLETED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_REFUNDED = "PAYMENT_REFUNDED"


ALLOWED_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PROCESSING}),
    PaymentStatus.PROCESSING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

# Event written when a payment enters each status
STATUS_EVENTS: Dict[PaymentStatus, PaymentEventType] = {
    PaymentStatus.PENDING: PaymentEventType.PAYMENT_INITIATED,
    PaymentStatus.PROCESSING: PaymentEventType.PAYMENT_PROCESSING,
    PaymentStatus.COMPLETED: PaymentEventType.PAYMENT_COMPLETED,
    PaymentStatus.FAILED: PaymentEventType.PAYMENT_FAILED,
    PaymentStatus.REFUNDED: PaymentEventType.PAYMENT_REFUNDED,
}


class PaymentEvent(BaseModel):
    """
    Message body published to the payment events topic.

    Serialized with camelCase keys: ``paymentId, userId, amount, currency,
    eventType, timestamp, message``.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    payment_id: int
    user_id: int
    amount: Decimal
    currency: Currency
    event_type: PaymentEventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    message: str = ""

