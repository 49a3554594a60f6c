"""
Payment write path.

Every payment change commits together with the outbox event describing it:
either both rows are stored or neither is.
"""
from decimal import Decimal
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fx_platform.core.events import (
    ALLOWED_TRANSITIONS,
    STATUS_EVENTS,
    PaymentEvent,
    PaymentStatus,
    PaymentType,
)
from fx_platform.core.money import ZERO, AmountLike, Currency, to_amount
from fx_platform.core.outbox import write_outbox_event
from fx_platform.database.models import Payment
from fx_platform.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

AGGREGATE_TYPE = "Payment"


class PaymentError(Exception):
    """Base exception for payment errors."""

    pass


class PaymentValidationError(PaymentError):
    """Raised when payment input validation fails."""

    pass


class PaymentNotFoundError(PaymentError):
    def __init__(self, payment_id: int):
        super().__init__(f"Payment not found: {payment_id}")
        self.payment_id = payment_id


class InvalidPaymentTransitionError(PaymentError):
    def __init__(self, payment_id: int, current: PaymentStatus, requested: PaymentStatus):
        super().__init__(
            f"Payment {payment_id} cannot move from {current.value} to {requested.value}"
        )
        self.payment_id = payment_id
        self.current = current
        self.requested = requested


def _payment_to_dict(payment: Payment) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "user_id": payment.user_id,
        "amount": payment.amount,
        "currency": payment.currency,
        "payment_type": payment.payment_type,
        "status": payment.status,
        "description": payment.description,
        "recipient_user_id": payment.recipient_user_id,
        "created_at": payment.created_at,
        "updated_at": payment.updated_at,
    }


class PaymentService:
    """Creates payments and moves them through their lifecycle."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @staticmethod
    def _validate_payment_request(
        user_id: int,
        amount: AmountLike,
        currency: Currency | str,
        payment_type: PaymentType | str,
        recipient_user_id: Optional[int],
    ) -> tuple[Decimal, Currency, PaymentType]:
        """
        Validate payment input.

        Raises:
            PaymentValidationError: If validation fails
        """
        if user_id is None:
            raise PaymentValidationError("User ID is required")
        try:
            parsed_amount = to_amount(amount)
        except ValueError as e:
            raise PaymentValidationError(str(e)) from e
        if parsed_amount <= ZERO:
            raise PaymentValidationError("Amount must be positive")
        try:
            parsed_currency = Currency(currency)
            parsed_type = PaymentType(payment_type)
        except ValueError as e:
            raise PaymentValidationError(str(e)) from e
        if parsed_type == PaymentType.TRANSFER and recipient_user_id is None:
            raise PaymentValidationError("Transfers require a recipient user ID")
        return parsed_amount, parsed_currency, parsed_type

    async def initiate_payment(
        self,
        user_id: int,
        amount: AmountLike,
        currency: Currency | str,
        payment_type: PaymentType | str,
        description: Optional[str] = None,
        recipient_user_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Create a PENDING payment and its PAYMENT_INITIATED event in one commit.

        Args:
            user_id: Paying user
            amount: Payment amount, two decimal places
            currency: Payment currency
            payment_type: Kind of payment
            description: Optional free text
            recipient_user_id: Receiving user, required for transfers

        Returns:
            Dict[str, Any]: Stored payment

        Raises:
            PaymentValidationError: If the input is invalid
            OutboxSerializationError: If the event cannot be serialized (nothing is stored)
        """
        amount, currency, payment_type = self._validate_payment_request(
            user_id, amount, currency, payment_type, recipient_user_id
        )

        async with self._session_factory() as db:
            async with db.begin():
                payment = Payment(
                    user_id=user_id,
                    amount=amount,
                    currency=currency.value,
                    payment_type=payment_type.value,
                    status=PaymentStatus.PENDING.value,
                    description=description,
                    recipient_user_id=recipient_user_id,
                )
                db.add(payment)
                await db.flush()  # assigns payment.id

                event = PaymentEvent(
                    payment_id=payment.id,
                    user_id=user_id,
                    amount=amount,
                    currency=currency,
                    event_type=STATUS_EVENTS[PaymentStatus.PENDING],
                    message="Payment initiated",
                )
                write_outbox_event(db, AGGREGATE_TYPE, str(payment.id), event)

            await db.refresh(payment)
            result = _payment_to_dict(payment)

        metrics.record_payment_initiated(currency.value, payment_type.value)
        logger.info(
            "payment_initiated",
            payment_id=result["id"],
            user_id=user_id,
            amount=str(amount),
            currency=currency.value,
            payment_type=payment_type.value,
        )
        return result

    async def get_payment(self, payment_id: int) -> Dict[str, Any]:
        """
        Read a payment.

        Raises:
            PaymentNotFoundError: If no payment has this id
        """
        async with self._session_factory() as db:
            payment = await db.get(Payment, payment_id)
            if payment is None:
                raise PaymentNotFoundError(payment_id)
            return _payment_to_dict(payment)

    async def update_payment_status(
        self, payment_id: int, new_status: PaymentStatus | str
    ) -> Dict[str, Any]:
        """
        Move a payment to ``new_status`` and record the matching event.

        Raises:
            PaymentNotFoundError: If no payment has this id
            InvalidPaymentTransitionError: If the lifecycle forbids the move
            PaymentValidationError: If ``new_status`` is not a known status
        """
        try:
            requested = PaymentStatus(new_status)
        except ValueError as e:
            raise PaymentValidationError(str(e)) from e

        async with self._session_factory() as db:
            async with db.begin():
                stmt = select(Payment).where(Payment.id == payment_id).with_for_update()
                payment = (await db.execute(stmt)).scalar_one_or_none()
                if payment is None:
                    raise PaymentNotFoundError(payment_id)

                current = PaymentStatus(payment.status)
                if requested not in ALLOWED_TRANSITIONS[current]:
                    raise InvalidPaymentTransitionError(payment_id, current, requested)

                payment.status = requested.value
                event = PaymentEvent(
                    payment_id=payment.id,
                    user_id=payment.user_id,
                    amount=payment.amount,
                    currency=Currency(payment.currency),
                    event_type=STATUS_EVENTS[requested],
                    message=f"Payment {requested.value.lower()}",
                )
                write_outbox_event(db, AGGREGATE_TYPE, str(payment.id), event)

            await db.refresh(payment)
            result = _payment_to_dict(payment)

        logger.info(
            "payment_status_updated",
            payment_id=payment_id,
            from_status=current.value,
            to_status=requested.value,
            terminal=requested.is_terminal,
        )
        return result
