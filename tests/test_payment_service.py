"""
Tests for the payment write path and its outbox events.
"""
import json
from decimal import Decimal
from typing import Any, List

import pytest
from sqlalchemy import func, select

from fx_platform.core.events import PaymentStatus
from fx_platform.core.outbox import OutboxSerializationError
from fx_platform.core.payments import (
    InvalidPaymentTransitionError,
    PaymentNotFoundError,
    PaymentService,
    PaymentValidationError,
)
from fx_platform.database.models import OutboxEvent, Payment


@pytest.fixture
def payment_service(session_factory: Any) -> PaymentService:
    return PaymentService(session_factory)


async def outbox_rows(session_factory: Any) -> List[OutboxEvent]:
    async with session_factory() as db:
        result = await db.execute(select(OutboxEvent).order_by(OutboxEvent.id))
        return list(result.scalars().all())


async def payment_count(session_factory: Any) -> int:
    async with session_factory() as db:
        return (await db.execute(select(func.count(Payment.id)))).scalar_one()


class TestPaymentValidation:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "kwargs,match",
        [
            ({"amount": Decimal("0")}, "Amount must be positive"),
            ({"amount": "not-a-number"}, "Invalid amount"),
            ({"currency": "EUR"}, "EUR"),
            ({"payment_type": "GIFT"}, "GIFT"),
            ({"payment_type": "TRANSFER"}, "recipient"),
        ],
    )
    def test_rejects_invalid_input(self, kwargs: dict, match: str) -> None:
        request = {
            "user_id": 1,
            "amount": Decimal("10.00"),
            "currency": "USD",
            "payment_type": "DEPOSIT",
            "recipient_user_id": None,
        }
        request.update(kwargs)

        with pytest.raises(PaymentValidationError, match=match):
            PaymentService._validate_payment_request(**request)


class TestPaymentService:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_initiate_payment_writes_payment_and_event(
        self, payment_service: PaymentService, session_factory: Any
    ) -> None:
        payment = await payment_service.initiate_payment(
            user_id=1,
            amount=Decimal("250.00"),
            currency="USD",
            payment_type="TRANSFER",
            description="rent",
            recipient_user_id=2,
        )

        assert payment["status"] == "PENDING"
        assert payment["amount"] == Decimal("250.00")
        assert payment["recipient_user_id"] == 2

        rows = await outbox_rows(session_factory)
        assert len(rows) == 1
        event = rows[0]
        assert event.aggregate_type == "Payment"
        assert event.aggregate_id == str(payment["id"])
        assert event.event_type == "PAYMENT_INITIATED"
        assert event.published is False
        assert event.published_at is None

        body = json.loads(event.payload)
        assert body["paymentId"] == payment["id"]
        assert body["userId"] == 1
        assert Decimal(body["amount"]) == Decimal("250.00")
        assert body["currency"] == "USD"
        assert body["eventType"] == "PAYMENT_INITIATED"
        assert body["message"] == "Payment initiated"
        assert "timestamp" in body

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_serialization_failure_stores_nothing(
        self, payment_service: PaymentService, session_factory: Any, mocker: Any
    ) -> None:
        mocker.patch(
            "fx_platform.core.outbox.serialize_event",
            side_effect=OutboxSerializationError("Failed to serialize event"),
        )

        with pytest.raises(OutboxSerializationError):
            await payment_service.initiate_payment(
                user_id=1, amount="10.00", currency="USD", payment_type="DEPOSIT"
            )

        assert await payment_count(session_factory) == 0
        assert await outbox_rows(session_factory) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_payment(self, payment_service: PaymentService) -> None:
        created = await payment_service.initiate_payment(
            user_id=1, amount="10.00", currency="NGN", payment_type="DEPOSIT"
        )

        loaded = await payment_service.get_payment(created["id"])

        assert loaded["id"] == created["id"]
        assert loaded["currency"] == "NGN"
        assert loaded["payment_type"] == "DEPOSIT"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_missing_payment(self, payment_service: PaymentService) -> None:
        with pytest.raises(PaymentNotFoundError):
            await payment_service.get_payment(12345)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_full_lifecycle_emits_one_event_per_change(
        self, payment_service: PaymentService, session_factory: Any
    ) -> None:
        payment = await payment_service.initiate_payment(
            user_id=1, amount="10.00", currency="USD", payment_type="WITHDRAWAL"
        )

        for status in (PaymentStatus.PROCESSING, PaymentStatus.COMPLETED, PaymentStatus.REFUNDED):
            updated = await payment_service.update_payment_status(payment["id"], status)
            assert updated["status"] == status.value

        rows = await outbox_rows(session_factory)
        assert [row.event_type for row in rows] == [
            "PAYMENT_INITIATED",
            "PAYMENT_PROCESSING",
            "PAYMENT_COMPLETED",
            "PAYMENT_REFUNDED",
        ]
        assert {row.aggregate_id for row in rows} == {str(payment["id"])}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_path(
        self, payment_service: PaymentService, session_factory: Any
    ) -> None:
        payment = await payment_service.initiate_payment(
            user_id=1, amount="10.00", currency="USD", payment_type="DEPOSIT"
        )
        await payment_service.update_payment_status(payment["id"], "PROCESSING")
        await payment_service.update_payment_status(payment["id"], "FAILED")

        with pytest.raises(InvalidPaymentTransitionError):
            await payment_service.update_payment_status(payment["id"], "COMPLETED")

        rows = await outbox_rows(session_factory)
        assert rows[-1].event_type == "PAYMENT_FAILED"
        assert len(rows) == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "path,rejected",
        [
            ([], PaymentStatus.COMPLETED),
            ([], PaymentStatus.REFUNDED),
            ([PaymentStatus.PROCESSING], PaymentStatus.PENDING),
            ([PaymentStatus.PROCESSING, PaymentStatus.COMPLETED], PaymentStatus.FAILED),
            (
                [PaymentStatus.PROCESSING, PaymentStatus.COMPLETED, PaymentStatus.REFUNDED],
                PaymentStatus.COMPLETED,
            ),
        ],
    )
    async def test_forbidden_transitions_change_nothing(
        self,
        payment_service: PaymentService,
        session_factory: Any,
        path: list,
        rejected: PaymentStatus,
    ) -> None:
        payment = await payment_service.initiate_payment(
            user_id=1, amount="10.00", currency="USD", payment_type="DEPOSIT"
        )
        for status in path:
            await payment_service.update_payment_status(payment["id"], status)
        events_before = len(await outbox_rows(session_factory))
        status_before = (await payment_service.get_payment(payment["id"]))["status"]

        with pytest.raises(InvalidPaymentTransitionError):
            await payment_service.update_payment_status(payment["id"], rejected)

        assert len(await outbox_rows(session_factory)) == events_before
        assert (await payment_service.get_payment(payment["id"]))["status"] == status_before

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_update_missing_payment(self, payment_service: PaymentService) -> None:
        with pytest.raises(PaymentNotFoundError):
            await payment_service.update_payment_status(999, "PROCESSING")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_update_unknown_status(self, payment_service: PaymentService) -> None:
        with pytest.raises(PaymentValidationError):
            await payment_service.update_payment_status(1, "SETTLED")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_status_update_serialization_failure_keeps_status(
        self, payment_service: PaymentService, session_factory: Any, mocker: Any
    ) -> None:
        payment = await payment_service.initiate_payment(
            user_id=1, amount="10.00", currency="USD", payment_type="DEPOSIT"
        )
        mocker.patch(
            "fx_platform.core.outbox.serialize_event",
            side_effect=OutboxSerializationError("Failed to serialize event"),
        )

        with pytest.raises(OutboxSerializationError):
            await payment_service.update_payment_status(payment["id"], "PROCESSING")

        assert (await payment_service.get_payment(payment["id"]))["status"] == "PENDING"
        assert len(await outbox_rows(session_factory)) == 1


class TestPaymentStatus:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "status,terminal",
        [
            (PaymentStatus.PENDING, False),
            (PaymentStatus.PROCESSING, False),
            (PaymentStatus.COMPLETED, False),
            (PaymentStatus.FAILED, True),
            (PaymentStatus.REFUNDED, True),
        ],
    )
    def test_terminal_statuses(self, status: PaymentStatus, terminal: bool) -> None:
        assert status.is_terminal is terminal
