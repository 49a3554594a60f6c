"""
Tests for the Kafka event stream producer.
"""
from typing import Any
from unittest.mock import MagicMock

import pytest

from fx_platform.integrations.event_stream import (
    DeliveryFailureError,
    KafkaEventStream,
    LoggingEventStream,
)


def acknowledging_producer(error: Any = None) -> MagicMock:
    """Producer mock that reports delivery (or ``error``) for every message."""
    producer = MagicMock()
    producer.produce.side_effect = lambda **kwargs: kwargs["on_delivery"](error, MagicMock())
    producer.flush.return_value = 0
    return producer


class TestKafkaEventStream:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_send_waits_for_acknowledgement(self) -> None:
        producer = acknowledging_producer()
        stream = KafkaEventStream("localhost:9092", delivery_timeout_seconds=3, producer=producer)

        await stream.send("payment-events", "42", '{"paymentId": 42}')

        kwargs = producer.produce.call_args.kwargs
        assert kwargs["topic"] == "payment-events"
        assert kwargs["key"] == b"42"
        assert kwargs["value"] == b'{"paymentId": 42}'
        producer.flush.assert_called_once_with(3)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_delivery_error_raises(self) -> None:
        stream = KafkaEventStream(
            "localhost:9092", producer=acknowledging_producer(error="Broker: Not enough replicas")
        )

        with pytest.raises(DeliveryFailureError, match="Not enough replicas") as exc_info:
            await stream.send("payment-events", "42", "{}")

        assert exc_info.value.key == "42"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unacknowledged_message_raises(self) -> None:
        producer = MagicMock()
        producer.flush.return_value = 1
        stream = KafkaEventStream("localhost:9092", delivery_timeout_seconds=0.1, producer=producer)

        with pytest.raises(DeliveryFailureError, match="not acknowledged"):
            await stream.send("payment-events", "42", "{}")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_full_local_queue_raises(self) -> None:
        producer = MagicMock()
        producer.produce.side_effect = BufferError("Local: Queue full")
        stream = KafkaEventStream("localhost:9092", producer=producer)

        with pytest.raises(DeliveryFailureError, match="Queue full"):
            await stream.send("payment-events", "42", "{}")

        producer.flush.assert_not_called()


class TestLoggingEventStream:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_send_never_fails(self) -> None:
        await LoggingEventStream().send("payment-events", "1", "{}")
