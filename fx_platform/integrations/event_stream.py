"""
Event stream producers.

``send`` returns only after the broker acknowledged the message, so a
caller that marks work as done after ``send`` never loses an event it
believes was delivered.
"""
import asyncio
from typing import Any, List, Optional, Protocol

import structlog
from confluent_kafka import KafkaError, KafkaException, Producer

from fx_platform.config import Settings

logger = structlog.get_logger(__name__)


class DeliveryFailureError(Exception):
    """Raised when the broker did not acknowledge a message."""

    def __init__(self, topic: str, key: str, reason: str):
        super().__init__(f"Delivery to {topic} failed for key {key}: {reason}")
        self.topic = topic
        self.key = key
        self.reason = reason


class EventStream(Protocol):
    """Keyed, durable, ordered-per-key message sink."""

    async def send(self, topic: str, key: str, value: str) -> None:
        """Deliver one message; raise DeliveryFailureError if it was not acknowledged."""
        ...


class KafkaEventStream:
    """Kafka producer waiting for the delivery report of every message."""

    def __init__(
        self,
        bootstrap_servers: str,
        delivery_timeout_seconds: float = 10.0,
        producer: Optional[Producer] = None,
    ):
        """
        Initialize Kafka event stream.

        Args:
            bootstrap_servers: Kafka bootstrap servers
            delivery_timeout_seconds: Time to wait for the delivery report
            producer: Pre-built producer (tests pass a mock)
        """
        self.delivery_timeout_seconds = delivery_timeout_seconds
        self.producer = producer or Producer(
            {
                "bootstrap.servers": bootstrap_servers,
                "acks": "all",
                "enable.idempotence": True,
                "linger.ms": 5,
            }
        )

        logger.info(
            "kafka_event_stream_initialized",
            bootstrap_servers=bootstrap_servers,
            delivery_timeout=delivery_timeout_seconds,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "KafkaEventStream":
        return cls(
            settings.kafka_bootstrap_servers,
            delivery_timeout_seconds=settings.kafka_delivery_timeout_seconds,
        )

    async def send(self, topic: str, key: str, value: str) -> None:
        errors: List[KafkaError] = []

        def on_delivery(err: Optional[KafkaError], msg: Any) -> None:
            if err is not None:
                errors.append(err)

        try:
            self.producer.produce(
                topic=topic,
                key=key.encode("utf-8"),
                value=value.encode("utf-8"),
                on_delivery=on_delivery,
            )
        except (BufferError, KafkaException) as e:
            raise DeliveryFailureError(topic, key, str(e)) from e

        loop = asyncio.get_running_loop()
        remaining = await loop.run_in_executor(
            None, self.producer.flush, self.delivery_timeout_seconds
        )

        if errors:
            raise DeliveryFailureError(topic, key, str(errors[0]))
        if remaining:
            raise DeliveryFailureError(
                topic, key, f"not acknowledged within {self.delivery_timeout_seconds}s"
            )

        logger.debug("event_delivered", topic=topic, key=key)

    def close(self) -> None:
        self.producer.flush(self.delivery_timeout_seconds)


class LoggingEventStream:
    """Writes events to the log instead of a broker. For local development."""

    async def send(self, topic: str, key: str, value: str) -> None:
        logger.info("event_published_to_log", topic=topic, key=key, value=value)

    def close(self) -> None:
        pass
