"""
Outbox publisher background worker.

Polls the outbox table and publishes events to Kafka until SIGINT or
SIGTERM is received.
"""
import asyncio
import signal
from typing import Optional

import structlog

from fx_platform.config import Settings, get_settings
from fx_platform.core.outbox import OutboxPublisher
from fx_platform.database import close_db, init_db
from fx_platform.integrations.event_stream import EventStream, KafkaEventStream
from fx_platform.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


def build_outbox_publisher(
    settings: Settings, event_stream: Optional[EventStream] = None
) -> OutboxPublisher:
    """Create a publisher wired to the configured topic and schedule."""
    return OutboxPublisher(
        event_stream=event_stream or KafkaEventStream.from_settings(settings),
        topic=settings.payment_events_topic,
        poll_interval_seconds=settings.outbox_poll_interval_seconds,
        initial_delay_seconds=settings.outbox_initial_delay_seconds,
    )


async def start_outbox_publisher() -> None:
    """
    Start the outbox publisher worker.

    Runs continuously until stopped.
    """
    settings = get_settings()
    setup_logging(settings)

    logger.info("outbox_publisher_worker_starting", topic=settings.payment_events_topic)

    await init_db()
    event_stream = KafkaEventStream.from_settings(settings)
    publisher = build_outbox_publisher(settings, event_stream)

    # Graceful shutdown: let the current run finish, then exit the loop
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, publisher.stop)

    try:
        await publisher.start()
    except Exception as e:
        logger.error("outbox_publisher_worker_error", error=str(e))
        raise
    finally:
        event_stream.close()
        await close_db()
        logger.info("outbox_publisher_worker_stopped")


def main() -> None:
    asyncio.run(start_outbox_publisher())


if __name__ == "__main__":
    main()
