"""
Transactional outbox pattern implementation.

Events are written to the outbox table in the same transaction as the
business change they describe, then published to the event stream by a
background loop. Delivery is at-least-once: a row is marked published only
after the stream acknowledged it, so a crash in between re-sends it and
consumers must deduplicate.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import List, Optional

import structlog
from pydantic import BaseModel
from pydantic_core import PydanticSerializationError
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fx_platform.database.connection import get_session_factory
from fx_platform.database.models import OutboxEvent, utcnow
from fx_platform.integrations.event_stream import EventStream
from fx_platform.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class OutboxError(Exception):
    """Base exception for outbox errors."""

    pass


class OutboxSerializationError(OutboxError):
    """Raised when an event cannot be serialized; the business write must abort."""

    pass


def serialize_event(event: BaseModel) -> str:
    """
    Serialize an event to its JSON wire form.

    Raises:
        OutboxSerializationError: If the event cannot be serialized
    """
    try:
        return event.model_dump_json(by_alias=True)
    except (PydanticSerializationError, TypeError, ValueError) as e:
        raise OutboxSerializationError(f"Failed to serialize event: {e}") from e


def write_outbox_event(
    session: AsyncSession,
    aggregate_type: str,
    aggregate_id: str,
    event: BaseModel,
) -> OutboxEvent:
    """
    Serialize ``event`` and add it as an outbox row to the caller's session.

    Nothing is committed here; the caller's commit covers the business row
    and the event together. ``event`` must carry an ``event_type``.

    Raises:
        OutboxSerializationError: If the event cannot be serialized
    """
    payload = serialize_event(event)
    row = OutboxEvent(
        aggregate_type=aggregate_type,
        aggregate_id=str(aggregate_id),
        event_type=str(getattr(event.event_type, "value", event.event_type)),
        payload=payload,
        published=False,
        created_at=utcnow(),
    )
    session.add(row)
    return row


@dataclass
class PublishReport:
    """Result of one publisher run."""

    attempted: int = 0
    published: int = 0
    failed: int = 0


class OutboxPublisher:
    """
    Publishes events from the outbox table to the event stream.

    Each run:
    1. Reads unpublished events ordered by creation time
    2. Sends each one, keyed by aggregate id
    3. Marks each delivered event published in its own commit

    A failed delivery leaves the row pending for the next run and does not
    stop the rest of the run.
    """

    def __init__(
        self,
        event_stream: EventStream,
        topic: str,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        poll_interval_seconds: float = 5.0,
        initial_delay_seconds: float = 10.0,
    ):
        """
        Initialize outbox publisher.

        Args:
            event_stream: Destination of the events
            topic: Topic events are sent to
            session_factory: Session factory (defaults to the application's)
            poll_interval_seconds: Delay between the end of a run and the next
            initial_delay_seconds: Delay before the first run
        """
        self.event_stream = event_stream
        self.topic = topic
        self._session_factory = session_factory
        self.poll_interval_seconds = poll_interval_seconds
        self.initial_delay_seconds = initial_delay_seconds
        self._stop_event = asyncio.Event()

        logger.info(
            "outbox_publisher_initialized",
            topic=topic,
            poll_interval=poll_interval_seconds,
            initial_delay=initial_delay_seconds,
        )

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    async def _fetch_unpublished_events(self) -> List[OutboxEvent]:
        stmt = (
            select(OutboxEvent)
            .where(OutboxEvent.published == False)  # noqa: E712
            .order_by(OutboxEvent.created_at, OutboxEvent.id)
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def _mark_as_published(self, event_id: int) -> bool:
        """
        Flip ``published`` for one row.

        Returns:
            bool: False if another publisher already marked it
        """
        stmt = (
            update(OutboxEvent)
            .where(OutboxEvent.id == event_id)
            .where(OutboxEvent.published == False)  # noqa: E712
            .values(published=True, published_at=utcnow())
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            await db.commit()
            return result.rowcount == 1

    async def _publish_event(self, event: OutboxEvent) -> bool:
        """
        Send one event and mark it published.

        Any failure is logged and leaves the row pending for the next run;
        it never stops the rows behind it.
        """
        try:
            await self.event_stream.send(self.topic, event.aggregate_id, event.payload)
        except Exception as e:
            metrics.record_outbox_delivery_failure(event.event_type)
            logger.error(
                "outbox_event_publish_failed",
                event_id=event.id,
                event_type=event.event_type,
                aggregate_id=event.aggregate_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        try:
            marked = await self._mark_as_published(event.id)
        except Exception as e:
            # Sent but not marked: the next run sends it again
            logger.error(
                "outbox_event_mark_failed",
                event_id=event.id,
                event_type=event.event_type,
                aggregate_id=event.aggregate_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        if not marked:
            logger.warning("outbox_event_already_published", event_id=event.id)
            return True

        metrics.record_outbox_event_published(event.event_type)
        logger.info(
            "outbox_event_published",
            event_id=event.id,
            event_type=event.event_type,
            aggregate_id=event.aggregate_id,
        )
        return True

    async def publish_pending_events(self) -> PublishReport:
        """
        Run one publishing pass over every unpublished event.

        Returns:
            PublishReport: Counts of attempted, published and failed events
        """
        started = time.perf_counter()
        report = PublishReport()

        events = await self._fetch_unpublished_events()
        if not events:
            metrics.set_outbox_queue_depth(0)
            return report

        logger.info("outbox_run_started", pending=len(events))

        for event in events:
            report.attempted += 1
            if await self._publish_event(event):
                report.published += 1
            else:
                report.failed += 1

        await self.get_pending_count()
        metrics.record_outbox_run(time.perf_counter() - started)
        logger.info(
            "outbox_run_finished",
            total=report.attempted,
            published=report.published,
            failed=report.failed,
        )
        return report

    async def _sleep(self, seconds: float) -> bool:
        """Wait up to ``seconds``; return True if stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def start(self) -> None:
        """
        Run the publisher until ``stop()`` is called.

        The first run happens after the initial delay; later runs start a
        fixed delay after the previous one finished.
        """
        logger.info("outbox_publisher_started")

        try:
            if await self._sleep(self.initial_delay_seconds):
                return
            while not self._stop_event.is_set():
                try:
                    await self.publish_pending_events()
                except Exception as e:
                    # Database unavailable and the like; try again next run
                    logger.error("outbox_publisher_error", error=str(e), exc_info=True)
                if await self._sleep(self.poll_interval_seconds):
                    return
        finally:
            logger.info("outbox_publisher_stopped")

    def stop(self) -> None:
        """Stop the outbox publisher."""
        self._stop_event.set()
        logger.info("outbox_publisher_stop_requested")

    async def get_pending_count(self) -> int:
        """
        Get count of pending unpublished events.

        Returns:
            int: Number of unpublished events
        """
        stmt = select(func.count(OutboxEvent.id)).where(
            OutboxEvent.published == False  # noqa: E712
        )
        async with self.session_factory() as db:
            count = (await db.execute(stmt)).scalar_one()
        metrics.set_outbox_queue_depth(count)
        return count
