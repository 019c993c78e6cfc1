"""
Transactional outbox pattern implementation.

``record_event`` writes an event row inside the caller's transaction, so the
row exists if and only if the state change it announces is committed.
``OutboxRelay`` later drains PENDING rows to the broker, oldest first, and
marks each PUBLISHED only after the broker has accepted it. A crash between
publish and mark republishes the row on restart: delivery is at-least-once.
"""
import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog
from pydantic import BaseModel
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_service.core.state_machine import OutboxStatus
from order_service.database.connection import get_session_factory
from order_service.database.models import OutboxEntry
from order_service.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

Publisher = Callable[[str, bytes], Awaitable[None]]


def serialize_payload(payload: Union[BaseModel, Dict[str, Any]]) -> str:
    """Render an event payload as the JSON text stored in the outbox."""
    if isinstance(payload, BaseModel):
        return payload.model_dump_json()
    return json.dumps(payload, default=str)


async def record_event(
    db: AsyncSession,
    event_type: str,
    payload: Union[BaseModel, Dict[str, Any]],
) -> int:
    """
    Append an event to the outbox inside the caller's transaction.

    Never commits and never talks to the broker. If the surrounding
    transaction rolls back, the row is gone with it.

    Args:
        db: Session holding the caller's open transaction
        event_type: Routing key the relay publishes under
        payload: Event body

    Returns:
        int: Outbox entry id
    """
    entry = OutboxEntry(
        event_type=event_type,
        payload=serialize_payload(payload),
        status=OutboxStatus.PENDING.value,
    )
    db.add(entry)
    await db.flush()

    metrics.record_outbox_event_recorded(event_type)
    logger.info("outbox_event_recorded", outbox_id=entry.id, event_type=event_type)
    return entry.id


class OutboxRelay:
    """
    Publishes events from the outbox table to the message broker.

    Rows are relayed in creation (id) order. A batch stops at the first
    failed publish so a later row never overtakes an earlier one; the failed
    row stays PENDING and is retried on the next poll.
    """

    def __init__(
        self,
        publisher: Publisher,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        batch_size: int = 100,
        poll_interval_seconds: float = 1.0,
    ):
        """
        Initialize outbox relay.

        Args:
            publisher: Coroutine publishing (routing_key, body); must only
                return once the broker has accepted the message
            session_factory: Session factory (defaults to the application's)
            batch_size: Number of rows to process per batch
            poll_interval_seconds: Polling interval when the outbox is empty
        """
        self.publisher = publisher
        self.session_factory = session_factory or get_session_factory()
        self.batch_size = batch_size
        self.poll_interval_seconds = poll_interval_seconds
        self._running = False

        logger.info(
            "outbox_relay_initialized",
            batch_size=batch_size,
            poll_interval=poll_interval_seconds,
        )

    async def _fetch_pending(self, db: AsyncSession) -> List[OutboxEntry]:
        stmt = (
            select(OutboxEntry)
            .where(OutboxEntry.status == OutboxStatus.PENDING.value)
            .order_by(OutboxEntry.id)
            .limit(self.batch_size)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def _mark_published(self, db: AsyncSession, entry_id: int) -> None:
        stmt = (
            update(OutboxEntry)
            .where(
                OutboxEntry.id == entry_id,
                OutboxEntry.status == OutboxStatus.PENDING.value,
            )
            .values(status=OutboxStatus.PUBLISHED.value)
        )
        await db.execute(stmt)
        await db.commit()

    async def _publish(self, entry_id: int, event_type: str, payload: str) -> bool:
        """
        Publish a single entry.

        Returns:
            bool: True if the broker accepted it, False otherwise
        """
        try:
            await self.publisher(event_type, payload.encode("utf-8"))
        except Exception as e:
            metrics.record_outbox_publish_failure(event_type)
            logger.error(
                "outbox_event_publish_failed",
                outbox_id=entry_id,
                event_type=event_type,
                error=str(e),
            )
            return False

        metrics.record_outbox_event_published(event_type)
        logger.info(
            "outbox_event_published",
            outbox_id=entry_id,
            event_type=event_type,
        )
        return True

    async def process_batch(self) -> int:
        """
        Relay one batch of pending rows.

        Returns:
            int: Number of rows published and marked
        """
        start_time = time.time()
        published = 0

        async with self.session_factory() as db:
            entries = [
                (entry.id, entry.event_type, entry.payload)
                for entry in await self._fetch_pending(db)
            ]
            if not entries:
                return 0

            logger.info("outbox_batch_processing_started", batch_size=len(entries))

            for entry_id, event_type, payload in entries:
                if not await self._publish(entry_id, event_type, payload):
                    break
                await self._mark_published(db, entry_id)
                published += 1

        metrics.record_outbox_batch(time.time() - start_time)
        logger.info(
            "outbox_batch_processed",
            total=len(entries),
            published=published,
            remaining=len(entries) - published,
        )
        return published

    async def start(self) -> None:
        """
        Start the relay loop.

        Continuously polls for pending rows and publishes them until
        ``stop`` is called.
        """
        self._running = True
        logger.info("outbox_relay_started")

        try:
            while self._running:
                try:
                    published_count = await self.process_batch()
                    metrics.set_outbox_queue_depth(await self.get_pending_count())
                except Exception as e:
                    # Database unavailable; the rows are still PENDING.
                    logger.error("outbox_relay_error", error=str(e))
                    published_count = 0

                if published_count == 0:
                    await asyncio.sleep(self.poll_interval_seconds)
                else:
                    await asyncio.sleep(0)
        finally:
            logger.info("outbox_relay_stopped")

    def stop(self) -> None:
        """Stop the relay loop after the current batch."""
        self._running = False
        logger.info("outbox_relay_stop_requested")

    async def get_pending_count(self) -> int:
        """
        Get count of pending rows.

        Returns:
            int: Number of rows not yet published
        """
        async with self.session_factory() as db:
            stmt = select(func.count()).select_from(OutboxEntry).where(
                OutboxEntry.status == OutboxStatus.PENDING.value
            )
            result = await db.execute(stmt)
            return int(result.scalar_one())
