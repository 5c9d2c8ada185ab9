"""
Transactional outbox.

Services never talk to the broker directly. `enqueue` stages an envelope in the
caller's session so it commits atomically with the state change; the
`OutboxDispatcher` background task publishes committed rows afterwards.
"""
import asyncio
from datetime import timedelta

import structlog
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.config import settings
from shared.config.database import utcnow
from shared.observability.correlation import CorrelationContext
from shared.observability.metrics import (
    fulfil_outbox_publish_failures_total,
    fulfil_outbox_published_total,
)

from .contracts import Envelope, serialize_payload
from .models import OutboxMessage, ProcessedEvent

logger = structlog.get_logger(__name__)


def enqueue(db: AsyncSession, queue: str, payload, *, source: str, ctx: CorrelationContext) -> str:
    """Validate `payload` against the queue contract and stage it for publishing.

    Raises ContractViolation for a payload that does not match its queue.
    Returns the new envelope's eventId.
    """
    envelope = Envelope(
        queue=queue,
        correlation_id=ctx.correlation_id,
        causation_id=ctx.causation_id,
        source=source,
        payload=serialize_payload(queue, payload),
    )
    db.add(
        OutboxMessage(
            event_id=envelope.event_id,
            queue=queue,
            source=source,
            body=envelope.model_dump_json(by_alias=True),
            status="pending",
            attempts=0,
        )
    )
    return envelope.event_id


def backoff_for(attempts: int) -> float:
    return min(settings.OUTBOX_POLL_INTERVAL_SECONDS * (2 ** attempts), settings.OUTBOX_MAX_BACKOFF_SECONDS)


class OutboxDispatcher:
    def __init__(self, session_factory: async_sessionmaker, broker, source: str,
                 batch_size: int = settings.OUTBOX_BATCH_SIZE):
        self.session_factory = session_factory
        self.broker = broker
        self.source = source
        self.batch_size = batch_size

    async def dispatch_once(self) -> int:
        """Publish one batch of due rows. Returns how many were published."""
        published = 0
        async with self.session_factory() as db:
            result = await db.execute(
                select(OutboxMessage)
                .where(
                    OutboxMessage.source == self.source,
                    OutboxMessage.status == "pending",
                    or_(OutboxMessage.next_attempt_at.is_(None), OutboxMessage.next_attempt_at <= utcnow()),
                )
                .order_by(OutboxMessage.id)
                .limit(self.batch_size)
                .with_for_update(skip_locked=True)
            )
            for message in result.scalars().all():
                try:
                    await self.broker.publish(message.queue, message.body)
                except Exception as e:
                    # One unreachable publish must not hold back the rest of the batch
                    message.attempts += 1
                    message.last_error = str(e)
                    message.next_attempt_at = utcnow() + timedelta(seconds=backoff_for(message.attempts))
                    fulfil_outbox_publish_failures_total.labels(source=self.source, queue=message.queue).inc()
                    logger.critical(
                        "outbox_publish_failed",
                        queue=message.queue,
                        event_id=message.event_id,
                        attempts=message.attempts,
                        error=str(e),
                    )
                else:
                    message.status = "published"
                    message.published_at = utcnow()
                    published += 1
                    fulfil_outbox_published_total.labels(source=self.source, queue=message.queue).inc()
                await db.commit()
        return published

    async def drain(self) -> int:
        """Publish until nothing due is left (or nothing more can be published)."""
        total = 0
        while True:
            count = await self.dispatch_once()
            total += count
            if count == 0:
                return total

    async def prune(self, now=None) -> tuple[int, int]:
        """Delete this service's published envelopes and processed-event markers
        past their retention. Pending envelopes are never touched.

        Returns (envelopes deleted, markers deleted).
        """
        now = now or utcnow()
        published_before = now - timedelta(hours=settings.OUTBOX_RETENTION_HOURS)
        processed_before = now - timedelta(hours=settings.PROCESSED_EVENT_RETENTION_HOURS)
        async with self.session_factory() as db:
            envelopes = await db.execute(
                delete(OutboxMessage).where(
                    OutboxMessage.source == self.source,
                    OutboxMessage.status == "published",
                    OutboxMessage.published_at < published_before,
                )
            )
            markers = await db.execute(
                delete(ProcessedEvent).where(
                    ProcessedEvent.consumer.like(f"{self.source}:%"),
                    ProcessedEvent.processed_at < processed_before,
                )
            )
            await db.commit()
        if envelopes.rowcount or markers.rowcount:
            logger.info("retention_sweep", source=self.source,
                        envelopes=envelopes.rowcount, markers=markers.rowcount)
        return envelopes.rowcount, markers.rowcount

    async def run(self, stop: asyncio.Event):
        logger.info("outbox_dispatcher_started", source=self.source)
        loop = asyncio.get_running_loop()
        next_sweep = loop.time()
        while not stop.is_set():
            if loop.time() >= next_sweep:
                next_sweep = loop.time() + settings.RETENTION_SWEEP_INTERVAL_SECONDS
                try:
                    await self.prune()
                except Exception:
                    logger.exception("retention_sweep_failed", source=self.source)
            try:
                count = await self.dispatch_once()
            except Exception:
                logger.exception("outbox_dispatch_cycle_failed", source=self.source)
                count = 0
            if count == 0:
                try:
                    await asyncio.wait_for(stop.wait(), timeout=settings.OUTBOX_POLL_INTERVAL_SECONDS)
                except asyncio.TimeoutError:
                    pass
        logger.info("outbox_dispatcher_stopped", source=self.source)
