"""
Consumer runner.

A handler receives `(db, payload, ctx)` and stages its changes in `db` without
committing. The runner records `(consumer, eventId)` in the same session and
commits once, so a redelivered envelope is either skipped or fully re-run.
"""
import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

import structlog
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from shared.config import settings
from shared.observability.correlation import CorrelationContext, bound_context
from shared.observability.metrics import fulfil_messages_consumed_total

from .contracts import ContractViolation, Envelope, parse_payload
from .idempotency import already_processed, mark_processed

logger = structlog.get_logger(__name__)

HANDLED = "handled"
DUPLICATE = "duplicate"


class MalformedMessage(Exception):
    """The stream entry is not a valid envelope for the queue it came from."""


@dataclass(frozen=True)
class Subscription:
    queue: str
    handler: Callable[..., Awaitable[None]]
    prefetch: int = 1
    requeue_on_error: bool = False


class MessageConsumer:
    def __init__(self, service: str, session_factory: async_sessionmaker, broker,
                 subscriptions: list[Subscription], max_attempts: int = settings.CONSUMER_MAX_ATTEMPTS):
        self.service = service
        self.session_factory = session_factory
        self.broker = broker
        self.subscriptions = subscriptions
        self.max_attempts = max_attempts
        self._attempts: dict[str, int] = {}

    def subscription_for(self, queue: str) -> Subscription | None:
        return next((s for s in self.subscriptions if s.queue == queue), None)

    @staticmethod
    def decode(queue: str, body) -> Envelope:
        if not body:
            raise MalformedMessage("empty body")
        try:
            envelope = Envelope.model_validate_json(body)
        except ValidationError as e:
            raise MalformedMessage(str(e)) from e
        if envelope.queue != queue:
            raise MalformedMessage(f"envelope for '{envelope.queue}' delivered on '{queue}'")
        return envelope

    async def process(self, subscription: Subscription, body) -> str:
        """Run one delivery through the handler. Returns HANDLED or DUPLICATE.

        Raises MalformedMessage / ContractViolation for poison messages and
        whatever the handler raises for processing failures.
        """
        envelope = self.decode(subscription.queue, body)
        payload = parse_payload(subscription.queue, envelope.payload)
        consumer = f"{self.service}:{subscription.queue}"
        ctx = CorrelationContext(correlation_id=envelope.correlation_id).caused_by(envelope.event_id)

        with bound_context(ctx, event_id=envelope.event_id, queue=subscription.queue,
                           order_id=envelope.payload.get("orderId")):
            async with self.session_factory() as db:
                if await already_processed(db, consumer, envelope.event_id):
                    logger.info("duplicate_event_skipped")
                    return DUPLICATE
                try:
                    await subscription.handler(db, payload, ctx)
                    mark_processed(db, consumer, envelope.event_id)
                    await db.commit()
                except IntegrityError:
                    await db.rollback()
                    # A concurrent replica committed the same eventId first
                    if await already_processed(db, consumer, envelope.event_id):
                        logger.info("duplicate_event_skipped", concurrent=True)
                        return DUPLICATE
                    raise
                except Exception:
                    await db.rollback()
                    raise
            logger.info("event_handled")
            return HANDLED

    async def handle_delivery(self, subscription: Subscription, message_id: str, body) -> str:
        """Process one stream entry and settle it: ack, leave pending for retry, or dead-letter."""
        queue = subscription.queue
        try:
            outcome = await self.process(subscription, body)
        except (MalformedMessage, ContractViolation) as e:
            await self.broker.dead_letter(queue, message_id, body, f"poison: {e}")
            self._attempts.pop(message_id, None)
            outcome = "dead_lettered"
        except Exception as e:
            attempts = self._attempts.get(message_id, 0) + 1
            self._attempts[message_id] = attempts
            if subscription.requeue_on_error and attempts < self.max_attempts:
                logger.warning("message_retry_scheduled", queue=queue, message_id=message_id,
                               attempts=attempts, error=str(e))
                outcome = "retry"
            else:
                logger.exception("message_handler_failed", queue=queue, message_id=message_id, attempts=attempts)
                await self.broker.dead_letter(queue, message_id, body, str(e))
                self._attempts.pop(message_id, None)
                outcome = "dead_lettered"
        else:
            await self.broker.ack(queue, message_id)
            self._attempts.pop(message_id, None)
        fulfil_messages_consumed_total.labels(consumer=self.service, queue=queue, outcome=outcome).inc()
        return outcome

    async def consume(self, subscription: Subscription, stop: asyncio.Event):
        await self.broker.ensure_group(subscription.queue)
        logger.info("consumer_started", service=self.service, queue=subscription.queue,
                    prefetch=subscription.prefetch)
        while not stop.is_set():
            try:
                deliveries = await self.broker.read(subscription.queue, count=subscription.prefetch)
            except Exception:
                logger.exception("consumer_read_failed", queue=subscription.queue)
                await asyncio.sleep(1.0)
                continue
            retried = False
            for message_id, body in deliveries:
                if await self.handle_delivery(subscription, message_id, body) == "retry":
                    retried = True
            if retried:
                await asyncio.sleep(0.5)

    async def run(self, stop: asyncio.Event):
        await asyncio.gather(*(self.consume(s, stop) for s in self.subscriptions))
