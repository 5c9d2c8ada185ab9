import asyncio

import structlog

from shared.config import settings
from shared.config.database import create_tables, session_factory_for

from .broker import RedisStreamBroker
from .consumer import MessageConsumer, Subscription
from .outbox import OutboxDispatcher

logger = structlog.get_logger(__name__)


class ServiceRuntime:
    """Background side of a service: its outbox dispatcher and its consumers."""

    def __init__(self, service: str, subscriptions: list[Subscription]):
        self.service = service
        self.subscriptions = subscriptions
        self.stop_event = asyncio.Event()
        self.tasks: list[asyncio.Task] = []
        self.broker = None

    async def start(self):
        await create_tables(self.service)
        if not settings.BACKGROUND_WORKERS_ENABLED:
            logger.info("background_workers_disabled", service=self.service)
            return

        self.broker = RedisStreamBroker.from_url(settings.REDIS_URL, group=f"{self.service}_service")
        factory = session_factory_for(self.service)
        dispatcher = OutboxDispatcher(factory, self.broker, source=self.service)
        consumer = MessageConsumer(self.service, factory, self.broker, self.subscriptions)

        self.stop_event.clear()
        self.tasks = [
            asyncio.create_task(dispatcher.run(self.stop_event), name=f"{self.service}-outbox"),
            asyncio.create_task(consumer.run(self.stop_event), name=f"{self.service}-consumers"),
        ]
        logger.info("service_runtime_started", service=self.service,
                    queues=[s.queue for s in self.subscriptions])

    async def stop(self):
        self.stop_event.set()
        for task in self.tasks:
            task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []
        if self.broker is not None:
            await self.broker.close()
            self.broker = None
