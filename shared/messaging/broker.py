"""
Redis Streams message fabric.

One stream per queue name. Each service reads through its own consumer group,
so every subscribing service sees every message while replicas of a service
share the work. Entries are acknowledged only after the handler committed.
"""
import redis.asyncio as aioredis
import structlog
from redis.exceptions import ResponseError

from shared.config import settings

logger = structlog.get_logger(__name__)

DEAD_LETTER_SUFFIX = ".dead"


class RedisStreamBroker:
    def __init__(self, redis_conn, group: str, consumer_name: str = settings.CONSUMER_NAME):
        self.redis = redis_conn
        self.group = group
        self.consumer_name = consumer_name

    @classmethod
    def from_url(cls, url: str, group: str) -> "RedisStreamBroker":
        return cls(aioredis.from_url(url, decode_responses=True), group)

    async def publish(self, queue: str, body: str) -> str:
        return await self.redis.xadd(queue, {"body": body})

    async def ensure_group(self, queue: str):
        try:
            await self.redis.xgroup_create(queue, self.group, id="0", mkstream=True)
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise

    async def read(self, queue: str, count: int = 1, block_ms: int = settings.CONSUMER_BLOCK_MS):
        """Return up to `count` (message_id, body) pairs.

        Entries this consumer was handed earlier but never acknowledged come
        first, so a crash or a requeued failure is redelivered before new work.
        """
        entries = await self._read(queue, "0", count, None)
        if not entries:
            entries = await self._read(queue, ">", count, block_ms)
        return entries

    async def _read(self, queue: str, last_id: str, count: int, block_ms):
        response = await self.redis.xreadgroup(
            self.group, self.consumer_name, {queue: last_id}, count=count, block=block_ms
        )
        messages = []
        for _stream, entries in response or []:
            for message_id, fields in entries:
                # A trimmed entry still listed as pending comes back without fields
                messages.append((message_id, (fields or {}).get("body")))
        return messages

    async def ack(self, queue: str, message_id: str):
        await self.redis.xack(queue, self.group, message_id)

    async def dead_letter(self, queue: str, message_id: str, body, error: str):
        await self.redis.xadd(
            queue + DEAD_LETTER_SUFFIX,
            {"body": body or "", "error": error, "group": self.group, "originalId": message_id},
        )
        await self.ack(queue, message_id)
        logger.error("message_dead_lettered", queue=queue, message_id=message_id, error=error)

    async def close(self):
        await self.redis.aclose()
