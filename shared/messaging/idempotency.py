from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ProcessedEvent


async def already_processed(db: AsyncSession, consumer: str, event_id: str) -> bool:
    result = await db.execute(
        select(ProcessedEvent.id).where(
            ProcessedEvent.consumer == consumer,
            ProcessedEvent.event_id == event_id,
        )
    )
    return result.scalar_one_or_none() is not None


def mark_processed(db: AsyncSession, consumer: str, event_id: str) -> None:
    """Stage the marker in the handler's transaction; it commits (or not) with it."""
    db.add(ProcessedEvent(consumer=consumer, event_id=event_id))
