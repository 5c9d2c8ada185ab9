from datetime import datetime, timezone
from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from shared.config import settings

Base = declarative_base()

SERVICE_DATABASE_URLS = {
    "order": settings.ORDER_DATABASE_URL,
    "inventory": settings.INVENTORY_DATABASE_URL,
    "payment": settings.PAYMENT_DATABASE_URL,
    "shipping": settings.SHIPPING_DATABASE_URL,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@lru_cache
def engine_for(url: str):
    return create_async_engine(url, echo=settings.SQL_ECHO, pool_pre_ping=True)


def session_factory_for(service: str) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the database owned by `service`."""
    return async_sessionmaker(engine_for(SERVICE_DATABASE_URLS[service]), expire_on_commit=False)


async def create_tables(service: str):
    async with engine_for(SERVICE_DATABASE_URLS[service]).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def db_dependency(service: str):
    """Build a FastAPI `get_db` dependency for one service's database."""

    async def get_db():
        async with session_factory_for(service)() as session:
            yield session

    return get_db
