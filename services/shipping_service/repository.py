from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Shipment, ShipmentCancellation


class ShipmentRepository:
    @staticmethod
    async def get_by_order(db: AsyncSession, order_id: str, lock: bool = False):
        query = select(Shipment).where(Shipment.order_id == order_id)
        if lock:
            query = query.with_for_update()
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def add(db: AsyncSession, shipment: Shipment):
        db.add(shipment)
        await db.flush()
        return shipment

    @staticmethod
    async def save(db: AsyncSession, shipment: Shipment):
        db.add(shipment)
        await db.commit()
        return shipment

    @staticmethod
    async def get_cancellation(db: AsyncSession, order_id: str):
        return await db.get(ShipmentCancellation, order_id)

    @staticmethod
    async def add_cancellation(db: AsyncSession, cancellation: ShipmentCancellation):
        db.add(cancellation)
        await db.flush()
        return cancellation
