from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import InventoryItem, Reservation


class InventoryRepository:

    @staticmethod
    async def get_item(db: AsyncSession, product_id: str):
        result = await db.execute(select(InventoryItem).where(InventoryItem.product_id == product_id))
        return result.scalars().first()

    @staticmethod
    async def get_items(db: AsyncSession, product_ids: list[str]) -> dict:
        result = await db.execute(select(InventoryItem).where(InventoryItem.product_id.in_(product_ids)))
        return {item.product_id: item for item in result.scalars().all()}

    @staticmethod
    async def lock_items(db: AsyncSession, product_ids: list[str]) -> dict:
        # Sorted so concurrent reservations lock rows in the same order
        result = await db.execute(
            select(InventoryItem)
            .where(InventoryItem.product_id.in_(product_ids))
            .order_by(InventoryItem.product_id)
            .with_for_update()
        )
        return {item.product_id: item for item in result.scalars().all()}

    @staticmethod
    async def reserve_if_available(db: AsyncSession, product_id: str, quantity: int) -> bool:
        """Conditional increment of reserved stock. False when available < quantity."""
        result = await db.execute(
            update(InventoryItem)
            .where(
                InventoryItem.product_id == product_id,
                InventoryItem.stock_quantity - InventoryItem.reserved_quantity >= quantity,
            )
            .values(reserved_quantity=InventoryItem.reserved_quantity + quantity)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    @staticmethod
    async def get_reservation(db: AsyncSession, order_id: str, lock: bool = False):
        query = select(Reservation).where(Reservation.order_id == order_id)
        if lock:
            query = query.with_for_update()
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def add_reservation(db: AsyncSession, reservation: Reservation):
        db.add(reservation)
        await db.flush()
        return reservation

    @staticmethod
    async def save_item(db: AsyncSession, item: InventoryItem):
        db.add(item)
        await db.commit()
        await db.refresh(item)
        return item
