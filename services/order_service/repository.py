from datetime import date

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Order


class OrderRepository:
    @staticmethod
    async def add(db: AsyncSession, order: Order):
        db.add(order)
        await db.flush()
        return order

    @staticmethod
    async def get_order(db: AsyncSession, order_id: str, lock: bool = False):
        query = select(Order).where(Order.id == order_id)
        if lock:
            query = query.with_for_update()
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def next_order_number(db: AsyncSession, day: date) -> str:
        prefix = f"ORD-{day:%Y%m%d}-"
        result = await db.execute(
            select(Order.order_number)
            .where(Order.order_number.like(f"{prefix}%"))
            .order_by(Order.order_number.desc())
            .limit(1)
        )
        last = result.scalar_one_or_none()
        sequence = int(last.rsplit("-", 1)[-1]) + 1 if last else 1
        return f"{prefix}{sequence:04d}"

    @staticmethod
    async def list_orders(db: AsyncSession, *, user_id=None, status=None, payment_status=None,
                          offset: int = 0, limit: int = 10):
        filters = []
        if user_id:
            filters.append(Order.user_id == user_id)
        if status:
            filters.append(Order.status == status)
        if payment_status:
            filters.append(Order.payment_status == payment_status)

        total = (await db.execute(select(func.count(Order.id)).where(*filters))).scalar_one()
        result = await db.execute(
            select(Order).where(*filters).order_by(Order.created_at.desc(), Order.order_number.desc())
            .offset(offset).limit(limit)
        )
        return result.scalars().all(), total

    @staticmethod
    async def status_breakdown(db: AsyncSession):
        result = await db.execute(
            select(Order.status, func.count(Order.id), func.coalesce(func.sum(Order.total), 0.0))
            .group_by(Order.status)
            .order_by(Order.status)
        )
        return result.all()
