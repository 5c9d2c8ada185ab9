from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Payment


class PaymentRepository:
    @staticmethod
    async def create_payment(db: AsyncSession, payment: Payment):
        db.add(payment)
        await db.flush()
        return payment

    @staticmethod
    async def get_by_order(db: AsyncSession, order_id: str, lock: bool = False):
        query = select(Payment).where(Payment.order_id == order_id)
        if lock:
            query = query.with_for_update()
        result = await db.execute(query)
        return result.scalars().first()
