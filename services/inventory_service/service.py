from collections import OrderedDict

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shared.messaging import contracts
from shared.messaging.outbox import enqueue
from shared.observability.correlation import CorrelationContext
from shared.observability.metrics import fulfil_reservations_total

from .models import InventoryItem, Reservation, ReservationLine
from .repository import InventoryRepository
from .schemas import CheckBulkResponse, StockAdjust, StockCheckItem, StockCheckResult

logger = structlog.get_logger(__name__)

SERVICE_NAME = "inventory"


class InventoryError(Exception):
    """Invalid inventory request (bad adjustment, empty check list, ...)."""


class InventoryNotFound(InventoryError):
    pass


def _merge_lines(items) -> "OrderedDict[str, int]":
    merged: OrderedDict[str, int] = OrderedDict()
    for item in items:
        qty = getattr(item, "qty", None) or getattr(item, "quantity")
        merged[item.product_id] = merged.get(item.product_id, 0) + qty
    return merged


class InventoryService:

    @staticmethod
    async def check_bulk(db: AsyncSession, items: list[StockCheckItem]) -> CheckBulkResponse:
        """Read-only availability check used synchronously by order creation."""
        if not items:
            raise InventoryError("Items to check cannot be empty")

        requested = _merge_lines(items)
        records = await InventoryRepository.get_items(db, list(requested))

        results = []
        for product_id, qty in requested.items():
            record = records.get(product_id)
            available = record.available_quantity if record else 0
            if record is None:
                reason = "not_stocked"
            elif available < qty:
                reason = "insufficient_stock"
            else:
                reason = "ok"
            if reason != "ok":
                logger.warning("stock_check_failed", product_id=product_id, needed=qty, available=available)
            results.append(StockCheckResult(
                product_id=product_id,
                requested=qty,
                available_quantity=available,
                available=reason == "ok",
                reason=reason,
            ))

        return CheckBulkResponse(all_available=all(r.available for r in results), items=results)

    @staticmethod
    async def reserve(db: AsyncSession, order_id: str, items, ctx: CorrelationContext) -> Reservation:
        """Hold stock for an order, all lines or none. Idempotent per orderId."""
        existing = await InventoryRepository.get_reservation(db, order_id, lock=True)
        if existing is not None:
            logger.info("reservation_already_recorded", order_id=order_id, status=existing.status)
            fulfil_reservations_total.labels(outcome="noop").inc()
            return existing

        requested = _merge_lines(items)
        locked = await InventoryRepository.lock_items(db, list(requested))

        shortages = []
        for product_id, qty in requested.items():
            record = locked.get(product_id)
            if record is None:
                shortages.append(f"{product_id}: not stocked")
            elif record.available_quantity < qty:
                shortages.append(f"{product_id}: needed {qty}, available {record.available_quantity}")

        lines = [ReservationLine(product_id=pid, quantity=qty) for pid, qty in requested.items()]

        if shortages:
            reason = "Insufficient stock or product not found: " + "; ".join(shortages)
            reservation = await InventoryRepository.add_reservation(
                db, Reservation(order_id=order_id, status="failed", failure_reason=reason, lines=lines)
            )
            enqueue(db, contracts.INVENTORY_RESERVATION_FAILED, contracts.ReservationFailed(
                order_id=order_id,
                reason=reason,
                items=[contracts.LineItem(product_id=pid, qty=qty) for pid, qty in requested.items()],
            ), source=SERVICE_NAME, ctx=ctx)
            fulfil_reservations_total.labels(outcome="failed").inc()
            logger.error("stock_reservation_failed", order_id=order_id, reason=reason)
            return reservation

        for product_id, qty in requested.items():
            if not await InventoryRepository.reserve_if_available(db, product_id, qty):
                # Rows are locked above, so this only happens without row locks; let the consumer retry
                raise InventoryError(f"Concurrent stock change while reserving {product_id} for {order_id}")

        reservation = await InventoryRepository.add_reservation(
            db, Reservation(order_id=order_id, status="active", lines=lines)
        )

        for product_id in requested:
            record = locked[product_id]
            await db.refresh(record)
            if record.is_low_stock:
                enqueue(db, contracts.INVENTORY_LOW_STOCK, contracts.LowStock(
                    product_id=product_id,
                    available_quantity=record.available_quantity,
                    threshold=record.low_stock_threshold,
                ), source=SERVICE_NAME, ctx=ctx)
                logger.warning("low_stock", product_id=product_id, available=record.available_quantity)

        fulfil_reservations_total.labels(outcome="reserved").inc()
        logger.info("stock_reserved", order_id=order_id, lines=len(lines))
        return reservation

    @staticmethod
    async def release(db: AsyncSession, order_id: str, ctx: CorrelationContext) -> Reservation:
        """Give back what the order holds. Releasing twice, or releasing an
        unknown order, changes nothing."""
        reservation = await InventoryRepository.get_reservation(db, order_id, lock=True)

        if reservation is None:
            # Release overtook its reserve command; the tombstone makes the late reserve a no-op
            logger.warning("release_before_reservation", order_id=order_id)
            fulfil_reservations_total.labels(outcome="noop").inc()
            return await InventoryRepository.add_reservation(
                db, Reservation(order_id=order_id, status="released", failure_reason="released before reserve")
            )

        if reservation.status not in ("active", "committed"):
            logger.info("release_noop", order_id=order_id, status=reservation.status)
            fulfil_reservations_total.labels(outcome="noop").inc()
            return reservation

        locked = await InventoryRepository.lock_items(db, [line.product_id for line in reservation.lines])
        for line in reservation.lines:
            record = locked.get(line.product_id)
            if record is None:
                logger.critical("release_item_missing", order_id=order_id, product_id=line.product_id)
                continue
            if reservation.status == "active":
                record.reserved_quantity = max(0, record.reserved_quantity - line.quantity)
            else:
                record.stock_quantity += line.quantity

        previous = reservation.status
        reservation.status = "released"
        await db.flush()
        fulfil_reservations_total.labels(outcome="released").inc()
        logger.info("stock_released", order_id=order_id, previous_status=previous)
        return reservation

    @staticmethod
    async def commit(db: AsyncSession, order_id: str, ctx: CorrelationContext):
        """Turn an active reservation into a real stock decrement once the goods ship."""
        reservation = await InventoryRepository.get_reservation(db, order_id, lock=True)
        if reservation is None or reservation.status != "active":
            logger.info("commit_noop", order_id=order_id,
                        status=reservation.status if reservation else None)
            fulfil_reservations_total.labels(outcome="noop").inc()
            return reservation

        locked = await InventoryRepository.lock_items(db, [line.product_id for line in reservation.lines])
        for line in reservation.lines:
            record = locked.get(line.product_id)
            if record is None:
                logger.critical("commit_item_missing", order_id=order_id, product_id=line.product_id)
                continue
            record.stock_quantity = max(0, record.stock_quantity - line.quantity)
            record.reserved_quantity = max(0, record.reserved_quantity - line.quantity)

        reservation.status = "committed"
        await db.flush()
        fulfil_reservations_total.labels(outcome="committed").inc()
        logger.info("stock_committed", order_id=order_id)
        return reservation

    @staticmethod
    async def get_item(db: AsyncSession, product_id: str) -> InventoryItem:
        item = await InventoryRepository.get_item(db, product_id)
        if item is None:
            raise InventoryNotFound(f"No inventory record for product {product_id}")
        return item

    @staticmethod
    async def adjust_stock(db: AsyncSession, product_id: str, data: StockAdjust) -> InventoryItem:
        item = await InventoryRepository.get_item(db, product_id)
        if item is None:
            item = InventoryItem(product_id=product_id, stock_quantity=0, reserved_quantity=0)

        if data.new_stock is not None:
            new_stock = data.new_stock
        elif data.adjustment is not None:
            new_stock = item.stock_quantity + data.adjustment
        else:
            new_stock = item.stock_quantity

        if new_stock < 0:
            raise InventoryError(f"Stock for {product_id} cannot go below zero")
        if new_stock < item.reserved_quantity:
            raise InventoryError(
                f"Stock for {product_id} cannot drop below the {item.reserved_quantity} units currently reserved"
            )

        item.stock_quantity = new_stock
        if data.low_stock_threshold is not None:
            item.low_stock_threshold = data.low_stock_threshold

        item = await InventoryRepository.save_item(db, item)
        logger.info("stock_adjusted", product_id=product_id, stock=item.stock_quantity)
        return item
