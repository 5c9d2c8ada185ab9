from shared.messaging import contracts
from shared.messaging.consumer import Subscription

from .service import InventoryService


async def on_reserve(db, payload: contracts.InventoryReserve, ctx):
    await InventoryService.reserve(db, payload.order_id, payload.items, ctx)


async def on_stock_increase(db, payload: contracts.StockIncrease, ctx):
    # The reservation's own lines are authoritative; payload.items is informational
    await InventoryService.release(db, payload.order_id, ctx)


async def on_shipping_status(db, payload: contracts.ShippingStatusUpdated, ctx):
    if payload.new_status == "shipped":
        await InventoryService.commit(db, payload.order_id, ctx)


SUBSCRIPTIONS = [
    Subscription(contracts.INVENTORY_RESERVE, on_reserve, prefetch=1, requeue_on_error=True),
    Subscription(contracts.PRODUCT_STOCK_INCREASE, on_stock_increase, prefetch=5, requeue_on_error=True),
    Subscription(contracts.SHIPPING_STATUS_UPDATED, on_shipping_status, prefetch=5, requeue_on_error=True),
]
