from shared.messaging import contracts
from shared.messaging.consumer import Subscription

from .service import ShippingService


async def on_order_confirmed(db, payload: contracts.OrderConfirmed, ctx):
    await ShippingService.initiate(
        db, payload.order_id, ctx,
        user_id=payload.user_id,
        shipping_address=payload.shipping_address,
        shipping_cost=payload.shipping_cost,
    )


async def on_payment_completed(db, payload: contracts.PaymentCompleted, ctx):
    await ShippingService.initiate(db, payload.order_id, ctx)


async def on_order_cancelled(db, payload: contracts.OrderCancelled, ctx):
    await ShippingService.cancel(db, payload.order_id, payload.reason, ctx)


SUBSCRIPTIONS = [
    Subscription(contracts.ORDER_CONFIRMED, on_order_confirmed, prefetch=1, requeue_on_error=True),
    Subscription(contracts.PAYMENT_COMPLETED, on_payment_completed, prefetch=1, requeue_on_error=True),
    Subscription(contracts.ORDER_CANCELLED, on_order_cancelled, prefetch=5, requeue_on_error=True),
]
