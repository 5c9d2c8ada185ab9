from shared.messaging import contracts
from shared.messaging.consumer import Subscription

from .service import OrderService

SUBSCRIPTIONS = [
    Subscription(contracts.PAYMENT_COMPLETED, OrderService.on_payment_completed, prefetch=1, requeue_on_error=True),
    Subscription(contracts.PAYMENT_FAILED, OrderService.on_payment_failed, prefetch=1, requeue_on_error=True),
    Subscription(contracts.INVENTORY_RESERVATION_FAILED, OrderService.on_reservation_failed,
                 prefetch=1, requeue_on_error=True),
    Subscription(contracts.SHIPPING_STATUS_UPDATED, OrderService.on_shipping_status, prefetch=1, requeue_on_error=True),
    Subscription(contracts.PAYMENT_REFUNDED, OrderService.on_payment_refunded, prefetch=5, requeue_on_error=True),
    Subscription(contracts.PAYMENT_REFUND_FAILED, OrderService.on_refund_failed, prefetch=5, requeue_on_error=True),
]
