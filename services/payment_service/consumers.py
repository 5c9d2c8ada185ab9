from shared.messaging import contracts
from shared.messaging.consumer import Subscription

from .service import PaymentService


async def on_process(db, payload: contracts.PaymentProcess, ctx):
    await PaymentService.process(db, payload, ctx)


async def on_refund(db, payload: contracts.PaymentRefund, ctx):
    await PaymentService.refund(db, payload, ctx)


SUBSCRIPTIONS = [
    Subscription(contracts.PAYMENT_PROCESS, on_process, prefetch=1, requeue_on_error=True),
    Subscription(contracts.PAYMENT_REFUND, on_refund, prefetch=1, requeue_on_error=True),
]
