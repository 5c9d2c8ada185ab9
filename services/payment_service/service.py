import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import settings
from shared.config.database import utcnow
from shared.messaging import contracts
from shared.messaging.outbox import enqueue
from shared.observability.correlation import CorrelationContext
from shared.observability.metrics import fulfil_payments_total, fulfil_refunds_total

from .gateway import ChargeResult, RefundResult, get_gateway
from .models import Payment
from .repository import PaymentRepository

logger = structlog.get_logger(__name__)

SERVICE_NAME = "payment"

TERMINAL_STATUSES = ("completed", "failed", "refunded", "cancelled")

# Float money columns; anything under half a cent is treated as fully covered
_CENT = 0.005


class PaymentNotFound(Exception):
    pass


def _record_completed(db: AsyncSession, payment: Payment, result: ChargeResult, ctx: CorrelationContext):
    """Stage payment.completed, then mark the row. Raises before touching the
    row or the session when the gateway's answer cannot be announced."""
    transaction_id = "" if result.transaction_id is None else str(result.transaction_id).strip()
    if not transaction_id:
        raise ValueError("gateway reported success without a transaction id")

    completed_at = utcnow()
    enqueue(db, contracts.PAYMENT_COMPLETED, contracts.PaymentCompleted(
        order_id=payment.order_id,
        transaction_id=transaction_id,
        amount=payment.amount,
        payment_method=payment.payment_method,
        payment_date=completed_at,
    ), source=SERVICE_NAME, ctx=ctx)
    payment.status = "completed"
    payment.transaction_id = transaction_id
    payment.completed_at = completed_at
    fulfil_payments_total.labels(outcome="completed").inc()
    logger.info("payment_completed", order_id=payment.order_id, transaction_id=transaction_id)


class PaymentService:

    @staticmethod
    async def process(db: AsyncSession, data: contracts.PaymentProcess, ctx: CorrelationContext) -> Payment:
        """Charge an order exactly once and announce the outcome.

        A payment that already reached a terminal state short-circuits. One
        left `pending` by a crash is resumed with its original idempotency key.
        """
        payment = await PaymentRepository.get_by_order(db, data.order_id, lock=True)

        if payment is not None and payment.status in TERMINAL_STATUSES:
            logger.info("payment_already_processed", order_id=data.order_id, status=payment.status)
            return payment

        gateway = get_gateway()
        if payment is None:
            payment = await PaymentRepository.create_payment(db, Payment(
                order_id=data.order_id,
                user_id=data.user_id,
                amount=round(data.total_amount, 2),
                currency=settings.CURRENCY,
                payment_method=data.payment_method,
                status="pending",
                gateway=gateway.name,
                refunded_amount=0.0,
                idempotency_key=f"charge-{data.order_id}",
            ))
        else:
            logger.warning("resuming_pending_payment", order_id=data.order_id)

        try:
            result = await gateway.charge(
                order_id=payment.order_id,
                amount=payment.amount,
                currency=payment.currency,
                payment_method=payment.payment_method,
                idempotency_key=payment.idempotency_key,
            )
        except Exception as e:
            # The order must hear back even when the gateway blew up
            logger.exception("payment_gateway_error", order_id=data.order_id)
            result = ChargeResult(success=False, gateway_status="error", failure_reason=f"Gateway error: {e}")

        payment.gateway_response = result.gateway_response or None
        if result.success:
            try:
                _record_completed(db, payment, result, ctx)
            except Exception as e:
                # Money may have moved; the order still has to hear that this charge is not usable
                logger.critical("charge_outcome_not_recorded", order_id=payment.order_id,
                                transaction_id=result.transaction_id, exc_info=True)
                result = ChargeResult(success=False, gateway_status="error",
                                      failure_reason=f"Charge could not be recorded: {e}")

        if not result.success:
            payment.status = "failed"
            payment.failure_reason = result.failure_reason or "Payment declined"
            enqueue(db, contracts.PAYMENT_FAILED, contracts.PaymentFailed(
                order_id=payment.order_id,
                reason=payment.failure_reason,
                amount=payment.amount,
                payment_method=payment.payment_method,
            ), source=SERVICE_NAME, ctx=ctx)
            fulfil_payments_total.labels(outcome="failed").inc()
            logger.warning("payment_failed", order_id=payment.order_id, reason=payment.failure_reason)

        await db.flush()
        return payment

    @staticmethod
    async def refund(db: AsyncSession, data: contracts.PaymentRefund, ctx: CorrelationContext):
        """Refund up to what is still refundable on a completed payment.

        Asking for more than the remainder refunds the remainder; nothing left
        to refund is a warning, not an error.
        """
        payment = await PaymentRepository.get_by_order(db, data.order_id, lock=True)

        if payment is None:
            logger.error("refund_for_unknown_payment", order_id=data.order_id)
            enqueue(db, contracts.PAYMENT_REFUND_FAILED, contracts.PaymentRefundFailed(
                order_id=data.order_id, amount=data.amount or 0.0, reason="Payment not found",
            ), source=SERVICE_NAME, ctx=ctx)
            fulfil_refunds_total.labels(outcome="failed").inc()
            return None

        if payment.status != "completed":
            logger.warning("refund_not_applicable", order_id=data.order_id, status=payment.status)
            fulfil_refunds_total.labels(outcome="noop").inc()
            return payment

        remaining = round(payment.amount - payment.refunded_amount, 2)
        requested = remaining if data.amount is None else data.amount
        refund_amount = round(min(requested, remaining), 2)
        if refund_amount <= 0:
            logger.warning("nothing_to_refund", order_id=data.order_id,
                           amount=payment.amount, refunded=payment.refunded_amount)
            fulfil_refunds_total.labels(outcome="noop").inc()
            return payment

        # Same command redelivered -> same key -> the gateway does not refund twice
        idempotency_key = f"refund-{ctx.causation_id or uuid.uuid4()}"
        try:
            result = await get_gateway().refund(
                transaction_id=payment.transaction_id,
                amount=refund_amount,
                idempotency_key=idempotency_key,
                reason="order cancelled",
            )
        except Exception as e:
            logger.exception("refund_gateway_error", order_id=data.order_id)
            result = RefundResult(success=False, gateway_status="error", failure_reason=f"Gateway error: {e}")

        if not result.success:
            enqueue(db, contracts.PAYMENT_REFUND_FAILED, contracts.PaymentRefundFailed(
                order_id=payment.order_id,
                amount=refund_amount,
                reason=result.failure_reason or "Refund rejected",
            ), source=SERVICE_NAME, ctx=ctx)
            fulfil_refunds_total.labels(outcome="failed").inc()
            logger.error("refund_failed", order_id=payment.order_id, reason=result.failure_reason)
            await db.flush()
            return payment

        payment.refunded_amount = round(payment.refunded_amount + refund_amount, 2)
        payment.refund_transaction_id = result.refund_transaction_id
        fully_refunded = payment.refunded_amount >= payment.amount - _CENT
        if fully_refunded:
            payment.status = "refunded"

        enqueue(db, contracts.PAYMENT_REFUNDED, contracts.PaymentRefunded(
            order_id=payment.order_id,
            refund_amount=refund_amount,
            total_refunded=payment.refunded_amount,
            refund_transaction_id=result.refund_transaction_id,
            original_transaction_id=payment.transaction_id,
        ), source=SERVICE_NAME, ctx=ctx)
        fulfil_refunds_total.labels(outcome="refunded" if fully_refunded else "partial").inc()
        logger.info("refund_completed", order_id=payment.order_id, refund_amount=refund_amount,
                    total_refunded=payment.refunded_amount)
        await db.flush()
        return payment

    @staticmethod
    async def get_payment(db: AsyncSession, order_id: str) -> Payment:
        payment = await PaymentRepository.get_by_order(db, order_id)
        if payment is None:
            raise PaymentNotFound(f"No payment recorded for order {order_id}")
        return payment
