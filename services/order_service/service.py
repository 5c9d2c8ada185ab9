import math
import uuid
from collections import OrderedDict

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import utcnow
from shared.messaging import contracts
from shared.messaging.outbox import enqueue
from shared.observability.correlation import CorrelationContext
from shared.observability.metrics import (
    fulfil_compensations_total,
    fulfil_order_rejections_total,
    fulfil_order_transitions_total,
    fulfil_orders_created_total,
)

from .catalog_client import CatalogClient
from .errors import (
    EmptyCart,
    InsufficientStock,
    InvalidTransition,
    NotCancellable,
    OrderNotFound,
    ProductUnavailable,
)
from .models import Order, OrderItem, OrderStatusEntry
from .pricing import PricedLine, compute_totals
from .repository import OrderRepository
from .schemas import OrderCreate
from .state_machine import ORDER_STATUSES, assert_can_transition, is_cancellable, path_to

logger = structlog.get_logger(__name__)

SERVICE_NAME = "order"

# Order numbers are a per-day sequence; two concurrent creations can pick the same one
_ORDER_NUMBER_ATTEMPTS = 3

_STATUS_TIMESTAMPS = {
    "confirmed": "confirmed_at",
    "shipped": "shipped_at",
    "delivered": "delivered_at",
    "cancelled": "cancelled_at",
}


def _transition(db: AsyncSession, order: Order, new_status: str, actor: str, ctx: CorrelationContext,
                note: str | None = None):
    assert_can_transition(order.status, new_status)
    order.status = new_status
    order.status_history.append(OrderStatusEntry(status=new_status, actor=actor, note=note))
    stamp = _STATUS_TIMESTAMPS.get(new_status)
    if stamp and getattr(order, stamp) is None:
        setattr(order, stamp, utcnow())
    fulfil_order_transitions_total.labels(to_status=new_status).inc()

    enqueue(db, contracts.ORDER_STATUS_UPDATED, contracts.OrderStatusUpdated(
        order_id=order.id, status=new_status, user_id=order.user_id,
    ), source=SERVICE_NAME, ctx=ctx)
    if new_status == "confirmed":
        enqueue(db, contracts.ORDER_CONFIRMED, contracts.OrderConfirmed(
            order_id=order.id,
            user_id=order.user_id,
            shipping_address=order.shipping_address,
            shipping_cost=order.shipping_cost,
        ), source=SERVICE_NAME, ctx=ctx)
    logger.info("order_status_changed", order_id=order.id, status=new_status, actor=actor)


def _emit_compensation(db: AsyncSession, order: Order, queue: str, payload, ctx: CorrelationContext):
    """Stage one compensating command. A failure here is logged and counted but
    never undoes the cancellation or blocks the other compensations."""
    try:
        enqueue(db, queue, payload, source=SERVICE_NAME, ctx=ctx)
    except Exception as e:
        fulfil_compensations_total.labels(command=queue, outcome="failed").inc()
        logger.critical("compensation_not_emitted", order_id=order.id, order_number=order.order_number,
                        command=queue, error=str(e))
        return False
    fulfil_compensations_total.labels(command=queue, outcome="enqueued").inc()
    return True


def _request_refund(db: AsyncSession, order: Order, ctx: CorrelationContext):
    return _emit_compensation(db, order, contracts.PAYMENT_REFUND, contracts.PaymentRefund(
        order_id=order.id, amount=order.total,
    ), ctx)


def _apply_cancellation(db: AsyncSession, order: Order, reason: str, actor: str, ctx: CorrelationContext):
    _transition(db, order, "cancelled", actor, ctx, note=reason)
    order.cancellation_reason = reason

    _emit_compensation(db, order, contracts.PRODUCT_STOCK_INCREASE, contracts.StockIncrease(
        order_id=order.id,
        items=[contracts.LineItem(product_id=i.product_id, qty=i.quantity) for i in order.items],
    ), ctx)
    if order.payment_status == "completed":
        _request_refund(db, order, ctx)
    _emit_compensation(db, order, contracts.ORDER_CANCELLED, contracts.OrderCancelled(
        order_id=order.id, reason=reason,
    ), ctx)
    _emit_compensation(db, order, contracts.NOTIFICATION_ORDER_CANCELLED, contracts.OrderCancelledNotification(
        order_id=order.id, user_email=order.user_email, order_number=order.order_number, reason=reason,
    ), ctx)


async def _load_for_update(db: AsyncSession, order_id: str) -> Order:
    order = await OrderRepository.get_order(db, order_id, lock=True)
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")
    return order


class OrderService:

    # --- customer / admin operations -------------------------------------------------

    @staticmethod
    async def create_order(db: AsyncSession, data: OrderCreate, ctx: CorrelationContext,
                           catalog: CatalogClient) -> Order:
        """Validate against catalog and stock, price, persist as pending and
        stage inventory.reserve + payment.process.

        Raises EmptyCart, ProductUnavailable, InsufficientStock or
        DependencyUnavailable; nothing is persisted or published in that case.
        """
        try:
            return await OrderService._create_order(db, data, ctx, catalog)
        except (EmptyCart, ProductUnavailable, InsufficientStock) as e:
            fulfil_order_rejections_total.labels(reason=e.code).inc()
            logger.warning("order_rejected", code=e.code, reason=e.message, details=e.details)
            raise
        except Exception as e:
            fulfil_order_rejections_total.labels(reason=getattr(e, "code", type(e).__name__)).inc()
            raise

    @staticmethod
    async def _create_order(db, data, ctx, catalog):
        if not data.items:
            raise EmptyCart("Cart cannot be empty")

        quantities: OrderedDict[str, int] = OrderedDict()
        for item in data.items:
            quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity

        products = await catalog.fetch_products(list(quantities), ctx)
        missing = [pid for pid in quantities if pid not in products]
        inactive = [pid for pid in quantities if pid in products and not products[pid].active]
        if missing or inactive:
            raise ProductUnavailable(
                "Some products are missing or inactive",
                details=[{"productId": pid, "reason": "not_found"} for pid in missing]
                + [{"productId": pid, "reason": "inactive"} for pid in inactive],
            )

        stock = await catalog.check_stock(quantities, ctx)
        if not stock.all_available:
            raise InsufficientStock("Insufficient stock for some items", details=stock.unavailable)

        lines = [
            PricedLine(
                product_id=pid,
                name=products[pid].name,
                quantity=qty,
                price=products[pid].price,
                discount_price=products[pid].discount_price,
            )
            for pid, qty in quantities.items()
        ]
        if data.coupon_code:
            logger.warning("coupon_not_applied", coupon_code=data.coupon_code)
        totals = compute_totals(lines)

        shipping_address = data.shipping_address.model_dump(by_alias=True)
        billing_address = (data.billing_address.model_dump(by_alias=True)
                           if data.billing_address else shipping_address)

        for attempt in range(1, _ORDER_NUMBER_ATTEMPTS + 1):
            order = Order(
                id=str(uuid.uuid4()),
                status="pending",
                payment_status="pending",
                order_number=await OrderRepository.next_order_number(db, utcnow().date()),
                user_id=data.user_id,
                user_email=data.user_email,
                subtotal=totals.subtotal,
                tax=totals.tax,
                shipping_cost=totals.shipping_cost,
                discount=totals.discount,
                total=totals.total,
                coupon_code=data.coupon_code,
                shipping_address=shipping_address,
                billing_address=billing_address,
                payment_method=data.payment_method,
                notes=data.notes,
                total_refunded=0.0,
                items=[
                    OrderItem(product_id=l.product_id, name=l.name, quantity=l.quantity, price=l.price,
                              discount_price=l.discount_price, unit_price=l.unit_price)
                    for l in lines
                ],
                status_history=[OrderStatusEntry(status="pending", actor=data.user_id, note="Order placed")],
            )
            try:
                await OrderRepository.add(db, order)
            except IntegrityError:
                await db.rollback()
                if attempt == _ORDER_NUMBER_ATTEMPTS:
                    raise
                logger.warning("order_number_collision", attempt=attempt)
                continue

            enqueue(db, contracts.INVENTORY_RESERVE, contracts.InventoryReserve(
                order_id=order.id,
                items=[contracts.LineItem(product_id=l.product_id, qty=l.quantity) for l in lines],
            ), source=SERVICE_NAME, ctx=ctx)
            enqueue(db, contracts.PAYMENT_PROCESS, contracts.PaymentProcess(
                order_id=order.id,
                user_id=order.user_id,
                total_amount=order.total,
                payment_method=order.payment_method,
            ), source=SERVICE_NAME, ctx=ctx)
            enqueue(db, contracts.NOTIFICATION_ORDER_CREATED, contracts.OrderCreatedNotification(
                order_id=order.id,
                user_email=order.user_email,
                order_number=order.order_number,
                total=order.total,
            ), source=SERVICE_NAME, ctx=ctx)
            await db.commit()
            break

        fulfil_orders_created_total.inc()
        logger.info("order_created", order_id=order.id, order_number=order.order_number,
                    total=order.total, shipping_cost=order.shipping_cost)
        return order

    @staticmethod
    async def get_order(db: AsyncSession, order_id: str) -> Order:
        order = await OrderRepository.get_order(db, order_id)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        return order

    @staticmethod
    async def list_orders(db: AsyncSession, *, user_id=None, status=None, payment_status=None,
                          page: int = 1, limit: int = 10) -> dict:
        orders, total = await OrderRepository.list_orders(
            db, user_id=user_id, status=status, payment_status=payment_status,
            offset=(page - 1) * limit, limit=limit,
        )
        total_pages = math.ceil(total / limit) if limit else 0
        return {
            "orders": orders,
            "pagination": {
                "total": total,
                "page": page,
                "limit": limit,
                "total_pages": total_pages,
                "has_next_page": page < total_pages,
                "has_prev_page": page > 1,
            },
        }

    @staticmethod
    async def statistics(db: AsyncSession) -> dict:
        rows = await OrderRepository.status_breakdown(db)
        total_orders = sum(count for _, count, _ in rows)
        total_revenue = round(sum(revenue for _, _, revenue in rows), 2)
        return {
            "total_orders": total_orders,
            "total_revenue": total_revenue,
            "average_order_value": round(total_revenue / total_orders, 2) if total_orders else 0.0,
            "status_breakdown": [
                {"status": status, "count": count, "total_revenue": round(revenue, 2)}
                for status, count, revenue in rows
            ],
        }

    @staticmethod
    async def cancel_order(db: AsyncSession, order_id: str, reason: str | None, actor: str,
                           ctx: CorrelationContext) -> Order:
        """Cancel while pending/confirmed/processing, releasing stock and
        refunding a completed payment."""
        order = await _load_for_update(db, order_id)
        if not is_cancellable(order.status):
            raise NotCancellable(f"Order {order.order_number} cannot be cancelled in status '{order.status}'")

        _apply_cancellation(db, order, reason or "Cancelled at customer request", actor, ctx)
        await db.commit()
        logger.info("order_cancelled", order_id=order.id, actor=actor)
        return order

    @staticmethod
    async def update_status(db: AsyncSession, order_id: str, new_status: str, actor: str,
                            ctx: CorrelationContext, note: str | None = None,
                            tracking_number: str | None = None, carrier: str | None = None) -> Order:
        """Admin-driven move along one edge of the lifecycle graph."""
        if new_status not in ORDER_STATUSES:
            raise InvalidTransition(f"Unknown order status '{new_status}'")

        order = await _load_for_update(db, order_id)
        if new_status == "refunded":
            # Only an observed payment.refunded may take this edge
            raise InvalidTransition(
                f"Order {order.order_number} becomes refunded when the payment ledger reports the refund"
            )
        if new_status == "cancelled":
            if not is_cancellable(order.status):
                raise NotCancellable(f"Order {order.order_number} cannot be cancelled in status '{order.status}'")
            _apply_cancellation(db, order, note or "Cancelled by administrator", actor, ctx)
        else:
            _transition(db, order, new_status, actor, ctx, note=note)
            if new_status == "shipped":
                order.tracking_number = tracking_number or order.tracking_number
                order.carrier = carrier or order.carrier

        await db.commit()
        return order

    # --- reconciliation from outcome events (consumer path, caller commits) -----------

    @staticmethod
    async def on_payment_completed(db: AsyncSession, event: contracts.PaymentCompleted, ctx: CorrelationContext):
        order = await OrderRepository.get_order(db, event.order_id, lock=True)
        if order is None:
            logger.critical("payment_for_unknown_order", order_id=event.order_id)
            return

        order.transaction_id = event.transaction_id
        if order.status == "pending":
            order.payment_status = "completed"
            _transition(db, order, "confirmed", "payment-service", ctx, note="Payment completed")
        elif order.status in ("cancelled", "refunded"):
            if order.payment_status in ("pending", "failed"):
                # The charge landed after the order was cancelled: give the money back
                order.payment_status = "completed"
                logger.warning("late_payment_on_cancelled_order", order_id=order.id)
                _request_refund(db, order, ctx)
            else:
                logger.info("payment_completed_already_recorded", order_id=order.id)
        else:
            order.payment_status = "completed"
            logger.info("payment_completed_duplicate", order_id=order.id, status=order.status)

    @staticmethod
    async def on_payment_failed(db: AsyncSession, event: contracts.PaymentFailed, ctx: CorrelationContext):
        order = await OrderRepository.get_order(db, event.order_id, lock=True)
        if order is None:
            logger.critical("payment_for_unknown_order", order_id=event.order_id)
            return

        if order.status == "pending":
            order.payment_status = "failed"
            _apply_cancellation(db, order, f"Payment failed: {event.reason}", "payment-service", ctx)
        elif order.status in ("cancelled", "refunded"):
            if order.payment_status == "pending":
                order.payment_status = "failed"
            logger.info("payment_failed_on_cancelled_order", order_id=order.id)
        else:
            logger.critical("payment_failed_after_confirmation", order_id=order.id, status=order.status)

    @staticmethod
    async def on_reservation_failed(db: AsyncSession, event: contracts.ReservationFailed, ctx: CorrelationContext):
        order = await OrderRepository.get_order(db, event.order_id, lock=True)
        if order is None:
            logger.critical("reservation_failed_for_unknown_order", order_id=event.order_id)
            return

        if is_cancellable(order.status):
            _apply_cancellation(db, order, f"Stock reservation failed: {event.reason}", "inventory-service", ctx)
        elif order.status in ("cancelled", "refunded"):
            logger.info("reservation_failed_on_cancelled_order", order_id=order.id)
        else:
            logger.critical("reservation_failed_after_shipping", order_id=order.id, status=order.status)

    @staticmethod
    async def on_shipping_status(db: AsyncSession, event: contracts.ShippingStatusUpdated, ctx: CorrelationContext):
        order = await OrderRepository.get_order(db, event.order_id, lock=True)
        if order is None:
            logger.critical("shipping_update_for_unknown_order", order_id=event.order_id)
            return

        if order.status in ("cancelled", "refunded"):
            logger.warning("shipping_update_not_actionable", order_id=order.id,
                           order_status=order.status, shipping_status=event.new_status)
            return
        if event.new_status == "failed":
            if not is_cancellable(order.status):
                logger.critical("shipment_failed_after_dispatch", order_id=order.id,
                                order_status=order.status, reason=event.reason)
                return
            # The failed shipment is frozen and will never be rebooked: unwind the order
            logger.error("shipment_failed", order_id=order.id, reason=event.reason)
            _apply_cancellation(db, order, f"Shipment failed: {event.reason or 'carrier rejected'}",
                                "shipping-service", ctx)
            return
        if order.status == "pending":
            # Not paid as far as this order knows; payment.completed will confirm it
            logger.info("shipping_update_before_confirmation", order_id=order.id,
                        shipping_status=event.new_status)
            return

        steps = path_to(order.status, event.new_status)
        if not steps:
            logger.info("shipping_update_ignored", order_id=order.id,
                        order_status=order.status, shipping_status=event.new_status)
            return

        if event.tracking_number:
            order.tracking_number = event.tracking_number
        if event.carrier:
            order.carrier = event.carrier
        for step in steps:
            _transition(db, order, step, "shipping-service", ctx, note=f"Shipment {event.new_status}")

    @staticmethod
    async def on_payment_refunded(db: AsyncSession, event: contracts.PaymentRefunded, ctx: CorrelationContext):
        order = await OrderRepository.get_order(db, event.order_id, lock=True)
        if order is None:
            logger.critical("refund_for_unknown_order", order_id=event.order_id)
            return

        # Partial refunds can arrive out of order; totals only grow
        order.total_refunded = max(order.total_refunded or 0.0, event.total_refunded)
        if order.total_refunded < order.total - 0.005:
            logger.info("partial_refund_recorded", order_id=order.id, total_refunded=order.total_refunded)
            return

        order.payment_status = "refunded"
        if order.status == "cancelled":
            _transition(db, order, "refunded", "payment-service", ctx,
                        note=f"Refunded {order.total_refunded:.2f}")
        logger.info("order_refunded", order_id=order.id, total_refunded=order.total_refunded)

    @staticmethod
    async def on_refund_failed(db: AsyncSession, event: contracts.PaymentRefundFailed, ctx: CorrelationContext):
        fulfil_compensations_total.labels(command=contracts.PAYMENT_REFUND, outcome="rejected").inc()
        logger.critical("refund_failed_manual_intervention", order_id=event.order_id,
                        amount=event.amount, reason=event.reason)
