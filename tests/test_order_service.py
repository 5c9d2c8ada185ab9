import json

import pytest
from sqlalchemy import select

from conftest import ADDRESS, order_request, stock
from services.order_service.errors import (
    DependencyUnavailable,
    EmptyCart,
    InsufficientStock,
    InvalidTransition,
    NotCancellable,
    OrderNotFound,
    ProductUnavailable,
)
from services.order_service.models import Order
from services.order_service.repository import OrderRepository
from services.order_service.schemas import OrderCreate
from services.order_service.service import OrderService
from shared.messaging import contracts
from shared.messaging.models import OutboxMessage
from shared.observability.correlation import CorrelationContext

CTX = CorrelationContext(correlation_id="corr-order")


async def create(session_factory, catalog, *lines, **overrides):
    async with session_factory() as db:
        return await OrderService.create_order(
            db, OrderCreate.model_validate(order_request(*lines, **overrides)), CTX, catalog,
        )


async def load(session_factory, order_id):
    async with session_factory() as db:
        return await OrderService.get_order(db, order_id)


async def emitted(session_factory, queue=None):
    async with session_factory() as db:
        query = select(OutboxMessage).where(OutboxMessage.source == "order").order_by(OutboxMessage.id)
        if queue:
            query = query.where(OutboxMessage.queue == queue)
        rows = (await db.execute(query)).scalars().all()
    return [json.loads(row.body) for row in rows]


async def handle(session_factory, handler, event):
    async with session_factory() as db:
        await handler(db, event, CTX.caused_by("evt-test"))
        await db.commit()


def payment_completed(order_id):
    return contracts.PaymentCompleted(order_id=order_id, transaction_id="TXN-1", amount=1.0,
                                      payment_method="credit_card", payment_date="2026-01-01T00:00:00Z")


class TestCreateOrder:
    async def test_free_shipping_over_threshold(self, session_factory, catalog):
        await stock(session_factory, p_shoes=5, p_socks=10)

        order = await create(session_factory, catalog, ("p-shoes", 1), ("p-socks", 4))

        assert order.status == "pending"
        assert order.payment_status == "pending"
        assert order.subtotal == 210.0
        assert order.tax == 37.8
        assert order.shipping_cost == 0.0
        assert order.total == 247.8
        assert order.billing_address == order.shipping_address
        assert [(i.product_id, i.unit_price) for i in order.items] == [("p-shoes", 150.0), ("p-socks", 15.0)]

    async def test_flat_shipping_under_threshold(self, session_factory, catalog):
        await stock(session_factory, p_cap=5, p_socks=10)

        order = await create(session_factory, catalog, ("p-cap", 1), ("p-socks", 2))

        assert order.subtotal == 70.0
        assert order.shipping_cost == 29.90
        assert order.total == pytest.approx(112.5)

    async def test_emits_reserve_charge_and_notification(self, session_factory, catalog):
        await stock(session_factory, p_shoes=5)

        order = await create(session_factory, catalog, ("p-shoes", 2))

        envelopes = await emitted(session_factory)
        assert [e["queue"] for e in envelopes] == [
            contracts.INVENTORY_RESERVE,
            contracts.PAYMENT_PROCESS,
            contracts.NOTIFICATION_ORDER_CREATED,
        ]
        assert {e["correlationId"] for e in envelopes} == {"corr-order"}
        assert len({e["eventId"] for e in envelopes}) == 3
        assert envelopes[0]["payload"] == {"orderId": order.id, "items": [{"productId": "p-shoes", "qty": 2}]}
        assert envelopes[1]["payload"]["totalAmount"] == order.total

    async def test_order_numbers_are_sequential_per_day(self, session_factory, catalog):
        await stock(session_factory, p_shoes=5)

        first = await create(session_factory, catalog, ("p-shoes", 1))
        second = await create(session_factory, catalog, ("p-shoes", 1))

        assert first.order_number.startswith("ORD-")
        assert first.order_number.endswith("-0001")
        assert second.order_number.endswith("-0002")

    async def test_order_number_collision_is_retried(self, session_factory, catalog, monkeypatch):
        await stock(session_factory, p_shoes=5)
        first = await create(session_factory, catalog, ("p-shoes", 1))
        numbers = iter([first.order_number, "ORD-20260101-9999"])

        async def next_order_number(db, day):
            return next(numbers)

        monkeypatch.setattr(OrderRepository, "next_order_number", staticmethod(next_order_number))
        second = await create(session_factory, catalog, ("p-shoes", 1))

        assert second.order_number == "ORD-20260101-9999"
        # The rolled-back attempt left no envelopes behind
        assert len(await emitted(session_factory, contracts.PAYMENT_PROCESS)) == 2

    async def test_duplicate_lines_are_merged(self, session_factory, catalog):
        await stock(session_factory, p_shoes=5)

        order = await create(session_factory, catalog, ("p-shoes", 1), ("p-shoes", 2))

        assert [(i.product_id, i.quantity) for i in order.items] == [("p-shoes", 3)]

    async def test_separate_billing_address_is_kept(self, session_factory, catalog):
        await stock(session_factory, p_shoes=5)
        billing = {**ADDRESS, "city": "Ankara", "postalCode": "06000"}

        order = await create(session_factory, catalog, ("p-shoes", 1), billingAddress=billing)

        assert order.billing_address["city"] == "Ankara"
        assert order.shipping_address["city"] == "İstanbul"

    async def test_empty_cart(self, session_factory, catalog, catalog_backend):
        with pytest.raises(EmptyCart):
            await create(session_factory, catalog)
        assert catalog_backend.requests == []
        assert await emitted(session_factory) == []

    async def test_inactive_product(self, session_factory, catalog):
        await stock(session_factory, p_old=5)

        with pytest.raises(ProductUnavailable) as exc:
            await create(session_factory, catalog, ("p-old", 1))

        assert exc.value.details == [{"productId": "p-old", "reason": "inactive"}]
        assert await emitted(session_factory) == []

    async def test_unknown_product(self, session_factory, catalog):
        with pytest.raises(ProductUnavailable) as exc:
            await create(session_factory, catalog, ("p-missing", 1))
        assert exc.value.details[0]["reason"] == "not_found"

    async def test_insufficient_stock(self, session_factory, catalog):
        await stock(session_factory, p_shoes=1)

        with pytest.raises(InsufficientStock) as exc:
            await create(session_factory, catalog, ("p-shoes", 2))

        assert exc.value.status_code == 409
        assert exc.value.details[0]["productId"] == "p-shoes"
        async with session_factory() as db:
            assert (await db.execute(select(Order))).scalars().all() == []

    async def test_dependency_down_persists_nothing(self, session_factory, catalog, catalog_backend):
        catalog_backend.down = True

        with pytest.raises(DependencyUnavailable):
            await create(session_factory, catalog, ("p-shoes", 1))

        assert await emitted(session_factory) == []

    async def test_catalog_calls_carry_internal_key_and_correlation(self, session_factory, catalog,
                                                                     catalog_backend):
        await stock(session_factory, p_shoes=5)

        await create(session_factory, catalog, ("p-shoes", 1))

        for request in catalog_backend.requests:
            assert request.headers["X-Internal-API-Key"] == "test-internal-key"
            assert request.headers["X-Correlation-ID"] == "corr-order"

    async def test_money_fields_frozen_after_pending(self, session_factory, catalog):
        await stock(session_factory, p_shoes=5)
        order = await create(session_factory, catalog, ("p-shoes", 1))
        await handle(session_factory, OrderService.on_payment_completed, payment_completed(order.id))

        confirmed = await load(session_factory, order.id)
        with pytest.raises(ValueError, match="immutable"):
            confirmed.total = 1.0


class TestCancelOrder:
    @pytest.fixture
    async def order(self, session_factory, catalog):
        await stock(session_factory, p_shoes=5)
        return await create(session_factory, catalog, ("p-shoes", 2))

    async def cancel(self, session_factory, order_id, reason="Changed my mind"):
        async with session_factory() as db:
            return await OrderService.cancel_order(db, order_id, reason, "user-1", CTX)

    async def test_cancel_pending_releases_without_refund(self, session_factory, order):
        cancelled = await self.cancel(session_factory, order.id)

        assert cancelled.status == "cancelled"
        assert cancelled.cancellation_reason == "Changed my mind"
        assert cancelled.cancelled_at is not None
        queues = [e["queue"] for e in await emitted(session_factory)][3:]
        assert contracts.PRODUCT_STOCK_INCREASE in queues
        assert contracts.ORDER_CANCELLED in queues
        assert contracts.NOTIFICATION_ORDER_CANCELLED in queues
        assert contracts.PAYMENT_REFUND not in queues

    async def test_cancel_paid_order_requests_one_refund(self, session_factory, order):
        await handle(session_factory, OrderService.on_payment_completed, payment_completed(order.id))

        await self.cancel(session_factory, order.id)

        refunds = await emitted(session_factory, contracts.PAYMENT_REFUND)
        releases = await emitted(session_factory, contracts.PRODUCT_STOCK_INCREASE)
        assert [r["payload"] for r in refunds] == [{"orderId": order.id, "amount": order.total}]
        assert [r["payload"]["items"] for r in releases] == [[{"productId": "p-shoes", "qty": 2}]]

    @pytest.mark.parametrize("status", ["shipped", "delivered", "cancelled", "refunded"])
    async def test_not_cancellable(self, session_factory, order, status):
        async with session_factory() as db:
            row = await db.get(Order, order.id)
            row.status = status
            await db.commit()

        with pytest.raises(NotCancellable):
            await self.cancel(session_factory, order.id)

    async def test_unknown_order(self, session_factory):
        with pytest.raises(OrderNotFound):
            await self.cancel(session_factory, "ghost")

    async def test_history_records_actor(self, session_factory, order):
        cancelled = await self.cancel(session_factory, order.id)

        assert [(h.status, h.actor) for h in cancelled.status_history] == [
            ("pending", "user-1"), ("cancelled", "user-1"),
        ]


class TestUpdateStatus:
    async def update(self, session_factory, order_id, status, **kwargs):
        async with session_factory() as db:
            return await OrderService.update_status(db, order_id, status, "admin", CTX, **kwargs)

    async def test_admin_walks_the_graph(self, session_factory, catalog):
        await stock(session_factory, p_shoes=5)
        order = await create(session_factory, catalog, ("p-shoes", 1))

        await self.update(session_factory, order.id, "confirmed")
        await self.update(session_factory, order.id, "processing")
        shipped = await self.update(session_factory, order.id, "shipped", tracking_number="TRK1", carrier="MNG Kargo")

        assert shipped.tracking_number == "TRK1"
        assert shipped.carrier == "MNG Kargo"
        assert shipped.shipped_at is not None
        assert len(await emitted(session_factory, contracts.ORDER_CONFIRMED)) == 1
        assert len(await emitted(session_factory, contracts.ORDER_STATUS_UPDATED)) == 3

    async def test_skipping_states_is_rejected(self, session_factory, catalog):
        await stock(session_factory, p_shoes=5)
        order = await create(session_factory, catalog, ("p-shoes", 1))

        with pytest.raises(InvalidTransition):
            await self.update(session_factory, order.id, "delivered")

    async def test_admin_cancel_runs_compensations(self, session_factory, catalog):
        await stock(session_factory, p_shoes=5)
        order = await create(session_factory, catalog, ("p-shoes", 1))

        cancelled = await self.update(session_factory, order.id, "cancelled", note="Fraud check")

        assert cancelled.cancellation_reason == "Fraud check"
        assert len(await emitted(session_factory, contracts.PRODUCT_STOCK_INCREASE)) == 1

    async def test_unknown_status(self, session_factory, catalog):
        with pytest.raises(InvalidTransition):
            await self.update(session_factory, "whatever", "teleported")

    async def test_admin_cannot_mark_refunded(self, session_factory, catalog, gateway):
        await stock(session_factory, p_shoes=5)
        order = await create(session_factory, catalog, ("p-shoes", 1))
        await self.update(session_factory, order.id, "cancelled")

        with pytest.raises(InvalidTransition):
            await self.update(session_factory, order.id, "refunded")

        unchanged = await load(session_factory, order.id)
        assert unchanged.status == "cancelled"
        assert unchanged.payment_status == "pending"
        assert gateway.refunds == []


class TestOutcomeEvents:
    @pytest.fixture
    async def order(self, session_factory, catalog):
        await stock(session_factory, p_shoes=5)
        return await create(session_factory, catalog, ("p-shoes", 2))

    async def test_payment_completed_confirms(self, session_factory, order):
        await handle(session_factory, OrderService.on_payment_completed, payment_completed(order.id))

        confirmed = await load(session_factory, order.id)
        assert confirmed.status == "confirmed"
        assert confirmed.payment_status == "completed"
        assert confirmed.transaction_id == "TXN-1"
        confirmations = await emitted(session_factory, contracts.ORDER_CONFIRMED)
        assert confirmations[0]["payload"]["shippingAddress"]["city"] == "İstanbul"
        assert confirmations[0]["causationId"] == "evt-test"

    async def test_payment_failed_cancels(self, session_factory, order):
        await handle(session_factory, OrderService.on_payment_failed, contracts.PaymentFailed(
            order_id=order.id, reason="Card declined", amount=order.total, payment_method="credit_card",
        ))

        cancelled = await load(session_factory, order.id)
        assert cancelled.status == "cancelled"
        assert cancelled.payment_status == "failed"
        assert "Card declined" in cancelled.cancellation_reason
        assert len(await emitted(session_factory, contracts.PRODUCT_STOCK_INCREASE)) == 1
        assert await emitted(session_factory, contracts.PAYMENT_REFUND) == []

    async def test_reservation_failed_on_paid_order_refunds(self, session_factory, order):
        await handle(session_factory, OrderService.on_payment_completed, payment_completed(order.id))
        await handle(session_factory, OrderService.on_reservation_failed, contracts.ReservationFailed(
            order_id=order.id, reason="Insufficient stock",
        ))

        cancelled = await load(session_factory, order.id)
        assert cancelled.status == "cancelled"
        assert len(await emitted(session_factory, contracts.PAYMENT_REFUND)) == 1

    async def test_late_payment_on_cancelled_order_is_refunded(self, session_factory, order):
        async with session_factory() as db:
            await OrderService.cancel_order(db, order.id, None, "user-1", CTX)

        await handle(session_factory, OrderService.on_payment_completed, payment_completed(order.id))

        cancelled = await load(session_factory, order.id)
        assert cancelled.status == "cancelled"
        assert cancelled.payment_status == "completed"
        assert len(await emitted(session_factory, contracts.PAYMENT_REFUND)) == 1

    async def test_shipping_update_walks_forward(self, session_factory, order):
        await handle(session_factory, OrderService.on_payment_completed, payment_completed(order.id))
        await handle(session_factory, OrderService.on_shipping_status, contracts.ShippingStatusUpdated(
            order_id=order.id, new_status="delivered", tracking_number="TRK000000000001", carrier="Aras Kargo",
        ))

        delivered = await load(session_factory, order.id)
        assert [h.status for h in delivered.status_history] == [
            "pending", "confirmed", "processing", "shipped", "delivered",
        ]
        assert delivered.tracking_number == "TRK000000000001"

    async def test_stale_shipping_update_is_ignored(self, session_factory, order):
        await handle(session_factory, OrderService.on_payment_completed, payment_completed(order.id))
        for status in ("shipped", "processing"):
            await handle(session_factory, OrderService.on_shipping_status, contracts.ShippingStatusUpdated(
                order_id=order.id, new_status=status,
            ))

        assert (await load(session_factory, order.id)).status == "shipped"

    async def test_failed_shipment_cancels_and_refunds(self, session_factory, order):
        await handle(session_factory, OrderService.on_payment_completed, payment_completed(order.id))
        await handle(session_factory, OrderService.on_shipping_status, contracts.ShippingStatusUpdated(
            order_id=order.id, new_status="failed", reason="Address not serviceable",
        ))

        cancelled = await load(session_factory, order.id)
        assert cancelled.status == "cancelled"
        assert cancelled.cancellation_reason == "Shipment failed: Address not serviceable"
        assert cancelled.status_history[-1].actor == "shipping-service"
        assert len(await emitted(session_factory, contracts.PAYMENT_REFUND)) == 1
        assert len(await emitted(session_factory, contracts.PRODUCT_STOCK_INCREASE)) == 1

    async def test_failed_shipment_after_dispatch_leaves_order(self, session_factory, order):
        await handle(session_factory, OrderService.on_payment_completed, payment_completed(order.id))
        for status in ("shipped", "failed"):
            await handle(session_factory, OrderService.on_shipping_status, contracts.ShippingStatusUpdated(
                order_id=order.id, new_status=status,
            ))

        assert (await load(session_factory, order.id)).status == "shipped"
        assert await emitted(session_factory, contracts.PAYMENT_REFUND) == []

    async def test_shipping_update_on_pending_order_waits_for_payment(self, session_factory, order):
        await handle(session_factory, OrderService.on_shipping_status, contracts.ShippingStatusUpdated(
            order_id=order.id, new_status="processing",
        ))

        assert (await load(session_factory, order.id)).status == "pending"

    async def test_full_refund_moves_cancelled_to_refunded(self, session_factory, order):
        await handle(session_factory, OrderService.on_payment_completed, payment_completed(order.id))
        async with session_factory() as db:
            await OrderService.cancel_order(db, order.id, None, "user-1", CTX)

        await handle(session_factory, OrderService.on_payment_refunded, contracts.PaymentRefunded(
            order_id=order.id, refund_amount=order.total, total_refunded=order.total, refund_transaction_id="REF-1",
        ))

        refunded = await load(session_factory, order.id)
        assert refunded.status == "refunded"
        assert refunded.payment_status == "refunded"
        assert refunded.total_refunded == order.total

    async def test_partial_refund_keeps_status(self, session_factory, order):
        await handle(session_factory, OrderService.on_payment_completed, payment_completed(order.id))
        async with session_factory() as db:
            await OrderService.cancel_order(db, order.id, None, "user-1", CTX)

        await handle(session_factory, OrderService.on_payment_refunded, contracts.PaymentRefunded(
            order_id=order.id, refund_amount=10.0, total_refunded=10.0, refund_transaction_id="REF-1",
        ))

        partial = await load(session_factory, order.id)
        assert partial.status == "cancelled"
        assert partial.total_refunded == 10.0

    async def test_refund_failed_leaves_order_unchanged(self, session_factory, order):
        await handle(session_factory, OrderService.on_refund_failed, contracts.PaymentRefundFailed(
            order_id=order.id, amount=order.total, reason="Refund rejected",
        ))

        assert (await load(session_factory, order.id)).status == "pending"


class TestQueries:
    async def test_list_filters_and_paginates(self, session_factory, catalog):
        await stock(session_factory, p_shoes=50)
        for _ in range(3):
            await create(session_factory, catalog, ("p-shoes", 1), user_id="user-1")
        await create(session_factory, catalog, ("p-shoes", 1), user_id="user-2")

        async with session_factory() as db:
            result = await OrderService.list_orders(db, user_id="user-1", page=2, limit=2)

        assert len(result["orders"]) == 1
        assert result["pagination"] == {
            "total": 3, "page": 2, "limit": 2, "total_pages": 2,
            "has_next_page": False, "has_prev_page": True,
        }

    async def test_statistics(self, session_factory, catalog):
        await stock(session_factory, p_shoes=50)
        first = await create(session_factory, catalog, ("p-shoes", 1))
        await create(session_factory, catalog, ("p-shoes", 2))
        async with session_factory() as db:
            await OrderService.cancel_order(db, first.id, None, "user-1", CTX)

        async with session_factory() as db:
            stats = await OrderService.statistics(db)

        assert stats["total_orders"] == 2
        assert {row["status"]: row["count"] for row in stats["status_breakdown"]} == {"cancelled": 1, "pending": 1}
        assert stats["average_order_value"] == round(stats["total_revenue"] / 2, 2)
