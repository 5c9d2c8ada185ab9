from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import settings
from shared.config.database import utcnow
from shared.messaging import contracts
from shared.messaging.outbox import enqueue
from shared.observability.correlation import CorrelationContext
from shared.observability.metrics import fulfil_shipment_status_total

from .carrier import CarrierBooking, get_carrier
from .models import Shipment, ShipmentCancellation, ShipmentStatusEntry
from .repository import ShipmentRepository

logger = structlog.get_logger(__name__)

SERVICE_NAME = "shipping"

_VALID_TRANSITIONS = {
    "pending": {"processing", "cancelled", "failed"},
    "processing": {"shipped", "cancelled", "failed"},
    "shipped": {"delivered", "failed"},
    "delivered": set(),
    "cancelled": set(),
    "failed": set(),
}

CANCELLABLE = ("pending", "processing")


class ShipmentNotFound(Exception):
    pass


class InvalidShipmentTransition(Exception):
    pass


def _record(shipment: Shipment, status: str, notes: Optional[str] = None, location: Optional[str] = None):
    shipment.status = status
    shipment.status_history.append(ShipmentStatusEntry(status=status, notes=notes, location=location))
    fulfil_shipment_status_total.labels(status=status).inc()


def _announce(db: AsyncSession, shipment: Shipment, ctx: CorrelationContext, reason: Optional[str] = None):
    enqueue(db, contracts.SHIPPING_STATUS_UPDATED, contracts.ShippingStatusUpdated(
        order_id=shipment.order_id,
        new_status=shipment.status,
        tracking_number=shipment.tracking_number,
        carrier=shipment.carrier,
        reason=reason,
    ), source=SERVICE_NAME, ctx=ctx)


class ShippingService:

    @staticmethod
    async def initiate(db: AsyncSession, order_id: str, ctx: CorrelationContext, *,
                       user_id: Optional[str] = None, shipping_address: Optional[dict] = None,
                       shipping_cost: Optional[float] = None) -> Optional[Shipment]:
        """Create the order's single shipment and book it with the carrier.

        Triggered by both order.confirmed and payment.completed; whichever
        comes second only fills in details the first one did not carry.
        """
        shipment = await ShipmentRepository.get_by_order(db, order_id, lock=True)
        if shipment is not None:
            if shipping_address and not shipment.shipping_address:
                shipment.shipping_address = shipping_address
                shipment.user_id = shipment.user_id or user_id
                shipment.shipping_cost = shipping_cost
                await db.flush()
            logger.info("shipment_exists_skipping", order_id=order_id, status=shipment.status)
            return shipment

        if await ShipmentRepository.get_cancellation(db, order_id) is not None:
            logger.info("order_cancelled_before_shipment_skipping", order_id=order_id)
            return None

        shipment = Shipment(
            order_id=order_id,
            user_id=user_id,
            shipping_address=shipping_address,
            shipping_cost=shipping_cost,
            status="processing",
        )
        _record(shipment, "processing", notes="Shipment created")
        await ShipmentRepository.add(db, shipment)
        logger.info("shipment_created", order_id=order_id)

        try:
            booking = await get_carrier().create_shipment(
                order_id=order_id, carrier=settings.DEFAULT_CARRIER, shipping_address=shipping_address,
            )
        except Exception as e:
            logger.exception("carrier_booking_error", order_id=order_id)
            booking = CarrierBooking(success=False, failure_reason=f"Carrier error: {e}")

        if not booking.success:
            shipment.failure_reason = booking.failure_reason
            _record(shipment, "failed", notes=f"Shipping error: {booking.failure_reason}")
            _announce(db, shipment, ctx, reason=booking.failure_reason)
            logger.error("shipment_booking_failed", order_id=order_id, reason=booking.failure_reason)
        else:
            shipment.carrier = booking.carrier
            shipment.tracking_number = booking.tracking_number
            shipment.tracking_url = booking.tracking_url
            shipment.estimated_delivery_date = booking.estimated_delivery
            _announce(db, shipment, ctx)
            logger.info("shipment_booked", order_id=order_id, carrier=shipment.carrier,
                        tracking_number=shipment.tracking_number)

        await db.flush()
        return shipment

    @staticmethod
    async def cancel(db: AsyncSession, order_id: str, reason: str, ctx: CorrelationContext):
        shipment = await ShipmentRepository.get_by_order(db, order_id, lock=True)

        if shipment is None:
            # Cancellation overtook the trigger (or there will never be one); remember it
            if await ShipmentRepository.get_cancellation(db, order_id) is None:
                await ShipmentRepository.add_cancellation(
                    db, ShipmentCancellation(order_id=order_id, reason=reason)
                )
            logger.info("cancel_before_shipment", order_id=order_id)
            return None

        if shipment.status not in CANCELLABLE:
            logger.warning("shipment_cancel_not_actionable", order_id=order_id, status=shipment.status)
            return shipment

        if shipment.tracking_number:
            try:
                result = await get_carrier().cancel_shipment(
                    tracking_number=shipment.tracking_number, carrier=shipment.carrier,
                )
                if not result.cancelled:
                    logger.critical("carrier_cancel_rejected", order_id=order_id, reason=result.reason)
            except Exception:
                logger.critical("carrier_cancel_error", order_id=order_id, exc_info=True)

        _record(shipment, "cancelled", notes=f"Order cancelled: {reason}")
        _announce(db, shipment, ctx)
        await db.flush()
        logger.info("shipment_cancelled", order_id=order_id)
        return shipment

    @staticmethod
    async def update_status(db: AsyncSession, order_id: str, new_status: str, ctx: CorrelationContext, *,
                            notes: Optional[str] = None, location: Optional[str] = None,
                            tracking_number: Optional[str] = None, carrier: Optional[str] = None) -> Shipment:
        """Apply a carrier-reported status (webhook or admin) and announce changes."""
        shipment = await ShipmentRepository.get_by_order(db, order_id, lock=True)
        if shipment is None:
            raise ShipmentNotFound(f"No shipment for order {order_id}")

        if tracking_number:
            shipment.tracking_number = tracking_number
        if carrier:
            shipment.carrier = carrier

        old_status = shipment.status
        if new_status == old_status:
            # Location / note update only
            shipment.status_history.append(ShipmentStatusEntry(status=new_status, notes=notes, location=location))
            return await ShipmentRepository.save(db, shipment)

        if new_status not in _VALID_TRANSITIONS[old_status]:
            raise InvalidShipmentTransition(f"Cannot move shipment from '{old_status}' to '{new_status}'")

        _record(shipment, new_status, notes=notes, location=location)
        if new_status == "delivered":
            shipment.actual_delivery_date = utcnow()
        if new_status == "failed":
            shipment.failure_reason = notes or "Reported failed by carrier"
        _announce(db, shipment, ctx, reason=shipment.failure_reason if new_status == "failed" else None)

        logger.info("shipment_status_updated", order_id=order_id, old_status=old_status, new_status=new_status)
        return await ShipmentRepository.save(db, shipment)

    @staticmethod
    async def get_shipment(db: AsyncSession, order_id: str) -> Shipment:
        shipment = await ShipmentRepository.get_by_order(db, order_id)
        if shipment is None:
            raise ShipmentNotFound(f"No shipment for order {order_id}")
        return shipment
