"""
Queue names and payload contracts for the fulfillment choreography.

Payloads travel as camelCase JSON. Every queue has exactly one pydantic model;
producers validate against it before anything is written to the outbox, and
consumers parse the payload with the same model.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional, Type

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# --- Commands & events (queue names) ---
INVENTORY_RESERVE = "inventory.reserve"
PRODUCT_STOCK_INCREASE = "product.stock.increase"
INVENTORY_RESERVATION_FAILED = "inventory.reservation.failed"
INVENTORY_LOW_STOCK = "inventory.low_stock"

PAYMENT_PROCESS = "payment.process"
PAYMENT_COMPLETED = "payment.completed"
PAYMENT_FAILED = "payment.failed"
PAYMENT_REFUND = "payment.refund"
PAYMENT_REFUNDED = "payment.refunded"
PAYMENT_REFUND_FAILED = "payment.refund.failed"

ORDER_STATUS_UPDATED = "order.status_updated"
ORDER_CONFIRMED = "order.confirmed"
ORDER_CANCELLED = "order.cancelled"

SHIPPING_STATUS_UPDATED = "shipping.status.updated"

NOTIFICATION_ORDER_CREATED = "notification.order.created"
NOTIFICATION_ORDER_CANCELLED = "notification.order.cancelled"


class ContractViolation(Exception):
    """A payload does not match the contract registered for its queue."""


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LineItem(CamelModel):
    product_id: str
    qty: int = Field(gt=0)


# --- Inventory ---
class InventoryReserve(CamelModel):
    order_id: str
    items: list[LineItem]


class StockIncrease(CamelModel):
    order_id: str
    items: list[LineItem] = []


class ReservationFailed(CamelModel):
    order_id: str
    reason: str
    items: list[LineItem] = []


class LowStock(CamelModel):
    product_id: str
    available_quantity: int
    threshold: int


# --- Payment ---
class PaymentProcess(CamelModel):
    order_id: str
    user_id: str
    total_amount: float = Field(ge=0)
    payment_method: str


class PaymentCompleted(CamelModel):
    order_id: str
    transaction_id: str
    amount: float
    payment_method: str
    payment_date: datetime


class PaymentFailed(CamelModel):
    order_id: str
    reason: str
    amount: float
    payment_method: str


class PaymentRefund(CamelModel):
    order_id: str
    amount: Optional[float] = None  # None means "whatever is still refundable"


class PaymentRefunded(CamelModel):
    order_id: str
    refund_amount: float
    total_refunded: float
    refund_transaction_id: str
    original_transaction_id: Optional[str] = None


class PaymentRefundFailed(CamelModel):
    order_id: str
    amount: float
    reason: str


# --- Order ---
class OrderStatusUpdated(CamelModel):
    order_id: str
    status: str
    user_id: str


class OrderConfirmed(CamelModel):
    order_id: str
    user_id: str
    shipping_address: dict
    shipping_cost: float


class OrderCancelled(CamelModel):
    order_id: str
    reason: str


# --- Shipping ---
class ShippingStatusUpdated(CamelModel):
    order_id: str
    new_status: str
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    reason: Optional[str] = None


# --- Notification ---
class OrderCreatedNotification(CamelModel):
    order_id: str
    user_email: Optional[str] = None
    order_number: str
    total: float


class OrderCancelledNotification(CamelModel):
    order_id: str
    user_email: Optional[str] = None
    order_number: str
    reason: str


CONTRACTS: dict[str, Type[CamelModel]] = {
    INVENTORY_RESERVE: InventoryReserve,
    PRODUCT_STOCK_INCREASE: StockIncrease,
    INVENTORY_RESERVATION_FAILED: ReservationFailed,
    INVENTORY_LOW_STOCK: LowStock,
    PAYMENT_PROCESS: PaymentProcess,
    PAYMENT_COMPLETED: PaymentCompleted,
    PAYMENT_FAILED: PaymentFailed,
    PAYMENT_REFUND: PaymentRefund,
    PAYMENT_REFUNDED: PaymentRefunded,
    PAYMENT_REFUND_FAILED: PaymentRefundFailed,
    ORDER_STATUS_UPDATED: OrderStatusUpdated,
    ORDER_CONFIRMED: OrderConfirmed,
    ORDER_CANCELLED: OrderCancelled,
    SHIPPING_STATUS_UPDATED: ShippingStatusUpdated,
    NOTIFICATION_ORDER_CREATED: OrderCreatedNotification,
    NOTIFICATION_ORDER_CANCELLED: OrderCancelledNotification,
}


class Envelope(CamelModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    queue: str
    correlation_id: str
    causation_id: Optional[str] = None
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    source: str
    payload: dict


def serialize_payload(queue: str, payload) -> dict:
    """Validate `payload` (model or mapping) against the queue contract and
    return its camelCase JSON-ready form."""
    model = CONTRACTS.get(queue)
    if model is None:
        raise ContractViolation(f"No contract registered for queue '{queue}'")
    if isinstance(payload, BaseModel) and not isinstance(payload, model):
        raise ContractViolation(
            f"Queue '{queue}' expects {model.__name__}, got {type(payload).__name__}"
        )
    try:
        instance = payload if isinstance(payload, model) else model.model_validate(payload)
    except ValueError as e:
        raise ContractViolation(f"Invalid payload for '{queue}': {e}") from e
    return instance.model_dump(mode="json", by_alias=True)


def parse_payload(queue: str, payload: dict):
    model = CONTRACTS.get(queue)
    if model is None:
        raise ContractViolation(f"No contract registered for queue '{queue}'")
    try:
        return model.model_validate(payload)
    except ValueError as e:
        raise ContractViolation(f"Invalid payload for '{queue}': {e}") from e
