from datetime import datetime
from typing import Literal, Optional

from pydantic import Field

from shared.messaging.contracts import CamelModel

OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "refunded"]


class Address(CamelModel):
    full_name: str
    phone: Optional[str] = None
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: Optional[str] = None
    postal_code: str
    country: str = "TR"


class OrderItemIn(CamelModel):
    product_id: str
    quantity: int = Field(gt=0)


class OrderCreate(CamelModel):
    user_id: str  # injected by the gateway after authentication
    user_email: Optional[str] = None
    items: list[OrderItemIn]
    shipping_address: Address
    billing_address: Optional[Address] = None
    payment_method: str
    notes: Optional[str] = None
    coupon_code: Optional[str] = None


class OrderCancel(CamelModel):
    reason: Optional[str] = None
    actor: Optional[str] = None


class OrderStatusChange(CamelModel):
    status: OrderStatus
    actor: str = "admin"
    note: Optional[str] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None


class OrderItemResponse(CamelModel):
    product_id: str
    name: str
    quantity: int
    price: float
    discount_price: Optional[float] = None
    unit_price: float

    class Config:
        from_attributes = True


class StatusEntryResponse(CamelModel):
    status: str
    actor: str
    note: Optional[str] = None
    timestamp: datetime

    class Config:
        from_attributes = True


class OrderResponse(CamelModel):
    id: str
    order_number: str
    user_id: str
    items: list[OrderItemResponse]
    subtotal: float
    tax: float
    shipping_cost: float
    discount: float
    total: float
    shipping_address: dict
    billing_address: dict
    payment_method: str
    notes: Optional[str] = None
    status: str
    payment_status: str
    transaction_id: Optional[str] = None
    total_refunded: float
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    cancellation_reason: Optional[str] = None
    status_history: list[StatusEntryResponse]
    created_at: datetime
    confirmed_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Pagination(CamelModel):
    total: int
    page: int
    limit: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool


class OrderListResponse(CamelModel):
    orders: list[OrderResponse]
    pagination: Pagination


class StatusBreakdown(CamelModel):
    status: str
    count: int
    total_revenue: float


class OrderStatistics(CamelModel):
    total_orders: int
    total_revenue: float
    average_order_value: float
    status_breakdown: list[StatusBreakdown]
