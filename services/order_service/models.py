from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship, validates

from shared.config.database import Base, utcnow

MONEY_FIELDS = ("subtotal", "tax", "shipping_cost", "discount", "total")


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True)
    order_number = Column(String, nullable=False, unique=True)  # ORD-YYYYMMDD-NNNN
    user_id = Column(String, nullable=False, index=True)
    user_email = Column(String, nullable=True)

    subtotal = Column(Float, nullable=False)
    tax = Column(Float, nullable=False)
    shipping_cost = Column(Float, nullable=False)
    discount = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False)
    coupon_code = Column(String, nullable=True)

    shipping_address = Column(JSON, nullable=False)
    billing_address = Column(JSON, nullable=False)
    payment_method = Column(String, nullable=False)
    notes = Column(Text, nullable=True)

    status = Column(String, nullable=False, default="pending")
    payment_status = Column(String, nullable=False, default="pending")  # pending, completed, failed, refunded
    transaction_id = Column(String, nullable=True)
    total_refunded = Column(Float, nullable=False, default=0.0)
    tracking_number = Column(String, nullable=True)
    carrier = Column(String, nullable=True)
    cancellation_reason = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship("OrderItem", lazy="selectin", order_by="OrderItem.id", cascade="all, delete-orphan")
    status_history = relationship(
        "OrderStatusEntry", lazy="selectin", order_by="OrderStatusEntry.id", cascade="all, delete-orphan",
    )

    @validates(*MONEY_FIELDS)
    def _freeze_money(self, key, value):
        if self.status not in (None, "pending") and getattr(self, key) != value:
            raise ValueError(f"Order {self.id}: '{key}' is immutable once the order left pending")
        return value


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Float, nullable=False)
    discount_price = Column(Float, nullable=True)
    unit_price = Column(Float, nullable=False)  # snapshot used for the totals


class OrderStatusEntry(Base):
    """Append-only: rows are only ever added."""
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    status = Column(String, nullable=False)
    actor = Column(String, nullable=False)
    note = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)
