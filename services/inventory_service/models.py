from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from shared.config.database import Base, utcnow


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    product_id = Column(String, primary_key=True)
    stock_quantity = Column(Integer, nullable=False, default=0)
    reserved_quantity = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer, nullable=True)  # None or 0 disables the warning
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def available_quantity(self) -> int:
        return max(0, self.stock_quantity - self.reserved_quantity)

    @property
    def is_low_stock(self) -> bool:
        if not self.low_stock_threshold or self.low_stock_threshold <= 0:
            return False
        return self.available_quantity < self.low_stock_threshold


class Reservation(Base):
    """Stock held for one order. One row per order, whatever its fate."""
    __tablename__ = "reservations"

    order_id = Column(String, primary_key=True)
    status = Column(String, nullable=False)  # active, committed, released, failed
    failure_reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    lines = relationship("ReservationLine", lazy="selectin", cascade="all, delete-orphan")


class ReservationLine(Base):
    __tablename__ = "reservation_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String, ForeignKey("reservations.order_id"), nullable=False, index=True)
    product_id = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
