from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from shared.config.database import Base, utcnow


class Shipment(Base):
    __tablename__ = "shipments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String, nullable=False, unique=True)  # at most one shipment per order
    user_id = Column(String, nullable=True)
    shipping_address = Column(JSON, nullable=True)  # may arrive after the shipment exists
    shipping_cost = Column(Float, nullable=True)
    status = Column(String, nullable=False, default="pending")  # pending, processing, shipped, delivered, cancelled, failed
    carrier = Column(String, nullable=True)
    tracking_number = Column(String, nullable=True)
    tracking_url = Column(String, nullable=True)
    estimated_delivery_date = Column(DateTime(timezone=True), nullable=True)
    actual_delivery_date = Column(DateTime(timezone=True), nullable=True)
    failure_reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    status_history = relationship(
        "ShipmentStatusEntry", lazy="selectin", order_by="ShipmentStatusEntry.id",
        cascade="all, delete-orphan",
    )


class ShipmentStatusEntry(Base):
    __tablename__ = "shipment_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    shipment_id = Column(Integer, ForeignKey("shipments.id"), nullable=False, index=True)
    status = Column(String, nullable=False)
    location = Column(String, nullable=True)
    notes = Column(String, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class ShipmentCancellation(Base):
    """Order cancelled before any shipment existed; later triggers must not ship it."""
    __tablename__ = "shipment_cancellations"

    order_id = Column(String, primary_key=True)
    reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
