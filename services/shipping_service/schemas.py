from datetime import datetime
from typing import Literal, Optional

from shared.messaging.contracts import CamelModel

ShipmentStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled", "failed"]


class ShipmentStatusEntryResponse(CamelModel):
    status: str
    location: Optional[str] = None
    notes: Optional[str] = None
    timestamp: datetime

    class Config:
        from_attributes = True


class ShipmentResponse(CamelModel):
    order_id: str
    user_id: Optional[str] = None
    shipping_address: Optional[dict] = None
    shipping_cost: Optional[float] = None
    status: str
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    estimated_delivery_date: Optional[datetime] = None
    actual_delivery_date: Optional[datetime] = None
    failure_reason: Optional[str] = None
    status_history: list[ShipmentStatusEntryResponse] = []

    class Config:
        from_attributes = True


class ShipmentStatusUpdate(CamelModel):
    """Carrier webhook / admin status push."""
    status: ShipmentStatus
    notes: Optional[str] = None
    location: Optional[str] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
