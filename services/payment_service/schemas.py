from datetime import datetime
from typing import Optional

from shared.messaging.contracts import CamelModel


class PaymentResponse(CamelModel):
    id: int
    order_id: str
    user_id: str
    amount: float
    currency: str
    payment_method: str
    status: str
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    refunded_amount: float
    refund_transaction_id: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
