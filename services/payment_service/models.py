from sqlalchemy import JSON, Column, DateTime, Float, Integer, String

from shared.config.database import Base, utcnow


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(String, nullable=False, unique=True)  # one payment per order
    user_id = Column(String, nullable=False)
    amount = Column(Float, nullable=False)
    currency = Column(String, nullable=False, default="TRY")
    payment_method = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending")  # pending, completed, failed, refunded, cancelled
    transaction_id = Column(String, nullable=True)
    gateway = Column(String, nullable=True)
    gateway_response = Column(JSON, nullable=True)
    failure_reason = Column(String, nullable=True)
    refunded_amount = Column(Float, nullable=False, default=0.0)
    refund_transaction_id = Column(String, nullable=True)
    idempotency_key = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
