from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint

from shared.config.database import Base, utcnow


class OutboxMessage(Base):
    """An envelope waiting to be published, written with the state change it describes."""
    __tablename__ = "outbox_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(36), nullable=False, unique=True)
    queue = Column(String, nullable=False, index=True)
    source = Column(String, nullable=False, index=True)  # owning service
    body = Column(Text, nullable=False)
    status = Column(String, nullable=False, default="pending")  # pending, published
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    published_at = Column(DateTime(timezone=True), nullable=True)


class ProcessedEvent(Base):
    __tablename__ = "processed_events"
    __table_args__ = (UniqueConstraint("consumer", "event_id", name="uq_processed_consumer_event"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    consumer = Column(String, nullable=False)  # "<service>:<queue>"
    event_id = Column(String(36), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
