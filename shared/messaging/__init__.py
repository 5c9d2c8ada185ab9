from .broker import RedisStreamBroker
from .consumer import MalformedMessage, MessageConsumer, Subscription
from .contracts import ContractViolation, Envelope
from .outbox import OutboxDispatcher, enqueue

__all__ = [
    "RedisStreamBroker",
    "MalformedMessage",
    "MessageConsumer",
    "Subscription",
    "ContractViolation",
    "Envelope",
    "OutboxDispatcher",
    "enqueue",
]
