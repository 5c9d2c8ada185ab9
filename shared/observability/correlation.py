"""
Per-request / per-message correlation.

A CorrelationContext is created at the edge (HTTP request or consumed message)
and handed down explicitly to service calls, which copy it into every envelope
they enqueue. The structlog contextvars binding is only for log enrichment.
"""
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import Request

CORRELATION_HEADER = "X-Correlation-ID"


@dataclass(frozen=True)
class CorrelationContext:
    correlation_id: str
    causation_id: Optional[str] = None  # eventId of the message being handled

    @classmethod
    def new(cls) -> "CorrelationContext":
        return cls(correlation_id=str(uuid.uuid4()))

    def caused_by(self, event_id: str) -> "CorrelationContext":
        return CorrelationContext(correlation_id=self.correlation_id, causation_id=event_id)


@contextmanager
def bound_context(ctx: CorrelationContext, **extra):
    """Bind correlation fields (and any extras) to structlog for the block."""
    fields = {"correlation_id": ctx.correlation_id, **extra}
    if ctx.causation_id:
        fields["causation_id"] = ctx.causation_id
    with structlog.contextvars.bound_contextvars(**fields):
        yield ctx


async def correlation_from_request(request: Request) -> CorrelationContext:
    """FastAPI dependency: reuse the caller's correlation id or mint one."""
    header = request.headers.get(CORRELATION_HEADER)
    if header:
        return CorrelationContext(correlation_id=header)
    return CorrelationContext.new()
