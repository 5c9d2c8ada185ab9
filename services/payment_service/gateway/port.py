"""Payment gateway port.

The payment ledger programs against this interface; the concrete adapter
(fake for dev/test, HTTP for a real provider) is picked by configuration.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class ChargeResult:
    success: bool
    transaction_id: Optional[str] = None
    gateway_status: Optional[str] = None
    gateway_response: dict = field(default_factory=dict)
    failure_reason: Optional[str] = None


@dataclass(frozen=True)
class RefundResult:
    success: bool
    refund_transaction_id: Optional[str] = None
    gateway_status: Optional[str] = None
    failure_reason: Optional[str] = None


class PaymentGateway(ABC):
    name: str = "abstract"

    @abstractmethod
    async def charge(self, *, order_id: str, amount: float, currency: str,
                     payment_method: str, idempotency_key: str) -> ChargeResult:
        """Charge the customer. Repeating a call with the same idempotency key
        must not charge twice."""
        ...

    @abstractmethod
    async def refund(self, *, transaction_id: str, amount: float,
                     idempotency_key: str, reason: str = "") -> RefundResult:
        """Refund (part of) a previous charge."""
        ...
