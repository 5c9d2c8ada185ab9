"""Deterministic in-process gateway for development and tests."""
import hashlib
from typing import Optional

from .port import ChargeResult, PaymentGateway, RefundResult


def _stable_id(prefix: str, key: str) -> str:
    return f"{prefix}-{hashlib.sha1(key.encode()).hexdigest()[:12].upper()}"


class FakePaymentGateway(PaymentGateway):
    name = "fake"

    def __init__(self):
        self.charges: list[dict] = []
        self.refunds: list[dict] = []
        self._charge_results: dict[str, ChargeResult] = {}
        self._refund_results: dict[str, RefundResult] = {}
        self.configure()

    def configure(self, should_succeed: bool = True, failure_reason: str = "Card declined",
                  refund_should_succeed: bool = True, raise_error: Optional[Exception] = None):
        """Set the outcome of subsequent calls."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.refund_should_succeed = refund_should_succeed
        self.raise_error = raise_error

    async def charge(self, *, order_id, amount, currency, payment_method, idempotency_key):
        self.charges.append({
            "order_id": order_id, "amount": amount, "currency": currency,
            "payment_method": payment_method, "idempotency_key": idempotency_key,
        })
        if self.raise_error is not None:
            raise self.raise_error
        if idempotency_key in self._charge_results:
            return self._charge_results[idempotency_key]

        if self.should_succeed:
            result = ChargeResult(
                success=True,
                transaction_id=_stable_id("TXN", idempotency_key),
                gateway_status="succeeded",
                gateway_response={"provider": "fake", "amount": amount, "currency": currency},
            )
        else:
            result = ChargeResult(
                success=False,
                gateway_status="declined",
                gateway_response={"provider": "fake", "declineReason": self.failure_reason},
                failure_reason=self.failure_reason,
            )
        self._charge_results[idempotency_key] = result
        return result

    async def refund(self, *, transaction_id, amount, idempotency_key, reason=""):
        self.refunds.append({
            "transaction_id": transaction_id, "amount": amount,
            "idempotency_key": idempotency_key, "reason": reason,
        })
        if self.raise_error is not None:
            raise self.raise_error
        if idempotency_key in self._refund_results:
            return self._refund_results[idempotency_key]

        if self.refund_should_succeed:
            result = RefundResult(
                success=True,
                refund_transaction_id=_stable_id("REF", idempotency_key),
                gateway_status="refunded",
            )
        else:
            result = RefundResult(success=False, gateway_status="rejected", failure_reason="Refund rejected")
        self._refund_results[idempotency_key] = result
        return result
