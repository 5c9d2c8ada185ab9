"""Adapter for an HTTP payment provider.

Expected provider API:
    POST /charges  {orderId, amount, currency, paymentMethod} -> {id, status, ...}
    POST /refunds  {transactionId, amount, reason}            -> {id, status}
Both honour an `Idempotency-Key` header. A 402/4xx answer is a decline; transport
errors and 5xx are raised to the caller.
"""
import httpx

from shared.config import settings

from .port import ChargeResult, PaymentGateway, RefundResult


class HttpPaymentGateway(PaymentGateway):
    name = "http"

    def __init__(self, base_url: str = settings.PAYMENT_GATEWAY_URL,
                 api_key: str = settings.PAYMENT_GATEWAY_API_KEY,
                 timeout: float = settings.HTTP_TIMEOUT_SECONDS,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"Authorization": f"Bearer {self.api_key}"},
            transport=self.transport,
        )

    async def charge(self, *, order_id, amount, currency, payment_method, idempotency_key):
        async with self._client() as client:
            resp = await client.post(
                "/charges",
                json={"orderId": order_id, "amount": amount, "currency": currency, "paymentMethod": payment_method},
                headers={"Idempotency-Key": idempotency_key},
            )
        if resp.status_code >= 500:
            resp.raise_for_status()
        body = resp.json()
        if resp.is_success and body.get("status") == "succeeded":
            return ChargeResult(success=True, transaction_id=body["id"],
                                gateway_status=body["status"], gateway_response=body)
        return ChargeResult(
            success=False,
            gateway_status=body.get("status", "declined"),
            gateway_response=body,
            failure_reason=body.get("declineReason") or body.get("error") or f"HTTP {resp.status_code}",
        )

    async def refund(self, *, transaction_id, amount, idempotency_key, reason=""):
        async with self._client() as client:
            resp = await client.post(
                "/refunds",
                json={"transactionId": transaction_id, "amount": amount, "reason": reason},
                headers={"Idempotency-Key": idempotency_key},
            )
        if resp.status_code >= 500:
            resp.raise_for_status()
        body = resp.json()
        if resp.is_success and body.get("status") in ("succeeded", "refunded"):
            return RefundResult(success=True, refund_transaction_id=body["id"], gateway_status=body["status"])
        return RefundResult(success=False, gateway_status=body.get("status"),
                            failure_reason=body.get("error") or f"HTTP {resp.status_code}")
