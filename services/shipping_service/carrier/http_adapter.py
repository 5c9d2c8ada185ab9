"""Adapter for an HTTP carrier aggregator.

    POST /shipments                 {orderId, carrier, address} -> {trackingNumber, trackingUrl, estimatedDelivery}
    POST /shipments/{tracking}/cancel                           -> {cancelled, reason}
"""
from datetime import datetime

import httpx

from shared.config import settings

from .port import CarrierBooking, CarrierCancellation, CarrierGateway


class HttpCarrier(CarrierGateway):
    name = "http"

    def __init__(self, base_url: str = settings.CARRIER_URL, api_key: str = settings.CARRIER_API_KEY,
                 timeout: float = settings.HTTP_TIMEOUT_SECONDS,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout,
                                 headers={"X-Api-Key": self.api_key}, transport=self.transport)

    async def create_shipment(self, *, order_id, carrier, shipping_address):
        async with self._client() as client:
            resp = await client.post("/shipments", json={
                "orderId": order_id, "carrier": carrier, "address": shipping_address,
            })
        if resp.status_code >= 500:
            resp.raise_for_status()
        body = resp.json()
        if not resp.is_success:
            return CarrierBooking(success=False, carrier=carrier,
                                  failure_reason=body.get("error") or f"HTTP {resp.status_code}")
        estimated = body.get("estimatedDelivery")
        return CarrierBooking(
            success=True,
            carrier=body.get("carrier", carrier),
            tracking_number=body["trackingNumber"],
            tracking_url=body.get("trackingUrl"),
            estimated_delivery=datetime.fromisoformat(estimated) if estimated else None,
        )

    async def cancel_shipment(self, *, tracking_number, carrier):
        async with self._client() as client:
            resp = await client.post(f"/shipments/{tracking_number}/cancel", json={"carrier": carrier})
        if resp.status_code >= 500:
            resp.raise_for_status()
        body = resp.json()
        return CarrierCancellation(cancelled=bool(body.get("cancelled")) and resp.is_success,
                                   reason=body.get("reason", ""))
