"""Fake carrier: deterministic tracking numbers, no timers, configurable failure."""
import hashlib
from datetime import datetime, timedelta, timezone

from .port import CarrierBooking, CarrierCancellation, CarrierGateway

CARRIERS = ("Aras Kargo", "MNG Kargo", "Yurtiçi Kargo")


class FakeCarrier(CarrierGateway):
    name = "fake"

    def __init__(self):
        self.bookings: list[dict] = []
        self.cancellations: list[dict] = []
        self.configure()

    def configure(self, should_succeed: bool = True, failure_reason: str = "Carrier unavailable",
                  delivery_days: int = 3):
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.delivery_days = delivery_days

    async def create_shipment(self, *, order_id, carrier, shipping_address):
        self.bookings.append({"order_id": order_id, "carrier": carrier, "shipping_address": shipping_address})
        if not self.should_succeed:
            return CarrierBooking(success=False, carrier=carrier, failure_reason=self.failure_reason)

        digits = int(hashlib.sha1(order_id.encode()).hexdigest()[:12], 16) % 10 ** 12
        tracking_number = f"TRK{digits:012d}"
        return CarrierBooking(
            success=True,
            carrier=carrier if carrier in CARRIERS else CARRIERS[0],
            tracking_number=tracking_number,
            tracking_url=f"https://example-kargo-takip.com/?no={tracking_number}",
            estimated_delivery=datetime.now(timezone.utc) + timedelta(days=self.delivery_days),
        )

    async def cancel_shipment(self, *, tracking_number, carrier):
        self.cancellations.append({"tracking_number": tracking_number, "carrier": carrier})
        if not self.should_succeed:
            return CarrierCancellation(cancelled=False, reason=self.failure_reason)
        return CarrierCancellation(cancelled=True, reason="Shipment cancelled successfully")
