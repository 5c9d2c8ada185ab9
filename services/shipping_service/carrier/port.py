"""Carrier port: the interface every shipping carrier integration implements."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class CarrierBooking:
    success: bool
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    failure_reason: Optional[str] = None


@dataclass(frozen=True)
class CarrierCancellation:
    cancelled: bool
    reason: str = ""


class CarrierGateway(ABC):
    name: str = "abstract"

    @abstractmethod
    async def create_shipment(self, *, order_id: str, carrier: str,
                              shipping_address: Optional[dict]) -> CarrierBooking:
        """Book a pickup and obtain tracking metadata."""
        ...

    @abstractmethod
    async def cancel_shipment(self, *, tracking_number: str, carrier: str) -> CarrierCancellation:
        ...
