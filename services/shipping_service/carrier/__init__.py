"""Carrier adapter selection (CARRIER_GATEWAY = fake | http)."""
from shared.config import settings

from .fake_adapter import CARRIERS, FakeCarrier
from .http_adapter import HttpCarrier
from .port import CarrierBooking, CarrierCancellation, CarrierGateway

_carrier_instance: CarrierGateway | None = None


def get_carrier() -> CarrierGateway:
    """Return the configured carrier adapter (singleton)."""
    global _carrier_instance
    if _carrier_instance is None:
        if settings.CARRIER_GATEWAY == "fake":
            _carrier_instance = FakeCarrier()
        elif settings.CARRIER_GATEWAY == "http":
            _carrier_instance = HttpCarrier()
        else:
            raise ValueError(f"Unknown carrier adapter: {settings.CARRIER_GATEWAY}")
    return _carrier_instance


def set_carrier(carrier: CarrierGateway) -> None:
    global _carrier_instance
    _carrier_instance = carrier


def reset_carrier() -> None:
    global _carrier_instance
    _carrier_instance = None
