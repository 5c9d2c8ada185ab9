"""Payment gateway factory.

get_gateway() returns the adapter named by PAYMENT_GATEWAY (fake | http);
set_gateway() / reset_gateway() let tests swap it.
"""
from shared.config import settings

from .fake_adapter import FakePaymentGateway
from .http_adapter import HttpPaymentGateway
from .port import ChargeResult, PaymentGateway, RefundResult

_current_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    global _current_gateway
    if _current_gateway is None:
        if settings.PAYMENT_GATEWAY == "fake":
            _current_gateway = FakePaymentGateway()
        elif settings.PAYMENT_GATEWAY == "http":
            _current_gateway = HttpPaymentGateway()
        else:
            raise ValueError(f"Unknown payment gateway: {settings.PAYMENT_GATEWAY}")
    return _current_gateway


def set_gateway(gateway: PaymentGateway) -> None:
    global _current_gateway
    _current_gateway = gateway


def reset_gateway() -> None:
    global _current_gateway
    _current_gateway = None
