"""Structured errors returned by order creation, cancellation and status updates."""
from typing import Optional


class OrderError(Exception):
    code = "ORDER_ERROR"
    status_code = 400

    def __init__(self, message: str, details: Optional[list] = None):
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class EmptyCart(OrderError):
    code = "EMPTY_CART"
    status_code = 400


class ProductUnavailable(OrderError):
    code = "PRODUCT_UNAVAILABLE"
    status_code = 400


class InsufficientStock(OrderError):
    code = "INSUFFICIENT_STOCK"
    status_code = 409


OutOfStock = InsufficientStock


class DependencyUnavailable(OrderError):
    code = "DEPENDENCY_UNAVAILABLE"
    status_code = 503


class OrderNotFound(OrderError):
    code = "ORDER_NOT_FOUND"
    status_code = 404


class NotCancellable(OrderError):
    code = "NOT_CANCELLABLE"
    status_code = 409


class InvalidTransition(OrderError):
    code = "INVALID_TRANSITION"
    status_code = 409
