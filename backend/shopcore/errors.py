# Overview: Domain error taxonomy shared by services and routes.

"""
Expected, caller-recoverable failures of the checkout/inventory core.

Every error carries a stable machine code, an HTTP-equivalent status and an
optional details dict. Services raise them; the app-level error handler turns
them into JSON. Anything that is NOT a ShopError is an internal failure and is
surfaced as an opaque 500.
"""

from __future__ import annotations


class ShopError(Exception):
    """Base class for domain errors."""
    code = "SHOP_ERROR"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(ShopError, ValueError):
    """400-level input problem."""
    code = "VALIDATION_ERROR"


class ProductNotFound(ShopError):
    code = "PRODUCT_NOT_FOUND"
    status_code = 404


class ProductNotAvailable(ShopError):
    """Product is missing or inactive at checkout time."""
    code = "PRODUCT_NOT_AVAILABLE"

    def __init__(self, message: str, *, product_id: int | None = None, details: dict | None = None):
        merged = {"product_id": product_id}
        merged.update(details or {})
        super().__init__(message, merged)
        self.product_id = product_id


class InsufficientStock(ShopError):
    """Requested quantity exceeds the live stock counter."""
    code = "INSUFFICIENT_STOCK"

    def __init__(self, *, product_id: int, requested: int, available: int, sku: str | None = None):
        super().__init__(
            f"Insufficient stock for product {sku or product_id}. "
            f"Available: {available}, requested: {requested}",
            {"product_id": product_id, "requested": requested, "available": available},
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class CartEmpty(ShopError):
    code = "CART_EMPTY"


class CartItemNotFound(ShopError):
    code = "CART_ITEM_NOT_FOUND"
    status_code = 404


class OrderNotFound(ShopError):
    code = "ORDER_NOT_FOUND"
    status_code = 404


class TransactionNotFound(ShopError):
    code = "TRANSACTION_NOT_FOUND"
    status_code = 404


class AccessDenied(ShopError):
    code = "ACCESS_DENIED"
    status_code = 403


class InvalidStatusTransition(ShopError):
    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, from_status: str, to_status: str):
        super().__init__(
            f"Cannot change order status from {from_status} to {to_status}",
            {"from": from_status, "to": to_status},
        )
        self.from_status = from_status
        self.to_status = to_status


class CannotCancel(ShopError):
    code = "CANNOT_CANCEL"


class StaleOrderVersion(ShopError):
    """The caller's copy of the order is older than the stored one."""
    code = "STALE_ORDER_VERSION"
    status_code = 409
