# Overview: Service-layer operations for per-user carts.

"""
Cart semantics:
- One cart per user, created on first use. Clearing empties it; it is never deleted.
- Adding a product already in the cart merges into the existing line.
- Stock checks here are ADVISORY: nothing is reserved until checkout, and
  checkout re-validates against the live counter.
- price_at_time_cents is refreshed on add/update/sync. Checkout always
  charges the current product price regardless.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from ..errors import (
    CartItemNotFound,
    InsufficientStock,
    ProductNotAvailable,
    ValidationError,
)
from ..extensions import db
from ..models import Cart, CartItem, Product
from .concurrency import begin_write, run_with_retry

logger = logging.getLogger(__name__)

ISSUE_PRODUCT_DELETED = "PRODUCT_DELETED"
ISSUE_PRODUCT_INACTIVE = "PRODUCT_INACTIVE"
ISSUE_INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
ISSUE_PRICE_CHANGED = "PRICE_CHANGED"


def _require_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("quantity must be an integer")
    if quantity < 1:
        raise ValidationError("quantity must be greater than zero")
    return quantity


def _find_cart(user_id: int) -> Cart | None:
    return db.session.query(Cart).filter_by(user_id=user_id).first()


def _get_or_create(user_id: int) -> Cart:
    cart = _find_cart(user_id)
    if cart is not None:
        return cart
    try:
        with db.session.begin_nested():
            cart = Cart(user_id=user_id)
            db.session.add(cart)
        return cart
    except IntegrityError:
        # Another request created it first.
        return _find_cart(user_id)


def _get_item(cart: Cart | None, item_id: int) -> CartItem:
    if cart is not None:
        for item in cart.items:
            if item.id == item_id:
                return item
    raise CartItemNotFound(f"Cart item {item_id} not found", {"item_id": item_id})


def _available_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None or not product.is_active:
        raise ProductNotAvailable(f"Product {product_id} is not available", product_id=product_id)
    return product


def _check_stock(product: Product, quantity: int) -> None:
    if product.stock_qty < quantity:
        raise InsufficientStock(
            product_id=product.id,
            requested=quantity,
            available=product.stock_qty,
            sku=product.sku,
        )


def get_or_create_cart(user_id: int) -> Cart:
    def _op():
        begin_write()
        cart = _get_or_create(user_id)
        db.session.commit()
        return cart

    return run_with_retry(_op)


def add_item(user_id: int, product_id: int, quantity: int = 1) -> Cart:
    """Add a product, merging with an existing line for the same product."""
    quantity = _require_quantity(quantity)

    def _op():
        begin_write()
        product = _available_product(product_id)
        cart = _get_or_create(user_id)

        existing = next((i for i in cart.items if i.product_id == product_id), None)
        new_quantity = quantity + (existing.quantity if existing else 0)
        _check_stock(product, new_quantity)

        if existing is not None:
            existing.quantity = new_quantity
            existing.price_at_time_cents = product.price_cents
        else:
            cart.items.append(
                CartItem(
                    product_id=product.id,
                    quantity=quantity,
                    price_at_time_cents=product.price_cents,
                )
            )

        db.session.commit()
        return cart

    return run_with_retry(_op)


def update_item_quantity(user_id: int, item_id: int, quantity: int) -> Cart:
    quantity = _require_quantity(quantity)

    def _op():
        begin_write()
        cart = _find_cart(user_id)
        item = _get_item(cart, item_id)
        product = _available_product(item.product_id)
        _check_stock(product, quantity)

        item.quantity = quantity
        item.price_at_time_cents = product.price_cents
        db.session.commit()
        return cart

    return run_with_retry(_op)


def remove_item(user_id: int, item_id: int) -> Cart:
    def _op():
        begin_write()
        cart = _find_cart(user_id)
        item = _get_item(cart, item_id)
        cart.items.remove(item)
        db.session.commit()
        return cart

    return run_with_retry(_op)


def empty_cart(cart: Cart) -> None:
    """Remove every line from an in-session cart. Does not commit."""
    cart.items.clear()


def clear_cart(user_id: int) -> Cart:
    def _op():
        begin_write()
        cart = _get_or_create(user_id)
        empty_cart(cart)
        db.session.commit()
        return cart

    return run_with_retry(_op)


def _line_issue(item: CartItem) -> dict | None:
    product = item.product
    issue = {
        "item_id": item.id,
        "product_id": item.product_id,
        "product_name": product.name if product is not None else None,
    }
    if product is None:
        issue.update(type=ISSUE_PRODUCT_DELETED, message="Product no longer exists")
        return issue
    if not product.is_active:
        issue.update(type=ISSUE_PRODUCT_INACTIVE, message="Product is not available")
        return issue
    if product.stock_qty < item.quantity:
        issue.update(
            type=ISSUE_INSUFFICIENT_STOCK,
            message=f"Insufficient stock. Available: {product.stock_qty}, requested: {item.quantity}",
            available_stock=product.stock_qty,
        )
        return issue
    if item.price_at_time_cents != product.price_cents:
        issue.update(
            type=ISSUE_PRICE_CHANGED,
            message="Price changed since the item was added",
            old_price_cents=item.price_at_time_cents,
            new_price_cents=product.price_cents,
        )
        return issue
    return None


def validate_cart(user_id: int) -> dict:
    """
    Report problems checkout would hit (or reprice) without changing anything.

    A PRICE_CHANGED issue is informational: the line is still purchasable.
    """
    cart = _find_cart(user_id)
    if cart is None or not cart.items:
        return {"is_valid": True, "issues": [], "valid_items_count": 0, "total_issues": 0}

    issues = []
    valid = 0
    for item in cart.items:
        issue = _line_issue(item)
        if issue is not None:
            issues.append(issue)
        if issue is None or issue["type"] == ISSUE_PRICE_CHANGED:
            valid += 1

    return {
        "is_valid": not issues,
        "issues": issues,
        "valid_items_count": valid,
        "total_issues": len(issues),
    }


def sync_cart_prices(user_id: int) -> dict:
    """Refresh price_at_time_cents from the catalog for active products."""
    def _op():
        begin_write()
        cart = _find_cart(user_id)
        updated = 0
        for item in (cart.items if cart is not None else []):
            product = item.product
            if product is not None and product.is_active and item.price_at_time_cents != product.price_cents:
                item.price_at_time_cents = product.price_cents
                updated += 1
        db.session.commit()
        if updated:
            logger.info("Cart prices synced: user_id=%s updated=%d", user_id, updated)
        return {"updated": updated}

    return run_with_retry(_op)


def get_cart_summary(user_id: int) -> dict:
    cart = _find_cart(user_id)
    if cart is None or not cart.items:
        return {
            "total_items": 0,
            "total_amount_cents": 0,
            "items_count": 0,
            "items": [],
            "is_empty": True,
            "has_issues": False,
        }

    available = [
        item for item in cart.items
        if item.product is not None
        and item.product.is_active
        and item.product.stock_qty >= item.quantity
    ]

    return {
        "total_items": sum(item.quantity for item in available),
        "total_amount_cents": sum(item.subtotal_cents for item in available),
        "items_count": len(available),
        "items": [
            {
                "item_id": item.id,
                "product_id": item.product_id,
                "product_name": item.product.name,
                "quantity": item.quantity,
                "price_at_time_cents": item.price_at_time_cents,
                "current_price_cents": item.product.price_cents,
                "subtotal_cents": item.subtotal_cents,
                "stock_available": item.product.stock_qty,
                "has_price_change": item.price_at_time_cents != item.product.price_cents,
            }
            for item in available
        ],
        "is_empty": not available,
        "has_issues": len(available) != len(cart.items),
    }


def get_cart_item_count(user_id: int) -> dict:
    """Line and unit counts for a cart badge. Reads only, never creates the cart."""
    cart = _find_cart(user_id)
    items = cart.items if cart is not None else []
    return {
        "items_count": len(items),
        "total_quantity": sum(item.quantity for item in items),
    }


def check_product_in_cart(user_id: int, product_id: int) -> dict:
    cart = _find_cart(user_id)
    item = None
    if cart is not None:
        item = next((i for i in cart.items if i.product_id == product_id), None)
    return {
        "product_id": product_id,
        "in_cart": item is not None,
        "item_id": item.id if item is not None else None,
        "quantity": item.quantity if item is not None else 0,
    }
