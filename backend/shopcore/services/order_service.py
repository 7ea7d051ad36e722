# Overview: Checkout orchestration and order lifecycle operations.

"""
Checkout Invariants (authoritative)

================================================================================
CHECKOUT PIPELINE (one DB transaction, all-or-nothing):
    1. Collect lines (cart or explicit items); empty -> CartEmpty
    2. Re-read every product; missing/inactive -> ProductNotAvailable,
       live stock < requested -> InsufficientStock (duplicate lines summed)
    3. Price at CURRENT product prices; compute tax/shipping/final in cents
    4. Allocate order number
    5. Reserve stock per product in ascending product id order
    6. Persist Order (pending) with one 'pending' history entry
    7. Empty the cart (cart flow, if requested)
    8. Commit
================================================================================

ATOMICITY:
Any failure in steps 1-7 rolls back the whole transaction: reservations
already made, their ledger entries, the order and the order number are all
discarded. There is never a partially reserved order.

STOCK CONSERVATION:
For every product, units reserved by live orders + stock_qty is constant
apart from manual inventory transactions. Cancellation releases each order
line exactly once: the status check and the release happen under the same
write lock, and a cancelled order is terminal.

PRICING (integer cents):
    tax      = round_half_up(total * TAX_RATE_BPS / 10000)
    shipping = 0 if total >= FREE_SHIPPING_THRESHOLD_CENTS else FLAT_SHIPPING_FEE_CENTS
    final    = total + tax + shipping
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app
from sqlalchemy import func, or_

from ..actors import Actor
from ..errors import (
    AccessDenied,
    CannotCancel,
    CartEmpty,
    InsufficientStock,
    InvalidStatusTransition,
    OrderNotFound,
    ProductNotAvailable,
    StaleOrderVersion,
    ValidationError,
)
from ..extensions import db
from ..models import Cart, Order, OrderItem, Product
from ..models.orders import (
    ORDER_STATUS_CANCELLED,
    PAYMENT_METHODS,
)
from ..time_utils import parse_iso_datetime, to_utc_z, utcnow
from . import order_state, stock_ledger
from .cart_service import empty_cart
from .concurrency import begin_write, lock_for_update, run_with_retry
from .pagination import paginate
from .sequence_service import next_order_number

logger = logging.getLogger(__name__)

ESTIMATED_DELIVERY_DAYS = 3
DEFAULT_COUNTRY = "Mexico"
ADDRESS_REQUIRED_FIELDS = ("street", "city", "state", "zip_code")
ADDRESS_FIELDS = ADDRESS_REQUIRED_FIELDS + ("country",)


@dataclass(frozen=True)
class OrderTotals:
    total_amount_cents: int
    tax_amount_cents: int
    shipping_amount_cents: int
    final_amount_cents: int


@dataclass(frozen=True)
class _PricedLine:
    product: Product
    quantity: int
    unit_price_cents: int

    @property
    def subtotal_cents(self) -> int:
        return self.unit_price_cents * self.quantity


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

def validate_shipping_address(address) -> dict:
    if not isinstance(address, dict):
        raise ValidationError("shipping_address is required")

    cleaned = {}
    missing = []
    for field in ADDRESS_REQUIRED_FIELDS:
        value = address.get(field)
        if not isinstance(value, str) or not value.strip():
            missing.append(field)
        else:
            cleaned[field] = value.strip()
    if missing:
        raise ValidationError(
            f"shipping_address is missing: {', '.join(missing)}",
            {"missing_fields": missing},
        )

    country = address.get("country")
    cleaned["country"] = country.strip() if isinstance(country, str) and country.strip() else DEFAULT_COUNTRY
    return cleaned


def validate_payment_method(payment_method) -> str:
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method '{payment_method}'. Must be one of: {', '.join(PAYMENT_METHODS)}"
        )
    return payment_method


def _validate_notes(notes, field: str = "notes", max_length: int = 500) -> str | None:
    if notes is None:
        return None
    if not isinstance(notes, str):
        raise ValidationError(f"{field} must be a string")
    notes = notes.strip()
    if len(notes) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return notes or None


def _validate_expected_version(value) -> int | None:
    """Accept the version as an int or a numeric string; None skips the check."""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValidationError("expected_version must be an integer")
    try:
        version = int(value)
    except ValueError:
        raise ValidationError("expected_version must be an integer")
    if version < 1:
        raise ValidationError("expected_version must be a positive integer")
    return version


def _normalize_items(items) -> list[tuple[int, int]]:
    """Validate explicit items and merge duplicate product lines, keeping first-seen order."""
    if items is None or (isinstance(items, list) and not items):
        raise CartEmpty("No items to order")
    if not isinstance(items, list):
        raise ValidationError("items must be a list")

    merged: dict[int, int] = {}
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object")
        product_id = item.get("product_id")
        quantity = item.get("quantity")
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            raise ValidationError(f"items[{index}].product_id must be an integer")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError(f"items[{index}].quantity must be a positive integer")
        merged[product_id] = merged.get(product_id, 0) + quantity
    return list(merged.items())


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------

def compute_totals(total_amount_cents: int) -> OrderTotals:
    config = current_app.config
    tax_rate_bps = int(config.get("TAX_RATE_BPS", 1600))
    threshold = int(config.get("FREE_SHIPPING_THRESHOLD_CENTS", 50000))
    flat_fee = int(config.get("FLAT_SHIPPING_FEE_CENTS", 9900))

    # Round half up
    tax = (total_amount_cents * tax_rate_bps + 5000) // 10000
    shipping = 0 if total_amount_cents >= threshold else flat_fee
    return OrderTotals(
        total_amount_cents=total_amount_cents,
        tax_amount_cents=tax,
        shipping_amount_cents=shipping,
        final_amount_cents=total_amount_cents + tax + shipping,
    )


def _price_lines(lines: list[tuple[int, int]]) -> list[_PricedLine]:
    """Re-read products under the write lock and validate availability and stock."""
    product_ids = sorted({product_id for product_id, _ in lines})
    products = {
        p.id: p
        for p in lock_for_update(db.session.query(Product))
        .filter(Product.id.in_(product_ids))
        .order_by(Product.id.asc())
        .all()
    }

    priced = []
    for product_id, quantity in lines:
        product = products.get(product_id)
        if product is None or not product.is_active:
            raise ProductNotAvailable(
                f"Product {product.name if product else product_id} is not available",
                product_id=product_id,
            )
        if product.stock_qty < quantity:
            raise InsufficientStock(
                product_id=product.id,
                requested=quantity,
                available=product.stock_qty,
                sku=product.sku,
            )
        priced.append(_PricedLine(product=product, quantity=quantity, unit_price_cents=product.price_cents))
    return priced


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------

def _place_order(
    *,
    user_id: int,
    lines: list[tuple[int, int]],
    shipping_address: dict,
    payment_method: str,
    notes: str | None,
) -> Order:
    """Steps 2-6 of the pipeline. Runs inside the caller's write transaction."""
    priced = _price_lines(lines)
    totals = compute_totals(sum(line.subtotal_cents for line in priced))
    order_number = next_order_number()

    for line in sorted(priced, key=lambda l: l.product.id):
        stock_ledger.reserve(
            line.product.id,
            line.quantity,
            reason=f"Order {order_number}",
            reference=order_number,
            actor_user_id=user_id,
        )

    order = Order(
        order_number=order_number,
        user_id=user_id,
        payment_method=payment_method,
        total_amount_cents=totals.total_amount_cents,
        tax_amount_cents=totals.tax_amount_cents,
        shipping_amount_cents=totals.shipping_amount_cents,
        final_amount_cents=totals.final_amount_cents,
        shipping_address=shipping_address,
        notes=notes,
        created_at=utcnow(),
    )
    for line in priced:
        order.items.append(
            OrderItem(
                product_id=line.product.id,
                product_name=line.product.name,
                product_sku=line.product.sku,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                subtotal_cents=line.subtotal_cents,
            )
        )
    order_state.start(order, "Order created")
    db.session.add(order)
    db.session.flush()
    return order


def create_order_from_cart(
    user_id: int,
    shipping_address: dict,
    payment_method: str,
    notes: str | None = None,
    clear_cart: bool = True,
) -> Order:
    """
    Turn the user's cart into a pending order, reserving stock for every line.

    Raises CartEmpty, ProductNotAvailable, InsufficientStock or
    ValidationError; on any failure nothing is persisted.
    """
    address = validate_shipping_address(shipping_address)
    payment_method = validate_payment_method(payment_method)
    notes = _validate_notes(notes)

    def _op():
        begin_write()
        cart = db.session.query(Cart).filter_by(user_id=user_id).first()
        if cart is None or not cart.items:
            raise CartEmpty("Cart is empty")

        merged: dict[int, int] = {}
        for item in cart.items:
            merged[item.product_id] = merged.get(item.product_id, 0) + item.quantity

        order = _place_order(
            user_id=user_id,
            lines=list(merged.items()),
            shipping_address=address,
            payment_method=payment_method,
            notes=notes,
        )
        if clear_cart:
            empty_cart(cart)

        db.session.commit()
        logger.info(
            "Order %s created from cart: user_id=%s items=%d final_amount_cents=%s",
            order.order_number, user_id, len(order.items), order.final_amount_cents,
        )
        return order

    return run_with_retry(_op)


def create_order(
    user_id: int,
    items: list[dict],
    shipping_address: dict,
    payment_method: str,
    notes: str | None = None,
) -> Order:
    """Direct purchase flow: same pipeline as the cart, the cart is untouched."""
    lines = _normalize_items(items)
    address = validate_shipping_address(shipping_address)
    payment_method = validate_payment_method(payment_method)
    notes = _validate_notes(notes)

    def _op():
        begin_write()
        order = _place_order(
            user_id=user_id,
            lines=lines,
            shipping_address=address,
            payment_method=payment_method,
            notes=notes,
        )
        db.session.commit()
        logger.info(
            "Order %s created: user_id=%s items=%d final_amount_cents=%s",
            order.order_number, user_id, len(order.items), order.final_amount_cents,
        )
        return order

    return run_with_retry(_op)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def _check_access(order: Order, actor: Actor | None) -> None:
    if actor is not None and not actor.can_access_user(order.user_id):
        raise AccessDenied("You do not have access to this order", {"order_id": order.id})


def get_order_by_id(order_id: int, actor: Actor | None = None) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found", {"order_id": order_id})
    _check_access(order, actor)
    return order


def estimated_delivery(order: Order):
    return order.created_at + timedelta(days=ESTIMATED_DELIVERY_DAYS)


def get_order_summary(order_id: int, actor: Actor | None = None) -> dict:
    order = get_order_by_id(order_id, actor)
    return {
        "order_number": order.order_number,
        "status": order.status,
        "payment_status": order.payment_status,
        "items_count": len(order.items),
        "final_amount_cents": order.final_amount_cents,
        "created_at": to_utc_z(order.created_at),
        "estimated_delivery": to_utc_z(estimated_delivery(order)),
    }


def list_user_orders(
    user_id: int,
    *,
    page: int | None = None,
    per_page: int | None = None,
    status: str | None = None,
) -> dict:
    q = db.session.query(Order).filter(Order.user_id == user_id)
    if status:
        order_state.validate_status(status)
        q = q.filter(Order.status == status)
    q = q.order_by(Order.created_at.desc(), Order.id.desc())
    return paginate(q, page, per_page)


def _parse_bound(value, field: str):
    try:
        return parse_iso_datetime(value) if isinstance(value, str) else value
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def _filtered_orders(
    *,
    status: str | None = None,
    payment_status: str | None = None,
    date_from=None,
    date_to=None,
    min_amount_cents: int | None = None,
    max_amount_cents: int | None = None,
    search: str | None = None,
    user_id: int | None = None,
):
    q = db.session.query(Order)
    if status:
        order_state.validate_status(status)
        q = q.filter(Order.status == status)
    if payment_status:
        order_state.validate_payment_status(payment_status)
        q = q.filter(Order.payment_status == payment_status)
    start = _parse_bound(date_from, "date_from")
    end = _parse_bound(date_to, "date_to")
    if start is not None:
        q = q.filter(Order.created_at >= start)
    if end is not None:
        q = q.filter(Order.created_at <= end)
    if min_amount_cents is not None:
        q = q.filter(Order.final_amount_cents >= min_amount_cents)
    if max_amount_cents is not None:
        q = q.filter(Order.final_amount_cents <= max_amount_cents)
    if user_id is not None:
        q = q.filter(Order.user_id == user_id)
    if search:
        pattern = f"%{search.strip()}%"
        item_match = (
            db.session.query(OrderItem.id)
            .filter(OrderItem.order_id == Order.id, OrderItem.product_name.ilike(pattern))
            .exists()
        )
        q = q.filter(or_(Order.order_number.ilike(pattern), item_match))
    return q


def list_orders(*, page: int | None = None, per_page: int | None = None, **filters) -> dict:
    """Admin listing with status/payment/date/amount/search filters."""
    q = _filtered_orders(**filters).order_by(Order.created_at.desc(), Order.id.desc())
    return paginate(q, page, per_page)


def get_order_stats(*, date_from=None, date_to=None) -> dict:
    base = _filtered_orders(date_from=date_from, date_to=date_to)
    count, revenue, average = base.with_entities(
        func.count(Order.id),
        func.coalesce(func.sum(Order.final_amount_cents), 0),
        func.coalesce(func.avg(Order.final_amount_cents), 0),
    ).one()

    by_status = {
        status: {"count": int(status_count), "total_amount_cents": int(amount or 0)}
        for status, status_count, amount in base.with_entities(
            Order.status, func.count(Order.id), func.sum(Order.final_amount_cents)
        ).group_by(Order.status).all()
    }

    return {
        "summary": {
            "total_orders": int(count),
            "total_revenue_cents": int(revenue),
            "average_order_value_cents": int(round(float(average))),
        },
        "by_status": by_status,
    }


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

def _load_for_update(order_id: int, expected_version: int | None) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found", {"order_id": order_id})
    if expected_version is not None and order.version_id != expected_version:
        raise StaleOrderVersion(
            "Order was modified by another request",
            {"order_id": order_id, "expected_version": expected_version, "current_version": order.version_id},
        )
    return order


def _cancel_locked(order: Order, reason: str | None, actor_user_id: int | None) -> None:
    """Transition to cancelled and release every line. Caller holds the write lock."""
    notes = reason or "Order cancelled"
    order_state.transition(order, ORDER_STATUS_CANCELLED, notes)

    for item in sorted(order.items, key=lambda i: i.product_id):
        stock_ledger.release(
            item.product_id,
            item.quantity,
            reason=f"Order {order.order_number} cancelled",
            reference=order.order_number,
            actor_user_id=actor_user_id,
        )

    order.cancelled_at = utcnow()
    order.cancellation_reason = reason


def cancel_order(
    order_id: int,
    actor: Actor | None = None,
    reason: str | None = None,
    expected_version: int | None = None,
) -> Order:
    """
    Cancel a pending/confirmed order and return its stock.

    A second cancel hits a terminal order and raises InvalidStatusTransition,
    so stock is never released twice.
    """
    reason = _validate_notes(reason, "reason")
    expected_version = _validate_expected_version(expected_version)

    def _op():
        begin_write()
        order = _load_for_update(order_id, expected_version)
        _check_access(order, actor)

        if order.status == ORDER_STATUS_CANCELLED:
            raise InvalidStatusTransition(order.status, ORDER_STATUS_CANCELLED)
        if not order_state.can_cancel(order):
            raise CannotCancel(
                f"Order cannot be cancelled in status {order.status}",
                {"order_id": order.id, "status": order.status},
            )

        _cancel_locked(order, reason, actor.user_id if actor else None)
        db.session.commit()
        logger.info("Order %s cancelled", order.order_number)
        return order

    return run_with_retry(_op)


def update_order_status(
    order_id: int,
    status: str,
    notes: str | None = None,
    actor: Actor | None = None,
    expected_version: int | None = None,
) -> tuple[Order, str]:
    """
    Admin status change. Returns (order, previous_status).

    A change to 'cancelled' runs the cancellation path, stock release included.
    """
    order_state.validate_status(status)
    notes = _validate_notes(notes)
    expected_version = _validate_expected_version(expected_version)

    def _op():
        begin_write()
        order = _load_for_update(order_id, expected_version)
        old_status = order.status

        if status == ORDER_STATUS_CANCELLED:
            if not order_state.can_transition(old_status, status):
                raise InvalidStatusTransition(old_status, status)
            _cancel_locked(order, notes, actor.user_id if actor else None)
        else:
            order_state.transition(order, status, notes)

        if notes:
            order.admin_notes = notes

        db.session.commit()
        logger.info("Order %s status %s -> %s", order.order_number, old_status, status)
        return order, old_status

    return run_with_retry(_op)


def update_payment_status(
    order_id: int,
    payment_status: str,
    transaction_id: str | None = None,
    payment_method: str | None = None,
    payment_notes: str | None = None,
    expected_version: int | None = None,
) -> Order:
    """Record an externally reported payment state. No stock effect."""
    order_state.validate_payment_status(payment_status)
    if payment_method is not None:
        validate_payment_method(payment_method)
    payment_notes = _validate_notes(payment_notes, "payment_notes")
    expected_version = _validate_expected_version(expected_version)

    def _op():
        begin_write()
        order = _load_for_update(order_id, expected_version)

        if payment_method:
            order.payment_method = payment_method
        if transaction_id:
            order.transaction_id = transaction_id
        if payment_notes:
            order.payment_notes = payment_notes

        advanced = order_state.apply_payment_status(order, payment_status)

        db.session.commit()
        logger.info(
            "Order %s payment_status=%s%s",
            order.order_number, payment_status, " (auto-confirmed)" if advanced else "",
        )
        return order

    return run_with_retry(_op)
