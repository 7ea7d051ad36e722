# Overview: Flask API routes for checkout and order lifecycle; parses input and returns JSON responses.

# backend/shopcore/routes/orders.py
"""
Order API routes.

SECURITY:
- Checkout, own-order listing, viewing and cancelling require an actor.
  Viewing/cancelling someone else's order requires the admin role.
- Status/payment updates, the global listing and stats require admin.

Concurrency:
- Mutating routes accept an optional "expected_version" (the order's
  version_id as last seen by the client). A mismatch returns 409.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..actors import ROLE_ADMIN
from ..errors import ShopError
from ..services import order_service
from ..time_utils import to_utc_z
from ..decorators import require_actor, require_role


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _order_response(order, status: int = 200, **extra):
    body = {"order": order.to_dict(include_details=True)}
    body.update(extra)
    return jsonify(body), status


@orders_bp.post("")
@require_actor
def checkout_route():
    """
    Create an order from the caller's cart.

    Body:
    - shipping_address: {street, city, state, zip_code, country?}
    - payment_method: credit_card | debit_card | paypal | bank_transfer
    - notes: optional
    - clear_cart: optional bool (default true)
    """
    try:
        data = request.get_json(silent=True) or {}
        clear_cart = data.get("clear_cart", True)
        if not isinstance(clear_cart, bool):
            return jsonify({"error": "clear_cart must be a boolean"}), 400

        order = order_service.create_order_from_cart(
            g.actor.user_id,
            shipping_address=data.get("shipping_address"),
            payment_method=data.get("payment_method"),
            notes=data.get("notes"),
            clear_cart=clear_cart,
        )
        return _order_response(order, 201)

    except ShopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order from cart")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/direct")
@require_actor
def direct_order_route():
    """
    Create an order from explicit items, bypassing the cart.

    Body: {"items": [{"product_id", "quantity"}], shipping_address, payment_method, notes?}
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.create_order(
            g.actor.user_id,
            items=data.get("items"),
            shipping_address=data.get("shipping_address"),
            payment_method=data.get("payment_method"),
            notes=data.get("notes"),
        )
        return _order_response(order, 201)

    except ShopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create direct order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_actor
def list_my_orders_route():
    """List the caller's orders, newest first. Query: page, per_page, status."""
    try:
        result = order_service.list_user_orders(
            g.actor.user_id,
            page=request.args.get("page", type=int),
            per_page=request.args.get("per_page", type=int),
            status=request.args.get("status"),
        )
        return jsonify(result), 200

    except ShopError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.get("/<int:order_id>")
@require_actor
def get_order_route(order_id: int):
    try:
        order = order_service.get_order_by_id(order_id, g.actor)
        return _order_response(
            order,
            estimated_delivery=to_utc_z(order_service.estimated_delivery(order)),
        )

    except ShopError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.get("/<int:order_id>/summary")
@require_actor
def order_summary_route(order_id: int):
    try:
        return jsonify(order_service.get_order_summary(order_id, g.actor)), 200

    except ShopError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.post("/<int:order_id>/cancel")
@require_actor
def cancel_order_route(order_id: int):
    """
    Cancel an order (owner or admin) and return its stock.

    Only pending/confirmed orders can be cancelled.
    Body: {"reason"?: str, "expected_version"?: int}
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.cancel_order(
            order_id,
            actor=g.actor,
            reason=data.get("reason"),
            expected_version=data.get("expected_version"),
        )
        return _order_response(order)

    except ShopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/admin")
@require_actor
@require_role(ROLE_ADMIN)
def list_all_orders_route():
    """
    Admin order listing.

    Query: page, per_page, status, payment_status, date_from, date_to,
    min_amount_cents, max_amount_cents, user_id, search (order number or item name)
    """
    try:
        args = request.args
        result = order_service.list_orders(
            page=args.get("page", type=int),
            per_page=args.get("per_page", type=int),
            status=args.get("status"),
            payment_status=args.get("payment_status"),
            date_from=args.get("date_from"),
            date_to=args.get("date_to"),
            min_amount_cents=args.get("min_amount_cents", type=int),
            max_amount_cents=args.get("max_amount_cents", type=int),
            user_id=args.get("user_id", type=int),
            search=args.get("search"),
        )
        return jsonify(result), 200

    except ShopError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.get("/admin/stats")
@require_actor
@require_role(ROLE_ADMIN)
def order_stats_route():
    try:
        stats = order_service.get_order_stats(
            date_from=request.args.get("date_from"),
            date_to=request.args.get("date_to"),
        )
        return jsonify(stats), 200

    except ShopError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.put("/<int:order_id>/status")
@require_actor
@require_role(ROLE_ADMIN)
def update_status_route(order_id: int):
    """
    Move an order through the status state machine.

    Body: {"status": str, "notes"?: str, "expected_version"?: int}
    A change to 'cancelled' also returns the order's stock.
    """
    try:
        data = request.get_json(silent=True) or {}
        status = data.get("status")
        if not status:
            return jsonify({"error": "status required"}), 400

        order, old_status = order_service.update_order_status(
            order_id,
            status,
            notes=data.get("notes"),
            actor=g.actor,
            expected_version=data.get("expected_version"),
        )
        return _order_response(order, status_change={"from": old_status, "to": order.status})

    except ShopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/payment")
@require_actor
@require_role(ROLE_ADMIN)
def update_payment_route(order_id: int):
    """
    Record a payment status reported by the payment provider.

    Body: {"payment_status", "transaction_id"?, "payment_method"?, "payment_notes"?, "expected_version"?}
    'paid' on a pending order confirms it automatically.
    """
    try:
        data = request.get_json(silent=True) or {}
        payment_status = data.get("payment_status")
        if not payment_status:
            return jsonify({"error": "payment_status required"}), 400

        order = order_service.update_payment_status(
            order_id,
            payment_status,
            transaction_id=data.get("transaction_id"),
            payment_method=data.get("payment_method"),
            payment_notes=data.get("payment_notes"),
            expected_version=data.get("expected_version"),
        )
        return _order_response(order)

    except ShopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update payment status")
        return jsonify({"error": "Internal server error"}), 500
