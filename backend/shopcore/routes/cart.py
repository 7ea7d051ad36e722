# Overview: Flask API routes for the caller's cart; parses input and returns JSON responses.

# backend/shopcore/routes/cart.py
"""
Cart API routes.

SECURITY: every route requires an actor and only ever touches the
actor's own cart (g.actor.user_id).
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import ShopError
from ..services import cart_service
from ..decorators import require_actor


cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


@cart_bp.get("")
@require_actor
def get_cart_route():
    """Get (or lazily create) the caller's cart."""
    try:
        cart = cart_service.get_or_create_cart(g.actor.user_id)
        return jsonify({"cart": cart.to_dict()}), 200

    except Exception:
        current_app.logger.exception("Failed to load cart")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.get("/summary")
@require_actor
def cart_summary_route():
    return jsonify(cart_service.get_cart_summary(g.actor.user_id)), 200


@cart_bp.get("/items/count")
@require_actor
def cart_item_count_route():
    return jsonify(cart_service.get_cart_item_count(g.actor.user_id)), 200


@cart_bp.get("/items/<int:product_id>/check")
@require_actor
def check_product_route(product_id: int):
    """Whether the product already has a line in the caller's cart."""
    return jsonify(cart_service.check_product_in_cart(g.actor.user_id, product_id)), 200


@cart_bp.post("/items")
@require_actor
def add_item_route():
    """
    Add a product to the cart.

    Body: {"product_id": int, "quantity": int (default 1)}
    Merges with an existing line for the same product.
    """
    try:
        data = request.get_json(silent=True) or {}
        product_id = data.get("product_id")
        quantity = data.get("quantity", 1)

        if not product_id:
            return jsonify({"error": "product_id required"}), 400

        cart = cart_service.add_item(g.actor.user_id, product_id, quantity)
        return jsonify({"cart": cart.to_dict()}), 201

    except ShopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to add cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.put("/items/<int:item_id>")
@require_actor
def update_item_route(item_id: int):
    """Body: {"quantity": int >= 1}"""
    try:
        data = request.get_json(silent=True) or {}
        if "quantity" not in data:
            return jsonify({"error": "quantity required"}), 400

        cart = cart_service.update_item_quantity(g.actor.user_id, item_id, data["quantity"])
        return jsonify({"cart": cart.to_dict()}), 200

    except ShopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.delete("/items/<int:item_id>")
@require_actor
def remove_item_route(item_id: int):
    try:
        cart = cart_service.remove_item(g.actor.user_id, item_id)
        return jsonify({"cart": cart.to_dict()}), 200

    except ShopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to remove cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.delete("")
@require_actor
def clear_cart_route():
    try:
        cart = cart_service.clear_cart(g.actor.user_id)
        return jsonify({"cart": cart.to_dict()}), 200

    except Exception:
        current_app.logger.exception("Failed to clear cart")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.get("/validate")
@require_actor
def validate_cart_route():
    """Report deleted/inactive/out-of-stock/repriced lines without changing the cart."""
    return jsonify(cart_service.validate_cart(g.actor.user_id)), 200


@cart_bp.post("/sync-prices")
@require_actor
def sync_prices_route():
    try:
        result = cart_service.sync_cart_prices(g.actor.user_id)
        return jsonify(result), 200

    except Exception:
        current_app.logger.exception("Failed to sync cart prices")
        return jsonify({"error": "Internal server error"}), 500
