# backend/shopcore/routes/inventory.py
"""
Inventory management routes.

SECURITY: All routes require an actor.
- Viewing and recording transactions requires admin or moderator
- Editing metadata and reversing entries requires admin

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- date_from/date_to filtering is inclusive.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..actors import ROLE_ADMIN, ROLE_MODERATOR
from ..errors import ShopError
from ..services import inventory_service
from ..decorators import require_actor, require_role


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

STAFF_ROLES = (ROLE_ADMIN, ROLE_MODERATOR)


@inventory_bp.post("/transactions")
@require_actor
@require_role(*STAFF_ROLES)
def create_transaction_route():
    """
    Record one inventory transaction and apply it to stock.

    Body: {product_id, type, quantity (signed), reason, notes?, cost_cents?,
           supplier?, batch_number?, expiration_date?, reference?}
    """
    payload = request.get_json(silent=True) or {}

    try:
        tx = inventory_service.create_inventory_transaction(payload, actor_user_id=g.actor.user_id)
        return jsonify({"transaction": tx.to_dict()}), 201

    except ShopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create inventory transaction")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/transactions/bulk")
@require_actor
@require_role(*STAFF_ROLES)
def bulk_transactions_route():
    """
    All-or-nothing batch.

    Body: {transactions: [{product_id, quantity, cost_cents?}], type, reason, notes?, supplier?}
    """
    payload = request.get_json(silent=True) or {}

    try:
        created = inventory_service.bulk_create_transactions(
            payload.get("transactions"),
            payload.get("type"),
            payload.get("reason"),
            notes=payload.get("notes"),
            supplier=payload.get("supplier"),
            actor_user_id=g.actor.user_id,
        )
        return jsonify({
            "transactions": [tx.to_dict() for tx in created],
            "count": len(created),
        }), 201

    except ShopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create bulk inventory transactions")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/transactions")
@require_actor
@require_role(*STAFF_ROLES)
def list_transactions_route():
    """Query: page, per_page, product_id, type, date_from, date_to, created_by_user_id, reference"""
    args = request.args
    try:
        result = inventory_service.list_transactions(
            page=args.get("page", type=int),
            per_page=args.get("per_page", type=int),
            product_id=args.get("product_id", type=int),
            tx_type=args.get("type"),
            date_from=args.get("date_from"),
            date_to=args.get("date_to"),
            created_by_user_id=args.get("created_by_user_id", type=int),
            reference=args.get("reference"),
        )
        return jsonify(result), 200

    except ShopError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("/transactions/<int:transaction_id>")
@require_actor
@require_role(*STAFF_ROLES)
def get_transaction_route(transaction_id: int):
    try:
        tx = inventory_service.get_transaction(transaction_id)
        return jsonify({"transaction": tx.to_dict()}), 200

    except ShopError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.patch("/transactions/<int:transaction_id>")
@require_actor
@require_role(ROLE_ADMIN)
def update_transaction_route(transaction_id: int):
    """Edit reason/notes. Quantity, type and product cannot be changed; use a reversal."""
    payload = request.get_json(silent=True) or {}

    try:
        tx = inventory_service.update_transaction_metadata(transaction_id, payload)
        return jsonify({"transaction": tx.to_dict()}), 200

    except ShopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update inventory transaction")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/transactions/<int:transaction_id>/reverse")
@require_actor
@require_role(ROLE_ADMIN)
def reverse_transaction_route(transaction_id: int):
    """
    Append an adjustment that exactly undoes an entry.

    Body: {"reason": str}
    """
    payload = request.get_json(silent=True) or {}

    try:
        tx = inventory_service.reverse_transaction(
            transaction_id,
            payload.get("reason"),
            actor_user_id=g.actor.user_id,
        )
        return jsonify({"transaction": tx.to_dict()}), 201

    except ShopError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reverse inventory transaction")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/products/<int:product_id>/history")
@require_actor
@require_role(*STAFF_ROLES)
def product_history_route(product_id: int):
    """Query: page, per_page, type, date_from, date_to"""
    args = request.args
    try:
        result = inventory_service.get_product_history(
            product_id,
            page=args.get("page", type=int),
            per_page=args.get("per_page", type=int),
            tx_type=args.get("type"),
            date_from=args.get("date_from"),
            date_to=args.get("date_to"),
        )
        return jsonify(result), 200

    except ShopError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("/report")
@require_actor
@require_role(*STAFF_ROLES)
def inventory_report_route():
    """Query: low_stock_threshold, include_inactive, days"""
    args = request.args
    threshold = args.get("low_stock_threshold", type=int)
    if threshold is None:
        threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 10)

    report = inventory_service.get_inventory_report(
        low_stock_threshold=threshold,
        include_inactive=args.get("include_inactive", "false").lower() in ("1", "true", "yes"),
        days=args.get("days", 30, type=int),
    )
    return jsonify(report), 200


@inventory_bp.get("/low-stock")
@require_actor
@require_role(*STAFF_ROLES)
def low_stock_route():
    threshold = request.args.get("threshold", type=int)
    if threshold is None:
        threshold = current_app.config.get("LOW_STOCK_THRESHOLD", 10)
    products = inventory_service.get_low_stock_products(threshold)
    return jsonify({"products": products, "count": len(products), "threshold": threshold}), 200


@inventory_bp.get("/out-of-stock")
@require_actor
@require_role(*STAFF_ROLES)
def out_of_stock_route():
    products = inventory_service.get_out_of_stock_products()
    return jsonify({"products": products, "count": len(products)}), 200


@inventory_bp.get("/analytics")
@require_actor
@require_role(*STAFF_ROLES)
def analytics_route():
    """
    Movement and stock analytics.

    Query: date_from, date_to (general stats window), product_id (adds stats,
    daily trend and restock prediction for one product), days (default 30)
    """
    args = request.args
    try:
        result = inventory_service.get_inventory_analytics(
            date_from=args.get("date_from"),
            date_to=args.get("date_to"),
            product_id=args.get("product_id", type=int),
            days=args.get("days", 30, type=int),
            low_stock_threshold=current_app.config.get("LOW_STOCK_THRESHOLD", 10),
        )
        return jsonify(result), 200

    except ShopError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("/reconcile")
@require_actor
@require_role(ROLE_ADMIN)
def reconcile_route():
    """Compare stock_qty with the sum of ledger entries per product. Read-only."""
    result = inventory_service.reconcile_inventory(request.args.get("product_id", type=int))
    return jsonify(result), 200
