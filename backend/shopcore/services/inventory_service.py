# Overview: Service-layer operations for the inventory transaction log.

"""
Inventory Transaction Log Invariants & Time Semantics (authoritative)

Canonical time handling:
- All internal datetimes are UTC-naive (tzinfo=None).
- Date filters accept ISO-8601 strings or datetimes and are inclusive.

Ledger model:
- Every stock_qty mutation appends one InventoryTransaction (stock_ledger).
- Entries are append-only. Only reason/notes may be edited afterwards.
- Corrections are reversing entries (reverse_transaction), never deletes.
- Reconciliation: SUM(quantity) per product == Product.stock_qty.

Type/sign rules:
- sale, damage, expired: negative quantity
- purchase, return:      positive quantity
- adjustment, transfer:  non-zero, either sign

Bulk semantics:
- bulk_create_transactions validates EVERY entry (including the resulting
  stock per product) before any write. One invalid entry aborts the batch
  with nothing persisted and no stock mutated. The writes themselves run in
  one DB transaction, so a conditional decrement lost to a concurrent
  checkout rolls the whole batch back too.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy import func

from ..errors import ProductNotFound, TransactionNotFound, ValidationError
from ..extensions import db
from ..models import Product, InventoryTransaction
from ..models.inventory import TRANSACTION_TYPES, TRANSACTION_SIGNS, TX_ADJUSTMENT, TX_SALE
from ..time_utils import parse_iso_datetime, utcnow, to_utc_z
from . import stock_ledger
from .concurrency import begin_write, lock_for_update, run_with_retry
from .pagination import paginate

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 500
MAX_NOTES_LENGTH = 1000
EDITABLE_FIELDS = {"reason", "notes"}


@dataclass(frozen=True)
class TransactionEntry:
    """A validated, not-yet-applied ledger entry."""
    product_id: int
    type: str
    quantity: int
    reason: str
    notes: str | None = None
    cost_cents: int | None = None
    supplier: str | None = None
    batch_number: str | None = None
    expiration_date: date | None = None
    reference: str | None = None


def _as_int(value, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    raise ValidationError(f"{field} must be an integer")


def _optional_str(value, field: str, max_length: int) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return value or None


def _parse_date(value) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            raise ValidationError("expiration_date must be an ISO-8601 date")
    raise ValidationError("expiration_date must be an ISO-8601 date")


def _parse_bound(value, field: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def validate_type(tx_type) -> str:
    if tx_type not in TRANSACTION_TYPES:
        raise ValidationError(
            f"Invalid transaction type '{tx_type}'. Must be one of: {', '.join(TRANSACTION_TYPES)}"
        )
    return tx_type


def validate_sign(tx_type: str, quantity: int) -> None:
    if quantity == 0:
        raise ValidationError("quantity must be non-zero")
    sign = TRANSACTION_SIGNS[tx_type]
    if sign > 0 and quantity < 0:
        raise ValidationError(f"{tx_type} transactions must have a positive quantity")
    if sign < 0 and quantity > 0:
        raise ValidationError(f"{tx_type} transactions must have a negative quantity")


def validate_entry(
    data: dict,
    *,
    default_type: str | None = None,
    default_reason: str | None = None,
) -> TransactionEntry:
    """
    Validate one raw entry dict into a TransactionEntry.

    Accepts 'product_id' (or 'product'). type/reason fall back to the
    batch-level defaults when given.
    """
    if not isinstance(data, dict):
        raise ValidationError("transaction entry must be an object")

    product_id = data.get("product_id", data.get("product"))
    if product_id is None:
        raise ValidationError("product_id is required")
    product_id = _as_int(product_id, "product_id")

    tx_type = validate_type(data.get("type") or default_type)

    if data.get("quantity") is None:
        raise ValidationError("quantity is required")
    quantity = _as_int(data["quantity"], "quantity")
    validate_sign(tx_type, quantity)

    reason = _optional_str(data.get("reason") or default_reason, "reason", MAX_REASON_LENGTH)
    if not reason:
        raise ValidationError("reason is required")

    cost_cents = data.get("cost_cents")
    if cost_cents is not None:
        cost_cents = _as_int(cost_cents, "cost_cents")
        if cost_cents < 0:
            raise ValidationError("cost_cents must be non-negative")

    return TransactionEntry(
        product_id=product_id,
        type=tx_type,
        quantity=quantity,
        reason=reason,
        notes=_optional_str(data.get("notes"), "notes", MAX_NOTES_LENGTH),
        cost_cents=cost_cents,
        supplier=_optional_str(data.get("supplier"), "supplier", 255),
        batch_number=_optional_str(data.get("batch_number"), "batch_number", 64),
        expiration_date=_parse_date(data.get("expiration_date")),
        reference=_optional_str(data.get("reference"), "reference", 64),
    )


def _apply_entry(entry: TransactionEntry, actor_user_id: int | None) -> InventoryTransaction:
    return stock_ledger.apply_delta(
        entry.product_id,
        entry.quantity,
        tx_type=entry.type,
        reason=entry.reason,
        notes=entry.notes,
        reference=entry.reference,
        actor_user_id=actor_user_id,
        cost_cents=entry.cost_cents,
        supplier=entry.supplier,
        batch_number=entry.batch_number,
        expiration_date=entry.expiration_date,
    )


def create_inventory_transaction(data: dict, actor_user_id: int | None = None) -> InventoryTransaction:
    """
    Append one ledger entry and apply its delta to the stock counter.

    Raises ValidationError for bad input, ProductNotFound, or
    InsufficientStock when a decrease would take stock below zero.
    """
    entry = validate_entry(data)

    def _op():
        begin_write()
        tx = _apply_entry(entry, actor_user_id)
        db.session.commit()
        logger.info(
            "Inventory transaction %s: product_id=%s type=%s quantity=%s",
            tx.id, tx.product_id, tx.type, tx.quantity,
        )
        return tx

    return run_with_retry(_op)


def bulk_create_transactions(
    entries: list[dict],
    tx_type: str,
    reason: str,
    *,
    notes: str | None = None,
    supplier: str | None = None,
    actor_user_id: int | None = None,
) -> list[InventoryTransaction]:
    """
    All-or-nothing batch of ledger entries sharing a type and reason.

    Every entry is validated (shape, sign, product existence, resulting
    stock >= 0 accumulated per product) before anything is written.
    """
    validate_type(tx_type)
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required")
    if not isinstance(entries, list) or not entries:
        raise ValidationError("transactions must be a non-empty list")

    validated: list[TransactionEntry] = []
    errors = []
    for index, raw in enumerate(entries):
        if isinstance(raw, dict):
            raw = {**raw, "type": tx_type, "reason": raw.get("reason") or reason}
            raw.setdefault("notes", notes)
            raw.setdefault("supplier", supplier)
        try:
            validated.append(validate_entry(raw))
        except ValidationError as e:
            errors.append({"index": index, "error": e.message})

    if errors:
        raise ValidationError("Bulk transaction rejected: invalid entries", {"errors": errors})

    def _op():
        begin_write()

        product_ids = sorted({entry.product_id for entry in validated})
        rows = (
            lock_for_update(db.session.query(Product.id, Product.stock_qty))
            .filter(Product.id.in_(product_ids))
            .order_by(Product.id.asc())
            .all()
        )
        projected = {row.id: int(row.stock_qty) for row in rows}

        stock_errors = []
        for index, entry in enumerate(validated):
            if entry.product_id not in projected:
                stock_errors.append({"index": index, "error": f"product {entry.product_id} not found"})
                continue
            projected[entry.product_id] += entry.quantity
            if projected[entry.product_id] < 0:
                stock_errors.append({
                    "index": index,
                    "error": f"entry would make stock negative for product {entry.product_id}",
                })

        if stock_errors:
            raise ValidationError("Bulk transaction rejected: invalid entries", {"errors": stock_errors})

        created = [_apply_entry(entry, actor_user_id) for entry in validated]
        db.session.commit()
        logger.info("Bulk inventory transaction: %d %s entries", len(created), tx_type)
        return created

    return run_with_retry(_op)


def get_transaction(transaction_id: int) -> InventoryTransaction:
    tx = db.session.get(InventoryTransaction, transaction_id)
    if tx is None:
        raise TransactionNotFound(f"Inventory transaction {transaction_id} not found")
    return tx


def update_transaction_metadata(transaction_id: int, patch: dict) -> InventoryTransaction:
    """Edit reason/notes only. Quantity, type and product are immutable."""
    if not isinstance(patch, dict) or not patch:
        raise ValidationError("nothing to update")
    forbidden = set(patch) - EDITABLE_FIELDS
    if forbidden:
        raise ValidationError(
            f"Only {', '.join(sorted(EDITABLE_FIELDS))} can be edited",
            {"fields": sorted(forbidden)},
        )

    def _op():
        tx = get_transaction(transaction_id)
        if "reason" in patch:
            reason = _optional_str(patch["reason"], "reason", MAX_REASON_LENGTH)
            if not reason:
                raise ValidationError("reason cannot be empty")
            tx.reason = reason
        if "notes" in patch:
            tx.notes = _optional_str(patch["notes"], "notes", MAX_NOTES_LENGTH)
        db.session.commit()
        return tx

    return run_with_retry(_op)


def reverse_transaction(
    transaction_id: int,
    reason: str,
    actor_user_id: int | None = None,
) -> InventoryTransaction:
    """
    Admin correction: append an adjustment that exactly undoes an entry.

    An entry can be reversed once; reversal entries cannot be reversed.
    """
    reason = _optional_str(reason, "reason", MAX_REASON_LENGTH)
    if not reason:
        raise ValidationError("reason is required")

    def _op():
        begin_write()
        original = get_transaction(transaction_id)
        if original.reverses_transaction_id is not None:
            raise ValidationError("A reversal entry cannot itself be reversed")

        existing = (
            db.session.query(InventoryTransaction.id)
            .filter_by(reverses_transaction_id=original.id)
            .first()
        )
        if existing is not None:
            raise ValidationError(
                f"Transaction {original.id} was already reversed",
                {"reversal_id": existing.id},
            )

        tx = stock_ledger.apply_delta(
            original.product_id,
            -original.quantity,
            tx_type=TX_ADJUSTMENT,
            reason=f"Reversal of #{original.id}: {reason}",
            reference=original.reference,
            actor_user_id=actor_user_id,
            reverses_transaction_id=original.id,
        )
        db.session.commit()
        logger.info("Inventory transaction %s reversed by %s", original.id, tx.id)
        return tx

    return run_with_retry(_op)


def _filtered_query(
    *,
    product_id: int | None = None,
    tx_type: str | None = None,
    date_from=None,
    date_to=None,
    created_by_user_id: int | None = None,
    reference: str | None = None,
):
    q = db.session.query(InventoryTransaction)
    if product_id is not None:
        q = q.filter(InventoryTransaction.product_id == product_id)
    if tx_type:
        validate_type(tx_type)
        q = q.filter(InventoryTransaction.type == tx_type)
    start = _parse_bound(date_from, "date_from")
    end = _parse_bound(date_to, "date_to")
    if start is not None:
        q = q.filter(InventoryTransaction.created_at >= start)
    if end is not None:
        q = q.filter(InventoryTransaction.created_at <= end)
    if created_by_user_id is not None:
        q = q.filter(InventoryTransaction.created_by_user_id == created_by_user_id)
    if reference:
        q = q.filter(InventoryTransaction.reference == reference)
    return q.order_by(InventoryTransaction.created_at.desc(), InventoryTransaction.id.desc())


def list_transactions(
    *,
    page: int | None = None,
    per_page: int | None = None,
    **filters,
) -> dict:
    return paginate(_filtered_query(**filters), page, per_page)


def get_product_history(
    product_id: int,
    *,
    page: int | None = None,
    per_page: int | None = None,
    tx_type: str | None = None,
    date_from=None,
    date_to=None,
) -> dict:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFound(f"Product {product_id} not found", {"product_id": product_id})

    result = paginate(
        _filtered_query(product_id=product_id, tx_type=tx_type, date_from=date_from, date_to=date_to),
        page,
        per_page,
    )
    result["product"] = {
        "id": product.id,
        "name": product.name,
        "sku": product.sku,
        "current_stock": product.stock_qty,
    }
    return result


def stock_status(stock_qty: int, low_threshold: int) -> str:
    if stock_qty == 0:
        return "out"
    if stock_qty <= low_threshold:
        return "low"
    return "normal"


def _type_stats_by_product(since: datetime) -> dict[int, dict]:
    rows = (
        db.session.query(
            InventoryTransaction.product_id,
            InventoryTransaction.type,
            func.count(InventoryTransaction.id),
            func.coalesce(func.sum(InventoryTransaction.quantity), 0),
        )
        .filter(InventoryTransaction.created_at >= since)
        .group_by(InventoryTransaction.product_id, InventoryTransaction.type)
        .all()
    )
    stats: dict[int, dict] = {}
    for product_id, tx_type, count, quantity in rows:
        bucket = stats.setdefault(product_id, {"total_transactions": 0, "by_type": {}})
        bucket["total_transactions"] += int(count)
        bucket["by_type"][tx_type] = {"count": int(count), "quantity": int(quantity)}
    return stats


def get_inventory_report(
    *,
    low_stock_threshold: int = 10,
    include_inactive: bool = False,
    days: int = 30,
) -> dict:
    """Stock position per product plus per-type movement stats for the last N days."""
    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    products = q.order_by(Product.name.asc(), Product.id.asc()).all()

    stats = _type_stats_by_product(utcnow() - timedelta(days=days))
    empty = {"total_transactions": 0, "by_type": {}}

    rows = [
        {
            "id": p.id,
            "name": p.name,
            "sku": p.sku,
            "current_stock": p.stock_qty,
            "price_cents": p.price_cents,
            "stock_value_cents": p.stock_qty * p.price_cents,
            "stock_status": stock_status(p.stock_qty, low_stock_threshold),
            "is_active": p.is_active,
            "stats": stats.get(p.id, empty),
        }
        for p in products
    ]

    total = len(rows)
    return {
        "summary": {
            "total_products": total,
            "total_value_cents": sum(r["stock_value_cents"] for r in rows),
            "low_stock_count": sum(1 for r in rows if r["stock_status"] == "low"),
            "out_of_stock_count": sum(1 for r in rows if r["stock_status"] == "out"),
            "average_stock": (sum(r["current_stock"] for r in rows) / total) if total else 0,
        },
        "products": rows,
        "period_days": days,
        "generated_at": to_utc_z(utcnow()),
    }


def get_low_stock_products(threshold: int = 10) -> list[dict]:
    products = (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            Product.stock_qty > 0,
            Product.stock_qty <= threshold,
        )
        .order_by(Product.stock_qty.asc(), Product.id.asc())
        .all()
    )
    return [
        {
            "id": p.id,
            "name": p.name,
            "sku": p.sku,
            "current_stock": p.stock_qty,
            "threshold": threshold,
            "restock_recommendation": max(threshold * 2, 20),
        }
        for p in products
    ]


def get_out_of_stock_products() -> list[dict]:
    products = (
        db.session.query(Product)
        .filter(Product.is_active.is_(True), Product.stock_qty == 0)
        .order_by(Product.updated_at.desc(), Product.id.asc())
        .all()
    )
    return [
        {
            "id": p.id,
            "name": p.name,
            "sku": p.sku,
            "last_stock_update": to_utc_z(p.updated_at),
        }
        for p in products
    ]


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------

def _window_days(days) -> int:
    days = _as_int(days, "days")
    if days < 1 or days > 365:
        raise ValidationError("days must be between 1 and 365")
    return days


def _require_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFound(f"Product {product_id} not found", {"product_id": product_id})
    return product


def _totals_by_type(*filters) -> dict:
    rows = (
        db.session.query(
            InventoryTransaction.type,
            func.count(InventoryTransaction.id),
            func.coalesce(func.sum(InventoryTransaction.quantity), 0),
        )
        .filter(*filters)
        .group_by(InventoryTransaction.type)
        .all()
    )
    return {tx_type: {"count": int(count), "quantity": int(quantity)} for tx_type, count, quantity in rows}


def get_general_stats(date_from=None, date_to=None, low_stock_threshold: int = 10) -> dict:
    """Ledger movement per type in a date range, plus catalog-wide stock aggregates."""
    start = _parse_bound(date_from, "date_from")
    end = _parse_bound(date_to, "date_to")

    filters = []
    if start:
        filters.append(InventoryTransaction.created_at >= start)
    if end:
        filters.append(InventoryTransaction.created_at <= end)

    products = db.session.query(Product.stock_qty, Product.price_cents, Product.is_active).all()
    statuses = [stock_status(p.stock_qty, low_stock_threshold) for p in products]
    total = len(products)

    return {
        "transactions": _totals_by_type(*filters),
        "products": {
            "total_products": total,
            "active_products": sum(1 for p in products if p.is_active),
            "total_stock_value_cents": sum(p.stock_qty * p.price_cents for p in products),
            "average_stock": (sum(p.stock_qty for p in products) / total) if total else 0,
            "low_stock_products": statuses.count("low"),
            "out_of_stock_products": statuses.count("out"),
        },
    }


def get_product_stats(product_id: int, days: int = 30) -> dict:
    _require_product(product_id)
    days = _window_days(days)
    by_type = _totals_by_type(
        InventoryTransaction.product_id == product_id,
        InventoryTransaction.created_at >= utcnow() - timedelta(days=days),
    )
    return {
        "total_transactions": sum(bucket["count"] for bucket in by_type.values()),
        "by_type": by_type,
        "period_days": days,
    }


def get_trend_analysis(product_id: int, days: int = 30) -> dict:
    """Daily movement per type for one product, oldest day first."""
    _require_product(product_id)
    days = _window_days(days)
    day = func.date(InventoryTransaction.created_at)
    rows = (
        db.session.query(
            day,
            InventoryTransaction.type,
            func.count(InventoryTransaction.id),
            func.coalesce(func.sum(InventoryTransaction.quantity), 0),
        )
        .filter(
            InventoryTransaction.product_id == product_id,
            InventoryTransaction.created_at >= utcnow() - timedelta(days=days),
        )
        .group_by(day, InventoryTransaction.type)
        .order_by(day.asc())
        .all()
    )

    trends: dict[str, dict] = {}
    for bucket_day, tx_type, count, quantity in rows:
        trends.setdefault(str(bucket_day), {})[tx_type] = {
            "quantity": int(quantity),
            "transactions": int(count),
        }
    return {"product_id": product_id, "period_days": days, "trends": trends}


def predict_restock(product_id: int, days: int = 30) -> dict | None:
    """
    Estimate when a product runs out from its average daily sales.

    Returns None when there were no sales in the window. Confidence grows
    with the number of sale entries: >10 high, >5 medium, else low.
    """
    product = _require_product(product_id)
    days = _window_days(days)
    sales = _totals_by_type(
        InventoryTransaction.product_id == product_id,
        InventoryTransaction.type == TX_SALE,
        InventoryTransaction.created_at >= utcnow() - timedelta(days=days),
    ).get(TX_SALE)
    if not sales or sales["quantity"] == 0:
        return None

    units_sold = -sales["quantity"]
    daily_average = units_sold / days
    days_left = product.stock_qty * days // units_sold

    if sales["count"] > 10:
        confidence = "high"
    elif sales["count"] > 5:
        confidence = "medium"
    else:
        confidence = "low"

    return {
        "current_stock": product.stock_qty,
        "daily_average_sales": round(daily_average, 2),
        "estimated_days_left": days_left,
        "predicted_restock_date": (utcnow().date() + timedelta(days=days_left)).isoformat(),
        "confidence": confidence,
    }


def get_inventory_analytics(
    *,
    date_from=None,
    date_to=None,
    product_id: int | None = None,
    days: int = 30,
    low_stock_threshold: int = 10,
) -> dict:
    result = {"general": get_general_stats(date_from, date_to, low_stock_threshold)}
    if product_id is not None:
        result["product"] = {
            "stats": get_product_stats(product_id, days),
            "trend": get_trend_analysis(product_id, days),
            "restock_prediction": predict_restock(product_id, days),
        }
    return result


def reconcile_inventory(product_id: int | None = None) -> dict:
    """
    Compare each product's stock_qty with the sum of its ledger entries.

    Read-only. A non-empty 'drift' list means something mutated stock_qty
    outside the stock ledger.
    """
    ledger_sum = (
        db.session.query(
            InventoryTransaction.product_id.label("product_id"),
            func.coalesce(func.sum(InventoryTransaction.quantity), 0).label("ledger_qty"),
        )
        .group_by(InventoryTransaction.product_id)
        .subquery()
    )
    q = (
        db.session.query(Product.id, Product.sku, Product.stock_qty, ledger_sum.c.ledger_qty)
        .outerjoin(ledger_sum, ledger_sum.c.product_id == Product.id)
    )
    if product_id is not None:
        q = q.filter(Product.id == product_id)

    checked = 0
    drift = []
    for pid, sku, stock_qty, ledger_qty in q.order_by(Product.id.asc()).all():
        checked += 1
        ledger_qty = int(ledger_qty or 0)
        if ledger_qty != stock_qty:
            drift.append({
                "product_id": pid,
                "sku": sku,
                "stock_qty": stock_qty,
                "ledger_qty": ledger_qty,
                "difference": stock_qty - ledger_qty,
            })

    if drift:
        logger.warning("Inventory drift detected on %d product(s)", len(drift))
    return {"checked": checked, "drift": drift, "is_consistent": not drift}


__all__ = [
    "TransactionEntry",
    "validate_entry",
    "create_inventory_transaction",
    "bulk_create_transactions",
    "get_transaction",
    "update_transaction_metadata",
    "reverse_transaction",
    "list_transactions",
    "get_product_history",
    "get_inventory_report",
    "get_low_stock_products",
    "get_out_of_stock_products",
    "get_general_stats",
    "get_product_stats",
    "get_trend_analysis",
    "predict_restock",
    "get_inventory_analytics",
    "reconcile_inventory",
]
