# Overview: Atomic stock counter mutations paired with their ledger entries.

"""
Stock Ledger Invariants (authoritative)

Counter model:
- Product.stock_qty is the live available quantity.
- It is changed ONLY by the statements in this module, each a single
  UPDATE ... SET stock_qty = stock_qty + :delta. Never read-then-write.

No oversell:
- Decrements are conditional: WHERE stock_qty >= :qty. Zero rows updated
  means the reservation lost (or never had) the stock; the row is re-read
  only to report the currently available quantity.
- products.stock_qty has CHECK (stock_qty >= 0) as a backstop.

Ledger pairing:
- Every successful mutation appends exactly one InventoryTransaction in the
  same DB transaction, with the signed delta and before/after quantities.
- Nothing here commits. Callers own the transaction boundary, so a
  multi-item checkout either commits all reservations + entries or none.
"""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import update

from ..errors import InsufficientStock, ProductNotAvailable, ProductNotFound, ValidationError
from ..extensions import db
from ..models import Product, InventoryTransaction
from ..models.inventory import TX_SALE, TX_RETURN
from ..time_utils import utcnow

logger = logging.getLogger(__name__)


def _require_positive_quantity(qty) -> int:
    if isinstance(qty, bool) or not isinstance(qty, int):
        raise ValidationError("quantity must be an integer")
    if qty <= 0:
        raise ValidationError("quantity must be greater than zero")
    return qty


def _current_stock(product_id: int) -> tuple[int, bool] | None:
    row = (
        db.session.query(Product.stock_qty, Product.is_active)
        .filter(Product.id == product_id)
        .first()
    )
    if row is None:
        return None
    return int(row.stock_qty), bool(row.is_active)


def _apply(product_id: int, delta: int, *, require_active: bool) -> int:
    """
    Execute the single conditional UPDATE and return the new stock_qty.

    Raises ProductNotFound / ProductNotAvailable / InsufficientStock when the
    UPDATE matched no row.
    """
    conditions = [Product.id == product_id]
    if delta < 0:
        conditions.append(Product.stock_qty >= -delta)
    if require_active:
        conditions.append(Product.is_active.is_(True))

    stmt = (
        update(Product)
        .where(*conditions)
        .values(
            stock_qty=Product.stock_qty + delta,
            version_id=Product.version_id + 1,
        )
        .returning(Product.stock_qty)
        .execution_options(synchronize_session=False)
    )
    new_qty = db.session.execute(stmt).scalar()
    if new_qty is not None:
        _expire_cached_product(product_id)
        return int(new_qty)

    current = _current_stock(product_id)
    if current is None:
        raise ProductNotFound(f"Product {product_id} not found", {"product_id": product_id})
    available, is_active = current
    if require_active and not is_active:
        raise ProductNotAvailable(f"Product {product_id} is not available", product_id=product_id)

    logger.info(
        "Stock reservation rejected: product_id=%s requested=%s available=%s",
        product_id, -delta, available,
    )
    raise InsufficientStock(product_id=product_id, requested=-delta, available=available)


def _expire_cached_product(product_id: int) -> None:
    """Make any Product already loaded in this session re-read the counter."""
    cached = db.session.identity_map.get(db.session.identity_key(Product, product_id))
    if cached is not None:
        db.session.expire(cached, ["stock_qty", "version_id", "updated_at"])


def _append_entry(
    *,
    product_id: int,
    tx_type: str,
    delta: int,
    new_qty: int,
    reason: str,
    notes: str | None = None,
    reference: str | None = None,
    actor_user_id: int | None = None,
    cost_cents: int | None = None,
    supplier: str | None = None,
    batch_number: str | None = None,
    expiration_date: date | None = None,
    reverses_transaction_id: int | None = None,
) -> InventoryTransaction:
    tx = InventoryTransaction(
        product_id=product_id,
        type=tx_type,
        quantity=delta,
        previous_qty=new_qty - delta,
        new_qty=new_qty,
        reason=reason,
        notes=notes,
        reference=reference,
        created_by_user_id=actor_user_id,
        cost_cents=cost_cents,
        supplier=supplier,
        batch_number=batch_number,
        expiration_date=expiration_date,
        reverses_transaction_id=reverses_transaction_id,
        created_at=utcnow(),
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def reserve(
    product_id: int,
    qty: int,
    *,
    reason: str,
    reference: str | None = None,
    actor_user_id: int | None = None,
) -> InventoryTransaction:
    """
    Atomically take qty units out of the available pool for an order.

    Returns the 'sale' ledger entry. Raises InsufficientStock carrying the
    currently available quantity if stock_qty < qty at execution time.
    """
    qty = _require_positive_quantity(qty)
    new_qty = _apply(product_id, -qty, require_active=True)
    return _append_entry(
        product_id=product_id,
        tx_type=TX_SALE,
        delta=-qty,
        new_qty=new_qty,
        reason=reason,
        reference=reference,
        actor_user_id=actor_user_id,
    )


def release(
    product_id: int,
    qty: int,
    *,
    reason: str,
    reference: str | None = None,
    actor_user_id: int | None = None,
) -> InventoryTransaction:
    """
    Return qty units to the available pool (inverse of reserve).

    Always succeeds for an existing product, active or not: stock that was
    reserved for a cancelled order goes back even if the product has since
    been deactivated.
    """
    qty = _require_positive_quantity(qty)
    new_qty = _apply(product_id, qty, require_active=False)
    return _append_entry(
        product_id=product_id,
        tx_type=TX_RETURN,
        delta=qty,
        new_qty=new_qty,
        reason=reason,
        reference=reference,
        actor_user_id=actor_user_id,
    )


def apply_delta(
    product_id: int,
    delta: int,
    *,
    tx_type: str,
    reason: str,
    notes: str | None = None,
    reference: str | None = None,
    actor_user_id: int | None = None,
    cost_cents: int | None = None,
    supplier: str | None = None,
    batch_number: str | None = None,
    expiration_date: date | None = None,
    reverses_transaction_id: int | None = None,
) -> InventoryTransaction:
    """
    General signed stock movement used by manual inventory transactions.

    Negative deltas are conditional exactly like reserve(); inactive products
    may still be counted, damaged or restocked.
    """
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise ValidationError("quantity must be a non-zero integer")

    new_qty = _apply(product_id, delta, require_active=False)
    return _append_entry(
        product_id=product_id,
        tx_type=tx_type,
        delta=delta,
        new_qty=new_qty,
        reason=reason,
        notes=notes,
        reference=reference,
        actor_user_id=actor_user_id,
        cost_cents=cost_cents,
        supplier=supplier,
        batch_number=batch_number,
        expiration_date=expiration_date,
        reverses_transaction_id=reverses_transaction_id,
    )
