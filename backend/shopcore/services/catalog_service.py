# Overview: Minimal product catalog capability used by checkout and inventory.

"""
The catalog is an external collaborator of the checkout core. This module
only offers what the core needs: lookup, creation with an opening stock
balance, price changes and activation. Opening stock is booked as a
'purchase' ledger entry so SUM(ledger) == stock_qty from day one.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..errors import ProductNotFound, ValidationError
from ..extensions import db
from ..models import Product
from ..models.inventory import TX_PURCHASE
from . import stock_ledger
from .concurrency import begin_write, run_with_retry


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFound(f"Product {product_id} not found", {"product_id": product_id})
    return product


def create_product(
    *,
    sku: str,
    name: str,
    price_cents: int,
    initial_stock: int = 0,
    description: str | None = None,
    is_active: bool = True,
    actor_user_id: int | None = None,
) -> Product:
    if not sku or not sku.strip():
        raise ValidationError("sku is required")
    if not name or not name.strip():
        raise ValidationError("name is required")
    if isinstance(price_cents, bool) or not isinstance(price_cents, int) or price_cents < 0:
        raise ValidationError("price_cents must be a non-negative integer")
    if isinstance(initial_stock, bool) or not isinstance(initial_stock, int) or initial_stock < 0:
        raise ValidationError("initial_stock must be a non-negative integer")

    def _op():
        begin_write()
        product = Product(
            sku=sku.strip(),
            name=name.strip(),
            description=description,
            price_cents=price_cents,
            stock_qty=0,
            is_active=is_active,
        )
        db.session.add(product)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise ValidationError(f"SKU {sku!r} already exists", {"sku": sku})

        if initial_stock > 0:
            stock_ledger.apply_delta(
                product.id,
                initial_stock,
                tx_type=TX_PURCHASE,
                reason="Initial stock",
                actor_user_id=actor_user_id,
            )

        db.session.commit()
        return product

    return run_with_retry(_op)


def set_price(product_id: int, price_cents: int) -> Product:
    if isinstance(price_cents, bool) or not isinstance(price_cents, int) or price_cents < 0:
        raise ValidationError("price_cents must be a non-negative integer")

    def _op():
        product = get_product(product_id)
        product.price_cents = price_cents
        db.session.commit()
        return product

    return run_with_retry(_op)


def set_active(product_id: int, is_active: bool) -> Product:
    def _op():
        product = get_product(product_id)
        product.is_active = bool(is_active)
        db.session.commit()
        return product

    return run_with_retry(_op)
