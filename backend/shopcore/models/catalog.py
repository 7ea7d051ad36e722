from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data, owned by the catalog.

    STOCK COUNTER:
    stock_qty is the live available quantity. It is ONLY mutated by the
    stock ledger through conditional UPDATE statements
    (stock_qty = stock_qty - n WHERE stock_qty >= n), never by assigning a
    value read earlier. The check constraint is the last line against
    overselling if a caller bypasses the ledger.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock_qty >= 0", name="ck_products_stock_nonnegative"),
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_nonnegative"),
        db.Index("ix_products_active_stock", "is_active", "stock_qty"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False)

    stock_qty = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock_qty={self.stock_qty}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "stock_qty": self.stock_qty,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
