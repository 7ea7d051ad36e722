from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


TX_PURCHASE = "purchase"
TX_SALE = "sale"
TX_ADJUSTMENT = "adjustment"
TX_TRANSFER = "transfer"
TX_RETURN = "return"
TX_DAMAGE = "damage"
TX_EXPIRED = "expired"

TRANSACTION_TYPES = (
    TX_PURCHASE,
    TX_SALE,
    TX_ADJUSTMENT,
    TX_TRANSFER,
    TX_RETURN,
    TX_DAMAGE,
    TX_EXPIRED,
)

# Required sign of quantity per type: +1 increase, -1 decrease, 0 either
TRANSACTION_SIGNS = {
    TX_PURCHASE: 1,
    TX_RETURN: 1,
    TX_SALE: -1,
    TX_DAMAGE: -1,
    TX_EXPIRED: -1,
    TX_ADJUSTMENT: 0,
    TX_TRANSFER: 0,
}


class InventoryTransaction(db.Model):
    """
    Append-only inventory ledger entry.

    Every stock_qty mutation writes exactly one row here, in the same DB
    transaction, with the signed delta and the before/after counter values.
    SUM(quantity) per product therefore reconciles with Product.stock_qty.

    Only reason/notes may be edited after creation. Corrections are new
    rows (reverses_transaction_id), never updates or deletes.
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.Index("ix_invtx_product_created", "product_id", "created_at"),
        db.Index("ix_invtx_product_type_created", "product_id", "type", "created_at"),
        db.CheckConstraint("quantity <> 0", name="ck_invtx_quantity_nonzero"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(32), nullable=False, index=True)

    # Signed: positive = stock increase, negative = decrease
    quantity = db.Column(db.Integer, nullable=False)
    previous_qty = db.Column(db.Integer, nullable=False)
    new_qty = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(500), nullable=False)
    notes = db.Column(db.String(1000), nullable=True)

    cost_cents = db.Column(db.Integer, nullable=True)
    supplier = db.Column(db.String(255), nullable=True)
    batch_number = db.Column(db.String(64), nullable=True)
    expiration_date = db.Column(db.Date, nullable=True)

    # Business document that caused the movement (e.g. an order number)
    reference = db.Column(db.String(64), nullable=True, index=True)
    reverses_transaction_id = db.Column(
        db.Integer,
        db.ForeignKey("inventory_transactions.id"),
        nullable=True,
        unique=True,
    )

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        product = self.product
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product": {"name": product.name, "sku": product.sku} if product is not None else None,
            "type": self.type,
            "quantity": self.quantity,
            "previous_qty": self.previous_qty,
            "new_qty": self.new_qty,
            "reason": self.reason,
            "notes": self.notes,
            "cost_cents": self.cost_cents,
            "supplier": self.supplier,
            "batch_number": self.batch_number,
            "expiration_date": self.expiration_date.isoformat() if self.expiration_date else None,
            "reference": self.reference,
            "reverses_transaction_id": self.reverses_transaction_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
