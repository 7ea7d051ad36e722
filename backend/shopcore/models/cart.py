from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Cart(db.Model):
    """
    Per-user shopping cart.

    One cart per user, created lazily and never deleted (only emptied).
    The cart is the source of truth for what the user intends to buy until
    checkout; prices on its lines are snapshots, re-priced at checkout.
    """
    __tablename__ = "carts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship(
        "CartItem",
        back_populates="cart",
        order_by="CartItem.id",
        cascade="all, delete-orphan",
        lazy=True,
    )

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def total_amount_cents(self) -> int:
        return sum(item.subtotal_cents for item in self.items)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "items": [item.to_dict() for item in self.items],
            "total_items": self.total_items,
            "total_amount_cents": self.total_amount_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CartItem(db.Model):
    """A line on a cart with the price captured when it was added or last synced."""
    __tablename__ = "cart_items"
    __table_args__ = (
        db.UniqueConstraint("cart_id", "product_id", name="uq_cart_items_cart_product"),
        db.CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("carts.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    price_at_time_cents = db.Column(db.Integer, nullable=False)

    added_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cart = db.relationship("Cart", back_populates="items")
    product = db.relationship("Product")

    @property
    def subtotal_cents(self) -> int:
        return self.quantity * self.price_at_time_cents

    def to_dict(self) -> dict:
        product = self.product
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product": {
                "id": product.id,
                "name": product.name,
                "sku": product.sku,
                "price_cents": product.price_cents,
                "stock_qty": product.stock_qty,
                "is_active": product.is_active,
            } if product is not None else None,
            "quantity": self.quantity,
            "price_at_time_cents": self.price_at_time_cents,
            "subtotal_cents": self.subtotal_cents,
            "added_at": to_utc_z(self.added_at),
        }
