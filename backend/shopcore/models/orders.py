from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_CONFIRMED = "confirmed"
ORDER_STATUS_PROCESSING = "processing"
ORDER_STATUS_SHIPPED = "shipped"
ORDER_STATUS_DELIVERED = "delivered"
ORDER_STATUS_CANCELLED = "cancelled"

ORDER_STATUSES = (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_SHIPPED,
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_CANCELLED,
)

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_FAILED = "failed"
PAYMENT_STATUS_REFUNDED = "refunded"

PAYMENT_STATUSES = (
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_REFUNDED,
)

PAYMENT_METHODS = ("credit_card", "debit_card", "paypal", "bank_transfer")


class Order(db.Model):
    """
    Order document created exactly once per checkout.

    IMMUTABILITY:
    - items are frozen copies of product name/sku/price at checkout time
    - only status, payment fields, notes and status_history change afterwards

    CONCURRENCY:
    version_id is SQLAlchemy's version_id_col. A flush from a session that
    loaded an older version raises StaleDataError instead of clobbering a
    newer status written by another request.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        db.CheckConstraint(
            "final_amount_cents = total_amount_cents + tax_amount_cents + shipping_amount_cents",
            name="ck_orders_final_amount",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=False, unique=True)
    user_id = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING, index=True)

    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING, index=True)
    payment_method = db.Column(db.String(32), nullable=False)
    transaction_id = db.Column(db.String(128), nullable=True)
    payment_notes = db.Column(db.String(500), nullable=True)

    # All amounts in cents
    total_amount_cents = db.Column(db.Integer, nullable=False)
    tax_amount_cents = db.Column(db.Integer, nullable=False)
    shipping_amount_cents = db.Column(db.Integer, nullable=False)
    final_amount_cents = db.Column(db.Integer, nullable=False)

    shipping_address = db.Column(db.JSON, nullable=False)
    notes = db.Column(db.String(500), nullable=True)
    admin_notes = db.Column(db.String(1000), nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.String(500), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    status_history = db.relationship(
        "OrderStatusHistory",
        back_populates="order",
        order_by="OrderStatusHistory.id",
        cascade="all, delete-orphan",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)

    def to_dict(self, include_details: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "total_amount_cents": self.total_amount_cents,
            "tax_amount_cents": self.tax_amount_cents,
            "shipping_amount_cents": self.shipping_amount_cents,
            "final_amount_cents": self.final_amount_cents,
            "items_count": len(self.items),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_details:
            data.update({
                "items": [item.to_dict() for item in self.items],
                "shipping_address": self.shipping_address,
                "status_history": [entry.to_dict() for entry in self.status_history],
                "notes": self.notes,
                "admin_notes": self.admin_notes,
                "transaction_id": self.transaction_id,
                "payment_notes": self.payment_notes,
                "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
                "cancellation_reason": self.cancellation_reason,
            })
        return data


class OrderItem(db.Model):
    """Frozen copy of a product line at checkout. Never updated."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    product_name = db.Column(db.String(255), nullable=False)
    product_sku = db.Column(db.String(64), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    order = db.relationship("Order", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_sku": self.product_sku,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
        }


class OrderStatusHistory(db.Model):
    """Append-only status timeline. Rows are never edited or removed."""
    __tablename__ = "order_status_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False)
    notes = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    order = db.relationship("Order", back_populates="status_history")

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "timestamp": to_utc_z(self.created_at),
            "notes": self.notes,
        }
