from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z

STATUS_AVAILABLE = "available"
STATUS_LOW_STOCK = "low_stock"
STATUS_OUT_OF_STOCK = "out_of_stock"


def compute_status(stock: int, threshold: int) -> str:
    """Derived stock classification; never stored."""
    if stock <= 0:
        return STATUS_OUT_OF_STOCK
    if stock <= threshold:
        return STATUS_LOW_STOCK
    return STATUS_AVAILABLE


class Product(db.Model):
    """
    Product master data and the materialized stock count.

    STOCK DESIGN DECISION:
    stock_on_hand is a write-through projection of the ledger. It is only
    changed inside the same DB transaction that appends the ledger record or
    manual stock movement explaining the change, so
    stock_on_hand == SUM(stock_movements.quantity) at every commit.

    SOFT DELETE:
    Deleting a product flips is_active; the row stays so ledger history and
    barcode-based restoration keep working.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock_on_hand >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    # Unique among active products; enforced in products_service
    barcode = db.Column(db.String(64), nullable=True, index=True)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=True)

    stock_on_hand = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock_on_hand}>"

    def effective_threshold(self, default: int) -> int:
        if self.low_stock_threshold is not None:
            return self.low_stock_threshold
        return default

    def status(self, default_threshold: int) -> str:
        return compute_status(self.stock_on_hand, self.effective_threshold(default_threshold))

    def to_dict(self, default_threshold: int = 10) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "barcode": self.barcode,
            "price_cents": self.price_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "stock_on_hand": self.stock_on_hand,
            "low_stock_threshold": self.low_stock_threshold,
            "status": self.status(default_threshold) if self.is_active else "deleted",
            "is_active": self.is_active,
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only audit of every change to Product.stock_on_hand.

    type: sale | void | refund | manual
    quantity is the signed delta applied to stock.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    before_stock = db.Column(db.Integer, nullable=False)
    after_stock = db.Column(db.Integer, nullable=False)

    ref_id = db.Column(db.String(64), nullable=True, index=True)
    reason = db.Column(db.String(255), nullable=True)
    user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "barcode": self.product.barcode if self.product else None,
            "type": self.type,
            "quantity": self.quantity,
            "before_stock": self.before_stock,
            "after_stock": self.after_stock,
            "ref_id": self.ref_id,
            "reason": self.reason,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
