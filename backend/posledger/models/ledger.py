from __future__ import annotations

from ..extensions import db
from posledger.time_utils import to_utc_z

KIND_CHECKOUT = "checkout"
KIND_VOID = "void"
KIND_RETURN = "return"
LEDGER_KINDS = (KIND_CHECKOUT, KIND_VOID, KIND_RETURN)


class LedgerTransaction(db.Model):
    """
    One row per checkout/void/return event.

    WHY: the ref_id string still carries the kind and correlation timestamp,
    but voids also point at the checkout they cancel through a real foreign
    key. The unique constraint on voids_transaction_id makes a second void of
    the same checkout impossible at the database level.
    """
    __tablename__ = "ledger_transactions"
    __table_args__ = (
        db.UniqueConstraint("ref_id", name="uq_ledger_transactions_ref_id"),
        db.UniqueConstraint("voids_transaction_id", name="uq_ledger_transactions_voids"),
        db.Index("ix_ledger_transactions_kind_ts", "kind", "correlation_ts"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    ref_id = db.Column(db.String(64), nullable=False)
    kind = db.Column(db.String(16), nullable=False, index=True)
    correlation_ts = db.Column(db.BigInteger, nullable=False)

    voids_transaction_id = db.Column(db.Integer, db.ForeignKey("ledger_transactions.id"), nullable=True)

    user_id = db.Column(db.Integer, nullable=True)
    approved_by_user_id = db.Column(db.Integer, nullable=True)
    reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    voids_transaction = db.relationship("LedgerTransaction", remote_side=[id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ref_id": self.ref_id,
            "kind": self.kind,
            "correlation_ts": self.correlation_ts,
            "voids_transaction_id": self.voids_transaction_id,
            "user_id": self.user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }


class LedgerRecord(db.Model):
    """
    Append-only ledger line: one per product line per event.

    product_id is a weak reference (no FK). Name, barcode and unit cost are
    snapshotted at write time so history survives product deletion.
    quantity/total_amount_cents are positive for sales, negative for voids
    and returns.
    """
    __tablename__ = "ledger_records"
    __table_args__ = (
        db.Index("ix_ledger_records_ref_id", "ref_id"),
        db.Index("ix_ledger_records_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("ledger_transactions.id"), nullable=False, index=True)

    product_id = db.Column(db.Integer, nullable=False)
    product_name = db.Column(db.String(255), nullable=True)
    product_barcode = db.Column(db.String(64), nullable=True)
    unit_cost_cents = db.Column(db.Integer, nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_amount_cents = db.Column(db.Integer, nullable=False)

    ref_id = db.Column(db.String(64), nullable=False)

    # Returns only: the checkout record (sale line) being returned
    original_record_id = db.Column(db.Integer, db.ForeignKey("ledger_records.id"), nullable=True, index=True)

    user_id = db.Column(db.Integer, nullable=True)
    reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    transaction = db.relationship("LedgerTransaction", backref=db.backref("records", lazy=True, order_by="LedgerRecord.id"))
    original_record = db.relationship("LedgerRecord", remote_side=[id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_barcode": self.product_barcode,
            "unit_cost_cents": self.unit_cost_cents,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_amount_cents": self.total_amount_cents,
            "ref_id": self.ref_id,
            "original_record_id": self.original_record_id,
            "user_id": self.user_id,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }
