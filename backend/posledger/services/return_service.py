"""
Return Processing Service

WHY: Customers bring back part of a sale. Unlike voids, a return points at
the exact sale line it refunds (original_record_id) and gets a fresh
return-<ts> reference of its own; it is not correlated by timestamp.

DESIGN PRINCIPLES:
- Refund uses the ORIGINAL unit price of the sale line, not today's price
- COGS reversal uses the cost snapshotted on the sale line
- Sum of returned units per sale line never exceeds the units sold
- Lines of a voided checkout cannot be returned (checked on write, not only
  hidden by reporting)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import LedgerRecord
from ..models.ledger import KIND_CHECKOUT, KIND_RETURN
from ..validation import ReturnItem, positive_quantity
from posledger.time_utils import utcnow, to_utc_z
from . import notification_service
from .concurrency import run_atomic
from .errors import (
    AlreadyFullyReturned,
    AlreadyVoided,
    IntegrityViolation,
    InvalidQuantity,
    UnknownTransaction,
)
from .ledger_service import (
    allocate_ts,
    open_transaction,
    append_record,
    find_void_for,
    lock_transactions,
    returned_quantity,
)
from .stock_service import load_products_for_update, apply_stock_change


@dataclass
class ReturnResult:
    transaction_no: str
    refund_cents: int
    created_at: datetime
    lines: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "transaction_no": self.transaction_no,
            "refund_cents": self.refund_cents,
            "created_at": to_utc_z(self.created_at),
            "lines": self.lines,
        }


def get_sale_line(sale_line_id: int) -> LedgerRecord:
    record = db.session.query(LedgerRecord).filter_by(id=sale_line_id).first()
    if record is None:
        raise UnknownTransaction(
            f"Sale line {sale_line_id} not found",
            details={"sale_line_id": sale_line_id},
        )
    if record.transaction.kind != KIND_CHECKOUT or record.quantity <= 0:
        raise UnknownTransaction(
            f"Ledger record {sale_line_id} is not a sale line",
            details={"sale_line_id": sale_line_id, "ref_id": record.ref_id},
        )
    return record


def _check_line(record: LedgerRecord, quantity: int) -> None:
    void = find_void_for(record.transaction)
    if void is not None:
        raise AlreadyVoided(
            f"Sale line {record.id} belongs to voided transaction {record.ref_id}",
            details={"sale_line_id": record.id, "void_ref_id": void.ref_id},
        )

    already = returned_quantity(record.id)
    remaining = record.quantity - already
    if remaining <= 0:
        raise AlreadyFullyReturned(
            f"Sale line {record.id} has already been fully returned",
            details={"sale_line_id": record.id, "sold": record.quantity, "returned": already},
        )
    if quantity > remaining:
        raise InvalidQuantity(
            f"Cannot return {quantity} units. Original quantity: {record.quantity}, "
            f"already returned: {already}, available: {remaining}",
            details={
                "sale_line_id": record.id,
                "requested": quantity,
                "sold": record.quantity,
                "returned": already,
                "available": remaining,
            },
        )


def _return_locked(items: list[ReturnItem], *, user_id: int | None, occurred_at: datetime):
    # Several entries for one sale line count together against its bound
    requested: dict[int, int] = {}
    for item in items:
        requested[item.sale_line_id] = requested.get(item.sale_line_id, 0) + item.quantity

    records = {sale_line_id: get_sale_line(sale_line_id) for sale_line_id in requested}
    # Serialize with voids and other returns of the same checkouts before checking
    lock_transactions(r.transaction_id for r in records.values())
    for sale_line_id, qty in requested.items():
        _check_line(records[sale_line_id], qty)

    products = load_products_for_update(
        [r.product_id for r in records.values()], include_inactive=True
    )
    missing = sorted({r.product_id for r in records.values()} - set(products))
    if missing:
        raise IntegrityViolation(
            "Cannot restore stock for products that no longer exist",
            details={"product_ids": missing},
        )

    ts = allocate_ts(KIND_RETURN, occurred_at)
    header = open_transaction(kind=KIND_RETURN, ts=ts, created_at=occurred_at, user_id=user_id)

    changes = []
    lines = []
    refund = 0
    for item in items:
        original = records[item.sale_line_id]
        changes.append(apply_stock_change(
            products[original.product_id],
            item.quantity,
            movement_type="refund",
            created_at=occurred_at,
            ref_id=header.ref_id,
            reason=item.reason,
            user_id=user_id,
        ))
        record = append_record(
            header=header,
            product_id=original.product_id,
            quantity=-item.quantity,
            unit_price_cents=original.unit_price_cents,
            snapshot_from=original,
            original_record=original,
            reason=item.reason,
        )
        refund += item.quantity * original.unit_price_cents
        lines.append(record.to_dict())

    result = ReturnResult(
        transaction_no=header.ref_id,
        refund_cents=refund,
        created_at=occurred_at,
        lines=lines,
    )
    return result, changes


def return_items(
    items: list[ReturnItem],
    *,
    user_id: int | None = None,
    occurred_at: datetime | None = None,
) -> ReturnResult:
    """Return several sale lines at once under one return-<ts> reference."""
    items = list(items or [])
    if not items:
        raise InvalidQuantity("No items to return")
    for item in items:
        positive_quantity(item.quantity)
    when = occurred_at or utcnow()

    result, changes = run_atomic(
        lambda: _return_locked(items, user_id=user_id, occurred_at=when)
    )

    current_app.logger.info(
        "Return %s committed: %d line(s), refund_cents=%d",
        result.transaction_no, len(items), result.refund_cents,
    )
    notification_service.publish(c.to_event() for c in changes)
    return result


def return_item(
    sale_line_id: int,
    quantity: int,
    reason: str | None = None,
    *,
    user_id: int | None = None,
    occurred_at: datetime | None = None,
) -> ReturnResult:
    """Return part or all of one sale line; refund = quantity x original unit price."""
    item = ReturnItem(sale_line_id=sale_line_id, quantity=positive_quantity(quantity), reason=reason)
    return return_items([item], user_id=user_id, occurred_at=occurred_at)
