"""
Void Service - cancel a whole checkout and restore its stock

WHY: A void undoes a sale as if it never happened. It reuses the checkout's
timestamp (void-<ts> pairs with checkout-<ts>) and also points at the
checkout header by foreign key, so reporting can drop the sale entirely.

RULES:
- Only an existing checkout-<ts> can be voided (UnknownTransaction).
- At most once (AlreadyVoided); the unique voids_transaction_id column backs
  this up at the database level.
- Not after any of its lines were returned (CompensationConflict).
- Records mirror the originals: same unit price and cost, negated quantity.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app

from ..models import LedgerTransaction
from ..models.ledger import KIND_CHECKOUT, KIND_VOID
from ..validation import LineItem, parse_line_items
from posledger.time_utils import utcnow, to_utc_z
from . import notification_service
from .checkout_service import merge_lines
from .concurrency import run_atomic
from .errors import (
    AlreadyVoided,
    CompensationConflict,
    IntegrityViolation,
    InvalidQuantity,
    UnknownTransaction,
)
from .ledger_service import (
    parse_ref_id,
    find_transaction,
    find_void_for,
    lock_transactions,
    open_transaction,
    append_record,
    returned_quantity,
)
from .stock_service import load_products_for_update, apply_stock_change


@dataclass
class VoidResult:
    transaction_no: str
    voided_transaction_no: str
    amount_cents: int
    created_at: datetime
    lines: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "transaction_no": self.transaction_no,
            "voided_transaction_no": self.voided_transaction_no,
            "amount_cents": self.amount_cents,
            "created_at": to_utc_z(self.created_at),
            "lines": self.lines,
        }


def approval_required(approved_by_user_id: int | None) -> bool:
    """
    Hook for the authorization policy.

    The core never decides who may void; it only reports whether this store
    demands a second party before a direct void is applied.
    """
    return bool(current_app.config.get("VOID_REQUIRES_APPROVAL")) and approved_by_user_id is None


def resolve_checkout(transaction_no: str, *, lock: bool = False) -> LedgerTransaction:
    """Find a checkout header by its number; lock=True row-locks it for a void."""
    parsed = parse_ref_id(transaction_no)
    if parsed is None or parsed.kind != KIND_CHECKOUT:
        raise UnknownTransaction(
            f"Not a checkout transaction number: {transaction_no}",
            details={"transaction_no": transaction_no},
        )
    header = find_transaction(str(parsed))
    if header is None:
        raise UnknownTransaction(
            f"Transaction not found: {transaction_no}",
            details={"transaction_no": transaction_no},
        )
    if lock:
        header = lock_transactions([header.id])[header.id]
    return header


def ensure_voidable(checkout: LedgerTransaction) -> list:
    """Run every void precondition; returns the original sale lines."""
    existing = find_void_for(checkout)
    if existing is not None:
        raise AlreadyVoided(
            f"Transaction {checkout.ref_id} already voided",
            details={"transaction_no": checkout.ref_id, "void_ref_id": existing.ref_id},
        )

    originals = list(checkout.records)
    if not originals:
        raise IntegrityViolation(
            f"Checkout {checkout.ref_id} has no ledger records",
            details={"transaction_no": checkout.ref_id},
        )

    returned = [
        {"sale_line_id": r.id, "returned_quantity": returned_quantity(r.id)}
        for r in originals
    ]
    returned = [r for r in returned if r["returned_quantity"] > 0]
    if returned:
        raise CompensationConflict(
            f"Transaction {checkout.ref_id} has returned items and cannot be voided",
            details={"transaction_no": checkout.ref_id, "lines": returned},
        )
    return originals


def _match_lines(originals: list, lines: list[LineItem]) -> None:
    if not lines:
        return
    expected: dict[int, int] = {}
    for record in originals:
        expected[record.product_id] = expected.get(record.product_id, 0) + record.quantity
    requested = merge_lines(lines)
    if requested != expected:
        raise InvalidQuantity(
            "Void lines must match the original transaction",
            details={"expected": expected, "requested": requested},
        )


def _void_locked(
    transaction_no: str,
    lines: list[LineItem],
    *,
    user_id: int | None,
    approved_by_user_id: int | None,
    reason: str | None,
    occurred_at: datetime,
):
    checkout = resolve_checkout(transaction_no, lock=True)
    originals = ensure_voidable(checkout)
    _match_lines(originals, lines)

    products = load_products_for_update(
        [r.product_id for r in originals], include_inactive=True
    )
    missing = sorted({r.product_id for r in originals} - set(products))
    if missing:
        raise IntegrityViolation(
            "Cannot restore stock for products that no longer exist",
            details={"product_ids": missing},
        )

    header = open_transaction(
        kind=KIND_VOID,
        ts=checkout.correlation_ts,
        created_at=occurred_at,
        user_id=user_id,
        approved_by_user_id=approved_by_user_id,
        reason=reason,
        voids=checkout,
    )

    changes = []
    restored = []
    amount = 0
    for original in originals:
        changes.append(apply_stock_change(
            products[original.product_id],
            original.quantity,
            movement_type="void",
            created_at=occurred_at,
            ref_id=header.ref_id,
            reason=reason,
            user_id=user_id,
        ))
        record = append_record(
            header=header,
            product_id=original.product_id,
            quantity=-original.quantity,
            unit_price_cents=original.unit_price_cents,
            snapshot_from=original,
            reason=reason,
        )
        amount += abs(record.total_amount_cents)
        restored.append(record.to_dict())

    result = VoidResult(
        transaction_no=header.ref_id,
        voided_transaction_no=checkout.ref_id,
        amount_cents=amount,
        created_at=occurred_at,
        lines=restored,
    )
    return result, changes


def void_transaction(
    transaction_no: str,
    lines=None,
    *,
    user_id: int | None = None,
    approved_by_user_id: int | None = None,
    reason: str | None = None,
    occurred_at: datetime | None = None,
) -> VoidResult:
    """
    Void a checkout and put every unit back on the shelf.

    Only call once approval (on-site or queued) has been granted where the
    store requires it.
    """
    items = list(lines or [])
    if items and not all(isinstance(line, LineItem) for line in items):
        items = parse_line_items({"items": items})
    when = occurred_at or utcnow()

    result, changes = run_atomic(lambda: _void_locked(
        transaction_no,
        items,
        user_id=user_id,
        approved_by_user_id=approved_by_user_id,
        reason=reason,
        occurred_at=when,
    ))

    current_app.logger.info(
        "Void %s committed for %s: amount_cents=%d",
        result.transaction_no, result.voided_transaction_no, result.amount_cents,
    )
    notification_service.publish(c.to_event() for c in changes)
    return result
