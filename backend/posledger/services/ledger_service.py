# Overview: Service-layer operations for the ledger; reference ids and append-only writes.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..extensions import db
from ..models import LedgerTransaction, LedgerRecord, Product
from ..models.ledger import LEDGER_KINDS, KIND_CHECKOUT, KIND_VOID, KIND_RETURN
from posledger.time_utils import to_epoch_ms
from .concurrency import lock_for_update
"""
Ledger Invariants (authoritative)

- Append-only: headers and records are inserted, never updated or deleted.
- ref_id format is "<kind>-<ts>", kind in {checkout, void, return}, ts in epoch ms.
- All lines of one checkout share one ts; a void reuses the ts of the
  checkout it cancels; a return always gets a fresh ts of its own.
- Records are written inside the same DB transaction as the stock change
  they explain; callers own the commit.
"""


@dataclass(frozen=True)
class RefId:
    kind: str
    ts: str

    def __str__(self) -> str:
        return f"{self.kind}-{self.ts}"


def make_ref_id(kind: str, ts: int | str) -> str:
    if kind not in LEDGER_KINDS:
        raise ValueError(f"unknown ledger kind: {kind}")
    return f"{kind}-{ts}"


def parse_ref_id(ref_id: str | None) -> RefId | None:
    """
    Split "<kind>-<ts>" into its parts.

    Returns None for anything that is not a known kind followed by a
    non-empty suffix; callers decide whether that is an error.
    """
    if not ref_id:
        return None
    kind, sep, ts = ref_id.strip().partition("-")
    if not sep or kind not in LEDGER_KINDS or not ts:
        return None
    return RefId(kind=kind, ts=ts)


def ref_suffix(ref_id: str | None) -> str | None:
    parsed = parse_ref_id(ref_id)
    return parsed.ts if parsed else None


def allocate_ts(kind: str, occurred_at: datetime) -> int:
    """
    Pick the correlation timestamp for a new checkout or return.

    Starts at occurred_at in epoch ms and steps forward until "<kind>-<ts>"
    is unused, so two events in the same millisecond never share a ref_id.
    Must run under the write lock.
    """
    ts = to_epoch_ms(occurred_at)
    while db.session.query(LedgerTransaction.id).filter_by(ref_id=make_ref_id(kind, ts)).first():
        ts += 1
    return ts


def find_transaction(ref_id: str) -> LedgerTransaction | None:
    return db.session.query(LedgerTransaction).filter_by(ref_id=ref_id).first()


def lock_transactions(transaction_ids) -> dict[int, LedgerTransaction]:
    """
    Row-lock checkout headers before reading their void/return state.

    Voids and returns against one checkout all lock its header first, so the
    "already voided" and "already returned" checks see every committed
    compensation. Locks are taken in id order.
    """
    ids = sorted(set(transaction_ids))
    if not ids:
        return {}
    query = db.session.query(LedgerTransaction).filter(
        LedgerTransaction.id.in_(ids)
    ).order_by(LedgerTransaction.id.asc())
    rows = lock_for_update(query).populate_existing().all()
    return {h.id: h for h in rows}


def find_void_for(checkout: LedgerTransaction) -> LedgerTransaction | None:
    """The void cancelling a checkout, by foreign key or by shared suffix."""
    by_fk = db.session.query(LedgerTransaction).filter_by(
        kind=KIND_VOID, voids_transaction_id=checkout.id
    ).first()
    if by_fk is not None:
        return by_fk
    return find_transaction(make_ref_id(KIND_VOID, checkout.correlation_ts))


def open_transaction(
    *,
    kind: str,
    ts: int,
    created_at: datetime,
    user_id: int | None = None,
    approved_by_user_id: int | None = None,
    reason: str | None = None,
    voids: LedgerTransaction | None = None,
) -> LedgerTransaction:
    header = LedgerTransaction(
        ref_id=make_ref_id(kind, ts),
        kind=kind,
        correlation_ts=ts,
        voids_transaction_id=voids.id if voids is not None else None,
        user_id=user_id,
        approved_by_user_id=approved_by_user_id,
        reason=reason,
        created_at=created_at,
    )
    db.session.add(header)
    db.session.flush()  # ensures header.id is assigned without committing
    return header


def append_record(
    *,
    header: LedgerTransaction,
    product_id: int,
    quantity: int,
    unit_price_cents: int,
    product: Product | None = None,
    snapshot_from: LedgerRecord | None = None,
    original_record: LedgerRecord | None = None,
    reason: str | None = None,
) -> LedgerRecord:
    """
    Append one signed ledger line under header.

    Name/barcode/cost snapshots come from snapshot_from (compensations copy
    the original sale line) or else from the live product.
    """
    if quantity == 0:
        raise ValueError("ledger quantity cannot be zero")
    if header.kind == KIND_CHECKOUT and quantity < 0:
        raise ValueError("checkout records carry positive quantities")
    if header.kind in (KIND_VOID, KIND_RETURN) and quantity > 0:
        raise ValueError("compensating records carry negative quantities")

    source = snapshot_from
    record = LedgerRecord(
        transaction_id=header.id,
        product_id=product_id,
        product_name=source.product_name if source else (product.name if product else None),
        product_barcode=source.product_barcode if source else (product.barcode if product else None),
        unit_cost_cents=source.unit_cost_cents if source else (product.unit_cost_cents if product else None),
        quantity=quantity,
        unit_price_cents=unit_price_cents,
        total_amount_cents=quantity * unit_price_cents,
        ref_id=header.ref_id,
        original_record_id=original_record.id if original_record is not None else None,
        user_id=header.user_id,
        reason=reason,
        created_at=header.created_at,
    )
    db.session.add(record)
    db.session.flush()
    return record


def returned_quantity(sale_line_id: int) -> int:
    """Units already returned against one checkout record."""
    rows = db.session.query(LedgerRecord.quantity).join(
        LedgerTransaction, LedgerRecord.transaction_id == LedgerTransaction.id
    ).filter(
        LedgerTransaction.kind == KIND_RETURN,
        LedgerRecord.original_record_id == sale_line_id,
    ).all()
    return sum(abs(q) for (q,) in rows)
