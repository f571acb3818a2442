# Overview: Service-layer operations for reporting; rebuilds financial totals from the ledger.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import LedgerTransaction, LedgerRecord, Product, StockMovement
from ..models.ledger import KIND_CHECKOUT, KIND_VOID, KIND_RETURN
from posledger.time_utils import (
    parse_iso_datetime,
    utcnow,
    to_utc_z,
    start_of_day,
    start_of_week,
    start_of_month,
)
from .concurrency import read_snapshot
from .ledger_service import ref_suffix, find_void_for, returned_quantity
from .stock_service import stock_drift
from .void_service import resolve_checkout
"""
Reconciliation Invariants (authoritative)

- Read-only: nothing here writes, locks or commits.
- Each report runs inside one read_snapshot(), so all of its queries see
  the same committed ledger.
- Same ledger + same arguments -> identical output (no "generated_at").
- Voided is absorbing: a checkout whose suffix appears on ANY void in the
  ledger is excluded from gross sales, COGS and counts, even when the void
  falls outside the requested range.
- Returns against a voided line are never counted.
- Voids are reported (voids_amount) but never subtracted from net sales.
- Business-data anomalies are logged and listed, never raised.
"""

GRANULARITIES = ("daily", "weekly", "monthly")
PERIODS = ("daily", "weekly", "monthly", "all", "7days", "30days")

MAX_PAGE_SIZE = 500


class ReportError(Exception):
    """Raised when report parameters are invalid."""
    pass


def _coerce_dt(value, *, end_of_day: bool = False) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return parse_iso_datetime(value, end_of_day=end_of_day)
    except ValueError:
        raise ReportError(f"Invalid datetime: {value}")


def period_range(period: str, now: datetime | None = None) -> tuple[datetime | None, datetime | None]:
    """
    Resolve a named period to an inclusive [start, end] window ending now.

    daily/weekly/monthly mean today, this (Monday-start) week and this month;
    all is unbounded.
    """
    now = now or utcnow()
    if period == "daily":
        return start_of_day(now), now
    if period == "weekly":
        return start_of_week(now), now
    if period == "monthly":
        return start_of_month(now), now
    if period == "7days":
        return start_of_day(now) - timedelta(days=6), now
    if period == "30days":
        return start_of_day(now) - timedelta(days=29), now
    if period == "all":
        return None, None
    raise ReportError(f"period must be one of: {', '.join(PERIODS)}")


def previous_window(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    """Equal-length window immediately before [start, end]."""
    length = end - start
    return start - length, start - timedelta(microseconds=1)


def growth_rate(current: int, previous: int) -> float:
    """Percent change; +100 when starting from zero, 0 when both are zero."""
    if previous > 0:
        return round((current - previous) / previous * 100.0, 1)
    if current > 0:
        return 100.0
    return 0.0


def trend_label(current: int, previous: int) -> str:
    if previous > 0:
        growth = (current - previous) / previous * 100.0
        return f"{'+' if growth >= 0 else ''}{round(growth)}%"
    if current > 0:
        return "+100%"
    return "+0%"


def _bucket_key(dt: datetime, granularity: str) -> str:
    if granularity == "daily":
        return start_of_day(dt).date().isoformat()
    if granularity == "weekly":
        return start_of_week(dt).date().isoformat()
    return start_of_month(dt).strftime("%Y-%m")


@dataclass
class _Totals:
    gross_sales_cents: int = 0
    returns_amount_cents: int = 0
    voids_amount_cents: int = 0
    sales_cost_cents: int = 0
    returns_cost_cents: int = 0
    units_sold: int = 0
    units_returned: int = 0
    sale_refs: set = field(default_factory=set)
    void_refs: set = field(default_factory=set)
    return_refs: set = field(default_factory=set)

    def to_dict(self) -> dict:
        net_sales = self.gross_sales_cents - self.returns_amount_cents
        cogs = self.sales_cost_cents - self.returns_cost_cents
        return {
            "gross_sales_cents": self.gross_sales_cents,
            "returns_amount_cents": self.returns_amount_cents,
            "voids_amount_cents": self.voids_amount_cents,
            "net_sales_cents": net_sales,
            "cogs_cents": cogs,
            "gross_profit_cents": net_sales - cogs,
            "units_sold": self.units_sold,
            "units_returned": self.units_returned,
            "transaction_counts": {
                "sales": len(self.sale_refs),
                "voids": len(self.void_refs),
                "returns": len(self.return_refs),
                "total": len(self.sale_refs) + len(self.void_refs) + len(self.return_refs),
            },
        }


@dataclass
class _LedgerView:
    """Records in range, classified once and shared by every report."""
    sales: list = field(default_factory=list)       # non-voided checkout records
    voided_sales: list = field(default_factory=list)
    voids: list = field(default_factory=list)
    returns: list = field(default_factory=list)     # counted returns only
    excluded_returns: list = field(default_factory=list)
    anomalies: list = field(default_factory=list)
    costs: dict = field(default_factory=dict)       # record id -> unit cost used


class _CostLookup:
    """Snapshot cost first, then the product row (inactive included), else 0."""

    def __init__(self, anomalies: list):
        self._products: dict[int, Product | None] = {}
        self._flagged: set[int] = set()
        self._anomalies = anomalies

    def unit_cost(self, record: LedgerRecord) -> int:
        if record.unit_cost_cents is not None:
            return record.unit_cost_cents
        if record.product_id not in self._products:
            self._products[record.product_id] = db.session.get(Product, record.product_id)
        product = self._products[record.product_id]
        if product is not None and product.unit_cost_cents is not None:
            return product.unit_cost_cents
        if record.product_id not in self._flagged:
            self._flagged.add(record.product_id)
            self._anomalies.append({
                "type": "missing_cost",
                "product_id": record.product_id,
                "ref_id": record.ref_id,
            })
        return 0


def _void_index() -> tuple[set[str], set[int], set[str]]:
    """(void suffixes, voided checkout ids, checkout suffixes) over the whole ledger."""
    void_rows = db.session.query(
        LedgerTransaction.ref_id, LedgerTransaction.voids_transaction_id
    ).filter(LedgerTransaction.kind == KIND_VOID).all()
    checkout_rows = db.session.query(LedgerTransaction.ref_id).filter(
        LedgerTransaction.kind == KIND_CHECKOUT
    ).all()

    void_suffixes = {ref_suffix(ref) for ref, _ in void_rows}
    voided_ids = {tid for _, tid in void_rows if tid is not None}
    checkout_suffixes = {ref_suffix(ref) for (ref,) in checkout_rows}
    return void_suffixes, voided_ids, checkout_suffixes


def _load_view(start: datetime | None, end: datetime | None) -> _LedgerView:
    view = _LedgerView()
    void_suffixes, voided_ids, checkout_suffixes = _void_index()

    def is_voided(ref_id: str, transaction_id: int) -> bool:
        return ref_suffix(ref_id) in void_suffixes or transaction_id in voided_ids

    query = db.session.query(LedgerRecord, LedgerTransaction.kind).join(
        LedgerTransaction, LedgerRecord.transaction_id == LedgerTransaction.id
    )
    if start:
        query = query.filter(LedgerRecord.created_at >= start)
    if end:
        query = query.filter(LedgerRecord.created_at <= end)
    rows = query.order_by(LedgerRecord.id.asc()).all()

    # Originals of returns may sit outside the range
    original_ids = {r.original_record_id for r, kind in rows if kind == KIND_RETURN and r.original_record_id}
    originals = {}
    if original_ids:
        originals = {
            oid: (ref, tid)
            for oid, ref, tid in db.session.query(
                LedgerRecord.id, LedgerRecord.ref_id, LedgerRecord.transaction_id
            ).filter(LedgerRecord.id.in_(sorted(original_ids))).all()
        }

    flagged_orphans = set()
    for record, kind in rows:
        if kind == KIND_CHECKOUT and record.quantity > 0:
            if is_voided(record.ref_id, record.transaction_id):
                view.voided_sales.append(record)
            else:
                view.sales.append(record)
        elif kind == KIND_VOID:
            view.voids.append(record)
            if ref_suffix(record.ref_id) not in checkout_suffixes and record.ref_id not in flagged_orphans:
                flagged_orphans.add(record.ref_id)
                view.anomalies.append({"type": "orphan_void", "ref_id": record.ref_id})
        elif kind == KIND_RETURN:
            original = originals.get(record.original_record_id)
            if original is not None and is_voided(*original):
                view.excluded_returns.append(record)
            else:
                view.returns.append(record)
        else:
            view.anomalies.append({"type": "unexpected_record", "ref_id": record.ref_id, "record_id": record.id})

    lookup = _CostLookup(view.anomalies)
    for record in view.sales + view.returns:
        view.costs[record.id] = lookup.unit_cost(record)

    for anomaly in view.anomalies:
        current_app.logger.warning("Ledger anomaly: %s", anomaly)
    return view


def _accumulate(totals: _Totals, view: _LedgerView, records_filter=None) -> None:
    def keep(record) -> bool:
        return records_filter is None or records_filter(record)

    for record in filter(keep, view.sales):
        totals.gross_sales_cents += record.total_amount_cents
        totals.sales_cost_cents += view.costs[record.id] * record.quantity
        totals.units_sold += record.quantity
        totals.sale_refs.add(record.ref_id)
    for record in filter(keep, view.returns):
        qty = abs(record.quantity)
        totals.returns_amount_cents += abs(record.total_amount_cents)
        totals.returns_cost_cents += view.costs[record.id] * qty
        totals.units_returned += qty
        totals.return_refs.add(record.ref_id)
    for record in filter(keep, view.voids):
        totals.voids_amount_cents += abs(record.total_amount_cents)
        totals.void_refs.add(record.ref_id)


def summarize(start=None, end=None, granularity: str = "daily") -> dict:
    """
    Rebuild financial totals for [start, end] from ledger records alone.

    Pure and repeatable: two calls with no writes in between return equal
    dicts. Open ends are allowed.
    """
    if granularity not in GRANULARITIES:
        raise ReportError(f"granularity must be one of: {', '.join(GRANULARITIES)}")
    start_dt = _coerce_dt(start)
    end_dt = _coerce_dt(end, end_of_day=True)
    if start_dt and end_dt and start_dt > end_dt:
        raise ReportError("start must be before end")

    with read_snapshot():
        view = _load_view(start_dt, end_dt)

        totals = _Totals()
        _accumulate(totals, view)

        buckets: dict[str, _Totals] = {}
        for record in view.sales + view.returns + view.voids:
            buckets.setdefault(_bucket_key(record.created_at, granularity), _Totals())
        for key, bucket in buckets.items():
            _accumulate(bucket, view, lambda r, key=key: _bucket_key(r.created_at, granularity) == key)

    return {
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "granularity": granularity,
        **totals.to_dict(),
        "per_period": [
            {"period": key, **buckets[key].to_dict()}
            for key in sorted(buckets)
        ],
        "anomalies": view.anomalies,
    }


def summary_for_period(period: str = "all", granularity: str = "daily", *, now: datetime | None = None) -> dict:
    """summarize() over a named period, with growth vs the previous window."""
    start, end = period_range(period, now)
    with read_snapshot():
        result = summarize(start, end, granularity)
        result["period"] = period
        if start is None:
            result["previous_net_sales_cents"] = None
            result["sales_growth_pct"] = None
            return result

        prev_start, prev_end = previous_window(start, end)
        previous = _Totals()
        _accumulate(previous, _load_view(prev_start, prev_end))
    previous_net = previous.gross_sales_cents - previous.returns_amount_cents
    result["previous_net_sales_cents"] = previous_net
    result["sales_growth_pct"] = growth_rate(result["net_sales_cents"], previous_net)
    return result


# =============================================================================
# RECEIPTS
# =============================================================================

def _receipt_dict(header: LedgerTransaction) -> dict:
    void = find_void_for(header)
    lines = []
    total = 0
    returned_cents = 0
    for record in header.records:
        returned = returned_quantity(record.id)
        line = record.to_dict()
        line["returned_quantity"] = returned
        line["returnable_quantity"] = 0 if void is not None else max(0, record.quantity - returned)
        lines.append(line)
        total += record.total_amount_cents
        returned_cents += returned * record.unit_price_cents
    return {
        "transaction_no": header.ref_id,
        "created_at": to_utc_z(header.created_at),
        "user_id": header.user_id,
        "lines": lines,
        "total_cents": total,
        "returned_cents": returned_cents,
        "net_cents": total - returned_cents,
        "voided": void is not None,
        "void_ref_id": void.ref_id if void is not None else None,
    }


def receipts(start=None, end=None, transaction_no: str | None = None, *, include_voided: bool = False) -> list[dict]:
    """Checkout receipts, newest first. Voided receipts are hidden unless asked for."""
    start_dt = _coerce_dt(start)
    end_dt = _coerce_dt(end, end_of_day=True)

    query = db.session.query(LedgerTransaction).filter(LedgerTransaction.kind == KIND_CHECKOUT)
    if start_dt:
        query = query.filter(LedgerTransaction.created_at >= start_dt)
    if end_dt:
        query = query.filter(LedgerTransaction.created_at <= end_dt)
    if transaction_no:
        query = query.filter(LedgerTransaction.ref_id.contains(transaction_no.strip()))

    result = []
    with read_snapshot():
        headers = query.order_by(LedgerTransaction.created_at.desc(), LedgerTransaction.id.desc()).all()
        for header in headers:
            receipt = _receipt_dict(header)
            if receipt["voided"] and not include_voided:
                continue
            result.append(receipt)
    return result


def get_receipt(transaction_no: str) -> dict:
    with read_snapshot():
        return _receipt_dict(resolve_checkout(transaction_no))


# =============================================================================
# PRODUCT REPORTS
# =============================================================================

def _net_units_by_product(view: _LedgerView) -> dict[int, dict]:
    stats: dict[int, dict] = {}

    def entry(record) -> dict:
        return stats.setdefault(record.product_id, {
            "product_id": record.product_id,
            "name": record.product_name or "Unknown Product",
            "units": 0,
            "revenue_cents": 0,
            "cost_cents": 0,
        })

    for record in view.sales:
        row = entry(record)
        row["units"] += record.quantity
        row["revenue_cents"] += record.total_amount_cents
        row["cost_cents"] += view.costs[record.id] * record.quantity
    for record in view.returns:
        row = entry(record)
        qty = abs(record.quantity)
        row["units"] -= qty
        row["revenue_cents"] -= abs(record.total_amount_cents)
        row["cost_cents"] -= view.costs[record.id] * qty
    return stats


def top_products(period: str = "30days", limit: int = 10, *, now: datetime | None = None) -> dict:
    """Best sellers by net units, with a trend against the previous window."""
    if limit < 1:
        raise ReportError("limit must be >= 1")
    start, end = period_range(period, now)
    previous: dict[int, dict] = {}
    with read_snapshot():
        current = _net_units_by_product(_load_view(start, end))
        if start is not None:
            previous = _net_units_by_product(_load_view(*previous_window(start, end)))

    ranked = sorted(current.values(), key=lambda r: (-r["units"], r["product_id"]))[:limit]
    products = []
    for row in ranked:
        prev_units = previous.get(row["product_id"], {}).get("units", 0)
        products.append({
            "product_id": row["product_id"],
            "name": row["name"],
            "sold": row["units"],
            "revenue_cents": row["revenue_cents"],
            "trend": trend_label(row["units"], prev_units) if start is not None else None,
        })
    return {"period": period, "products": products}


def profit_margin(start=None, end=None) -> dict:
    """Per-product profit over non-voided sales net of returns."""
    start_dt = _coerce_dt(start)
    end_dt = _coerce_dt(end, end_of_day=True)
    with read_snapshot():
        stats = _net_units_by_product(_load_view(start_dt, end_dt))

    rows = []
    for row in sorted(stats.values(), key=lambda r: r["product_id"]):
        profit = row["revenue_cents"] - row["cost_cents"]
        margin = (profit / row["revenue_cents"] * 100.0) if row["revenue_cents"] else None
        rows.append({
            **row,
            "profit_cents": profit,
            "margin_pct": round(margin, 2) if margin is not None else None,
        })

    revenue = sum(r["revenue_cents"] for r in rows)
    cost = sum(r["cost_cents"] for r in rows)
    return {
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "revenue_cents": revenue,
        "cost_cents": cost,
        "profit_cents": revenue - cost,
        "margin_pct": round((revenue - cost) / revenue * 100.0, 2) if revenue else None,
        "products": rows,
    }


def stock_movements(
    *,
    page: int = 1,
    page_size: int = 50,
    movement_type: str | None = None,
    product_id: int | None = None,
    start=None,
    end=None,
) -> dict:
    if page < 1:
        raise ReportError("page must be >= 1")
    if page_size < 1 or page_size > MAX_PAGE_SIZE:
        raise ReportError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
    start_dt = _coerce_dt(start)
    end_dt = _coerce_dt(end, end_of_day=True)

    query = db.session.query(StockMovement)
    if movement_type:
        query = query.filter(StockMovement.type == movement_type)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if start_dt:
        query = query.filter(StockMovement.created_at >= start_dt)
    if end_dt:
        query = query.filter(StockMovement.created_at <= end_dt)

    with read_snapshot():
        total = query.with_entities(func.count(StockMovement.id)).scalar() or 0
        items = query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).offset(
            (page - 1) * page_size
        ).limit(page_size).all()
        items = [m.to_dict() for m in items]

    return {
        "items": items,
        "page": page,
        "page_size": page_size,
        "total": int(total),
    }


def integrity_report() -> dict:
    """Orphan voids and stock projection drift across the whole ledger."""
    with read_snapshot():
        void_rows = db.session.query(LedgerTransaction).filter(
            LedgerTransaction.kind == KIND_VOID
        ).order_by(LedgerTransaction.id.asc()).all()
        _, _, checkout_suffixes = _void_index()

        orphan_voids = [
            {"ref_id": v.ref_id, "created_at": to_utc_z(v.created_at)}
            for v in void_rows
            if ref_suffix(v.ref_id) not in checkout_suffixes
        ]
        drift = stock_drift()

    for orphan in orphan_voids:
        current_app.logger.warning("Orphan void without matching checkout: %s", orphan["ref_id"])
    for row in drift:
        current_app.logger.warning("Stock drift detected: %s", row)

    return {
        "ok": not orphan_voids and not drift,
        "orphan_voids": orphan_voids,
        "stock_drift": drift,
    }


# =============================================================================
# COMPENSATION ITEMS
# =============================================================================

def _item_row(record: LedgerRecord, header: LedgerTransaction, amount_key: str) -> dict:
    return {
        "date": to_utc_z(record.created_at),
        "transaction_no": record.ref_id,
        "product_id": record.product_id,
        "product_name": record.product_name or "Unknown Product",
        "quantity": abs(record.quantity),
        amount_key: abs(record.total_amount_cents),
        "reason": record.reason,
        "handled_by_user_id": record.user_id if record.user_id is not None else header.user_id,
    }


def returned_items(start=None, end=None) -> dict:
    """
    One row per returned line, newest first.

    Returns against a voided sale line are left out, matching summarize().
    """
    start_dt = _coerce_dt(start)
    end_dt = _coerce_dt(end, end_of_day=True)

    with read_snapshot():
        view = _load_view(start_dt, end_dt)
        rows = [_item_row(r, r.transaction, "refund_cents") for r in view.returns]
        for row, record in zip(rows, view.returns):
            row["sale_line_id"] = record.original_record_id

    rows.sort(key=lambda r: (r["date"], r["transaction_no"]), reverse=True)
    return {
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "rows": rows,
        "total_refund_cents": sum(r["refund_cents"] for r in rows),
    }


def void_items(start=None, end=None) -> dict:
    """One row per voided line, newest first, with who requested and approved it."""
    start_dt = _coerce_dt(start)
    end_dt = _coerce_dt(end, end_of_day=True)

    with read_snapshot():
        view = _load_view(start_dt, end_dt)
        rows = []
        for record in view.voids:
            header = record.transaction
            row = _item_row(record, header, "void_amount_cents")
            row["approved_by_user_id"] = header.approved_by_user_id
            rows.append(row)

    rows.sort(key=lambda r: (r["date"], r["transaction_no"]), reverse=True)
    return {
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "rows": rows,
        "total_void_cents": sum(r["void_amount_cents"] for r in rows),
    }
