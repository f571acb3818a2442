# Overview: Service-layer operations for stock; the materialized stock count and its audit trail.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Product, StockMovement, LedgerRecord
from ..models.inventory import STATUS_LOW_STOCK, STATUS_OUT_OF_STOCK
from .concurrency import lock_for_update
from .errors import IntegrityViolation
from .notification_service import StockEvent
"""
Stock Store Invariants (authoritative)

- Product.stock_on_hand is never negative (DB check constraint).
- Every change goes through apply_stock_change(), which writes a
  StockMovement in the same DB transaction, so
  stock_on_hand == SUM(stock_movements.quantity).
- Ledger-derived projection: baseline (manual movements) - SUM(ledger quantity).
- Status is derived from stock and threshold on every read, never stored.
"""

ALERT_STATUSES = (STATUS_LOW_STOCK, STATUS_OUT_OF_STOCK)


@dataclass(frozen=True)
class StockChange:
    product_id: int
    before: int
    after: int
    status_before: str
    status_after: str
    movement: StockMovement

    @property
    def crossed_into_alert(self) -> bool:
        return self.status_after != self.status_before and self.status_after in ALERT_STATUSES

    def to_event(self) -> StockEvent:
        crossed = self.status_after if self.status_after != self.status_before else None
        return StockEvent(
            product_id=self.product_id,
            new_stock=self.after,
            crossed_threshold=crossed,
            ref_id=self.movement.ref_id,
        )


def default_threshold() -> int:
    return int(current_app.config.get("LOW_STOCK_THRESHOLD", 10))


def load_products_for_update(product_ids, *, include_inactive: bool = False) -> dict[int, Product]:
    """
    Read current committed rows for product_ids under a row lock.

    populate_existing() refreshes objects already in the identity map so a
    stock count read earlier in the request is never reused.
    """
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    query = db.session.query(Product).filter(Product.id.in_(ids)).order_by(Product.id.asc())
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    rows = lock_for_update(query).populate_existing().all()
    return {p.id: p for p in rows}


def apply_stock_change(
    product: Product,
    delta: int,
    *,
    movement_type: str,
    created_at: datetime,
    ref_id: str | None = None,
    reason: str | None = None,
    user_id: int | None = None,
) -> StockChange:
    """
    Add delta to product stock and log the movement. No commit.

    Callers check sufficiency before mutating; reaching a negative count here
    means a caller skipped that check.
    """
    threshold = default_threshold()
    before = product.stock_on_hand
    after = before + delta
    if after < 0:
        raise IntegrityViolation(
            "Stock change would make on-hand negative",
            details={"product_id": product.id, "before": before, "delta": delta},
        )

    status_before = product.status(threshold)
    product.stock_on_hand = after
    status_after = product.status(threshold)

    movement = StockMovement(
        product_id=product.id,
        type=movement_type,
        quantity=delta,
        before_stock=before,
        after_stock=after,
        ref_id=ref_id,
        reason=reason,
        user_id=user_id,
        created_at=created_at,
    )
    db.session.add(movement)

    return StockChange(
        product_id=product.id,
        before=before,
        after=after,
        status_before=status_before,
        status_after=status_after,
        movement=movement,
    )


def alert_summary(changes: list[StockChange]) -> dict:
    """Products that crossed into low/out-of-stock because of this operation."""
    low = [c.product_id for c in changes if c.crossed_into_alert and c.status_after == STATUS_LOW_STOCK]
    out = [c.product_id for c in changes if c.crossed_into_alert and c.status_after == STATUS_OUT_OF_STOCK]
    return {"low_stock": low, "out_of_stock": out}


def movement_total(product_id: int) -> int:
    q = db.session.query(func.coalesce(func.sum(StockMovement.quantity), 0)).filter(
        StockMovement.product_id == product_id
    )
    return int(q.scalar() or 0)


def ledger_projected_stock(product_id: int) -> int:
    """
    Stock as the ledger says it should be.

    baseline = opening stock and manual adjustments (movements of type manual)
    sold/restored = SUM(ledger quantity): checkouts positive, voids/returns negative
    """
    baseline = db.session.query(func.coalesce(func.sum(StockMovement.quantity), 0)).filter(
        StockMovement.product_id == product_id,
        StockMovement.type == "manual",
    ).scalar()
    ledger_net = db.session.query(func.coalesce(func.sum(LedgerRecord.quantity), 0)).filter(
        LedgerRecord.product_id == product_id,
    ).scalar()
    return int(baseline or 0) - int(ledger_net or 0)


def stock_drift() -> list[dict]:
    """Products whose stored count disagrees with the movement log or the ledger."""
    drift = []
    for product in db.session.query(Product).order_by(Product.id.asc()).all():
        from_movements = movement_total(product.id)
        from_ledger = ledger_projected_stock(product.id)
        if product.stock_on_hand != from_movements or product.stock_on_hand != from_ledger:
            drift.append({
                "product_id": product.id,
                "name": product.name,
                "stock_on_hand": product.stock_on_hand,
                "movement_total": from_movements,
                "ledger_projection": from_ledger,
            })
    return drift
