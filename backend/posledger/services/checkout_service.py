"""
Checkout Service - cart to committed sale in one atomic unit

WHY: Stock checks and decrements must happen under the same lock as the
ledger append, otherwise two registers can both see the last unit on the
shelf and oversell it.

FLOW:
1. Validate every line (quantity, product exists and is active, stock).
2. Fail with InsufficientStock listing every short product, before any write.
3. Decrement stock, log movements, append checkout-<ts> records, commit.
4. Publish stock alerts after commit (never rolls the sale back).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app

from ..models.ledger import KIND_CHECKOUT
from ..validation import LineItem, parse_line_items
from posledger.time_utils import utcnow, to_utc_z
from . import notification_service
from .concurrency import run_atomic
from .errors import InsufficientStock, InvalidQuantity, UnknownProduct
from .ledger_service import allocate_ts, open_transaction, append_record
from .stock_service import load_products_for_update, apply_stock_change, alert_summary


@dataclass
class CheckoutResult:
    transaction_no: str
    summary: dict
    total_cents: int
    created_at: datetime
    lines: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "transaction_no": self.transaction_no,
            "summary": self.summary,
            "total_cents": self.total_cents,
            "created_at": to_utc_z(self.created_at),
            "lines": self.lines,
        }


def _as_line_items(cart) -> list[LineItem]:
    cart = list(cart or [])
    if all(isinstance(line, LineItem) for line in cart):
        return cart
    return parse_line_items({"items": cart}, allow_empty=True)


def merge_lines(lines: list[LineItem]) -> dict[int, int]:
    """Requested quantity per product, in first-seen order."""
    totals: dict[int, int] = {}
    for line in lines:
        if line.quantity <= 0:
            raise InvalidQuantity(
                f"Invalid quantity for product {line.product_id}",
                details={"product_id": line.product_id, "quantity": line.quantity},
            )
        totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
    return totals


def _validate_on_hand(requested: dict[int, int], products: dict) -> None:
    missing = [pid for pid in requested if pid not in products]
    if missing:
        raise UnknownProduct(
            "Product not found",
            details={"product_ids": missing},
        )

    insufficient = []
    for product_id, qty in requested.items():
        product = products[product_id]
        if product.stock_on_hand < qty:
            insufficient.append({
                "product_id": product_id,
                "name": product.name,
                "requested_quantity": qty,
                "on_hand": product.stock_on_hand,
            })

    if insufficient:
        raise InsufficientStock(
            "Insufficient stock to complete checkout",
            details={"items": insufficient},
        )


def _checkout_locked(
    requested: dict[int, int],
    *,
    user_id: int | None,
    occurred_at: datetime,
):
    products = load_products_for_update(requested.keys())
    _validate_on_hand(requested, products)

    ts = allocate_ts(KIND_CHECKOUT, occurred_at)
    header = open_transaction(kind=KIND_CHECKOUT, ts=ts, created_at=occurred_at, user_id=user_id)

    changes = []
    lines = []
    total = 0
    for product_id, qty in requested.items():
        product = products[product_id]
        changes.append(apply_stock_change(
            product,
            -qty,
            movement_type="sale",
            created_at=occurred_at,
            ref_id=header.ref_id,
            user_id=user_id,
        ))
        record = append_record(
            header=header,
            product_id=product_id,
            quantity=qty,
            unit_price_cents=product.price_cents,
            product=product,
        )
        total += record.total_amount_cents
        lines.append(record.to_dict())

    result = CheckoutResult(
        transaction_no=header.ref_id,
        summary=alert_summary(changes),
        total_cents=total,
        created_at=occurred_at,
        lines=lines,
    )
    return result, changes


def checkout(cart, *, user_id: int | None = None, occurred_at: datetime | None = None) -> CheckoutResult:
    """
    Sell every line of cart or nothing at all.

    Returns the shared checkout-<ts> transaction number, used on receipts and
    as the correlation key for voids.
    """
    lines = _as_line_items(cart)
    if not lines:
        raise InvalidQuantity("No items to checkout")
    requested = merge_lines(lines)
    when = occurred_at or utcnow()

    result, changes = run_atomic(
        lambda: _checkout_locked(requested, user_id=user_id, occurred_at=when)
    )

    current_app.logger.info(
        "Checkout %s committed: %d product(s), total_cents=%d",
        result.transaction_no, len(requested), result.total_cents,
    )
    notification_service.publish(c.to_event() for c in changes)
    return result
