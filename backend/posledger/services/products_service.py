# backend/posledger/services/products_service.py
"""
Product Catalog Service

STOCK: stock_on_hand is never written directly here. Opening stock and
manual corrections go through apply_stock_change() as "manual" movements,
which is the baseline the ledger projection starts from.

SOFT DELETE: delete flips is_active and stamps deleted_at. Ledger records
keep their weak product_id, so history and reports survive, and the row can
be restored later by id or barcode.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import Product
from ..models.inventory import STATUS_LOW_STOCK, STATUS_OUT_OF_STOCK, compute_status
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_product,
    validate_payload,
    _strict_int,
)
from posledger.time_utils import utcnow
from . import notification_service
from .concurrency import run_atomic
from .errors import InvalidQuantity, UnknownProduct
from .stock_service import apply_stock_change, default_threshold, load_products_for_update

PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "barcode", "price_cents", "unit_cost_cents", "stock_on_hand", "low_stock_threshold"},
    required_on_create={"name", "price_cents"},
)

# Stock changes after creation only through adjust_stock()
PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "barcode", "price_cents", "unit_cost_cents", "low_stock_threshold"},
)

PRODUCT_RESTORE_POLICY = PRODUCT_CREATE_POLICY

PRODUCT_MUTABLE_FIELDS = {"name", "barcode", "price_cents", "unit_cost_cents", "low_stock_threshold"}


def validate_product_payload(payload: dict, *, policy: ModelValidationPolicy, partial: bool) -> dict:
    patch = validate_payload(model=Product, payload=payload, policy=policy, partial=partial)
    enforce_rules_product(patch)
    return patch


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _ensure_barcode_free(barcode: str | None, *, exclude_id: int | None = None) -> None:
    if not barcode:
        return
    query = db.session.query(Product).filter(
        Product.barcode == barcode,
        Product.is_active.is_(True),
    )
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    existing = query.first()
    if existing:
        raise ConflictError(f'A product with barcode "{barcode}" already exists ({existing.name})')


def list_products(
    *,
    include_inactive: bool = False,
    search: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """Catalog listing with optional name/barcode search and pagination."""
    threshold = default_threshold()
    base_query = db.session.query(Product)
    if not include_inactive:
        base_query = base_query.filter(Product.is_active.is_(True))
    if search:
        term = f"%{search.strip()}%"
        base_query = base_query.filter(or_(Product.name.ilike(term), Product.barcode.ilike(term)))
    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict(threshold) for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict(threshold) for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def get_product(product_id: int, *, include_inactive: bool = True) -> Product:
    p = db.session.get(Product, product_id)
    if p is None or (not include_inactive and not p.is_active):
        raise UnknownProduct(f"Product {product_id} not found", details={"product_id": product_id})
    return p


def find_by_barcode(barcode: str) -> Product:
    code = (barcode or "").strip()
    p = db.session.query(Product).filter(
        Product.barcode == code,
        Product.is_active.is_(True),
    ).first()
    if p is None:
        raise UnknownProduct(f"No active product with barcode {code}", details={"barcode": code})
    return p


def _create_locked(patch: dict, user_id: int | None) -> Product:
    barcode = patch.get("barcode")
    _ensure_barcode_free(barcode)
    if barcode:
        dormant = db.session.query(Product).filter(
            Product.barcode == barcode,
            Product.is_active.is_(False),
        ).first()
        if dormant is not None:
            raise ConflictError(
                f'A deleted product uses barcode "{barcode}" (id {dormant.id}); restore it instead'
            )

    now = utcnow()
    p = Product(stock_on_hand=0, is_active=True, created_at=now, updated_at=now)
    apply_product_patch(p, patch)
    db.session.add(p)
    db.session.flush()  # ensure p.id exists before the opening movement

    opening = patch.get("stock_on_hand") or 0
    if opening:
        apply_stock_change(
            p, opening, movement_type="manual", created_at=now, reason="opening stock", user_id=user_id
        )
    return p


def create_product(*, patch: dict, user_id: int | None = None) -> Product:
    """Create a product from a validated patch; opening stock becomes a manual movement."""
    p = run_atomic(lambda: _create_locked(patch, user_id))
    current_app.logger.info("Created product %s (%s) stock=%s", p.id, p.name, p.stock_on_hand)
    return p


def _update_locked(product_id: int, patch: dict) -> Product:
    p = get_product(product_id, include_inactive=False)
    if "barcode" in patch and patch["barcode"] != p.barcode:
        _ensure_barcode_free(patch["barcode"], exclude_id=p.id)
    apply_product_patch(p, patch)
    p.updated_at = utcnow()
    return p


def update_product(*, product_id: int, patch: dict) -> Product:
    return run_atomic(lambda: _update_locked(product_id, patch))


def _delete_locked(product_id: int) -> Product:
    p = get_product(product_id)
    # Soft-delete only: preserve IDs and historical references.
    if p.is_active:
        p.is_active = False
        p.deleted_at = utcnow()
    return p


def soft_delete_product(product_id: int) -> Product:
    p = run_atomic(lambda: _delete_locked(product_id))
    current_app.logger.info("Soft-deleted product %s", p.id)
    return p


def _find_dormant(product_id: int | None, barcode: str | None) -> Product:
    query = db.session.query(Product).filter(Product.is_active.is_(False))
    if product_id is not None:
        query = query.filter(Product.id == product_id)
    elif barcode:
        query = query.filter(Product.barcode == barcode.strip())
    else:
        raise ValidationError("id or barcode is required")
    p = query.order_by(Product.deleted_at.desc(), Product.id.desc()).first()
    if p is None:
        raise UnknownProduct(
            "Product not found or not deleted",
            details={"product_id": product_id, "barcode": barcode},
        )
    return p


def _restore_locked(product_id, barcode, patch: dict, user_id) -> Product:
    p = _find_dormant(product_id, barcode)
    new_barcode = patch.get("barcode", p.barcode)
    _ensure_barcode_free(new_barcode, exclude_id=p.id)

    now = utcnow()
    apply_product_patch(p, patch)
    p.is_active = True
    p.deleted_at = None
    p.updated_at = now

    # Restock to the requested count; the difference is a manual movement
    target = patch.get("stock_on_hand")
    if target is not None and target != p.stock_on_hand:
        apply_stock_change(
            p, target - p.stock_on_hand, movement_type="manual", created_at=now,
            reason="restored", user_id=user_id,
        )
    return p


def restore_product(
    *,
    product_id: int | None = None,
    barcode: str | None = None,
    patch: dict | None = None,
    user_id: int | None = None,
) -> Product:
    """
    Re-activate a soft-deleted product found by id or barcode.

    The dormant row keeps its id, so every historical ledger record still
    points at it.
    """
    p = run_atomic(lambda: _restore_locked(product_id, barcode, patch or {}, user_id))
    current_app.logger.info("Restored product %s (%s)", p.id, p.name)
    return p


def _adjust_locked(product_id: int, delta: int, reason: str | None, user_id: int | None):
    products = load_products_for_update([product_id])
    if product_id not in products:
        raise UnknownProduct(f"Product {product_id} not found", details={"product_id": product_id})
    p = products[product_id]
    if p.stock_on_hand + delta < 0:
        raise InvalidQuantity(
            "Adjustment would make stock negative",
            details={"product_id": product_id, "on_hand": p.stock_on_hand, "delta": delta},
        )
    return apply_stock_change(
        p, delta, movement_type="manual", created_at=utcnow(), reason=reason, user_id=user_id
    )


def adjust_stock(product_id: int, delta, *, reason: str | None = None, user_id: int | None = None):
    """Manual stock correction (delivery, shrinkage, recount). Returns the StockChange."""
    try:
        delta = _strict_int("delta", delta)
    except ValidationError as exc:
        raise InvalidQuantity(str(exc), details={"value": repr(delta)})
    if delta == 0:
        raise InvalidQuantity("delta cannot be zero", details={"value": 0})

    change = run_atomic(lambda: _adjust_locked(product_id, delta, reason, user_id))
    current_app.logger.info(
        "Manual stock adjustment for product %s: %+d (%s -> %s)",
        product_id, delta, change.before, change.after,
    )
    notification_service.publish([change.to_event()])
    return change


def stock_alerts(threshold: int | None = None) -> dict:
    """
    Active products at or under their threshold.

    An explicit threshold overrides every product's own; otherwise each
    product uses its override or the store default.
    """
    default = default_threshold()
    products = db.session.query(Product).filter(Product.is_active.is_(True)).order_by(
        Product.name.asc(), Product.id.asc()
    ).all()

    low, out = [], []
    for p in products:
        limit = threshold if threshold is not None else p.effective_threshold(default)
        status = compute_status(p.stock_on_hand, limit)
        if status == STATUS_OUT_OF_STOCK:
            out.append(p.to_dict(default))
        elif status == STATUS_LOW_STOCK:
            low.append(p.to_dict(default))

    return {
        "threshold": threshold,
        "low_stock": low,
        "out_of_stock": out,
        "summary": {
            "total": len(products),
            "low_stock_count": len(low),
            "out_of_stock_count": len(out),
        },
    }
