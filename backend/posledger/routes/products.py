# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/posledger/routes/products.py
"""
Product catalog routes.

Stock is read-only through PATCH; use POST /<id>/adjust for manual stock
corrections so every change leaves a stock movement behind.
"""
from flask import Blueprint, request, jsonify

from ..decorators import json_errors, json_body
from ..services import products_service
from ..services.products_service import (
    PRODUCT_CREATE_POLICY,
    PRODUCT_UPDATE_POLICY,
    PRODUCT_RESTORE_POLICY,
)
from ..services.stock_service import default_threshold
from ..validation import ValidationError, optional_int

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _product_json(p):
    return p.to_dict(default_threshold())


@products_bp.get("")
@json_errors("list products")
def list_products():
    """
    Query params:
    - q: name/barcode search (optional)
    - include_inactive: true|false (default false)
    - page, per_page: pagination (optional; omit page to get everything)
    """
    return jsonify(products_service.list_products(
        include_inactive=request.args.get("include_inactive", "false").lower() == "true",
        search=request.args.get("q"),
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    ))


@products_bp.post("")
@json_errors("create product")
def create_product():
    data = json_body()
    user_id = optional_int(data, "user_id")
    data.pop("user_id", None)
    patch = products_service.validate_product_payload(data, policy=PRODUCT_CREATE_POLICY, partial=False)
    p = products_service.create_product(patch=patch, user_id=user_id)
    return jsonify(_product_json(p)), 201


@products_bp.get("/stock-alerts")
@json_errors("list stock alerts")
def stock_alerts():
    raw = request.args.get("threshold")
    threshold = None
    if raw is not None:
        try:
            threshold = int(raw)
        except ValueError:
            raise ValidationError("threshold must be a valid number")
        if threshold < 0:
            raise ValidationError("threshold must be >= 0")
    return jsonify(products_service.stock_alerts(threshold))


@products_bp.get("/by-barcode/<code>")
@json_errors("look up barcode")
def get_by_barcode(code: str):
    return jsonify(_product_json(products_service.find_by_barcode(code)))


@products_bp.post("/restore")
@json_errors("restore product")
def restore_product():
    """
    Request body: {"id": 4} or {"barcode": "4801234567890"}, plus optional
    fields to overwrite on the restored row (name, price_cents, stock_on_hand, ...).
    """
    data = json_body()
    product_id = optional_int(data, "id")
    barcode = data.get("barcode")
    user_id = optional_int(data, "user_id")
    fields = {k: v for k, v in data.items() if k not in {"id", "user_id"}}
    patch = products_service.validate_product_payload(fields, policy=PRODUCT_RESTORE_POLICY, partial=True)
    p = products_service.restore_product(
        product_id=product_id,
        barcode=barcode if product_id is None else None,
        patch=patch,
        user_id=user_id,
    )
    return jsonify(_product_json(p))


@products_bp.get("/<int:product_id>")
@json_errors("load product")
def get_product(product_id: int):
    return jsonify(_product_json(products_service.get_product(product_id)))


@products_bp.patch("/<int:product_id>")
@json_errors("update product")
def update_product(product_id: int):
    patch = products_service.validate_product_payload(json_body(), policy=PRODUCT_UPDATE_POLICY, partial=True)
    p = products_service.update_product(product_id=product_id, patch=patch)
    return jsonify(_product_json(p))


@products_bp.delete("/<int:product_id>")
@json_errors("delete product")
def delete_product(product_id: int):
    p = products_service.soft_delete_product(product_id)
    return jsonify(_product_json(p))


@products_bp.post("/<int:product_id>/adjust")
@json_errors("adjust stock")
def adjust_stock(product_id: int):
    """Request body: {"delta": -3, "reason": "shrinkage", "user_id": 7}"""
    data = json_body()
    if data.get("delta") is None:
        raise ValidationError("delta is required")
    change = products_service.adjust_stock(
        product_id,
        data.get("delta"),
        reason=data.get("reason"),
        user_id=optional_int(data, "user_id"),
    )
    return jsonify({
        "product": _product_json(products_service.get_product(product_id)),
        "movement": change.movement.to_dict(),
    })
