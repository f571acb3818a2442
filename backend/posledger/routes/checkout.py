# Overview: Flask API routes for checkout; parses the cart and returns the committed sale.

from flask import Blueprint, jsonify

from ..decorators import json_errors, json_body
from ..services import checkout_service
from ..validation import parse_line_items, optional_int


checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


@checkout_bp.post("")
@json_errors("checkout")
def checkout_route():
    """
    Sell a cart atomically.

    Request body:
    {
        "items": [{"product_id": 1, "quantity": 2}, ...],
        "user_id": 7  (optional)
    }

    Returns:
        201: {transaction_no, summary{low_stock, out_of_stock}, total_cents, lines}
        400: Invalid cart (empty, bad quantity)
        404: Unknown product
        409: Insufficient stock (details.items lists every short product)
    """
    data = json_body()
    items = parse_line_items(data)
    result = checkout_service.checkout(items, user_id=optional_int(data, "user_id"))
    return jsonify(result.to_dict()), 201
