# Overview: Flask API routes for returns; refunds sale lines at their original price.

from flask import Blueprint, jsonify

from ..decorators import json_errors, json_body
from ..services import return_service
from ..validation import parse_return_items, optional_int


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


@returns_bp.post("")
@json_errors("process return")
def create_return_route():
    """
    Return units of one or more sale lines under a single return reference.

    Request body:
    {
        "items": [{"sale_line_id": 12, "quantity": 1, "reason": "damaged"}],
        "user_id": 7  (optional)
    }

    Returns:
        201: {transaction_no, refund_cents, lines}
        400: Quantity is zero or exceeds what is left on the line
        404: Sale line not found
        409: Line already fully returned, or its sale was voided
    """
    data = json_body()
    items = parse_return_items(data)
    result = return_service.return_items(items, user_id=optional_int(data, "user_id"))
    return jsonify(result.to_dict()), 201
