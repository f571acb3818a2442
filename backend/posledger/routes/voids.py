# Overview: Flask API routes for voids and the void approval queue.

# backend/posledger/routes/voids.py
"""
Void API Routes

DESIGN:
- POST /api/voids applies a void directly (on-site approval). When the store
  sets VOID_REQUIRES_APPROVAL, approved_by_user_id must be supplied.
- /api/void-requests queues a void for a manager to approve or reject later.
"""

from flask import Blueprint, jsonify, request

from ..decorators import json_errors, json_body
from ..services import void_service, approval_service
from ..services.errors import ApprovalError
from ..validation import ValidationError, parse_line_items, optional_int


voids_bp = Blueprint("voids", __name__)


def _transaction_no(data: dict) -> str:
    transaction_no = data.get("transaction_no")
    if not isinstance(transaction_no, str) or not transaction_no.strip():
        raise ValidationError("transaction_no is required")
    return transaction_no.strip()


def _optional_lines(data: dict):
    if data.get("items") is None:
        return None
    return parse_line_items(data)


@voids_bp.post("/api/voids")
@json_errors("void transaction")
def void_route():
    """
    Void a whole checkout.

    Request body:
    {
        "transaction_no": "checkout-1718000000000",
        "items": [{"product_id": 1, "quantity": 2}],  (optional, must match the sale)
        "reason": "wrong item scanned",  (optional)
        "user_id": 7,  (optional)
        "approved_by_user_id": 3  (required when approval is enforced)
    }
    """
    data = json_body()
    transaction_no = _transaction_no(data)
    approved_by = optional_int(data, "approved_by_user_id")
    if void_service.approval_required(approved_by):
        raise ApprovalError(
            "Void requires approval; supply approved_by_user_id or create a void request",
            details={"transaction_no": transaction_no},
        )

    result = void_service.void_transaction(
        transaction_no,
        _optional_lines(data),
        user_id=optional_int(data, "user_id"),
        approved_by_user_id=approved_by,
        reason=data.get("reason"),
    )
    return jsonify(result.to_dict()), 201


@voids_bp.get("/api/void-requests")
@json_errors("list void requests")
def list_void_requests_route():
    status = request.args.get("status")
    requests = approval_service.list_void_requests(status)
    return jsonify({"items": [r.to_dict() for r in requests], "count": len(requests)})


@voids_bp.post("/api/void-requests")
@json_errors("create void request")
def create_void_request_route():
    data = json_body()
    req = approval_service.create_pending_void(
        _transaction_no(data),
        data.get("reason"),
        requested_by_user_id=optional_int(data, "user_id"),
        lines=_optional_lines(data),
    )
    return jsonify({"void_request": req.to_dict()}), 201


@voids_bp.patch("/api/void-requests/<int:request_id>")
@json_errors("resolve void request")
def resolve_void_request_route(request_id: int):
    """
    Approve, reject or cancel a pending request.

    Request body: {"action": "approve" | "reject" | "cancel", "user_id": 3}
    """
    data = json_body()
    action = (data.get("action") or "").strip().lower()

    if action == "cancel":
        req = approval_service.cancel_pending_void(request_id)
        return jsonify({"void_request": req.to_dict(), "void": None})

    req, result = approval_service.resolve_pending_void(
        request_id, action, decided_by_user_id=optional_int(data, "user_id")
    )
    return jsonify({
        "void_request": req.to_dict(),
        "void": result.to_dict() if result is not None else None,
    })
