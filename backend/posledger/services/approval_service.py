"""
Void Approval Workflow

WHY: Some stores want a second person to sign off before a sale is voided.
Instead of blocking the register, the cashier queues a VoidRequest and a
manager resolves it later.

LIFECYCLE:
    pending -> approved   (void applied in the same DB transaction)
    pending -> rejected   (no stock effect)
    pending -> cancelled  (requester withdrew it; no stock effect)

Only one pending request may exist per transaction.
"""

from __future__ import annotations

import json

from flask import current_app

from ..extensions import db
from ..models import VoidRequest
from ..models.approvals import (
    VOID_REQUEST_PENDING,
    VOID_REQUEST_APPROVED,
    VOID_REQUEST_REJECTED,
    VOID_REQUEST_CANCELLED,
)
from ..validation import LineItem, parse_line_items
from posledger.time_utils import utcnow
from . import notification_service
from .concurrency import run_atomic
from .errors import ApprovalError
from .void_service import resolve_checkout, ensure_voidable, _void_locked

DECISION_APPROVE = "approve"
DECISION_REJECT = "reject"
DECISIONS = (DECISION_APPROVE, DECISION_REJECT)


def _serialize_lines(lines) -> str | None:
    items = list(lines or [])
    if not items:
        return None
    if not all(isinstance(line, LineItem) for line in items):
        items = parse_line_items({"items": items})
    return json.dumps([line.to_dict() for line in items])


def get_void_request(request_id: int) -> VoidRequest:
    req = db.session.get(VoidRequest, request_id)
    if req is None:
        raise ApprovalError(
            f"Void request {request_id} not found",
            details={"request_id": request_id},
        )
    return req


def _require_pending(req: VoidRequest) -> None:
    if req.status != VOID_REQUEST_PENDING:
        raise ApprovalError(
            f"Void request {req.id} is {req.status}, not pending",
            details={"request_id": req.id, "status": req.status},
        )


def _create_locked(transaction_no, reason, requested_by_user_id, lines_json) -> VoidRequest:
    checkout = resolve_checkout(transaction_no, lock=True)
    ensure_voidable(checkout)

    existing = db.session.query(VoidRequest).filter_by(
        transaction_no=checkout.ref_id, status=VOID_REQUEST_PENDING
    ).first()
    if existing is not None:
        raise ApprovalError(
            f"Transaction {checkout.ref_id} already has a pending void request",
            details={"transaction_no": checkout.ref_id, "request_id": existing.id},
        )

    req = VoidRequest(
        transaction_no=checkout.ref_id,
        reason=reason,
        lines=lines_json,
        status=VOID_REQUEST_PENDING,
        requested_by_user_id=requested_by_user_id,
        created_at=utcnow(),
    )
    db.session.add(req)
    db.session.flush()
    return req


def create_pending_void(
    transaction_no: str,
    reason: str | None = None,
    *,
    requested_by_user_id: int | None = None,
    lines=None,
) -> VoidRequest:
    """Queue a void for approval. Validates the target now so bad requests fail early."""
    lines_json = _serialize_lines(lines)
    req = run_atomic(lambda: _create_locked(transaction_no, reason, requested_by_user_id, lines_json))
    current_app.logger.info(
        "Void request %s queued for %s by user %s", req.id, req.transaction_no, requested_by_user_id
    )
    return req


def _resolve_locked(request_id: int, decision: str, decided_by_user_id: int | None):
    req = get_void_request(request_id)
    _require_pending(req)

    now = utcnow()
    result = None
    changes = []
    if decision == DECISION_APPROVE:
        lines = [LineItem(**line) for line in req.line_items()]
        result, changes = _void_locked(
            req.transaction_no,
            lines,
            user_id=req.requested_by_user_id,
            approved_by_user_id=decided_by_user_id,
            reason=req.reason,
            occurred_at=now,
        )
        req.status = VOID_REQUEST_APPROVED
    else:
        req.status = VOID_REQUEST_REJECTED

    req.decided_by_user_id = decided_by_user_id
    req.decided_at = now
    return req, result, changes


def resolve_pending_void(request_id: int, decision: str, *, decided_by_user_id: int | None = None):
    """
    Approve or reject a pending request.

    Returns (request, VoidResult | None). When the void itself fails the
    request stays pending and the ledger error propagates.
    """
    decision = (decision or "").strip().lower()
    if decision not in DECISIONS:
        raise ApprovalError(
            f"decision must be one of: {', '.join(DECISIONS)}",
            details={"decision": decision},
        )

    req, result, changes = run_atomic(lambda: _resolve_locked(request_id, decision, decided_by_user_id))

    current_app.logger.info(
        "Void request %s %s by user %s", req.id, req.status, decided_by_user_id
    )
    if changes:
        notification_service.publish(c.to_event() for c in changes)
    return req, result


def _cancel_locked(request_id: int) -> VoidRequest:
    req = get_void_request(request_id)
    _require_pending(req)
    req.status = VOID_REQUEST_CANCELLED
    req.decided_at = utcnow()
    return req


def cancel_pending_void(request_id: int) -> VoidRequest:
    req = run_atomic(lambda: _cancel_locked(request_id))
    current_app.logger.info("Void request %s cancelled", req.id)
    return req


def list_void_requests(status: str | None = None) -> list[VoidRequest]:
    query = db.session.query(VoidRequest)
    if status:
        query = query.filter(VoidRequest.status == status)
    return query.order_by(VoidRequest.created_at.desc(), VoidRequest.id.desc()).all()
