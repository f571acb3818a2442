from __future__ import annotations

import json

from ..extensions import db
from posledger.time_utils import to_utc_z

VOID_REQUEST_PENDING = "pending"
VOID_REQUEST_APPROVED = "approved"
VOID_REQUEST_REJECTED = "rejected"
VOID_REQUEST_CANCELLED = "cancelled"


class VoidRequest(db.Model):
    """
    Queued void awaiting a second-party decision.

    LIFECYCLE: pending -> approved | rejected | cancelled.
    Nothing touches stock until the request is approved, so cancelling or
    rejecting needs no compensation.
    """
    __tablename__ = "void_requests"
    __table_args__ = (
        db.Index("ix_void_requests_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_no = db.Column(db.String(64), nullable=False, index=True)
    reason = db.Column(db.String(255), nullable=True)
    # JSON list of {"product_id", "quantity"}; empty means the whole transaction
    lines = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=VOID_REQUEST_PENDING)

    requested_by_user_id = db.Column(db.Integer, nullable=True)
    decided_by_user_id = db.Column(db.Integer, nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def line_items(self) -> list[dict]:
        if not self.lines:
            return []
        return json.loads(self.lines)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_no": self.transaction_no,
            "reason": self.reason,
            "lines": self.line_items(),
            "status": self.status,
            "requested_by_user_id": self.requested_by_user_id,
            "decided_by_user_id": self.decided_by_user_id,
            "decided_at": to_utc_z(self.decided_at) if self.decided_at else None,
            "created_at": to_utc_z(self.created_at),
        }
