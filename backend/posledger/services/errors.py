# Overview: Ledger error taxonomy shared by the orchestrators and routes.

from __future__ import annotations


class LedgerError(Exception):
    """Base for business-rule failures; raised before any mutation."""
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "code": type(self).__name__, "details": self.details}


class InsufficientStock(LedgerError):
    """Checkout blocked; details["items"] lists every failing product."""
    http_status = 409


class UnknownTransaction(LedgerError):
    """A void/return references a refId or sale line that does not exist."""
    http_status = 404


class UnknownProduct(LedgerError):
    http_status = 404


class AlreadyVoided(LedgerError):
    http_status = 409


class AlreadyFullyReturned(LedgerError):
    http_status = 409


class CompensationConflict(LedgerError):
    """Void requested for a transaction that already has returns."""
    http_status = 409


class InvalidQuantity(LedgerError):
    http_status = 400


class IntegrityViolation(LedgerError):
    """Ledger data contradicts itself; must reach an operator, never auto-healed."""
    http_status = 409


class ApprovalError(LedgerError):
    http_status = 409


class PersistenceFailure(LedgerError):
    """The store failed mid-operation; everything was rolled back."""
    http_status = 503
