from __future__ import annotations
from datetime import datetime
from posledger.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .services.errors import InvalidQuantity


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# Largest quantity accepted on one line
MAX_LINE_QUANTITY = 100_000


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate barcode)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


@dataclass(frozen=True)
class LineItem:
    """One cart or void line; quantity is always a positive int."""
    product_id: int
    quantity: int

    def to_dict(self) -> dict:
        return {"product_id": self.product_id, "quantity": self.quantity}


@dataclass(frozen=True)
class ReturnItem:
    sale_line_id: int
    quantity: int
    reason: str | None = None


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _strict_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        return _strict_int(col.key, value)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        # fallback: truthiness
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    for field in ("price_cents", "unit_cost_cents"):
        if field in patch and patch[field] is not None:
            amount = patch[field]
            if amount < 0:
                raise ValidationError(f"{field} must be >= 0")
            if amount > MAX_PRICE_CENTS:
                raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")

    if "stock_on_hand" in patch and patch["stock_on_hand"] is not None:
        if patch["stock_on_hand"] < 0:
            raise ValidationError("stock_on_hand must be >= 0")

    if "low_stock_threshold" in patch and patch["low_stock_threshold"] is not None:
        if patch["low_stock_threshold"] < 0:
            raise ValidationError("low_stock_threshold must be >= 0")

    if "barcode" in patch and patch["barcode"] == "":
        patch["barcode"] = None


def positive_quantity(value: Any, *, key: str = "quantity") -> int:
    """PositiveInt: rejects bools, floats, zero and negatives."""
    try:
        qty = _strict_int(key, value)
    except ValidationError as exc:
        raise InvalidQuantity(str(exc), details={"value": repr(value)})
    if qty <= 0:
        raise InvalidQuantity(f"{key} must be greater than zero", details={"value": qty})
    if qty > MAX_LINE_QUANTITY:
        raise InvalidQuantity(f"{key} cannot exceed {MAX_LINE_QUANTITY}", details={"value": qty})
    return qty


def _items_list(payload: Any, key: str) -> list:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    items = payload.get(key)
    if not isinstance(items, list):
        raise ValidationError(f"{key} must be a list")
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError(f"each entry in {key} must be an object")
    return items


def parse_line_items(payload: Any, *, key: str = "items", allow_empty: bool = False) -> list[LineItem]:
    """Validate [{product_id, quantity}, ...] into LineItems."""
    if allow_empty and isinstance(payload, dict) and payload.get(key) is None:
        return []
    items = _items_list(payload, key)
    if not items and not allow_empty:
        raise ValidationError(f"{key} cannot be empty")

    parsed = []
    for raw in items:
        if raw.get("product_id") is None:
            raise ValidationError("product_id is required")
        parsed.append(LineItem(
            product_id=_strict_int("product_id", raw.get("product_id")),
            quantity=positive_quantity(raw.get("quantity")),
        ))
    return parsed


def parse_return_items(payload: Any, *, key: str = "items") -> list[ReturnItem]:
    items = _items_list(payload, key)
    if not items:
        raise ValidationError(f"{key} cannot be empty")

    parsed = []
    for raw in items:
        if raw.get("sale_line_id") is None:
            raise ValidationError("sale_line_id is required")
        reason = raw.get("reason")
        parsed.append(ReturnItem(
            sale_line_id=_strict_int("sale_line_id", raw.get("sale_line_id")),
            quantity=positive_quantity(raw.get("quantity")),
            reason=str(reason).strip()[:255] if reason else None,
        ))
    return parsed


def optional_int(payload: dict, key: str) -> int | None:
    value = payload.get(key) if isinstance(payload, dict) else None
    if value is None:
        return None
    return _strict_int(key, value)
