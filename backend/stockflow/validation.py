from __future__ import annotations
from datetime import date, datetime
from stockflow.time_utils import parse_iso_datetime

import math
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Largest quantity or amount accepted from clients
MAX_AMOUNT = 999_999_999.0


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., reused conversion key)."""


class NotFoundError(LookupError):
    """404-level missing product, receipt, sale or conversion."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set
    - required_on_create: fields required for POST
    - extra_fields: accepted payload keys that are not model columns
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore
    extra_fields: set[str] | None = None


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_number(value: Any, field: str) -> float:
    """Accept ints, floats and numeric strings; reject bools, NaN and infinities."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be a number")
        try:
            number = float(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")

    if math.isnan(number) or math.isinf(number):
        raise ValidationError(f"{field} must be a finite number")
    if abs(number) > MAX_AMOUNT:
        raise ValidationError(f"{field} exceeds {MAX_AMOUNT:,.0f}")
    return number


def require_positive(value: Any, field: str) -> float:
    if value is None:
        raise ValidationError(f"{field} is required")
    number = coerce_number(value, field)
    if number <= 0:
        raise ValidationError(f"{field} must be > 0")
    return number


def require_non_negative(value: Any, field: str) -> float:
    if value is None:
        raise ValidationError(f"{field} is required")
    number = coerce_number(value, field)
    if number < 0:
        raise ValidationError(f"{field} must be >= 0")
    return number


def optional_non_negative(value: Any, field: str) -> float | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return require_non_negative(value, field)


def require_text(value: Any, field: str, *, max_length: int = 255) -> str:
    if value is None:
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if not text:
        raise ValidationError(f"{field} cannot be blank")
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or "." in stripped or "e" in stripped.lower():
                raise ValidationError(f"{col.key} must be an integer")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        raise ValidationError(f"{col.key} must be an integer")

    if isinstance(coltype, Float):
        return coerce_number(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, (DateTime, Date)):
        if isinstance(value, (datetime, date)):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 date")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 date")
            if isinstance(coltype, Date) and not isinstance(coltype, DateTime):
                return dt.date()
            return dt
        raise ValidationError(f"{col.key} must be a date")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

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
    - a policy allowlist (writable_fields, extra_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only allowed fields. Extra fields are
    passed through untouched for the service layer to validate.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) is None)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)
    extra = policy.extra_fields or set()

    patch: dict = {}
    for k, raw in payload.items():
        if k in extra:
            patch[k] = raw
            continue
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

        col = cols[k]
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_receipt(patch: dict) -> None:
    # Receipts add stock: qty > 0, costs >= 0
    require_positive(patch.get("quantity_received"), "quantity_received")
    if patch.get("unit_cost") is not None:
        require_non_negative(patch["unit_cost"], "unit_cost")
    if patch.get("total_cost") is not None:
        require_non_negative(patch["total_cost"], "total_cost")


def enforce_rules_sale(patch: dict) -> None:
    require_positive(patch.get("quantity"), "quantity")
    if patch.get("amount") is not None:
        require_non_negative(patch["amount"], "amount")


def enforce_rules_conversion(patch: dict) -> None:
    require_positive(patch.get("source_quantity"), "source_quantity")
    require_positive(patch.get("destination_quantity"), "destination_quantity")
    if patch.get("unit_cost") is not None:
        require_non_negative(patch["unit_cost"], "unit_cost")
    if patch.get("selling_price") is not None:
        require_non_negative(patch["selling_price"], "selling_price")
