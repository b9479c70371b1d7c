from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


PRODUCT_NAME_MIN_LENGTH = 2
PRODUCT_DESCRIPTION_MIN_LENGTH = 10
MIN_THRESHOLD_FLOOR = 1

# Signed 64-bit, the widest INTEGER the supported databases store.
INT_MIN = -(2 ** 63)
INT_MAX = 2 ** 63 - 1


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., illegal alert transition)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - extra_fields: accepted keys that are not columns of the model
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore
    extra_fields: set[str] | None = None


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion shared by payload validation and the services.

    Rejects bools, floats, scientific notation, decimal strings and values
    outside the signed 64-bit range.
    """
    return check_int_range(_parse_int(value, field), field)


def check_int_range(value: int, field: str) -> int:
    if value < INT_MIN or value > INT_MAX:
        raise ValidationError(f"{field} is out of range")
    return value


def _parse_int(value: Any, field: str) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def require_text(value: Any, field: str) -> str:
    if value is None:
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if not text:
        raise ValidationError(f"{field} cannot be blank")
    return text


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

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
    extra = policy.extra_fields or set()

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols and k not in extra:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        if k in extra and k not in cols:
            patch[k] = raw
            continue

        col = cols[k]

        if raw is None:
            if not col.nullable and not col.primary_key:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

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
    if "name" in patch:
        name = patch["name"] or ""
        if len(name.strip()) < PRODUCT_NAME_MIN_LENGTH:
            raise ValidationError(f"name must be at least {PRODUCT_NAME_MIN_LENGTH} characters")

    if "description" in patch:
        description = patch["description"] or ""
        if len(description.strip()) < PRODUCT_DESCRIPTION_MIN_LENGTH:
            raise ValidationError(
                f"description must be at least {PRODUCT_DESCRIPTION_MIN_LENGTH} characters"
            )

    if "min_threshold" in patch:
        threshold = patch["min_threshold"]
        if threshold is None:
            raise ValidationError("min_threshold is required")
        threshold = coerce_int(threshold, "min_threshold")
        if threshold < MIN_THRESHOLD_FLOOR:
            raise ValidationError(f"min_threshold must be >= {MIN_THRESHOLD_FLOOR}")
        patch["min_threshold"] = threshold

    if "initial_stock" in patch and patch["initial_stock"] is not None:
        initial = coerce_int(patch["initial_stock"], "initial_stock")
        if initial < 0:
            raise ValidationError("initial_stock must be >= 0")
        patch["initial_stock"] = initial


def enforce_rules_stock_adjustment(patch: dict) -> None:
    # ADJUST requires an integer delta (zero allowed) and a reason
    if "change_amount" not in patch or patch["change_amount"] is None:
        raise ValidationError("change_amount is required")
    patch["change_amount"] = coerce_int(patch["change_amount"], "change_amount")
    patch["reason"] = require_text(patch.get("reason"), "reason")


def enforce_rules_stock_set(patch: dict) -> None:
    if "current_stock" not in patch or patch["current_stock"] is None:
        raise ValidationError("current_stock is required")
    stock = coerce_int(patch["current_stock"], "current_stock")
    if stock < 0:
        raise ValidationError("current_stock must be >= 0")
    patch["current_stock"] = stock
    if "reason" in patch:
        patch["reason"] = require_text(patch["reason"], "reason")


def enforce_rules_alert_create(patch: dict) -> None:
    from .models import ALERT_TYPES, ALERT_STATUSES

    alert_type = patch.get("alert_type") or "LOW"
    if alert_type not in ALERT_TYPES:
        raise ValidationError(f"alert_type must be one of: {', '.join(ALERT_TYPES)}")
    patch["alert_type"] = alert_type

    status = patch.get("status") or "NEW"
    if status not in ALERT_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(ALERT_STATUSES)}")
    patch["status"] = status

    for field in ("threshold", "current_stock"):
        if field not in patch or patch[field] is None:
            raise ValidationError(f"{field} is required")
        patch[field] = coerce_int(patch[field], field)

    if patch["current_stock"] < 0:
        raise ValidationError("current_stock must be >= 0")
