from __future__ import annotations
from datetime import datetime
from tilestock.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# Largest piece count a stock column (32-bit INTEGER) can hold
MAX_QUANTITY = 2_147_483_647

# Largest sale amount (subtotal, discount, tax or total) the same columns can hold
MAX_AMOUNT_CENTS = 2_147_483_647


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(
    value: Any,
    field: str,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
    error_cls=ValidationError,
) -> int:
    """
    Strict integer coercion for JSON/form input.

    Rejects booleans, floats, decimals and scientific notation instead of
    silently truncating them. `error_cls` lets quantity fields surface as
    InvalidQuantity rather than a generic ValidationError.
    """
    if isinstance(value, bool):
        raise error_cls(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, float):
        raise error_cls(f"{field} must be an integer, not a decimal")
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise error_cls(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise error_cls(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise error_cls(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise error_cls(f"{field} must be an integer")
    else:
        raise error_cls(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise error_cls(f"{field} must be >= {minimum} (got {result})")
    if maximum is not None and result > maximum:
        raise error_cls(f"{field} must be <= {maximum} (got {result})")
    return result


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

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


def _enforce_price(patch: dict, field: str) -> None:
    if field in patch and patch[field] is not None:
        price = patch[field]
        if price < 0:
            raise ValidationError(f"{field} must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS}")


def enforce_rules_tile(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    _enforce_price(patch, "price_cents")

    for field in ("quantity", "items_per_packet", "minimum_threshold"):
        if patch.get(field) is not None and patch[field] > MAX_QUANTITY:
            raise ValidationError(f"{field} cannot exceed {MAX_QUANTITY}")

    if "quantity" in patch and patch["quantity"] is not None and patch["quantity"] < 0:
        raise ValidationError("quantity must be >= 0")

    if "items_per_packet" in patch and patch["items_per_packet"] is not None:
        if patch["items_per_packet"] < 1:
            raise ValidationError("items_per_packet must be at least 1")

    if "minimum_threshold" in patch and patch["minimum_threshold"] is not None:
        if patch["minimum_threshold"] < 0:
            raise ValidationError("minimum_threshold must be >= 0")


def enforce_rules_shop(patch: dict) -> None:
    if "low_stock_threshold" in patch and patch["low_stock_threshold"] is not None:
        if patch["low_stock_threshold"] < 0:
            raise ValidationError("low_stock_threshold must be >= 0")
        if patch["low_stock_threshold"] > MAX_QUANTITY:
            raise ValidationError(f"low_stock_threshold cannot exceed {MAX_QUANTITY}")

    email = patch.get("contact_email")
    if email:
        if "@" not in email:
            raise ValidationError("contact_email must be a valid email address")
        patch["contact_email"] = email.lower()


def require_choice(value: Any, field: str, choices) -> str:
    if value not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(choices)}")
    return value


def parse_pagination(args, *, default_limit: int = 20, max_limit: int = 100) -> tuple[int, int]:
    """Read page/limit query args (1-based page)."""
    page = coerce_int(args.get("page", 1), "page", minimum=1)
    limit = coerce_int(args.get("limit", default_limit), "limit", minimum=1)
    return page, min(limit, max_limit)


def parse_date_arg(args, name: str) -> datetime | None:
    """Optional ISO-8601 date/datetime query arg; blank means no filter."""
    try:
        return parse_iso_datetime(args.get(name))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date")
