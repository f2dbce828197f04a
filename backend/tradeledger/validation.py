from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .models.inventory import PRODUCT_UNITS
from .models.parties import PAYMENT_TERMS
from .money import to_decimal
from .time_utils import parse_iso_datetime


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what callers are allowed to set (drift boundary;
      ledger-owned and derived columns are never listed)
    - required_on_create: fields required for create
    """
    writable_fields: frozenset
    required_on_create: frozenset = frozenset()


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "sku", "name", "description", "unit", "category_id", "low_stock_threshold", "supplier_id",
    }),
    required_on_create=frozenset({"sku", "name", "category_id"}),
)

PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"name", "description", "unit", "category_id", "low_stock_threshold", "supplier_id"}),
)

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"name", "description", "is_active"}),
    required_on_create=frozenset({"name"}),
)

CLIENT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"name", "email", "phone", "tax_id", "address", "payment_terms", "credit_limit", "is_active"}),
    required_on_create=frozenset({"name"}),
)

SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"name", "contact_person", "email", "phone", "tax_id", "address", "payment_terms", "is_active"}),
    required_on_create=frozenset({"name"}),
)

# Descriptive metadata only; quantities, costs and snapshots are immutable
MOVEMENT_METADATA_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"notes", "reference_number", "batch_number", "lot_number", "expiry_date"}),
)

INVOICE_HEADER_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"invoice_date", "due_date", "payment_terms", "currency", "notes", "terms"}),
)

PURCHASE_HEADER_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "order_date", "expected_delivery_date", "payment_terms", "currency",
        "notes", "terms", "supplier_invoice_number",
    }),
)

QUOTATION_HEADER_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"quotation_date", "valid_until", "payment_terms", "currency", "notes", "terms"}),
)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - reject floats, booleans and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.lstrip("-").isdigit():
                return int(stripped)
        raise ValidationError(f"{col.key} must be an integer", field=col.key)

    if isinstance(coltype, Numeric):
        return to_decimal(value, col.key)

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
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime", field=col.key)
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime", field=col.key)
            return dt
        raise ValidationError(f"{col.key} must be a datetime", field=col.key)

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
    Validates + normalizes incoming data against:
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

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", field=missing[0])

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", field=k)
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", field=k)

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", field=k)
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", field=k)

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", field=k)

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "sku" in patch:
        patch["sku"] = patch["sku"].upper()
    if "unit" in patch and patch["unit"] not in PRODUCT_UNITS:
        raise ValidationError(f"unit must be one of {', '.join(PRODUCT_UNITS)}", field="unit")
    threshold = patch.get("low_stock_threshold")
    if threshold is not None and threshold < 0:
        raise ValidationError("low_stock_threshold must be >= 0", field="low_stock_threshold")


def enforce_rules_party(patch: dict) -> None:
    if "payment_terms" in patch and patch["payment_terms"] not in PAYMENT_TERMS:
        raise ValidationError(
            f"payment_terms must be one of {', '.join(PAYMENT_TERMS)}",
            field="payment_terms",
        )
    credit_limit = patch.get("credit_limit")
    if credit_limit is not None and credit_limit < Decimal("0"):
        raise ValidationError("credit_limit must be >= 0", field="credit_limit")


def validate_document_header(model: DeclarativeMeta, payload: dict, policy: ModelValidationPolicy) -> dict:
    """Header fields of invoices, purchases and quotations (never totals or status)."""
    patch = validate_payload(model=model, payload=payload, policy=policy, partial=True)
    enforce_rules_party(patch)
    if "currency" in patch:
        patch["currency"] = patch["currency"].upper()
    return patch
