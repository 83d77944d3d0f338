from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Boolean, Date, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from praxis.time_utils import parse_iso_date


# Upper bound for any single money input: 999,999,999,999.99 fits Numeric(14, 2)
MAX_MONEY = Decimal("999999999999.99")
MAX_PERCENT = Decimal("100")


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
    return dict(model.__mapper__.columns.items())


def coerce_decimal(value: Any, field: str) -> Decimal:
    """
    JSON number or numeric string -> Decimal.

    Floats go through str() so 0.1 stays Decimal("0.1").
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field=field)
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number", field=field)
    else:
        raise ValidationError(f"{field} must be a number", field=field)
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    return result


def _coerce_value(key: str, col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or 'e' in stripped.lower() or '.' in stripped:
                raise ValidationError(f"{key} must be an integer", field=key)
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{key} must be an integer", field=key)
        raise ValidationError(f"{key} must be an integer", field=key)

    # Money, quantities, rates
    if isinstance(coltype, Numeric):
        return coerce_decimal(value, key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{key} must be true or false", field=key)

    if isinstance(coltype, Date):
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                parsed = parse_iso_date(value)
            except ValueError:
                raise ValidationError(f"{key} must be an ISO-8601 date", field=key)
            return parsed
        raise ValidationError(f"{key} must be a date", field=key)

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
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", field=missing[0])

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields or k not in cols:
            raise ValidationError(f"Field not allowed: {k}", field=k)

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", field=k)
            patch[k] = None
            continue

        val = _coerce_value(k, col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", field=k)

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", field=k)

        patch[k] = val

    return patch


LINE_ITEM_POLICY = ModelValidationPolicy(
    writable_fields={
        "description",
        "quantity",
        "rate",
        "unit_price",
        "discount_percent",
        "discount_amount",
        "amount",
        "is_credit",
        "billed_hours",
        "person_id",
        "date",
    },
    required_on_create={"description"},
)

DOCUMENT_POLICY = ModelValidationPolicy(
    writable_fields={
        "title",
        "description",
        "client_id",
        "lead_id",
        "project_id",
        "proposal_id",
        "due_date",
        "currency",
        "discount_percent",
        "discount_amount",
        "tax_rate",
        "tax_inclusive",
        "manual_subtotal",
    },
    required_on_create={"title"},
)

DOCUMENT_HEADER_FIELDS = {"title", "description", "due_date", "currency"}

PRICING_POLICY = ModelValidationPolicy(
    writable_fields={"discount_percent", "discount_amount", "tax_rate", "tax_inclusive"},
)


def _check_money(patch: dict, key: str) -> None:
    value = patch.get(key)
    if value is None:
        return
    if value < 0:
        raise ValidationError(f"{key} must be >= 0", field=key)
    if value > MAX_MONEY:
        raise ValidationError(f"{key} cannot exceed {MAX_MONEY}", field=key)


def _check_percent(patch: dict, key: str) -> None:
    value = patch.get(key)
    if value is None:
        return
    if value < 0 or value > MAX_PERCENT:
        raise ValidationError(f"{key} must be between 0 and 100", field=key)


def enforce_rules_line_item(patch: dict) -> None:
    """
    Amounts are stored non-negative; credits are expressed with is_credit.
    """
    for key in ("quantity", "rate", "unit_price", "discount_amount", "amount", "billed_hours"):
        _check_money(patch, key)
    _check_percent(patch, "discount_percent")


def enforce_rules_pricing(patch: dict) -> None:
    _check_percent(patch, "discount_percent")
    _check_money(patch, "discount_amount")
    _check_money(patch, "manual_subtotal")
    _check_percent(patch, "tax_rate")


def enforce_rules_currency(patch: dict) -> None:
    currency = patch.get("currency")
    if currency is None:
        return
    if len(currency) != 3 or not currency.isalpha():
        raise ValidationError("currency must be a 3-letter ISO code", field="currency")
    patch["currency"] = currency.upper()
