from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from shopdata.time_utils import parse_iso_datetime


# Maximum price / amount in currency units (VND).
# Prevents nonsensical values from overflowing downstream aggregates.
MAX_AMOUNT = 999_999_999_999


class ValidationError(ValueError):
    """Malformed or missing input; the message is shown to the caller."""


class ConflictError(ValidationError):
    """Business rule conflict (e.g., duplicate email or slug)."""


class ReferentialIntegrityError(ValueError):
    """The operation would orphan or corrupt a reference between records."""


@dataclass(frozen=True)
class RecordPolicy:
    """
    Central policy layer for patch dicts applied to in-memory records:
    - writable_fields: what callers are allowed to set
    - required_on_create: fields required when creating
    - int_fields / bool_fields / datetime_fields / text_fields: coercion rules
    - nullable_fields: fields that may be explicitly set to None
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = frozenset()
    int_fields: frozenset[str] = frozenset()
    bool_fields: frozenset[str] = frozenset()
    datetime_fields: frozenset[str] = frozenset()
    text_fields: frozenset[str] = frozenset()
    nullable_fields: frozenset[str] = field(default_factory=frozenset)


def coerce_int(value: Any, name: str) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    # Whole floats come from JSON clients (49000.0); anything else is rejected
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValidationError(f"{name} must be an integer, not a decimal")
    raise ValidationError(f"{name} must be an integer")


def coerce_amount(value: Any, name: str, *, allow_zero: bool = True, allow_negative: bool = False) -> int:
    amount = coerce_int(value, name)
    if not allow_negative and amount < 0:
        raise ValidationError(f"{name} must be >= 0")
    if not allow_zero and amount == 0:
        raise ValidationError(f"{name} must be non-zero")
    if abs(amount) > MAX_AMOUNT:
        raise ValidationError(f"{name} cannot exceed {MAX_AMOUNT:,}")
    return amount


def coerce_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes"}:
            return True
        if lowered in {"false", "0", "no"}:
            return False
    raise ValidationError(f"{name} must be a boolean")


def coerce_datetime_field(value: Any, name: str) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{name} must be an ISO-8601 datetime")
        if dt is None:
            raise ValidationError(f"{name} must be an ISO-8601 datetime")
        return dt
    raise ValidationError(f"{name} must be a datetime")


def require_text(value: Any, name: str) -> str:
    if value is None:
        raise ValidationError(f"{name} is required")
    text = str(value).strip()
    if not text:
        raise ValidationError(f"{name} cannot be blank")
    return text


def require_choice(value: Any, name: str, choices: Iterable[str]) -> str:
    allowed = set(choices)
    if value not in allowed:
        raise ValidationError(
            f"Invalid {name} '{value}'. Must be one of: {', '.join(sorted(allowed))}"
        )
    return value


def normalize_email(value: Any) -> str:
    email = require_text(value, "email").lower()
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise ValidationError(f"Invalid email address: {value}")
    return email


def validate_patch(*, payload: dict | None, policy: RecordPolicy, partial: bool) -> dict:
    """
    Validates + normalizes a patch dict against a RecordPolicy.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid payload")

    if not partial:
        missing = [f for f in sorted(policy.required_on_create) if payload.get(f) is None]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")

    patch: dict = {}
    for k, raw in payload.items():
        if raw is None:
            if k in policy.required_on_create or k not in policy.nullable_fields:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        if k in policy.int_fields:
            val = coerce_int(raw, k)
        elif k in policy.bool_fields:
            val = coerce_bool(raw, k)
        elif k in policy.datetime_fields:
            val = coerce_datetime_field(raw, k)
        elif k in policy.text_fields:
            val = str(raw).strip()
            if k in policy.required_on_create and val == "":
                raise ValidationError(f"{k} cannot be blank")
        else:
            val = raw
        patch[k] = val

    return patch
