from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from .time_utils import parse_iso_datetime


class ServiceError(Exception):
    """Base for recoverable, caller-facing service errors."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(ServiceError):
    """400-level input problem."""


class NotFoundError(ServiceError):
    """404-level unknown entity."""

    status_code = 404


class ConflictError(ServiceError):
    """409-level business rule conflict (e.g., returning a returned sale)."""

    status_code = 409


class InsufficientStockError(ConflictError):
    """Stock would go negative."""


class InsufficientFundsError(ConflictError):
    """Safe/bank balance would go negative."""


def require_payload(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def require_fields(payload: dict, *names: str) -> None:
    missing = [n for n in names if payload.get(n) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def coerce_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    """
    Strict integer coercion: rejects floats, booleans, decimals and
    scientific notation.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        if minimum == 1:
            raise ValidationError(f"{field} must be a positive integer")
        raise ValidationError(f"{field} must be >= {minimum}")
    return result


def coerce_enum(value: Any, field: str, allowed: Iterable[str], *, default: str | None = None) -> str:
    allowed = tuple(allowed)
    if value is None or value == "":
        if default is not None:
            return default
        raise ValidationError(f"{field} is required")
    if value not in allowed:
        raise ValidationError(f"Invalid {field}: {value}. Must be one of {list(allowed)}")
    return value


def coerce_str(
    value: Any,
    field: str,
    *,
    required: bool = False,
    max_length: int | None = None,
) -> str | None:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    text = str(value).strip()
    if not text:
        if required:
            raise ValidationError(f"{field} cannot be blank")
        return None
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def coerce_bool(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false", "1", "0"):
        return value.lower() in ("true", "1")
    raise ValidationError(f"{field} must be a boolean")


def apply_patch(obj, payload: dict, fields: dict) -> None:
    """
    Apply a partial update. `fields` maps each writable key to a coercion
    callable taking (value, key); unknown keys are rejected.
    """
    for key in payload:
        if key not in fields:
            raise ValidationError(f"Field not allowed: {key}")
    for key, coerce in fields.items():
        if key in payload:
            setattr(obj, key, coerce(payload[key], key))


def coerce_datetime(value: Any, field: str) -> datetime | None:
    """ISO-8601 date/datetime to a UTC-naive datetime; None/"" -> None."""
    if value is None or value == "":
        return None
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date or datetime")
