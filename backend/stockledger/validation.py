# Overview: Request-body coercion shared by the API routes.

from __future__ import annotations

from typing import Any

from .time_utils import parse_iso_datetime


class ValidationError(ValueError):
    """400-level input problem."""


def require_payload(payload) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def coerce_int(field: str, value: Any, *, required: bool = True) -> int | None:
    """
    Strict integer coercion: ints and plain-digit strings only.

    Floats, bools, decimals and scientific notation are rejected so that a
    quantity of 1.5 or "1e3" never reaches the ledger.
    """
    if value is None:
        if required:
            raise ValidationError(f"Missing required field: {field}")
        return None

    # bool is a subclass of int
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_str(field: str, value: Any, *, required: bool = False, max_length: int | None = None) -> str | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"Missing required field: {field}")
        return None
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise ValidationError(f"{field} must be a string")
    text = str(value).strip()
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def coerce_bool(field: str, value: Any, *, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"1", "true", "yes"}:
        return True
    if isinstance(value, str) and value.strip().lower() in {"0", "false", "no", ""}:
        return False
    raise ValidationError(f"{field} must be a boolean")


def coerce_datetime(field: str, value: Any):
    """ISO-8601 string (Z/offsets accepted) -> UTC-naive datetime, or None."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def pagination(args, *, max_page_size: int, default_limit: int = 100) -> tuple[int, int]:
    """(limit, offset) from query args, clamped to [1, max_page_size]."""
    limit = coerce_int("limit", args.get("limit"), required=False)
    offset = coerce_int("offset", args.get("offset"), required=False)
    limit = default_limit if limit is None else limit
    limit = max(1, min(limit, max_page_size))
    offset = max(0, offset or 0)
    return limit, offset
