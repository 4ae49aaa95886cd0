"""
Request payload coercion for API routes.

Services validate business rules; these helpers only turn JSON values into
the Python types services expect and raise ValidationError (400) otherwise.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from .errors import ValidationError
from .money import to_cents
from .time_utils import parse_iso_date, parse_iso_datetime


def json_body(request) -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def int_field(data: dict, key: str, required: bool = True, default: int | None = None) -> int | None:
    value = data.get(key)
    if value is None or value == "":
        if required:
            raise ValidationError(f"{key} is required")
        return default

    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        # Reject scientific notation and decimals ("1e15", "12.5")
        if "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{key} must be a plain integer")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    raise ValidationError(f"{key} must be an integer")


def amount_field(data: dict, key: str = "amount_cents", required: bool = True) -> int | None:
    """
    Read an amount in cents.

    Accepts key (integer cents) or, as entered at the counter, "amount" as
    a decimal string ("45.50", "45,50").
    """
    if data.get(key) not in (None, ""):
        return int_field(data, key)
    if data.get("amount") not in (None, ""):
        raw = data["amount"]
        if isinstance(raw, int) and not isinstance(raw, bool):
            # Whole currency units
            return raw * 100
        try:
            return to_cents(str(raw))
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
    if required:
        raise ValidationError(f"{key} is required")
    return None


def str_field(data: dict, key: str, required: bool = True, max_length: int = 255) -> str | None:
    value = data.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{key} is required")
        return None
    if not isinstance(value, (str, int)):
        raise ValidationError(f"{key} must be a string")
    text = str(value).strip()
    if len(text) > max_length:
        raise ValidationError(f"{key} must be at most {max_length} characters")
    return text


def datetime_field(data: dict, key: str) -> datetime | None:
    value: Any = data.get(key)
    if value in (None, ""):
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{key} must be an ISO-8601 datetime")


def date_field(data: dict, key: str) -> date | None:
    value: Any = data.get(key)
    if value in (None, ""):
        return None
    try:
        return parse_iso_date(str(value))
    except ValueError:
        raise ValidationError(f"{key} must be an ISO date")
