"""
Money helpers.

All amounts are integer minor units (cents). Decimal is used only at the
edges: parsing user/file input and rendering for presentation.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


def _normalize_separators(text: str) -> str:
    """
    Reduce grouping and decimal separators to a plain "1234.56".

    The last of "," and "." is the decimal separator ("1.234,56" and
    "1,234.56"); a separator repeated on its own only groups thousands
    ("1.234.567").
    """
    if "," in text and "." in text:
        decimal_sep = "," if text.rfind(",") > text.rfind(".") else "."
        group_sep = "." if decimal_sep == "," else ","
        return text.replace(group_sep, "").replace(decimal_sep, ".")
    for sep in (",", "."):
        if text.count(sep) > 1:
            return text.replace(sep, "")
    # "45,50" decimal comma
    return text.replace(",", ".")


def to_cents(value: Any) -> int | None:
    """
    Convert a presentation amount to cents.

    Accepts ints (already cents), floats, Decimals and strings such as
    "2762.07", "2'762.07", "2,762.07", "2.762,07", "CHF 45.00" or "-40".
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError("Amount cannot be a boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        value = Decimal(str(value))
    if isinstance(value, Decimal):
        return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    text = str(value).strip()
    for token in ("CHF", "EUR", "USD", "$", "'", "’", " ", " "):
        text = text.replace(token, "")
    text = _normalize_separators(text)
    if not text:
        return None
    try:
        amount = Decimal(text)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def decimal_to_cents(value: str) -> int:
    """Strict variant for amounts that must be plain decimals ("0.05", "200")."""
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc
    cents = amount * 100
    if cents != cents.to_integral_value():
        raise ValueError(f"Amount has sub-cent precision: {value!r}")
    return int(cents)


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))


def format_cents(cents: int | None, currency: str | None = None) -> str:
    if cents is None:
        return ""
    text = f"{cents_to_decimal(cents):.2f}"
    return f"{currency} {text}" if currency else text


def percent_of(amount_cents: int, percent_bps: int) -> int:
    """Percentage (in basis points) of an amount, rounded half-up to the cent."""
    value = Decimal(amount_cents) * Decimal(percent_bps) / Decimal(10000)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def round_cash(amount_cents: int, increment_cents: int = 5) -> int:
    """
    Round a cash amount to the smallest coin (half-up, symmetric for negatives).

    round_cash(1234) -> 1235, round_cash(1232) -> 1230
    """
    if increment_cents <= 1:
        return amount_cents
    sign = -1 if amount_cents < 0 else 1
    magnitude = abs(amount_cents)
    rounded = Decimal(magnitude) / Decimal(increment_cents)
    rounded = int(rounded.quantize(Decimal("1"), rounding=ROUND_HALF_UP)) * increment_cents
    return sign * rounded
