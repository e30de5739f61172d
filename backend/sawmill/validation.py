from __future__ import annotations

import enum
from typing import Any

from .errors import ValidationError


# Maximum money amount: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999


def require_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for JSON input.

    Accepts ints and plain digit strings. Rejects bools, floats, decimals and
    scientific notation so "12.5" pieces never silently becomes 12.
    """
    if value is None:
        raise ValidationError(f"{field} is required", details={"field": field})
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", details={"field": field})
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(
                f"{field} must be a plain integer (scientific notation not allowed)",
                details={"field": field},
            )
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", details={"field": field})
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", details={"field": field})
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", details={"field": field})
    raise ValidationError(f"{field} must be an integer", details={"field": field})


def require_positive_int(value: Any, field: str) -> int:
    number = require_int(value, field)
    if number <= 0:
        raise ValidationError(f"{field} must be > 0", details={"field": field, "value": number})
    return number


def require_non_negative_int(value: Any, field: str) -> int:
    number = require_int(value, field)
    if number < 0:
        raise ValidationError(f"{field} must be >= 0", details={"field": field, "value": number})
    return number


def require_amount_cents(value: Any, field: str, *, allow_zero: bool = False) -> int:
    amount = require_non_negative_int(value, field) if allow_zero else require_positive_int(value, field)
    if amount > MAX_AMOUNT_CENTS:
        raise ValidationError(
            f"{field} cannot exceed {MAX_AMOUNT_CENTS} (${MAX_AMOUNT_CENTS / 100:,.2f})",
            details={"field": field},
        )
    return amount


def require_choice(value: Any, choices: type[enum.Enum], field: str):
    """Resolve a string (case-insensitive) or enum member to a member of `choices`."""
    if isinstance(value, choices):
        return value
    if value is None or str(value).strip() == "":
        raise ValidationError(f"{field} is required", details={"field": field})
    key = str(value).strip().upper()
    try:
        return choices[key]
    except KeyError:
        raise ValidationError(
            f"{field} must be one of: {', '.join(m.name for m in choices)}",
            details={"field": field, "value": value},
        )


def require_str(value: Any, field: str, *, max_length: int = 255) -> str:
    if value is None or str(value).strip() == "":
        raise ValidationError(f"{field} cannot be blank", details={"field": field})
    text = str(value).strip()
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}", details={"field": field})
    return text


def optional_str(value: Any, field: str, *, max_length: int = 255) -> str | None:
    if value is None or str(value).strip() == "":
        return None
    return require_str(value, field, max_length=max_length)


def require_list(value: Any, field: str) -> list:
    if not isinstance(value, list) or not value:
        raise ValidationError(f"{field} must be a non-empty list", details={"field": field})
    return value
