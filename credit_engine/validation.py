"""Input validation helpers shared by the lifecycle managers."""
from __future__ import annotations

import math
from typing import Any

from .errors import ValidationError


def require_fields(**values: Any) -> None:
    """Raise for the first missing (None or blank) value, listing all missing names."""
    missing = [
        name
        for name, value in values.items()
        if value is None or (isinstance(value, str) and not value.strip())
    ]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}", field=missing[0]
        )


def parse_number(value: Any, field: str) -> float:
    """Coerce ``value`` to a finite float or raise a ValidationError naming ``field``."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field, value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", field, value) from None
    if not math.isfinite(number):
        raise ValidationError(f"{field} must be finite", field, value)
    return number


def parse_positive(value: Any, field: str) -> float:
    number = parse_number(value, field)
    if number <= 0:
        raise ValidationError(f"{field} must be greater than 0", field, value)
    return number


def parse_int(value: Any, field: str) -> int:
    number = parse_number(value, field)
    if number != int(number):
        raise ValidationError(f"{field} must be a whole number", field, value)
    return int(number)


def normalize_asset(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must be an asset symbol", field, value)
    return value.strip().upper()
