from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from .errors import ValidationError


# Maximum price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

# Margins are stored in basis points; 1000% markup is the ceiling
MAX_MARGIN_BPS = 100_000

CENT = Decimal("0.01")


def _to_decimal(value: Any, field: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        # repr() keeps 10.1 as "10.1" instead of the binary expansion
        return Decimal(repr(value))
    if isinstance(value, str):
        stripped = value.strip().lstrip("$")
        if not stripped:
            raise ValidationError(f"{field} must be a number")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain number (scientific notation not allowed)")
        try:
            return Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    raise ValidationError(f"{field} must be a number")


def _has_at_most_two_places(d: Decimal) -> bool:
    return d == d.quantize(CENT)


def parse_price_cents(value: Any, field: str = "price", *, allow_null: bool = True) -> int | None:
    """
    Parse a currency amount in dollars ("10", "10.5", 10.25) into integer cents.

    More than two decimal places is rejected rather than rounded.
    """
    if value is None:
        if not allow_null:
            raise ValidationError(f"{field} is required")
        return None

    amount = _to_decimal(value, field)
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if amount < 0:
        raise ValidationError(f"{field} must be >= 0")
    if not _has_at_most_two_places(amount):
        raise ValidationError(f"{field} cannot have more than 2 decimal places")

    cents = int(amount * 100)
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed ${MAX_PRICE_CENTS / 100:,.2f}")
    return cents


def parse_percentage_bps(value: Any, field: str = "margin_percentage", *, allow_null: bool = True) -> int | None:
    """Parse a percentage ("80", 12.5) into basis points (8000, 1250)."""
    if value is None:
        if not allow_null:
            raise ValidationError(f"{field} is required")
        return None

    pct = _to_decimal(value, field)
    if not pct.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if pct < 0:
        raise ValidationError(f"{field} must be >= 0")
    if not _has_at_most_two_places(pct):
        raise ValidationError(f"{field} cannot have more than 2 decimal places")

    bps = int(pct * 100)
    if bps > MAX_MARGIN_BPS:
        raise ValidationError(f"{field} cannot exceed {MAX_MARGIN_BPS // 100}%")
    return bps


def bps_to_percentage(bps: int | None) -> str | None:
    """8000 -> "80", 1250 -> "12.5"."""
    if bps is None:
        return None
    pct = (Decimal(bps) / 100).normalize()
    return format(pct, "f")


def parse_quantity(value: Any, field: str = "quantity") -> int:
    """Quantities are plain non-negative integers."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        qty = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or not stripped.lstrip("-").isdigit():
            raise ValidationError(f"{field} must be an integer")
        qty = int(stripped)
    else:
        raise ValidationError(f"{field} must be an integer")

    if qty < 0:
        raise ValidationError(f"{field} must be >= 0")
    return qty


def require_id(value: Any, field: str) -> int:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} is required")
    try:
        ident = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer id")
    if ident <= 0:
        raise ValidationError(f"{field} must be a positive id")
    return ident


def parse_choice(value: Any, field: str, choices: Iterable[str | None]) -> str | None:
    allowed = set(choices)
    if isinstance(value, str):
        value = value.strip().lower() or None
    if value not in allowed:
        shown = ", ".join(sorted(c for c in allowed if c is not None))
        raise ValidationError(f"{field} must be one of: {shown}")
    return value


def require_text(value: Any, field: str, *, max_length: int = 255) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text
