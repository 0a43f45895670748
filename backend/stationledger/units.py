"""Fixed-point helpers for fuel quantities (litres, 3 places) and money (integer cents)."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

QUANTITY_PLACES = Decimal("0.001")
ZERO = Decimal("0")


def to_quantity(value) -> Decimal:
    """Coerce int/str/Decimal to a 3-place Decimal. Floats go through str() first."""
    if isinstance(value, bool):
        raise InvalidOperation("boolean is not a quantity")
    if isinstance(value, float):
        value = repr(value)
    if isinstance(value, str):
        value = value.strip()
    qty = Decimal(value)
    if not qty.is_finite():
        raise InvalidOperation("quantity must be finite")
    return qty.quantize(QUANTITY_PLACES, rounding=ROUND_HALF_UP)


def format_quantity(value) -> str | None:
    if value is None:
        return None
    return str(to_quantity(value))


def line_total_cents(quantity: Decimal, unit_price_cents: int) -> int:
    """quantity x unit price, rounded half-up to the cent."""
    return int((to_quantity(quantity) * unit_price_cents).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def fill_percent(current: Decimal, capacity: Decimal) -> Decimal:
    if not capacity:
        return ZERO
    return (Decimal(current) * 100) / Decimal(capacity)
