"""Money helpers. All engine output amounts are integer cents."""

from decimal import Decimal, ROUND_HALF_UP


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_cents(dollars: float) -> int:
    return round_half_up(dollars * 100)


def as_quantity(value: float):
    """Whole quantities as int; Recurly rejects 10.0 where it expects 10."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value
