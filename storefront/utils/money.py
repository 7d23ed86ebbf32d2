from decimal import ROUND_HALF_UP, Decimal
from typing import Optional


CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Quantize to two decimal places; floats are routed through ``str`` first."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, percent) -> Decimal:
    return to_money(Decimal(amount) * Decimal(percent) / Decimal(100))


def money_str(value: Optional[Decimal]) -> Optional[str]:
    if value is None:
        return None
    return str(to_money(value))
