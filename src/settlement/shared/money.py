"""Currency arithmetic helpers.

Amounts are stored as floats but always rounded to cents half-up through
``Decimal``, so ``25.555`` becomes ``25.56`` rather than float rounding's
``25.55``.
"""

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")

# Anything below this is rounding noise between two cent-rounded amounts.
MONEY_TOLERANCE = 0.005


def to_decimal(amount) -> Decimal:
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


def round_money(amount) -> float:
    return float(to_decimal(amount))


def to_minor_units(amount) -> int:
    """Cents, as payment providers expect them."""
    return int(to_decimal(amount) * 100)
