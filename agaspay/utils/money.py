"""Money helpers. All amounts are Philippine pesos held as Decimal centavos."""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

CENTAVO = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """
    Convert a raw amount (int, float, str, Decimal) to a 2-place Decimal.

    Floats go through str() so 450.1 stays 450.10 instead of picking up
    binary noise.

    Raises:
        ValueError: value is None, bool, or not a finite number
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f"Not a monetary amount: {value!r}")
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return amount.quantize(CENTAVO, rounding=ROUND_HALF_UP)
