"""
Currency helpers. Amounts are single-currency decimals rounded to cents.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Optional

from backend.app.core.constants import ONE_CENT


def to_money(value: Any) -> Decimal:
    """Convert int/float/str/Decimal to a Decimal rounded half-up to cents."""
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"Not a monetary amount: {value!r}")
    return amount.quantize(ONE_CENT, rounding=ROUND_HALF_UP)


def optional_money(value: Any) -> Optional[Decimal]:
    return None if value is None else to_money(value)


def money_to_float(value: Optional[Decimal]) -> Optional[float]:
    """JSON-friendly representation used by API responses."""
    return None if value is None else float(value)
