"""Decimal helpers shared by the ledger modules."""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

CENT = Decimal('0.01')
UNIT = Decimal('0.0001')


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal('0')
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def money(value: Any) -> Decimal:
    """Round to cents."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def gas_units(value: Any) -> Decimal:
    """Round to 4 decimal places (gas unit precision)."""
    return to_decimal(value).quantize(UNIT, rounding=ROUND_HALF_UP)


def as_float(value: Any) -> float:
    return float(to_decimal(value))


def iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def display_number(prefix: str, created_at: Optional[datetime], record_id: int) -> str:
    """Human order/loan number, e.g. ORD-2024-0007."""
    year = (created_at or datetime.utcnow()).year
    return f"{prefix}-{year}-{record_id:04d}"
