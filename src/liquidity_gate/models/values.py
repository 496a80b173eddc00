"""Money and timestamp helpers shared by the models.

All monetary values use Decimal for exact arithmetic. No floats in finance.
Amounts are rounded to the money quantum with ROUND_HALF_UP.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional

MONEY_QUANTUM = Decimal("0.01")
PERCENT_QUANTUM = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal:
    """Coerce ints, strings and Decimals to Decimal without float artefacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(amount: Decimal, quantum: Decimal = MONEY_QUANTUM) -> Decimal:
    return amount.quantize(quantum, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, percent: Decimal, quantum: Decimal = MONEY_QUANTUM) -> Decimal:
    """Return ``amount × percent / 100`` rounded to the money quantum."""
    return quantize_money(amount * percent / HUNDRED, quantum)


def format_number(prefix: str, year: int, sequence: int) -> str:
    """Human-readable record number, e.g. ``LIQ-2026-0007``."""
    return f"{prefix}-{year:04d}-{sequence:04d}"


def iso_or_none(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to a naive datetime; aware datetimes pass through unchanged."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_dt(value: Optional[str]) -> Optional[datetime]:
    return as_utc(datetime.fromisoformat(value)) if value else None


def decimal_or_none(value: Any) -> Optional[Decimal]:
    return to_decimal(value) if value is not None else None


def parse_number(number: str) -> Optional[tuple[int, int]]:
    """Inverse of format_number: ``"LIQ-2026-0007"`` → ``(2026, 7)``.

    Returns None for numbers not in PREFIX-YYYY-NNNN form.
    """
    parts = number.rsplit("-", 2)
    if len(parts) != 3 or not (parts[1].isdigit() and parts[2].isdigit()):
        return None
    return int(parts[1]), int(parts[2])
