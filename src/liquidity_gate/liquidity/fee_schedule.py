"""Fee schedule resolver — maps a holding period to its redemption fee tier.

Tier lookup works on whole days against [min_days, max_days). Months are
derived (days // 30) for display only and never used for lookup.

A validated FeeSchedule is a strict partition of [0, inf), so exactly one
tier matches. A schedule built with ``strict=False`` may overlap; then the
tier with the greatest min_days (the longest-held tier) wins, never the
first in list order.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional, Sequence, Union

from liquidity_gate.errors import ScheduleError, ValidationError
from liquidity_gate.models.liquidity import DAYS_PER_MONTH, FeeSchedule, FeeTier
from liquidity_gate.models.values import MONEY_QUANTUM, percent_of, to_decimal

ScheduleLike = Union[FeeSchedule, Sequence[FeeTier]]


def holding_period_days(start: date, today: date) -> int:
    """Whole days held between ``start`` and ``today`` (never negative)."""
    return max(0, (today - start).days)


def holding_months(days: int) -> int:
    """Display-only conversion of a holding period to whole months."""
    return days // DAYS_PER_MONTH


def days_until_eligible(holding_days: int, min_holding_days: int) -> int:
    return max(0, min_holding_days - holding_days)


class FeeScheduleResolver:
    """Pure fee-tier lookup.

    Usage:
        tier = FeeScheduleResolver.resolve(settings.fee_schedule, 45)
        fee, net = FeeScheduleResolver.apply(tier, gross_value)
    """

    @staticmethod
    def coerce(schedule: Optional[ScheduleLike]) -> FeeSchedule:
        """Return a FeeSchedule, validating raw tier sequences on the way."""
        if schedule is None:
            raise ScheduleError("No fee schedule supplied")
        if isinstance(schedule, FeeSchedule):
            return schedule
        return FeeSchedule(tuple(schedule))

    @staticmethod
    def resolve(schedule: Optional[ScheduleLike], holding_period_days: int) -> FeeTier:
        """Select the tier covering ``holding_period_days``."""
        fee_schedule = FeeScheduleResolver.coerce(schedule)
        if holding_period_days < 0:
            raise ValidationError(
                f"Holding period cannot be negative, got {holding_period_days}"
            )

        matches = [t for t in fee_schedule.tiers if t.contains(holding_period_days)]
        if not matches:
            raise ScheduleError(
                f"No fee tier covers a holding period of {holding_period_days} days"
            )
        return max(matches, key=lambda t: t.min_days)

    @staticmethod
    def apply(
        tier: FeeTier,
        gross_value: Decimal,
        quantum: Decimal = MONEY_QUANTUM,
    ) -> tuple[Decimal, Decimal]:
        """Return (fee_amount, net_payout) for ``gross_value`` under ``tier``.

        fee_amount is rounded to the money quantum; net_payout is the exact
        remainder, so fee_amount + net_payout == gross_value.
        """
        gross = to_decimal(gross_value)
        fee_amount = percent_of(gross, tier.fee_percent, quantum)
        return fee_amount, gross - fee_amount
