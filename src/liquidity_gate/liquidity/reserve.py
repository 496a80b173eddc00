"""Reserve ledger — the redemption reserve and monthly counter for one offering.

The ledger is the only component that mutates an offering's reserve
balance. Capacity is consumed exactly once per request, when it moves
from pending to approved, and is returned only when an approved request
is cancelled before completion.

Invariants:
- reserve_balance never goes negative
- a failed reservation leaves the balance untouched
- the monthly counter only counts requests that reached COMPLETED

Storage is in-memory. The settings store persists the balance; the
gateway writes ``balance`` back to LiquidityProgramSettings after each
mutation.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Union

from liquidity_gate.errors import (
    CapExceededError,
    InsufficientReserveError,
    ValidationError,
)
from liquidity_gate.models.liquidity import (
    LiquidityProgramSettings,
    MonthlyRedemptionSummary,
    ReserveStatus,
)
from liquidity_gate.models.values import ZERO, quantize_money, to_decimal

logger = logging.getLogger(__name__)

MonthKey = Tuple[int, int]


def month_key(month: Union[date, datetime, MonthKey]) -> MonthKey:
    """Normalise a date, datetime, or (year, month) pair to a calendar month."""
    if isinstance(month, tuple):
        return month
    return (month.year, month.month)


@dataclass(frozen=True)
class CompletedRedemption:
    """A redemption that reached COMPLETED, for monthly counting."""
    request_id: str
    amount: Decimal
    completed_utc: datetime


class ReserveLedger:
    """Reserve balance and completed-redemption history for one offering.

    Usage:
        ledger = ReserveLedger.from_settings(settings)
        ledger.check_monthly_cap(settings.offering_id, now)
        ledger.reserve(request.net_payout)
        ...
        ledger.record_completion(request.request_id, now, request.net_payout)
    """

    def __init__(
        self,
        offering_id: str,
        reserve_balance: Decimal,
        max_monthly_redemptions: Optional[int] = None,
        reserve_percent: Decimal = Decimal("5"),
    ) -> None:
        balance = to_decimal(reserve_balance)
        if balance < ZERO:
            raise ValidationError(f"Reserve balance cannot be negative: {balance}")
        self.offering_id = offering_id
        self.max_monthly_redemptions = max_monthly_redemptions
        self.reserve_percent = to_decimal(reserve_percent)
        self._balance = balance
        self._completed: List[CompletedRedemption] = []
        self._lock = threading.RLock()

    @staticmethod
    def from_settings(settings: LiquidityProgramSettings) -> ReserveLedger:
        return ReserveLedger(
            offering_id=settings.offering_id,
            reserve_balance=settings.reserve_balance,
            max_monthly_redemptions=settings.max_monthly_redemptions,
            reserve_percent=settings.reserve_percent,
        )

    @property
    def balance(self) -> Decimal:
        return self._balance

    def reserve(self, amount: Decimal) -> Decimal:
        """Take ``amount`` out of the reserve. Returns the new balance.

        Raises InsufficientReserveError (balance unchanged) when the
        reserve cannot cover the amount.
        """
        amount = self._checked_amount(amount)
        with self._lock:
            if amount > self._balance:
                raise InsufficientReserveError(
                    f"Reserve for {self.offering_id} holds {self._balance}, "
                    f"cannot reserve {amount}"
                )
            self._balance -= amount
            logger.info(
                "Reserved %s from %s reserve (balance now %s)",
                amount, self.offering_id, self._balance,
            )
            return self._balance

    def release(self, amount: Decimal) -> Decimal:
        """Return a previously reserved ``amount``. Returns the new balance."""
        amount = self._checked_amount(amount)
        with self._lock:
            self._balance += amount
            logger.info(
                "Released %s to %s reserve (balance now %s)",
                amount, self.offering_id, self._balance,
            )
            return self._balance

    def redemptions_in_month(self, month: Union[date, datetime, MonthKey]) -> List[CompletedRedemption]:
        key = month_key(month)
        with self._lock:
            return [r for r in self._completed if month_key(r.completed_utc) == key]

    def check_monthly_cap(
        self,
        offering_id: str,
        month: Union[date, datetime, MonthKey],
    ) -> None:
        """Raise CapExceededError if the month's completed redemptions hit the cap."""
        if offering_id != self.offering_id:
            raise ValidationError(
                f"Ledger for {self.offering_id} cannot check cap for {offering_id}"
            )
        if self.max_monthly_redemptions is None:
            return
        count = len(self.redemptions_in_month(month))
        if count >= self.max_monthly_redemptions:
            year, mon = month_key(month)
            raise CapExceededError(
                f"{offering_id} reached its cap of {self.max_monthly_redemptions} "
                f"redemptions for {year:04d}-{mon:02d}"
            )

    def reserve_within_cap(
        self,
        amount: Decimal,
        month: Union[date, datetime, MonthKey],
    ) -> Decimal:
        """Cap check and reservation as one atomic step."""
        with self._lock:
            self.check_monthly_cap(self.offering_id, month)
            return self.reserve(amount)

    def record_completion(
        self,
        request_id: str,
        completed_utc: datetime,
        amount: Decimal = ZERO,
    ) -> None:
        """Count a completed redemption toward its calendar month."""
        with self._lock:
            if any(r.request_id == request_id for r in self._completed):
                raise ValidationError(f"Completion already recorded for {request_id}")
            self._completed.append(CompletedRedemption(
                request_id=request_id,
                amount=to_decimal(amount),
                completed_utc=completed_utc,
            ))

    def monthly_summary(self, month: Union[date, datetime, MonthKey]) -> MonthlyRedemptionSummary:
        year, mon = month_key(month)
        redemptions = self.redemptions_in_month((year, mon))
        return MonthlyRedemptionSummary(
            offering_id=self.offering_id,
            year=year,
            month=mon,
            redemptions=len(redemptions),
            amount_paid=sum((r.amount for r in redemptions), ZERO),
        )

    def status(self, offering_value: Decimal, low_threshold: Decimal) -> ReserveStatus:
        """Compare the balance with its target (offering_value × reserve_percent).

        The reserve is low when the balance falls below ``low_threshold``
        (a fraction) of the target.
        """
        target = quantize_money(to_decimal(offering_value) * self.reserve_percent / Decimal("100"))
        threshold_amount = quantize_money(target * to_decimal(low_threshold))
        return ReserveStatus(
            offering_id=self.offering_id,
            balance=self._balance,
            target=target,
            low_threshold=threshold_amount,
            is_low=self._balance < threshold_amount,
        )

    @staticmethod
    def _checked_amount(amount: Decimal) -> Decimal:
        amount = to_decimal(amount)
        if amount < ZERO:
            raise ValidationError(f"Reserve amounts must be non-negative, got {amount}")
        return amount


class ReserveLedgerBook:
    """One ReserveLedger per offering, created on first use from its settings."""

    def __init__(self) -> None:
        self._ledgers: Dict[str, ReserveLedger] = {}
        self._lock = threading.Lock()

    def ledger_for(self, settings: LiquidityProgramSettings) -> ReserveLedger:
        """Return the offering's ledger, refreshing its cap and reserve percent.

        The balance is only seeded from settings when the ledger is created;
        afterwards the ledger's own balance is authoritative.
        """
        with self._lock:
            ledger = self._ledgers.get(settings.offering_id)
            if ledger is None:
                ledger = ReserveLedger.from_settings(settings)
                self._ledgers[settings.offering_id] = ledger
            else:
                ledger.max_monthly_redemptions = settings.max_monthly_redemptions
                ledger.reserve_percent = settings.reserve_percent
            return ledger

    def get(self, offering_id: str) -> Optional[ReserveLedger]:
        return self._ledgers.get(offering_id)
