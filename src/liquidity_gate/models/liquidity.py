"""Liquidity program models — fee tiers, program settings, redemption requests.

All monetary values use Decimal for exact arithmetic.

Invariants enforced by these models:
- A FeeSchedule partitions [0, inf) into contiguous, non-overlapping tiers
- gross_value == quantity × token_value_at_request
- fee_amount == round(gross_value × fee_percent_applied / 100)
- net_payout == gross_value − fee_amount, and net_payout ≥ 0
- Request lifecycle is a strict state machine (REQUEST_TRANSITIONS)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Optional

from liquidity_gate.errors import ScheduleError, ValidationError
from liquidity_gate.models.values import (
    HUNDRED,
    ZERO,
    decimal_or_none,
    iso_or_none,
    parse_dt,
    percent_of,
    to_decimal,
)

DAYS_PER_MONTH = 30


class RequestStatus(str, enum.Enum):
    """Lifecycle state of a liquidity request.

    State machine:
        PENDING → APPROVED → PROCESSING → COMPLETED
        PENDING → DENIED
        PENDING → CANCELLED
        APPROVED → CANCELLED
    """
    PENDING = "pending"
    APPROVED = "approved"
    PROCESSING = "processing"
    COMPLETED = "completed"
    DENIED = "denied"
    CANCELLED = "cancelled"


class DenialReason(str, enum.Enum):
    """Machine-readable reason attached to a denied request."""
    INSUFFICIENT_RESERVE = "insufficient_reserve"
    MONTHLY_CAP_EXCEEDED = "monthly_cap_exceeded"
    REVIEWER_REJECTED = "reviewer_rejected"


class ReviewDecision(str, enum.Enum):
    """A reviewer's decision on a pending request."""
    APPROVE = "approve"
    DENY = "deny"


# Valid request state transitions
REQUEST_TRANSITIONS: Dict[RequestStatus, frozenset] = {
    RequestStatus.PENDING: frozenset({
        RequestStatus.APPROVED,
        RequestStatus.DENIED,
        RequestStatus.CANCELLED,
    }),
    RequestStatus.APPROVED: frozenset({
        RequestStatus.PROCESSING,
        RequestStatus.CANCELLED,
    }),
    RequestStatus.PROCESSING: frozenset({RequestStatus.COMPLETED}),
    RequestStatus.COMPLETED: frozenset(),
    RequestStatus.DENIED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class FeeTier:
    """A holding-duration bracket [min_days, max_days) with a fee percentage."""
    min_days: int
    max_days: Optional[int]
    fee_percent: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "fee_percent", to_decimal(self.fee_percent))
        if self.min_days < 0:
            raise ScheduleError(f"Tier min_days must be >= 0, got {self.min_days}")
        if self.max_days is not None and self.max_days <= self.min_days:
            raise ScheduleError(
                f"Tier max_days ({self.max_days}) must exceed min_days ({self.min_days})"
            )
        if not (ZERO <= self.fee_percent <= HUNDRED):
            raise ScheduleError(f"Tier fee_percent must be in [0, 100], got {self.fee_percent}")

    def contains(self, days: int) -> bool:
        return self.min_days <= days and (self.max_days is None or days < self.max_days)

    def to_dict(self) -> dict[str, Any]:
        return {
            "min_days": self.min_days,
            "max_days": self.max_days,
            "fee_percent": str(self.fee_percent),
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> FeeTier:
        """Build a tier from a day-based or month-based record."""
        if "min_days" in data:
            return FeeTier(
                min_days=int(data["min_days"]),
                max_days=int(data["max_days"]) if data.get("max_days") is not None else None,
                fee_percent=to_decimal(data["fee_percent"]),
            )
        max_months = data.get("max_months")
        return FeeTier(
            min_days=int(data["min_months"]) * DAYS_PER_MONTH,
            max_days=int(max_months) * DAYS_PER_MONTH if max_months is not None else None,
            fee_percent=to_decimal(data["fee_percent"]),
        )


@dataclass(frozen=True)
class FeeSchedule:
    """Ordered fee tiers forming a partition of the holding-period axis.

    With ``strict`` (the default) construction rejects gaps, overlaps, a
    non-zero start, and any unbounded tier other than the last one.
    """
    tiers: tuple[FeeTier, ...]
    strict: bool = field(default=True, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "tiers", tuple(self.tiers))
        if self.strict:
            self._validate()

    def _validate(self) -> None:
        tiers = self.tiers
        if not tiers:
            raise ScheduleError("Fee schedule must contain at least one tier")
        if tiers[0].min_days != 0:
            raise ScheduleError(
                f"Fee schedule must start at 0 days, starts at {tiers[0].min_days}"
            )
        for current, following in zip(tiers, tiers[1:]):
            if current.max_days is None:
                raise ScheduleError(
                    f"Unbounded tier starting at {current.min_days} days must be last"
                )
            if current.max_days != following.min_days:
                kind = "gap" if current.max_days < following.min_days else "overlap"
                raise ScheduleError(
                    f"Fee schedule has a {kind} between {current.max_days} "
                    f"and {following.min_days} days"
                )
        if tiers[-1].max_days is not None:
            raise ScheduleError("Last fee tier must be unbounded (max_days = None)")

    def __iter__(self):
        return iter(self.tiers)

    def __len__(self) -> int:
        return len(self.tiers)

    def to_records(self) -> list[dict[str, Any]]:
        return [t.to_dict() for t in self.tiers]

    @staticmethod
    def from_records(records: Iterable[Mapping[str, Any]]) -> FeeSchedule:
        """Build a validated schedule from day- or month-based tier records."""
        return FeeSchedule(tuple(FeeTier.from_dict(r) for r in records))

    @staticmethod
    def from_months(tiers: Iterable[tuple[int, Optional[int], Any]]) -> FeeSchedule:
        """Build a schedule from (min_months, max_months, fee_percent) triples."""
        return FeeSchedule(tuple(
            FeeTier(
                min_days=lo * DAYS_PER_MONTH,
                max_days=hi * DAYS_PER_MONTH if hi is not None else None,
                fee_percent=to_decimal(pct),
            )
            for lo, hi, pct in tiers
        ))


@dataclass
class LiquidityProgramSettings:
    """Per-offering liquidity program configuration.

    ``reserve_balance`` is owned by the offering's ReserveLedger; this record
    only carries its last persisted value.
    """
    offering_id: str
    fee_schedule: FeeSchedule
    enabled: bool = True
    reserve_percent: Decimal = Decimal("5")
    reserve_balance: Decimal = ZERO
    max_monthly_redemptions: Optional[int] = None
    min_holding_days: int = 30

    def __post_init__(self) -> None:
        self.reserve_percent = to_decimal(self.reserve_percent)
        self.reserve_balance = to_decimal(self.reserve_balance)
        if not (ZERO <= self.reserve_percent <= HUNDRED):
            raise ValidationError(
                f"reserve_percent must be in [0, 100], got {self.reserve_percent}"
            )
        if self.reserve_balance < ZERO:
            raise ValidationError(f"reserve_balance cannot be negative: {self.reserve_balance}")
        if self.min_holding_days < 0:
            raise ValidationError(f"min_holding_days cannot be negative: {self.min_holding_days}")
        if self.max_monthly_redemptions is not None and self.max_monthly_redemptions < 0:
            raise ValidationError(
                f"max_monthly_redemptions cannot be negative: {self.max_monthly_redemptions}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "offering_id": self.offering_id,
            "enabled": self.enabled,
            "fee_tiers": self.fee_schedule.to_records(),
            "reserve_percent": str(self.reserve_percent),
            "reserve_balance": str(self.reserve_balance),
            "max_monthly_redemptions": self.max_monthly_redemptions,
            "min_holding_days": self.min_holding_days,
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> LiquidityProgramSettings:
        return LiquidityProgramSettings(
            offering_id=data["offering_id"],
            fee_schedule=FeeSchedule.from_records(data["fee_tiers"]),
            enabled=bool(data.get("enabled", True)),
            reserve_percent=to_decimal(data.get("reserve_percent", "5")),
            reserve_balance=to_decimal(data.get("reserve_balance", "0")),
            max_monthly_redemptions=data.get("max_monthly_redemptions"),
            min_holding_days=int(data.get("min_holding_days", 30)),
        )


@dataclass(frozen=True)
class InvestorHolding:
    """A token position an investor may ask to redeem."""
    investor_id: str
    offering_id: str
    quantity: int
    token_value: Decimal
    holding_period_days: int
    token_holding_id: Optional[str] = None
    holding_start: Optional[date] = None


@dataclass(frozen=True)
class LiquidityQuote:
    """Priced redemption of a holding, computed without creating a request."""
    quantity: int
    token_value: Decimal
    gross_value: Decimal
    holding_period_days: int
    holding_months: int
    fee_tier: FeeTier
    fee_percent: Decimal
    fee_amount: Decimal
    net_payout: Decimal
    min_holding_days: int
    days_until_eligible: int

    @property
    def redeemable(self) -> bool:
        return self.days_until_eligible == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "quantity": self.quantity,
            "token_value": str(self.token_value),
            "gross_value": str(self.gross_value),
            "holding_period_days": self.holding_period_days,
            "holding_months": self.holding_months,
            "fee_tier": self.fee_tier.to_dict(),
            "fee_percent": str(self.fee_percent),
            "fee_amount": str(self.fee_amount),
            "net_payout": str(self.net_payout),
            "min_holding_days": self.min_holding_days,
            "days_until_eligible": self.days_until_eligible,
            "redeemable": self.redeemable,
        }


@dataclass(frozen=True)
class ReserveStatus:
    """Observable state of an offering's redemption reserve."""
    offering_id: str
    balance: Decimal
    target: Decimal
    low_threshold: Decimal
    is_low: bool


@dataclass(frozen=True)
class MonthlyRedemptionSummary:
    """Completed redemptions for one offering in one calendar month."""
    offering_id: str
    year: int
    month: int
    redemptions: int
    amount_paid: Decimal


@dataclass
class LiquidityRequest:
    """An investor-initiated early redemption request.

    Mutable — status and timestamps change during the lifecycle. The
    priced fields are fixed at submission and validated here, including
    when a record is reloaded from storage.
    """
    request_id: str
    request_number: str
    investor_id: str
    offering_id: str
    quantity: int
    token_value_at_request: Decimal
    holding_period_days: int
    fee_tier_applied: FeeTier
    fee_percent_applied: Decimal
    gross_value: Decimal
    fee_amount: Decimal
    net_payout: Decimal
    status: RequestStatus = RequestStatus.PENDING
    denial_reason: Optional[DenialReason] = None
    denial_note: Optional[str] = None
    reserved_amount: Decimal = ZERO
    reviewed_by: Optional[str] = None
    payout_reference: Optional[str] = None
    token_holding_id: Optional[str] = None
    requested_utc: Optional[datetime] = None
    reviewed_utc: Optional[datetime] = None
    processing_utc: Optional[datetime] = None
    completed_utc: Optional[datetime] = None
    cancelled_utc: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValidationError(f"Request quantity must be positive, got {self.quantity}")
        if self.token_value_at_request <= ZERO:
            raise ValidationError(
                f"Token value must be positive, got {self.token_value_at_request}"
            )
        if self.holding_period_days < 0:
            raise ValidationError(
                f"Holding period cannot be negative, got {self.holding_period_days}"
            )
        if self.fee_percent_applied != self.fee_tier_applied.fee_percent:
            raise ValidationError(
                f"fee_percent_applied ({self.fee_percent_applied}) != fee tier's "
                f"fee_percent ({self.fee_tier_applied.fee_percent})"
            )
        expected_gross = self.token_value_at_request * self.quantity
        if self.gross_value != expected_gross:
            raise ValidationError(
                f"gross_value ({self.gross_value}) != quantity × token value ({expected_gross})"
            )
        expected_fee = percent_of(self.gross_value, self.fee_percent_applied)
        if self.fee_amount != expected_fee:
            raise ValidationError(
                f"fee_amount ({self.fee_amount}) != round(gross × fee%) ({expected_fee})"
            )
        if self.net_payout != self.gross_value - self.fee_amount:
            raise ValidationError(
                f"net_payout ({self.net_payout}) != gross_value − fee_amount "
                f"({self.gross_value - self.fee_amount})"
            )
        if self.net_payout < ZERO:
            raise ValidationError(f"net_payout cannot be negative: {self.net_payout}")

    @property
    def is_terminal(self) -> bool:
        return not REQUEST_TRANSITIONS[self.status]

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "request_number": self.request_number,
            "investor_id": self.investor_id,
            "offering_id": self.offering_id,
            "quantity": self.quantity,
            "token_value_at_request": str(self.token_value_at_request),
            "holding_period_days": self.holding_period_days,
            "fee_tier_applied": self.fee_tier_applied.to_dict(),
            "fee_percent_applied": str(self.fee_percent_applied),
            "gross_value": str(self.gross_value),
            "fee_amount": str(self.fee_amount),
            "net_payout": str(self.net_payout),
            "status": self.status.value,
            "denial_reason": self.denial_reason.value if self.denial_reason else None,
            "denial_note": self.denial_note,
            "reserved_amount": str(self.reserved_amount),
            "reviewed_by": self.reviewed_by,
            "payout_reference": self.payout_reference,
            "token_holding_id": self.token_holding_id,
            "requested_utc": iso_or_none(self.requested_utc),
            "reviewed_utc": iso_or_none(self.reviewed_utc),
            "processing_utc": iso_or_none(self.processing_utc),
            "completed_utc": iso_or_none(self.completed_utc),
            "cancelled_utc": iso_or_none(self.cancelled_utc),
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> LiquidityRequest:
        reason = data.get("denial_reason")
        return LiquidityRequest(
            request_id=data["request_id"],
            request_number=data["request_number"],
            investor_id=data["investor_id"],
            offering_id=data["offering_id"],
            quantity=int(data["quantity"]),
            token_value_at_request=to_decimal(data["token_value_at_request"]),
            holding_period_days=int(data["holding_period_days"]),
            fee_tier_applied=FeeTier.from_dict(data["fee_tier_applied"]),
            fee_percent_applied=to_decimal(data["fee_percent_applied"]),
            gross_value=to_decimal(data["gross_value"]),
            fee_amount=to_decimal(data["fee_amount"]),
            net_payout=to_decimal(data["net_payout"]),
            status=RequestStatus(data["status"]),
            denial_reason=DenialReason(reason) if reason else None,
            denial_note=data.get("denial_note"),
            reserved_amount=decimal_or_none(data.get("reserved_amount")) or ZERO,
            reviewed_by=data.get("reviewed_by"),
            payout_reference=data.get("payout_reference"),
            token_holding_id=data.get("token_holding_id"),
            requested_utc=parse_dt(data.get("requested_utc")),
            reviewed_utc=parse_dt(data.get("reviewed_utc")),
            processing_utc=parse_dt(data.get("processing_utc")),
            completed_utc=parse_dt(data.get("completed_utc")),
            cancelled_utc=parse_dt(data.get("cancelled_utc")),
        )
