"""Domain models for the compliance gate and redemption engine."""

from liquidity_gate.models.compliance import (
    AccreditationMethod,
    AccreditationStatus,
    ComplianceState,
    EligibilityChecks,
    EligibilityResult,
    KycStatus,
    NextStep,
    OfferingRequirements,
)
from liquidity_gate.models.liquidity import (
    DenialReason,
    FeeSchedule,
    FeeTier,
    InvestorHolding,
    LiquidityProgramSettings,
    LiquidityQuote,
    LiquidityRequest,
    MonthlyRedemptionSummary,
    RequestStatus,
    ReserveStatus,
    ReviewDecision,
)
from liquidity_gate.models.secondary import (
    ListingStatus,
    PurchaseSettlement,
    SecondaryListing,
    SecondaryMarketSummary,
)

__all__ = [
    "AccreditationMethod",
    "AccreditationStatus",
    "ComplianceState",
    "DenialReason",
    "EligibilityChecks",
    "EligibilityResult",
    "FeeSchedule",
    "FeeTier",
    "InvestorHolding",
    "KycStatus",
    "LiquidityProgramSettings",
    "LiquidityQuote",
    "LiquidityRequest",
    "ListingStatus",
    "MonthlyRedemptionSummary",
    "NextStep",
    "OfferingRequirements",
    "PurchaseSettlement",
    "RequestStatus",
    "ReserveStatus",
    "ReviewDecision",
    "SecondaryListing",
    "SecondaryMarketSummary",
]
