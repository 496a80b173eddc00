"""Compliance models — offering requirements, investor status, eligibility.

ComplianceState is owned by the KYC and accreditation providers. The
engine only reads it. EligibilityResult is computed fresh on every call
and is never persisted.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional


class KycStatus(str, enum.Enum):
    """Identity-verification status of an investor."""
    NOT_STARTED = "not_started"
    PENDING = "pending"
    IN_REVIEW = "in_review"
    VERIFIED = "verified"
    REJECTED = "rejected"


class AccreditationStatus(str, enum.Enum):
    """Outcome of accreditation verification."""
    NOT_STARTED = "not_started"
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class AccreditationMethod(str, enum.Enum):
    """How the investor claimed or proved accreditation."""
    SELF_CERTIFIED = "self_certified"
    THIRD_PARTY = "third_party"
    INCOME_VERIFIED = "income_verified"
    DOCUMENTS = "documents"


class NextStep(str, enum.Enum):
    """What the investor must do next before investing."""
    KYC = "kyc"
    ACCREDITATION = "accreditation"
    READY = "ready"


@dataclass(frozen=True)
class OfferingRequirements:
    """Compliance requirements set by an offering's sponsor.

    Immutable per offering. ``max_investment`` and ``allowed_countries``
    are carried for callers but do not participate in eligibility.
    """
    requires_kyc: bool
    requires_accreditation: bool
    min_investment: Decimal
    max_investment: Optional[Decimal] = None
    allowed_countries: Optional[frozenset[str]] = None

    @staticmethod
    def from_dict(data: dict[str, Any]) -> OfferingRequirements:
        countries = data.get("allowed_countries")
        max_investment = data.get("max_investment")
        return OfferingRequirements(
            requires_kyc=bool(data.get("requires_kyc", False)),
            requires_accreditation=bool(data.get("requires_accreditation", False)),
            min_investment=Decimal(str(data.get("min_investment", "0"))),
            max_investment=(
                Decimal(str(max_investment)) if max_investment is not None else None
            ),
            allowed_countries=frozenset(countries) if countries is not None else None,
        )


@dataclass(frozen=True)
class ComplianceState:
    """An investor's KYC and accreditation status, as reported by providers."""
    investor_id: str
    kyc_status: KycStatus = KycStatus.NOT_STARTED
    accreditation_status: AccreditationStatus = AccreditationStatus.NOT_STARTED
    accreditation_method: Optional[AccreditationMethod] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "investor_id": self.investor_id,
            "kyc_status": self.kyc_status.value,
            "accreditation_status": self.accreditation_status.value,
            "accreditation_method": (
                self.accreditation_method.value if self.accreditation_method else None
            ),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ComplianceState:
        method = data.get("accreditation_method")
        return ComplianceState(
            investor_id=data["investor_id"],
            kyc_status=KycStatus(data.get("kyc_status", KycStatus.NOT_STARTED.value)),
            accreditation_status=AccreditationStatus(
                data.get("accreditation_status", AccreditationStatus.NOT_STARTED.value)
            ),
            accreditation_method=AccreditationMethod(method) if method else None,
        )


@dataclass(frozen=True)
class EligibilityChecks:
    """Individual check outcomes behind an eligibility decision."""
    kyc: bool
    accreditation: bool
    min_investment: bool

    def all_passed(self) -> bool:
        return self.kyc and self.accreditation and self.min_investment


@dataclass(frozen=True)
class EligibilityResult:
    """Outcome of an eligibility evaluation.

    ``eligible`` is False whenever any check fails. ``reason`` and
    ``next_step`` are advisory only.
    """
    eligible: bool
    next_step: NextStep
    checks: EligibilityChecks
    reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "eligible": self.eligible,
            "reason": self.reason,
            "next_step": self.next_step.value,
            "checks": {
                "kyc": self.checks.kyc,
                "accreditation": self.checks.accreditation,
                "min_investment": self.checks.min_investment,
            },
        }
