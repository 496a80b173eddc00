"""Eligibility evaluator — decides whether an investor may place an investment.

This is the canonical gate used before any investment-creating action.
It answers one question: "Given the offering's requirements and the
investor's current compliance state, may this amount be invested?"

Rules:
- KYC passes if not required, or the investor is verified.
- Accreditation passes if not required, verified, or self-certified.
  Self-certification is a deliberate bypass of the verification outcome.
- The minimum investment boundary is inclusive.

next_step priority: kyc → accreditation → ready. A minimum-investment
shortfall is an amount problem, not an identity problem, so it is
reported through ``reason`` only and never changes next_step.

Pure computation: no I/O, no caching, no hidden state. Compliance state
is always passed in explicitly.
"""

from __future__ import annotations

from decimal import Decimal

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
from liquidity_gate.models.values import to_decimal


KYC_REQUIRED_REASON = "Identity verification required"
ACCREDITATION_REQUIRED_REASON = "Accreditation verification required"


class EligibilityEvaluator:
    """Stateless eligibility decision.

    Usage:
        result = EligibilityEvaluator.evaluate(requirements, state, Decimal("1000"))
        if not result.eligible:
            ...  # route the investor to result.next_step
    """

    @staticmethod
    def kyc_passed(requirements: OfferingRequirements, state: ComplianceState) -> bool:
        return not requirements.requires_kyc or state.kyc_status == KycStatus.VERIFIED

    @staticmethod
    def accreditation_passed(
        requirements: OfferingRequirements,
        state: ComplianceState,
    ) -> bool:
        return (
            not requirements.requires_accreditation
            or state.accreditation_status == AccreditationStatus.VERIFIED
            or state.accreditation_method == AccreditationMethod.SELF_CERTIFIED
        )

    @staticmethod
    def evaluate(
        requirements: OfferingRequirements,
        compliance_state: ComplianceState,
        requested_amount: Decimal,
    ) -> EligibilityResult:
        """Evaluate eligibility for an investment of ``requested_amount``."""
        amount = to_decimal(requested_amount)
        checks = EligibilityChecks(
            kyc=EligibilityEvaluator.kyc_passed(requirements, compliance_state),
            accreditation=EligibilityEvaluator.accreditation_passed(
                requirements, compliance_state,
            ),
            min_investment=amount >= requirements.min_investment,
        )

        next_step = NextStep.READY
        reason = None
        if not checks.kyc:
            next_step = NextStep.KYC
            reason = KYC_REQUIRED_REASON
        elif not checks.accreditation:
            next_step = NextStep.ACCREDITATION
            reason = ACCREDITATION_REQUIRED_REASON
        elif not checks.min_investment:
            reason = f"Minimum investment is ${requirements.min_investment:,.2f}"

        return EligibilityResult(
            eligible=checks.all_passed(),
            next_step=next_step,
            checks=checks,
            reason=reason,
        )
