"""Liquidity request engine — prices and carries early redemptions.

An investor asks to redeem tokens before the offering's natural exit. The
engine prices the request against the offering's fee schedule, then walks
it through review, processing and completion:

    submit   → PENDING   (fee tier resolved, gross/fee/net fixed)
    review   → APPROVED  (monthly cap checked, net payout reserved)
             → DENIED    (reviewer rejection, or reserve/cap exhausted)
    advance  → PROCESSING
    complete → COMPLETED (counted toward the monthly cap)
    cancel   → CANCELLED (held reserve returned if it was approved)

A failed approval never leaves a request stuck in PENDING: reserve and
cap failures are converted into a DENIED request with a machine-readable
denial reason. Illegal transitions raise and change nothing.

All mutations for one offering run under that offering's lock, so the
cap check and the reservation form a single atomic unit.
"""

from __future__ import annotations

import logging
import threading
from contextlib import ExitStack
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Union
from uuid import uuid4

from liquidity_gate.coordination import OfferingLocks
from liquidity_gate.errors import (
    CapExceededError,
    IneligibleError,
    InsufficientReserveError,
    NotFoundError,
    ValidationError,
)
from liquidity_gate.liquidity.fee_schedule import (
    FeeScheduleResolver,
    days_until_eligible,
    holding_months,
)
from liquidity_gate.liquidity.request_state_machine import RequestStateMachine
from liquidity_gate.liquidity.reserve import ReserveLedger, ReserveLedgerBook
from liquidity_gate.models.liquidity import (
    DenialReason,
    InvestorHolding,
    LiquidityProgramSettings,
    LiquidityQuote,
    LiquidityRequest,
    MonthlyRedemptionSummary,
    RequestStatus,
    ReserveStatus,
    ReviewDecision,
)
from liquidity_gate.models.values import ZERO, format_number, parse_number, to_decimal
from liquidity_gate.policy.resolver import PolicyResolver

logger = logging.getLogger(__name__)


class LiquidityRequestEngine:
    """Owns liquidity requests and the reserve ledgers they draw on.

    Usage:
        engine = LiquidityRequestEngine(resolver)
        request = engine.submit("off-1", settings, holding)
        request = engine.review(request.request_id, ReviewDecision.APPROVE)
        request = engine.advance_to_processing(request.request_id)
        request = engine.complete(request.request_id, payout_reference="wire-123")
    """

    def __init__(
        self,
        resolver: Optional[PolicyResolver] = None,
        locks: Optional[OfferingLocks] = None,
        ledgers: Optional[ReserveLedgerBook] = None,
    ) -> None:
        self._resolver = resolver or PolicyResolver.defaults()
        self._locks = locks or OfferingLocks()
        self._ledgers = ledgers or ReserveLedgerBook()
        self._requests: Dict[str, LiquidityRequest] = {}
        self._sequence: Dict[int, int] = {}
        self._sequence_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Program and ledger access
    # ------------------------------------------------------------------

    def register_program(self, settings: LiquidityProgramSettings) -> ReserveLedger:
        """Make sure the offering has a reserve ledger seeded from ``settings``."""
        with self._locks.serialized(settings.offering_id):
            return self._ledgers.ledger_for(settings)

    def ledger(self, offering_id: str) -> ReserveLedger:
        ledger = self._ledgers.get(offering_id)
        if ledger is None:
            raise NotFoundError(f"No liquidity program registered for {offering_id}")
        return ledger

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------

    def quote(
        self,
        settings: LiquidityProgramSettings,
        holding: InvestorHolding,
        quantity: Optional[int] = None,
    ) -> LiquidityQuote:
        """Price a redemption of ``quantity`` tokens (default: whole holding)."""
        qty = holding.quantity if quantity is None else quantity
        if qty <= 0:
            raise ValidationError(f"Redemption quantity must be positive, got {qty}")
        if qty > holding.quantity:
            raise ValidationError(
                f"Cannot redeem {qty} tokens from a holding of {holding.quantity}"
            )
        token_value = to_decimal(holding.token_value)
        if token_value <= ZERO:
            raise ValidationError(f"Token value must be positive, got {token_value}")

        tier = FeeScheduleResolver.resolve(settings.fee_schedule, holding.holding_period_days)
        gross_value = token_value * qty
        fee_amount, net_payout = FeeScheduleResolver.apply(tier, gross_value)

        return LiquidityQuote(
            quantity=qty,
            token_value=token_value,
            gross_value=gross_value,
            holding_period_days=holding.holding_period_days,
            holding_months=holding_months(holding.holding_period_days),
            fee_tier=tier,
            fee_percent=tier.fee_percent,
            fee_amount=fee_amount,
            net_payout=net_payout,
            min_holding_days=settings.min_holding_days,
            days_until_eligible=days_until_eligible(
                holding.holding_period_days, settings.min_holding_days,
            ),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def submit(
        self,
        offering_id: str,
        settings: LiquidityProgramSettings,
        holding: InvestorHolding,
        quantity: Optional[int] = None,
        now: Optional[datetime] = None,
        request_id: Optional[str] = None,
    ) -> LiquidityRequest:
        """Create a PENDING request for ``holding``.

        Raises:
            ValidationError: program disabled, mismatched offering, bad quantity.
            IneligibleError: holding period shorter than min_holding_days.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        if settings.offering_id != offering_id or holding.offering_id != offering_id:
            raise ValidationError(
                f"Settings ({settings.offering_id}) and holding ({holding.offering_id}) "
                f"must both belong to offering {offering_id}"
            )
        if not settings.enabled:
            raise ValidationError(f"Liquidity program is disabled for {offering_id}")

        quote = self.quote(settings, holding, quantity)
        if not quote.redeemable:
            raise IneligibleError(
                f"Holding of {holding.holding_period_days} days is below the "
                f"{settings.min_holding_days}-day minimum "
                f"({quote.days_until_eligible} days to go)"
            )

        with self._locks.serialized(offering_id):
            self._ledgers.ledger_for(settings)
            if request_id is None:
                request_id = f"liq_{uuid4().hex[:12]}"
            if request_id in self._requests:
                raise ValidationError(f"Request ID already exists: {request_id}")

            request = LiquidityRequest(
                request_id=request_id,
                request_number=self._next_number(now.year),
                investor_id=holding.investor_id,
                offering_id=offering_id,
                quantity=quote.quantity,
                token_value_at_request=quote.token_value,
                holding_period_days=holding.holding_period_days,
                fee_tier_applied=quote.fee_tier,
                fee_percent_applied=quote.fee_percent,
                gross_value=quote.gross_value,
                fee_amount=quote.fee_amount,
                net_payout=quote.net_payout,
                token_holding_id=holding.token_holding_id,
                requested_utc=now,
            )
            self._requests[request_id] = request

        logger.info(
            "Liquidity request %s submitted by %s for %s: %s tokens, net %s",
            request.request_number, request.investor_id, offering_id,
            request.quantity, request.net_payout,
        )
        return request

    def review(
        self,
        request_id: str,
        decision: Union[ReviewDecision, str],
        reviewer_id: Optional[str] = None,
        note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LiquidityRequest:
        """Approve or deny a PENDING request.

        Approval checks the monthly cap, then reserves net_payout. If either
        fails the request is DENIED with the matching DenialReason instead.
        """
        decision = self._decision(decision)
        if now is None:
            now = datetime.now(timezone.utc)

        request = self.get_request(request_id)
        with self._locks.serialized(request.offering_id):
            if decision == ReviewDecision.DENY:
                return self._deny(request, DenialReason.REVIEWER_REJECTED, reviewer_id, note, now)

            RequestStateMachine.require_transition(request, RequestStatus.APPROVED)
            ledger = self.ledger(request.offering_id)
            try:
                ledger.reserve_within_cap(request.net_payout, now)
            except CapExceededError as exc:
                return self._deny(
                    request, DenialReason.MONTHLY_CAP_EXCEEDED, reviewer_id, str(exc), now,
                )
            except InsufficientReserveError as exc:
                return self._deny(
                    request, DenialReason.INSUFFICIENT_RESERVE, reviewer_id, str(exc), now,
                )

            RequestStateMachine.apply_transition(request, RequestStatus.APPROVED)
            request.reserved_amount = request.net_payout
            request.reviewed_by = reviewer_id
            request.reviewed_utc = now

        logger.info(
            "Liquidity request %s approved; %s reserved (reserve balance %s)",
            request.request_number, request.reserved_amount, ledger.balance,
        )
        return request

    def review_many(
        self,
        request_ids: Iterable[str],
        decision: Union[ReviewDecision, str],
        reviewer_id: Optional[str] = None,
        note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[LiquidityRequest]:
        """Review several PENDING requests with the same decision.

        Every id is checked before any request is touched: a repeated id,
        an unknown id or a request that is no longer pending rejects the
        whole batch. The locks of every offering in the batch are held from
        the check until the last review, so nothing can slip in between.
        """
        decision = self._decision(decision)
        ids = list(request_ids)
        repeated = sorted({rid for rid in ids if ids.count(rid) > 1})
        if repeated:
            raise ValidationError(f"Request IDs repeated in batch: {', '.join(repeated)}")
        batch = [self.get_request(rid) for rid in ids]

        with ExitStack() as stack:
            for offering_id in sorted({r.offering_id for r in batch}):
                stack.enter_context(self._locks.serialized(offering_id))
            for request in batch:
                RequestStateMachine.require_transition(request, RequestStatus.DENIED)
            return [self.review(rid, decision, reviewer_id, note, now) for rid in ids]

    def advance_to_processing(
        self,
        request_id: str,
        now: Optional[datetime] = None,
    ) -> LiquidityRequest:
        """APPROVED → PROCESSING."""
        if now is None:
            now = datetime.now(timezone.utc)
        request = self.get_request(request_id)
        with self._locks.serialized(request.offering_id):
            RequestStateMachine.apply_transition(request, RequestStatus.PROCESSING)
            request.processing_utc = now
        logger.info("Liquidity request %s processing", request.request_number)
        return request

    def complete(
        self,
        request_id: str,
        payout_reference: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LiquidityRequest:
        """PROCESSING → COMPLETED; counts the redemption toward its month."""
        if now is None:
            now = datetime.now(timezone.utc)
        request = self.get_request(request_id)
        with self._locks.serialized(request.offering_id):
            RequestStateMachine.require_transition(request, RequestStatus.COMPLETED)
            self.ledger(request.offering_id).record_completion(
                request.request_id, now, request.net_payout,
            )
            RequestStateMachine.apply_transition(request, RequestStatus.COMPLETED)
            request.completed_utc = now
            request.payout_reference = payout_reference
        logger.info(
            "Liquidity request %s completed (payout %s, ref %s)",
            request.request_number, request.net_payout, payout_reference,
        )
        return request

    def cancel(
        self,
        request_id: str,
        investor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LiquidityRequest:
        """Cancel a PENDING or APPROVED request, returning any held reserve."""
        if now is None:
            now = datetime.now(timezone.utc)
        request = self.get_request(request_id)
        if investor_id is not None and investor_id != request.investor_id:
            raise ValidationError(
                f"{investor_id} cannot cancel request {request.request_number} "
                f"owned by {request.investor_id}"
            )
        with self._locks.serialized(request.offering_id):
            RequestStateMachine.require_transition(request, RequestStatus.CANCELLED)
            if request.status == RequestStatus.APPROVED and request.reserved_amount > ZERO:
                self.ledger(request.offering_id).release(request.reserved_amount)
                request.reserved_amount = ZERO
            RequestStateMachine.apply_transition(request, RequestStatus.CANCELLED)
            request.cancelled_utc = now
        logger.info("Liquidity request %s cancelled", request.request_number)
        return request

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_request(self, request_id: str) -> LiquidityRequest:
        request = self._requests.get(request_id)
        if request is None:
            raise NotFoundError(f"Unknown liquidity request: {request_id}")
        return request

    def requests(
        self,
        offering_id: Optional[str] = None,
        status: Optional[RequestStatus] = None,
        investor_id: Optional[str] = None,
    ) -> List[LiquidityRequest]:
        result = list(self._requests.values())
        if offering_id is not None:
            result = [r for r in result if r.offering_id == offering_id]
        if status is not None:
            result = [r for r in result if r.status == status]
        if investor_id is not None:
            result = [r for r in result if r.investor_id == investor_id]
        return result

    def monthly_summary(self, offering_id: str, month: datetime) -> MonthlyRedemptionSummary:
        return self.ledger(offering_id).monthly_summary(month)

    def reserve_status(self, offering_id: str, offering_value: Decimal) -> ReserveStatus:
        return self.ledger(offering_id).status(
            offering_value, self._resolver.reserve_low_threshold,
        )

    def restore(self, request: LiquidityRequest) -> None:
        """Re-attach a persisted request (its program must be registered).

        Completed requests are replayed into the ledger's monthly counter.
        The reserve balance itself is restored from the settings record.
        """
        with self._locks.serialized(request.offering_id):
            if request.request_id in self._requests:
                raise ValidationError(f"Request ID already exists: {request.request_id}")
            if request.status == RequestStatus.COMPLETED and request.completed_utc:
                self.ledger(request.offering_id).record_completion(
                    request.request_id, request.completed_utc, request.net_payout,
                )
            self._requests[request.request_id] = request
            self._observe_number(request.request_number)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _deny(
        self,
        request: LiquidityRequest,
        reason: DenialReason,
        reviewer_id: Optional[str],
        note: Optional[str],
        now: datetime,
    ) -> LiquidityRequest:
        RequestStateMachine.apply_transition(request, RequestStatus.DENIED)
        request.denial_reason = reason
        request.denial_note = note
        request.reviewed_by = reviewer_id
        request.reviewed_utc = now
        logger.warning(
            "Liquidity request %s denied (%s)", request.request_number, reason.value,
        )
        return request

    @staticmethod
    def _decision(decision: Union[ReviewDecision, str]) -> ReviewDecision:
        try:
            return ReviewDecision(decision)
        except ValueError:
            raise ValidationError(f"Unknown review decision: {decision!r}") from None

    def _next_number(self, year: int) -> str:
        with self._sequence_lock:
            seq = self._sequence.get(year, 0) + 1
            self._sequence[year] = seq
        return format_number(self._resolver.request_number_prefix, year, seq)

    def _observe_number(self, number: str) -> None:
        """Keep the yearly sequence ahead of a restored request number."""
        parsed = parse_number(number)
        if parsed is None:
            return
        year, seq = parsed
        with self._sequence_lock:
            self._sequence[year] = max(self._sequence.get(year, 0), seq)
