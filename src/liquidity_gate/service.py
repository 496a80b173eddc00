"""Compliance gateway — unified facade for eligibility, liquidity and resale.

This is the primary interface for programmatic access to the engine.
It composes:
- Eligibility (pre-investment compliance gate)
- Liquidity requests (quote, submit, review, process, complete, cancel)
- Reserve reporting (status against target, monthly summaries)
- Secondary listings (create, cancel, buy, expire, summarize)
- Persistence (entity snapshots after every mutation)

Operations return GatewayResult objects rather than raising. Engine
errors are converted into a failed result carrying the error's stable
``code``. Every mutation of an offering runs under that offering's lock,
including the write-back of the reserve balance to its settings record.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional, Union

from liquidity_gate.coordination import OfferingLocks
from liquidity_gate.eligibility.evaluator import EligibilityEvaluator
from liquidity_gate.errors import IneligibleError, LiquidityGateError, TransferError
from liquidity_gate.liquidity.engine import LiquidityRequestEngine
from liquidity_gate.models.compliance import OfferingRequirements
from liquidity_gate.models.liquidity import (
    InvestorHolding,
    LiquidityProgramSettings,
    LiquidityRequest,
    ReviewDecision,
)
from liquidity_gate.models.secondary import PurchaseSettlement, SecondaryListing
from liquidity_gate.models.values import to_decimal
from liquidity_gate.policy.resolver import PolicyResolver
from liquidity_gate.providers import (
    ComplianceProvider,
    Entity,
    EntityStore,
    InMemoryComplianceProvider,
    InMemorySettingsStore,
    OwnershipTransfer,
    SettingsStore,
)
from liquidity_gate.secondary.manager import SecondaryListingManager

logger = logging.getLogger(__name__)


@dataclass
class GatewayResult:
    """Result of a gateway operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    error_code: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def failure(exc: LiquidityGateError) -> GatewayResult:
        return GatewayResult(success=False, errors=[str(exc)], error_code=exc.code)


class ComplianceGateway:
    """Single decision surface over the compliance gate and redemption engine.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        gateway = ComplianceGateway(resolver, compliance, settings_store, entity_store)
        gateway.register_program(resolver.default_settings("off-1", Decimal("50000")))
        result = gateway.request_redemption(holding)
        if result.success:
            gateway.review_redemption(result.data["request_id"], "approve", "admin-1")
    """

    def __init__(
        self,
        resolver: Optional[PolicyResolver] = None,
        compliance: Optional[ComplianceProvider] = None,
        settings_store: Optional[SettingsStore] = None,
        entity_store: Optional[EntityStore] = None,
        ownership_transfer: Optional[OwnershipTransfer] = None,
    ) -> None:
        self._resolver = resolver or PolicyResolver.defaults()
        self._compliance = compliance or InMemoryComplianceProvider()
        self._settings_store = settings_store or InMemorySettingsStore()
        self._entity_store = entity_store
        self._ownership_transfer = ownership_transfer

        self._locks = OfferingLocks()
        self._engine = LiquidityRequestEngine(self._resolver, self._locks)
        self._listings = SecondaryListingManager(self._resolver, self._locks)

    @property
    def engine(self) -> LiquidityRequestEngine:
        return self._engine

    @property
    def listings(self) -> SecondaryListingManager:
        return self._listings

    # ------------------------------------------------------------------
    # Eligibility
    # ------------------------------------------------------------------

    def check_eligibility(
        self,
        requirements: OfferingRequirements,
        investor_id: str,
        requested_amount: Decimal,
    ) -> GatewayResult:
        """Evaluate eligibility. An ineligible investor is still a successful check."""
        def run() -> dict[str, Any]:
            state = self._compliance.get_compliance_state(investor_id)
            result = EligibilityEvaluator.evaluate(requirements, state, requested_amount)
            return {"investor_id": investor_id, **result.to_dict()}
        return self._run(run)

    def authorize_investment(
        self,
        requirements: OfferingRequirements,
        investor_id: str,
        amount: Decimal,
    ) -> GatewayResult:
        """Gate an investment-creating action; fails with code ``ineligible``."""
        def run() -> dict[str, Any]:
            state = self._compliance.get_compliance_state(investor_id)
            result = EligibilityEvaluator.evaluate(requirements, state, amount)
            if not result.eligible:
                raise IneligibleError(result.reason or "Investor is not eligible")
            logger.info("Investment of %s authorized for %s", amount, investor_id)
            return {"investor_id": investor_id, "amount": str(to_decimal(amount))}
        return self._run(run)

    # ------------------------------------------------------------------
    # Liquidity program
    # ------------------------------------------------------------------

    def register_program(self, settings: LiquidityProgramSettings) -> GatewayResult:
        """Store an offering's program settings and open its reserve ledger."""
        def run() -> dict[str, Any]:
            with self._locks.serialized(settings.offering_id):
                ledger = self._engine.register_program(settings)
                settings.reserve_balance = ledger.balance
                self._settings_store.save_liquidity_settings(settings)
                warning = self._safe_persist(settings)
            data = settings.to_dict()
            if warning:
                data["warning"] = warning
            return data
        return self._run(run)

    def quote_redemption(
        self,
        holding: InvestorHolding,
        quantity: Optional[int] = None,
    ) -> GatewayResult:
        def run() -> dict[str, Any]:
            settings = self._program(holding.offering_id)
            return self._engine.quote(settings, holding, quantity).to_dict()
        return self._run(run)

    def request_redemption(
        self,
        holding: InvestorHolding,
        quantity: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> GatewayResult:
        def run() -> dict[str, Any]:
            with self._locks.serialized(holding.offering_id):
                settings = self._program(holding.offering_id)
                request = self._engine.submit(
                    holding.offering_id, settings, holding, quantity, now=now,
                )
                return self._request_data(request, self._safe_persist(request))
        return self._run(run)

    def review_redemption(
        self,
        request_id: str,
        decision: Union[ReviewDecision, str],
        reviewer_id: Optional[str] = None,
        note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> GatewayResult:
        def run() -> dict[str, Any]:
            offering_id = self._engine.get_request(request_id).offering_id
            with self._locks.serialized(offering_id):
                request = self._engine.review(request_id, decision, reviewer_id, note, now)
                warning = self._persist_with_reserve(request)
                return self._request_data(request, warning)
        return self._run(run)

    def review_redemptions(
        self,
        request_ids: Iterable[str],
        decision: Union[ReviewDecision, str],
        reviewer_id: Optional[str] = None,
        note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> GatewayResult:
        """Bulk review. Rejected as a whole if any id is unknown or not pending."""
        def run() -> dict[str, Any]:
            reviewed = self._engine.review_many(request_ids, decision, reviewer_id, note, now)
            warnings = [w for w in (self._persist_with_reserve(r) for r in reviewed) if w]
            data: dict[str, Any] = {
                "requests": [self._request_data(r) for r in reviewed],
                "approved": sum(1 for r in reviewed if r.denial_reason is None),
                "denied": sum(1 for r in reviewed if r.denial_reason is not None),
            }
            if warnings:
                data["warning"] = warnings[0]
            return data
        return self._run(run)

    def start_processing(
        self,
        request_id: str,
        now: Optional[datetime] = None,
    ) -> GatewayResult:
        def run() -> dict[str, Any]:
            request = self._engine.advance_to_processing(request_id, now)
            return self._request_data(request, self._safe_persist(request))
        return self._run(run)

    def complete_redemption(
        self,
        request_id: str,
        payout_reference: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> GatewayResult:
        def run() -> dict[str, Any]:
            request = self._engine.complete(request_id, payout_reference, now)
            return self._request_data(request, self._safe_persist(request))
        return self._run(run)

    def cancel_redemption(
        self,
        request_id: str,
        investor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> GatewayResult:
        def run() -> dict[str, Any]:
            offering_id = self._engine.get_request(request_id).offering_id
            with self._locks.serialized(offering_id):
                request = self._engine.cancel(request_id, investor_id, now)
                return self._request_data(request, self._persist_with_reserve(request))
        return self._run(run)

    def reserve_status(self, offering_id: str, offering_value: Decimal) -> GatewayResult:
        """Reserve balance against target; logs a warning when the reserve is low."""
        def run() -> dict[str, Any]:
            self._program(offering_id)
            status = self._engine.reserve_status(offering_id, offering_value)
            if status.is_low:
                logger.warning(
                    "Reserve for %s is low: %s below threshold %s (target %s)",
                    offering_id, status.balance, status.low_threshold, status.target,
                )
            return {
                "offering_id": offering_id,
                "balance": str(status.balance),
                "target": str(status.target),
                "low_threshold": str(status.low_threshold),
                "is_low": status.is_low,
            }
        return self._run(run)

    def monthly_summary(
        self,
        offering_id: str,
        month: Union[date, datetime],
    ) -> GatewayResult:
        def run() -> dict[str, Any]:
            self._program(offering_id)
            summary = self._engine.monthly_summary(offering_id, month)
            return {
                "offering_id": summary.offering_id,
                "month": f"{summary.year:04d}-{summary.month:02d}",
                "redemptions": summary.redemptions,
                "amount_paid": str(summary.amount_paid),
            }
        return self._run(run)

    # ------------------------------------------------------------------
    # Secondary market
    # ------------------------------------------------------------------

    def create_listing(
        self,
        seller_id: str,
        offering_id: str,
        quantity: int,
        price_per_token: Decimal,
        original_token_price: Decimal,
        expires_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
        token_holding_id: Optional[str] = None,
    ) -> GatewayResult:
        def run() -> dict[str, Any]:
            listing = self._listings.create_listing(
                seller_id, offering_id, quantity, price_per_token, original_token_price,
                expires_at=expires_at, now=now, token_holding_id=token_holding_id,
            )
            return self._listing_data(listing, self._safe_persist(listing))
        return self._run(run)

    def cancel_listing(
        self,
        listing_id: str,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> GatewayResult:
        def run() -> dict[str, Any]:
            listing = self._listings.cancel_listing(listing_id, actor_id, now)
            return self._listing_data(listing, self._safe_persist(listing))
        return self._run(run)

    def buy_listing(
        self,
        listing_id: str,
        buyer_id: str,
        quantity: int,
        now: Optional[datetime] = None,
    ) -> GatewayResult:
        """Purchase a whole listing and hand the settlement to the transfer agent.

        The transfer runs before the listing is marked sold. If it fails the
        listing stays active and the result carries code ``transfer_failed``.
        """
        def run() -> dict[str, Any]:
            offering_id = self._listings.get_listing(listing_id).offering_id
            settle = self._transfer if self._ownership_transfer is not None else None
            with self._locks.serialized(offering_id):
                settlement = self._listings.execute_purchase(
                    listing_id, buyer_id, quantity, now, settle=settle,
                )
                warning = self._safe_persist(self._listings.get_listing(listing_id))
            data = settlement.to_dict()
            if warning:
                data["warning"] = warning
            return data
        return self._run(run)

    def sweep_expired_listings(
        self,
        now: Optional[datetime] = None,
        offering_id: Optional[str] = None,
    ) -> GatewayResult:
        def run() -> dict[str, Any]:
            expired = self._listings.expire_sweep(now, offering_id)
            warning = self._safe_persist(*expired)
            data: dict[str, Any] = {
                "expired": [l.listing_id for l in expired],
                "count": len(expired),
            }
            if warning:
                data["warning"] = warning
            return data
        return self._run(run)

    def market_summary(self, offering_id: Optional[str] = None) -> GatewayResult:
        return self._run(lambda: self._listings.summarize(offering_id=offering_id).to_dict())

    # ------------------------------------------------------------------
    # Status and recovery
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        """Counts of requests and listings by status."""
        requests = self._engine.requests()
        listings = self._listings.listings()
        return {
            "requests": {
                "total": len(requests),
                "by_status": dict(Counter(r.status.value for r in requests)),
            },
            "listings": {
                "total": len(listings),
                "by_status": dict(Counter(l.status.value for l in listings)),
            },
            "persistence": self._entity_store is not None,
        }

    def restore_from_store(self) -> GatewayResult:
        """Rebuild in-memory state from the entity store.

        Settings are restored first so that every request finds its
        offering's ledger, seeded with the persisted reserve balance.
        """
        def run() -> dict[str, Any]:
            if self._entity_store is None:
                return {"settings": 0, "requests": 0, "listings": 0}
            entities = list(self._entity_store.load_all())
            settings = [e for e in entities if isinstance(e, LiquidityProgramSettings)]
            requests = [e for e in entities if isinstance(e, LiquidityRequest)]
            listings = [e for e in entities if isinstance(e, SecondaryListing)]
            for s in settings:
                self._settings_store.save_liquidity_settings(s)
                self._engine.register_program(s)
            for r in requests:
                self._engine.restore(r)
            for l in listings:
                self._listings.restore(l)
            logger.info(
                "Restored %d program(s), %d request(s), %d listing(s)",
                len(settings), len(requests), len(listings),
            )
            return {
                "settings": len(settings),
                "requests": len(requests),
                "listings": len(listings),
            }
        return self._run(run)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run(self, operation: Callable[[], dict[str, Any]]) -> GatewayResult:
        try:
            data = operation()
        except LiquidityGateError as exc:
            logger.info("Gateway operation failed (%s): %s", exc.code, exc)
            return GatewayResult.failure(exc)
        return GatewayResult(success=True, data=data)

    def _program(self, offering_id: str) -> LiquidityProgramSettings:
        """Stored settings for the offering, with its ledger registered."""
        settings = self._settings_store.get_liquidity_settings(offering_id)
        self._engine.register_program(settings)
        return settings

    def _transfer(self, settlement: PurchaseSettlement) -> None:
        """Run the ownership transfer, reporting any collaborator failure as TransferError."""
        try:
            self._ownership_transfer.transfer(settlement)
        except LiquidityGateError:
            raise
        except Exception as exc:
            logger.error(
                "Ownership transfer failed for listing %s: %s", settlement.listing_id, exc,
            )
            raise TransferError(
                f"Ownership transfer failed for listing {settlement.listing_id}: {exc}"
            ) from exc

    def _persist_with_reserve(self, request: LiquidityRequest) -> Optional[str]:
        """Persist a request plus its offering's settings carrying the ledger balance."""
        settings = self._settings_store.get_liquidity_settings(request.offering_id)
        settings.reserve_balance = self._engine.ledger(request.offering_id).balance
        self._settings_store.save_liquidity_settings(settings)
        return self._safe_persist(request, settings)

    def _safe_persist(self, *entities: Entity) -> Optional[str]:
        """Save entities, returning a warning string instead of raising on I/O errors.

        The in-memory transition has already happened; a storage failure
        is reported to the caller rather than undoing it.
        """
        if self._entity_store is None:
            return None
        try:
            for entity in entities:
                self._entity_store.save(entity)
        except OSError as exc:
            logger.error("Persistence failed: %s", exc)
            return f"Persistence failed: {exc}"
        return None

    @staticmethod
    def _request_data(
        request: LiquidityRequest,
        warning: Optional[str] = None,
    ) -> dict[str, Any]:
        data = request.to_dict()
        if warning:
            data["warning"] = warning
        return data

    @staticmethod
    def _listing_data(
        listing: SecondaryListing,
        warning: Optional[str] = None,
    ) -> dict[str, Any]:
        data = listing.to_dict()
        if warning:
            data["warning"] = warning
        return data
