"""Tests for the compliance gateway — proves the facade wires everything correctly."""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from liquidity_gate.models.compliance import (
    AccreditationStatus,
    ComplianceState,
    KycStatus,
    OfferingRequirements,
)
from liquidity_gate.models.liquidity import InvestorHolding
from liquidity_gate.persistence.entity_store import JsonlEntityStore
from liquidity_gate.policy.resolver import PolicyResolver
from liquidity_gate.providers import (
    InMemoryComplianceProvider,
    InMemoryEntityStore,
    InMemoryOwnershipTransfer,
    InMemorySettingsStore,
)
from liquidity_gate.service import ComplianceGateway

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


def _now() -> datetime:
    return datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)


def _make_holding(investor_id: str = "inv-1", days: int = 400) -> InvestorHolding:
    return InvestorHolding(
        investor_id=investor_id,
        offering_id="OFF-1",
        quantity=100,
        token_value=Decimal("10"),
        holding_period_days=days,
    )


class FailingStore:
    def save(self, entity) -> None:
        raise OSError("disk full")

    def load_all(self):
        return iter(())


class FailingTransfer:
    def transfer(self, settlement) -> None:
        raise RuntimeError("transfer agent down")


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


@pytest.fixture
def compliance() -> InMemoryComplianceProvider:
    provider = InMemoryComplianceProvider()
    provider.set_state(ComplianceState(
        investor_id="inv-verified",
        kyc_status=KycStatus.VERIFIED,
        accreditation_status=AccreditationStatus.VERIFIED,
    ))
    return provider


@pytest.fixture
def settings_store() -> InMemorySettingsStore:
    return InMemorySettingsStore()


@pytest.fixture
def entity_store() -> InMemoryEntityStore:
    return InMemoryEntityStore()


@pytest.fixture
def transfer() -> InMemoryOwnershipTransfer:
    return InMemoryOwnershipTransfer()


@pytest.fixture
def gateway(
    resolver: PolicyResolver,
    compliance: InMemoryComplianceProvider,
    settings_store: InMemorySettingsStore,
    entity_store: InMemoryEntityStore,
    transfer: InMemoryOwnershipTransfer,
) -> ComplianceGateway:
    gw = ComplianceGateway(resolver, compliance, settings_store, entity_store, transfer)
    result = gw.register_program(resolver.default_settings("OFF-1", Decimal("5000")))
    assert result.success
    return gw


REQUIREMENTS = OfferingRequirements(
    requires_kyc=True,
    requires_accreditation=True,
    min_investment=Decimal("1000"),
)


class TestEligibility:
    def test_verified_investor_is_eligible(self, gateway: ComplianceGateway) -> None:
        result = gateway.check_eligibility(REQUIREMENTS, "inv-verified", Decimal("1000"))
        assert result.success
        assert result.data["eligible"] is True
        assert result.data["next_step"] == "ready"

    def test_unknown_investor_needs_kyc(self, gateway: ComplianceGateway) -> None:
        result = gateway.check_eligibility(REQUIREMENTS, "inv-new", Decimal("5000"))
        assert result.success
        assert result.data["eligible"] is False
        assert result.data["next_step"] == "kyc"

    def test_authorize_blocks_ineligible(self, gateway: ComplianceGateway) -> None:
        result = gateway.authorize_investment(REQUIREMENTS, "inv-verified", Decimal("999"))
        assert not result.success
        assert result.error_code == "ineligible"
        assert result.errors == ["Minimum investment is $1,000.00"]

    def test_authorize_allows_eligible(self, gateway: ComplianceGateway) -> None:
        result = gateway.authorize_investment(REQUIREMENTS, "inv-verified", Decimal("2500"))
        assert result.success
        assert result.data["amount"] == "2500"


class TestRedemptionLifecycle:
    def test_full_lifecycle_persists_each_step(
        self,
        gateway: ComplianceGateway,
        settings_store: InMemorySettingsStore,
        entity_store: InMemoryEntityStore,
    ) -> None:
        quote = gateway.quote_redemption(_make_holding())
        assert quote.success
        assert quote.data["fee_percent"] == "7"
        assert quote.data["net_payout"] == "930.00"

        submitted = gateway.request_redemption(_make_holding(), now=_now())
        assert submitted.success
        request_id = submitted.data["request_id"]
        assert submitted.data["request_number"] == "LIQ-2026-0001"
        assert entity_store.get("liquidity_request", request_id)["status"] == "pending"

        approved = gateway.review_redemption(request_id, "approve", "admin-1", now=_now())
        assert approved.data["status"] == "approved"
        assert settings_store.get_liquidity_settings("OFF-1").reserve_balance == Decimal("4070.00")
        assert entity_store.get("liquidity_settings", "OFF-1")["reserve_balance"] == "4070.00"

        assert gateway.start_processing(request_id, now=_now()).data["status"] == "processing"
        done = gateway.complete_redemption(request_id, "wire-1", now=_now())
        assert done.data["status"] == "completed"
        assert done.data["payout_reference"] == "wire-1"
        assert entity_store.get("liquidity_request", request_id)["status"] == "completed"

        summary = gateway.monthly_summary("OFF-1", _now())
        assert summary.data == {
            "offering_id": "OFF-1",
            "month": "2026-02",
            "redemptions": 1,
            "amount_paid": "930.00",
        }

    def test_insufficient_reserve_becomes_denial(
        self, resolver: PolicyResolver, settings_store: InMemorySettingsStore,
    ) -> None:
        gw = ComplianceGateway(resolver, settings_store=settings_store)
        gw.register_program(resolver.default_settings("OFF-1", Decimal("500")))
        request_id = gw.request_redemption(_make_holding()).data["request_id"]

        result = gw.review_redemption(request_id, "approve")
        assert result.success
        assert result.data["status"] == "denied"
        assert result.data["denial_reason"] == "insufficient_reserve"
        assert settings_store.get_liquidity_settings("OFF-1").reserve_balance == Decimal("500")

    def test_cancel_returns_reserve(
        self, gateway: ComplianceGateway, settings_store: InMemorySettingsStore,
    ) -> None:
        request_id = gateway.request_redemption(_make_holding()).data["request_id"]
        gateway.review_redemption(request_id, "approve")
        result = gateway.cancel_redemption(request_id, investor_id="inv-1")
        assert result.data["status"] == "cancelled"
        assert settings_store.get_liquidity_settings("OFF-1").reserve_balance == Decimal("5000.00")

    def test_bulk_review(self, gateway: ComplianceGateway) -> None:
        ids = [
            gateway.request_redemption(_make_holding(f"inv-{i}")).data["request_id"]
            for i in range(3)
        ]
        result = gateway.review_redemptions(ids, "approve", "admin-1")
        assert result.success
        assert result.data["approved"] == 3
        assert result.data["denied"] == 0

    def test_bulk_review_with_repeated_id_changes_nothing(
        self,
        gateway: ComplianceGateway,
        settings_store: InMemorySettingsStore,
        entity_store: InMemoryEntityStore,
    ) -> None:
        request_id = gateway.request_redemption(_make_holding()).data["request_id"]

        result = gateway.review_redemptions([request_id, request_id], "approve")
        assert not result.success
        assert result.error_code == "validation_error"
        assert gateway.engine.get_request(request_id).status.value == "pending"
        assert entity_store.get("liquidity_request", request_id)["status"] == "pending"
        assert gateway.engine.ledger("OFF-1").balance == Decimal("5000")
        assert settings_store.get_liquidity_settings("OFF-1").reserve_balance == Decimal("5000")

    def test_invalid_transition_reported(self, gateway: ComplianceGateway) -> None:
        request_id = gateway.request_redemption(_make_holding()).data["request_id"]
        result = gateway.complete_redemption(request_id)
        assert not result.success
        assert result.error_code == "invalid_state_transition"

    def test_short_holding_reported(self, gateway: ComplianceGateway) -> None:
        result = gateway.request_redemption(_make_holding(days=10))
        assert not result.success
        assert result.error_code == "ineligible"

    def test_unknown_offering(self, gateway: ComplianceGateway) -> None:
        holding = InvestorHolding("inv-1", "OFF-404", 10, Decimal("1"), 400)
        result = gateway.request_redemption(holding)
        assert not result.success
        assert result.error_code == "not_found"

    def test_unknown_request(self, gateway: ComplianceGateway) -> None:
        result = gateway.review_redemption("liq_missing", "approve")
        assert result.error_code == "not_found"


class TestReserveReporting:
    def test_low_reserve_warns(
        self, gateway: ComplianceGateway, caplog: pytest.LogCaptureFixture,
    ) -> None:
        with caplog.at_level(logging.WARNING, logger="liquidity_gate.service"):
            result = gateway.reserve_status("OFF-1", Decimal("1000000"))
        assert result.data["is_low"] is True
        assert result.data["target"] == "50000.00"
        assert "Reserve for OFF-1 is low" in caplog.text

    def test_healthy_reserve(self, gateway: ComplianceGateway) -> None:
        result = gateway.reserve_status("OFF-1", Decimal("100000"))
        assert result.data["is_low"] is False


class TestSecondaryMarket:
    def test_buy_listing_hands_settlement_to_transfer(
        self,
        gateway: ComplianceGateway,
        transfer: InMemoryOwnershipTransfer,
        entity_store: InMemoryEntityStore,
    ) -> None:
        created = gateway.create_listing("seller-1", "OFF-1", 50, Decimal("12"), Decimal("10"))
        assert created.data["price_change_percent"] == "20.00"
        listing_id = created.data["listing_id"]

        result = gateway.buy_listing(listing_id, "buyer-1", 50)
        assert result.success
        assert result.data["total"] == "600"
        assert len(transfer.settlements) == 1
        assert transfer.settlements[0].buyer_id == "buyer-1"
        assert entity_store.get("secondary_listing", listing_id)["status"] == "sold"

    def test_failed_purchase_skips_transfer(
        self, gateway: ComplianceGateway, transfer: InMemoryOwnershipTransfer,
    ) -> None:
        listing_id = gateway.create_listing(
            "seller-1", "OFF-1", 50, Decimal("12"), Decimal("10"),
        ).data["listing_id"]
        result = gateway.buy_listing(listing_id, "buyer-1", 10)
        assert result.error_code == "validation_error"
        assert transfer.settlements == []

    def test_failing_transfer_leaves_listing_active(
        self, resolver: PolicyResolver, entity_store: InMemoryEntityStore,
    ) -> None:
        gw = ComplianceGateway(
            resolver, entity_store=entity_store, ownership_transfer=FailingTransfer(),
        )
        listing_id = gw.create_listing(
            "seller-1", "OFF-1", 50, Decimal("12"), Decimal("10"),
        ).data["listing_id"]

        result = gw.buy_listing(listing_id, "buyer-1", 50)
        assert not result.success
        assert result.error_code == "transfer_failed"
        assert "transfer agent down" in result.errors[0]

        listing = gw.listings.get_listing(listing_id)
        assert listing.status.value == "active"
        assert listing.buyer_id is None
        assert listing.sold_utc is None
        assert entity_store.get("secondary_listing", listing_id)["status"] == "active"

        retry = ComplianceGateway(resolver, ownership_transfer=InMemoryOwnershipTransfer())
        retry.listings.restore(listing)
        assert retry.buy_listing(listing_id, "buyer-1", 50).success

    def test_sweep_and_summary(self, gateway: ComplianceGateway) -> None:
        gateway.create_listing(
            "s1", "OFF-1", 10, Decimal("9"), Decimal("10"),
            expires_at=_now() - timedelta(days=1),
        )
        gateway.create_listing("s2", "OFF-1", 10, Decimal("11"), Decimal("10"))

        swept = gateway.sweep_expired_listings(now=_now())
        assert swept.data["count"] == 1
        assert gateway.sweep_expired_listings(now=_now()).data["count"] == 0

        summary = gateway.market_summary("OFF-1")
        assert summary.data["total_listings"] == 1
        assert summary.data["lowest_ask"] == "11"

    def test_cancel_listing_by_non_seller(self, gateway: ComplianceGateway) -> None:
        listing_id = gateway.create_listing(
            "seller-1", "OFF-1", 5, Decimal("10"), Decimal("10"),
        ).data["listing_id"]
        result = gateway.cancel_listing(listing_id, actor_id="intruder")
        assert result.error_code == "validation_error"


class TestStatusAndRecovery:
    def test_status_counts(self, gateway: ComplianceGateway) -> None:
        gateway.request_redemption(_make_holding())
        gateway.create_listing("seller-1", "OFF-1", 5, Decimal("10"), Decimal("10"))
        status = gateway.status()
        assert status["requests"] == {"total": 1, "by_status": {"pending": 1}}
        assert status["listings"]["by_status"] == {"active": 1}
        assert status["persistence"] is True

    def test_restore_from_jsonl_store(self, resolver: PolicyResolver, tmp_path: Path) -> None:
        path = tmp_path / "entities.jsonl"
        first = ComplianceGateway(resolver, entity_store=JsonlEntityStore(path))
        first.register_program(resolver.default_settings("OFF-1", Decimal("5000")))
        request_id = first.request_redemption(_make_holding(), now=_now()).data["request_id"]
        first.review_redemption(request_id, "approve", now=_now())
        first.create_listing("seller-1", "OFF-1", 5, Decimal("10"), Decimal("10"), now=_now())

        second = ComplianceGateway(resolver, entity_store=JsonlEntityStore(path))
        restored = second.restore_from_store()
        assert restored.data == {"settings": 1, "requests": 1, "listings": 1}
        assert second.engine.ledger("OFF-1").balance == Decimal("4070.00")
        assert second.engine.get_request(request_id).status.value == "approved"

        fresh = second.request_redemption(_make_holding("inv-2"), now=_now())
        assert fresh.data["request_number"] == "LIQ-2026-0002"

    def test_persistence_failure_is_a_warning(self, resolver: PolicyResolver) -> None:
        gw = ComplianceGateway(resolver, entity_store=FailingStore())
        result = gw.register_program(resolver.default_settings("OFF-1", Decimal("5000")))
        assert result.success
        assert "disk full" in result.data["warning"]

        submitted = gw.request_redemption(_make_holding())
        assert submitted.success
        assert "Persistence failed" in submitted.data["warning"]
