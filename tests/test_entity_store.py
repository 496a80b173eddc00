"""Tests for entity stores — snapshots, latest-wins loading and integrity checks."""

import json
from decimal import Decimal
from pathlib import Path

import pytest

from liquidity_gate.errors import NotFoundError, ValidationError
from liquidity_gate.models.liquidity import (
    FeeSchedule,
    FeeTier,
    LiquidityProgramSettings,
    LiquidityRequest,
    RequestStatus,
)
from liquidity_gate.models.secondary import SecondaryListing
from liquidity_gate.persistence.entity_store import JsonlEntityStore
from liquidity_gate.providers import InMemoryEntityStore, entity_key


def _make_request() -> LiquidityRequest:
    return LiquidityRequest(
        request_id="liq-001",
        request_number="LIQ-2026-0001",
        investor_id="inv-1",
        offering_id="OFF-1",
        quantity=100,
        token_value_at_request=Decimal("10"),
        holding_period_days=45,
        fee_tier_applied=FeeTier(30, 90, Decimal("3")),
        fee_percent_applied=Decimal("3"),
        gross_value=Decimal("1000"),
        fee_amount=Decimal("30.00"),
        net_payout=Decimal("970.00"),
    )


def _make_listing() -> SecondaryListing:
    return SecondaryListing(
        listing_id="lst-001",
        listing_number="LST-2026-0001",
        seller_id="seller-1",
        offering_id="OFF-1",
        quantity=10,
        price_per_token=Decimal("12"),
        original_token_price=Decimal("10"),
    )


def _make_settings() -> LiquidityProgramSettings:
    return LiquidityProgramSettings(
        offering_id="OFF-1",
        fee_schedule=FeeSchedule((FeeTier(0, None, "2"),)),
        reserve_balance=Decimal("5000"),
    )


class TestJsonlEntityStore:
    def test_latest_snapshot_wins(self, tmp_path: Path) -> None:
        store = JsonlEntityStore(tmp_path / "entities.jsonl")
        request = _make_request()
        store.save(request)
        request.status = RequestStatus.APPROVED
        request.reserved_amount = Decimal("970.00")
        store.save(request)

        assert store.count == 1
        assert store.history_count == 2
        assert store.get("liquidity_request", "liq-001")["status"] == "approved"

    def test_reload_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "entities.jsonl"
        store = JsonlEntityStore(path)
        store.save(_make_request())
        store.save(_make_listing())
        store.save(_make_settings())

        reloaded = JsonlEntityStore(path)
        entities = {entity_key(e): e for e in reloaded.load_all()}
        assert entities[("liquidity_request", "liq-001")] == _make_request()
        assert entities[("secondary_listing", "lst-001")] == _make_listing()
        assert entities[("liquidity_settings", "OFF-1")] == _make_settings()
        assert reloaded.ids("secondary_listing") == ["lst-001"]

    def test_tampered_line_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "entities.jsonl"
        JsonlEntityStore(path).save(_make_settings())

        record = json.loads(path.read_text().strip())
        record["payload"]["reserve_balance"] = "9999999"
        path.write_text(json.dumps(record) + "\n")

        with pytest.raises(ValidationError, match="Integrity check failed"):
            JsonlEntityStore(path)

    def test_unknown_kind_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "entities.jsonl"
        path.write_text(json.dumps({
            "kind": "mystery", "entity_id": "x", "saved_utc": "2026-01-01T00:00:00Z",
            "payload": {}, "record_hash": "sha256:0",
        }) + "\n")
        with pytest.raises(ValidationError, match="Unknown entity kind"):
            JsonlEntityStore(path)

    def test_get_missing(self, tmp_path: Path) -> None:
        with pytest.raises(NotFoundError):
            JsonlEntityStore(tmp_path / "e.jsonl").get("liquidity_request", "nope")

    def test_creates_parent_directory(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "data" / "entities.jsonl"
        JsonlEntityStore(path).save(_make_listing())
        assert path.exists()


class TestInMemoryEntityStore:
    def test_save_and_load(self) -> None:
        store = InMemoryEntityStore()
        store.save(_make_request())
        store.save(_make_listing())
        loaded = list(store.load_all())
        assert store.count == 2
        assert _make_request() in loaded
        assert _make_listing() in loaded

    def test_non_entity_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Not a persistable entity"):
            InMemoryEntityStore().save("not an entity")  # type: ignore[arg-type]
