"""Tests for the secondary listing manager — pricing, expiry and purchase."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from liquidity_gate.errors import InvalidStateTransitionError, NotFoundError, ValidationError
from liquidity_gate.models.secondary import ListingStatus, SecondaryListing, SecondaryMarketSummary
from liquidity_gate.secondary.manager import SecondaryListingManager
from liquidity_gate.secondary.pricing import PricingPolicy


def _now() -> datetime:
    return datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def manager() -> SecondaryListingManager:
    return SecondaryListingManager()


def _list(
    manager: SecondaryListingManager,
    price: str = "12",
    quantity: int = 50,
    seller: str = "seller-1",
    offering: str = "OFF-1",
    expires_at: datetime | None = None,
):
    return manager.create_listing(
        seller, offering, quantity, Decimal(price), Decimal("10"),
        expires_at=expires_at, now=_now(),
    )


class TestCreate:
    def test_price_change_against_original(self, manager: SecondaryListingManager) -> None:
        listing = _list(manager, price="12")
        assert listing.price_change_percent == Decimal("20.0")
        assert listing.status == ListingStatus.ACTIVE
        assert listing.listing_number == "LST-2026-0001"
        assert listing.listed_utc == _now()

    def test_discount_listing(self, manager: SecondaryListingManager) -> None:
        assert _list(manager, price="8").price_change_percent == Decimal("-20.00")

    @pytest.mark.parametrize("quantity,price,original", [
        (0, "12", "10"),
        (5, "0", "10"),
        (5, "12", "-1"),
    ])
    def test_invalid_terms_rejected(
        self, manager: SecondaryListingManager, quantity: int, price: str, original: str,
    ) -> None:
        with pytest.raises(ValidationError, match="must be positive"):
            manager.create_listing("s", "OFF-1", quantity, Decimal(price), Decimal(original))
        assert manager.listings() == []

    def test_past_expiry_allowed_at_creation(self, manager: SecondaryListingManager) -> None:
        listing = _list(manager, expires_at=_now() - timedelta(days=1))
        assert listing.status == ListingStatus.ACTIVE


class TestCancel:
    def test_seller_cancels(self, manager: SecondaryListingManager) -> None:
        listing = _list(manager)
        manager.cancel_listing(listing.listing_id, actor_id="seller-1", now=_now())
        assert listing.status == ListingStatus.CANCELLED
        assert listing.cancelled_utc == _now()

    def test_other_actor_cannot_cancel(self, manager: SecondaryListingManager) -> None:
        listing = _list(manager)
        with pytest.raises(ValidationError, match="cannot cancel"):
            manager.cancel_listing(listing.listing_id, actor_id="someone-else")
        assert listing.status == ListingStatus.ACTIVE

    def test_cancel_twice_rejected(self, manager: SecondaryListingManager) -> None:
        listing = _list(manager)
        manager.cancel_listing(listing.listing_id)
        with pytest.raises(InvalidStateTransitionError):
            manager.cancel_listing(listing.listing_id)

    def test_unknown_listing(self, manager: SecondaryListingManager) -> None:
        with pytest.raises(NotFoundError):
            manager.cancel_listing("lst_missing")


class TestExpireSweep:
    def test_expires_only_due_active_listings(self, manager: SecondaryListingManager) -> None:
        due = _list(manager, expires_at=_now() - timedelta(hours=1))
        at_boundary = _list(manager, expires_at=_now())
        later = _list(manager, expires_at=_now() + timedelta(days=3))
        forever = _list(manager)

        expired = manager.expire_sweep(_now())
        assert {l.listing_id for l in expired} == {due.listing_id, at_boundary.listing_id}
        assert due.status == ListingStatus.EXPIRED
        assert due.expired_utc == _now()
        assert later.status == ListingStatus.ACTIVE
        assert forever.status == ListingStatus.ACTIVE

    def test_sweep_is_idempotent(self, manager: SecondaryListingManager) -> None:
        listing = _list(manager, expires_at=_now() - timedelta(hours=1))
        assert len(manager.expire_sweep(_now())) == 1
        assert manager.expire_sweep(_now()) == []
        assert listing.status == ListingStatus.EXPIRED
        assert listing.expired_utc == _now()

    def test_sold_listing_is_not_expired(self, manager: SecondaryListingManager) -> None:
        listing = _list(manager, expires_at=_now() + timedelta(hours=1))
        manager.execute_purchase(listing.listing_id, "buyer-1", 50, now=_now())
        assert manager.expire_sweep(_now() + timedelta(days=1)) == []
        assert listing.status == ListingStatus.SOLD

    def test_offering_filter(self, manager: SecondaryListingManager) -> None:
        past = _now() - timedelta(hours=1)
        mine = _list(manager, offering="OFF-1", expires_at=past)
        other = _list(manager, offering="OFF-2", expires_at=past)
        assert manager.expire_sweep(_now(), offering_id="OFF-1") == [mine]
        assert other.status == ListingStatus.ACTIVE


class TestPurchase:
    def test_buy_whole_listing(self, manager: SecondaryListingManager) -> None:
        listing = _list(manager, price="12", quantity=50)
        settlement = manager.execute_purchase(listing.listing_id, "buyer-1", 50, now=_now())
        assert settlement.total == Decimal("600")
        assert settlement.seller_id == "seller-1"
        assert settlement.buyer_id == "buyer-1"
        assert settlement.settled_utc == _now()
        assert listing.status == ListingStatus.SOLD
        assert listing.buyer_id == "buyer-1"
        assert listing.sold_utc == _now()

    def test_partial_purchase_rejected(self, manager: SecondaryListingManager) -> None:
        listing = _list(manager, quantity=50)
        with pytest.raises(ValidationError, match="Partial purchases"):
            manager.execute_purchase(listing.listing_id, "buyer-1", 20)
        assert listing.status == ListingStatus.ACTIVE

    def test_quantity_above_listing_rejected(self, manager: SecondaryListingManager) -> None:
        listing = _list(manager, quantity=50)
        with pytest.raises(ValidationError, match="listing offers 50"):
            manager.execute_purchase(listing.listing_id, "buyer-1", 51)

    def test_seller_cannot_buy_own_listing(self, manager: SecondaryListingManager) -> None:
        listing = _list(manager)
        with pytest.raises(ValidationError, match="own listing"):
            manager.execute_purchase(listing.listing_id, "seller-1", 50)
        assert listing.status == ListingStatus.ACTIVE

    def test_cancelled_listing_cannot_be_bought(self, manager: SecondaryListingManager) -> None:
        listing = _list(manager)
        manager.cancel_listing(listing.listing_id)
        with pytest.raises(ValidationError, match="not active"):
            manager.execute_purchase(listing.listing_id, "buyer-1", 50)

    def test_listing_past_expiry_cannot_be_bought(
        self, manager: SecondaryListingManager,
    ) -> None:
        listing = _list(manager, expires_at=_now() - timedelta(minutes=1))
        with pytest.raises(ValidationError, match="expired"):
            manager.execute_purchase(listing.listing_id, "buyer-1", 50, now=_now())
        assert listing.status == ListingStatus.ACTIVE


class TestNaiveTimestamps:
    def test_naive_expiry_is_read_as_utc(self, manager: SecondaryListingManager) -> None:
        listing = _list(manager, expires_at=datetime(2030, 1, 1))
        assert listing.expires_at == datetime(2030, 1, 1, tzinfo=timezone.utc)

    def test_purchase_with_naive_expiry(self, manager: SecondaryListingManager) -> None:
        listing = _list(manager, expires_at=datetime(2030, 1, 1))
        settlement = manager.execute_purchase(listing.listing_id, "buyer-1", 50)
        assert settlement.total == Decimal("600")
        assert listing.status == ListingStatus.SOLD

    def test_sweep_with_naive_expiry_and_now(self, manager: SecondaryListingManager) -> None:
        due = _list(manager, expires_at=datetime(2026, 2, 1))
        later = _list(manager, expires_at=_now() + timedelta(days=1))
        assert manager.expire_sweep(datetime(2026, 2, 16, 12, 0, 0)) == [due]
        assert later.status == ListingStatus.ACTIVE
        assert manager.expire_sweep(_now() + timedelta(days=2)) == [later]

    def test_stored_expiry_without_offset(self, manager: SecondaryListingManager) -> None:
        record = _list(manager).to_dict()
        record["listing_id"] = "lst-restored"
        record["expires_at"] = "2026-01-01T00:00:00"
        restored = SecondaryListing.from_dict(record)
        assert restored.expires_at == datetime(2026, 1, 1, tzinfo=timezone.utc)
        manager.restore(restored)
        with pytest.raises(ValidationError, match="expired"):
            manager.execute_purchase("lst-restored", "buyer-1", 50)


class TestSummary:
    def test_aggregates_active_listings_only(self, manager: SecondaryListingManager) -> None:
        _list(manager, price="12", quantity=10)
        _list(manager, price="8", quantity=30)
        sold = _list(manager, price="50", quantity=5)
        manager.execute_purchase(sold.listing_id, "buyer-1", 5, now=_now())

        summary = manager.summarize(offering_id="OFF-1")
        assert summary.lowest_ask == Decimal("8")
        assert summary.highest_ask == Decimal("12")
        assert summary.average_price == Decimal("9.00")
        assert summary.total_listings == 2
        assert summary.total_tokens_listed == 40

    def test_empty_summary_is_zeroed(self, manager: SecondaryListingManager) -> None:
        assert manager.summarize(offering_id="OFF-1") == SecondaryMarketSummary()

    def test_explicit_listing_collection(self, manager: SecondaryListingManager) -> None:
        a = _list(manager, price="11")
        _list(manager, price="14")
        summary = PricingPolicy.summarize([a])
        assert summary.total_listings == 1
        assert summary.average_price == Decimal("11.00")

    def test_listings_ordered_by_price(self, manager: SecondaryListingManager) -> None:
        _list(manager, price="15")
        _list(manager, price="9")
        _list(manager, price="12")
        prices = [l.price_per_token for l in manager.listings(status=ListingStatus.ACTIVE)]
        assert prices == [Decimal("9"), Decimal("12"), Decimal("15")]
