"""Secondary listing manager — peer-to-peer resale of issued tokens.

Sellers list tokens at a price of their choosing; the price change against
the original token price is derived and published with the listing. A
purchase takes the whole listing (no partial fills) and produces a
PurchaseSettlement for the ownership-transfer collaborator to execute.
The manager never moves tokens or cash itself; a transfer that fails
before the sale is recorded leaves the listing active.

The expiry sweep is idempotent: it only ever moves ACTIVE listings past
their expiry to EXPIRED, and it takes each offering's lock, so a listing
claimed by a purchase or cancellation is never also expired.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional
from uuid import uuid4

from liquidity_gate.coordination import OfferingLocks
from liquidity_gate.errors import NotFoundError, ValidationError
from liquidity_gate.models.secondary import (
    ListingStatus,
    PurchaseSettlement,
    SecondaryListing,
    SecondaryMarketSummary,
)
from liquidity_gate.models.values import as_utc, format_number, parse_number, to_decimal
from liquidity_gate.policy.resolver import PolicyResolver
from liquidity_gate.secondary.listing_state_machine import ListingStateMachine
from liquidity_gate.secondary.pricing import PricingPolicy

logger = logging.getLogger(__name__)


def _utc_now(now: Optional[datetime]) -> datetime:
    return datetime.now(timezone.utc) if now is None else as_utc(now)


class SecondaryListingManager:
    """Manages secondary listings for all offerings.

    Usage:
        manager = SecondaryListingManager()
        listing = manager.create_listing("seller-1", "off-1", 50, Decimal("12"), Decimal("10"))
        settlement = manager.execute_purchase(
            listing.listing_id, "buyer-1", 50, settle=transfer_agent.transfer,
        )
    """

    def __init__(
        self,
        resolver: Optional[PolicyResolver] = None,
        locks: Optional[OfferingLocks] = None,
    ) -> None:
        self._resolver = resolver or PolicyResolver.defaults()
        self._locks = locks or OfferingLocks()
        self._listings: Dict[str, SecondaryListing] = {}
        self._sequence: Dict[int, int] = {}
        self._sequence_lock = threading.Lock()

    def create_listing(
        self,
        seller_id: str,
        offering_id: str,
        quantity: int,
        price_per_token: Decimal,
        original_token_price: Decimal,
        expires_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
        listing_id: Optional[str] = None,
        token_holding_id: Optional[str] = None,
    ) -> SecondaryListing:
        """Create an ACTIVE listing. Raises ValidationError on bad terms."""
        errors = PricingPolicy.validate_listing_terms(quantity, price_per_token, original_token_price)
        if errors:
            raise ValidationError("; ".join(errors))
        now = _utc_now(now)

        with self._locks.serialized(offering_id):
            if listing_id is None:
                listing_id = f"lst_{uuid4().hex[:12]}"
            if listing_id in self._listings:
                raise ValidationError(f"Listing ID already exists: {listing_id}")
            listing = SecondaryListing(
                listing_id=listing_id,
                listing_number=self._next_number(now.year),
                seller_id=seller_id,
                offering_id=offering_id,
                quantity=quantity,
                price_per_token=to_decimal(price_per_token),
                original_token_price=to_decimal(original_token_price),
                listed_utc=now,
                expires_at=expires_at,
                token_holding_id=token_holding_id,
            )
            self._listings[listing_id] = listing

        logger.info(
            "Listing %s created by %s: %s tokens of %s at %s (%s%%)",
            listing.listing_number, seller_id, quantity, offering_id,
            listing.price_per_token, listing.price_change_percent,
        )
        return listing

    def cancel_listing(
        self,
        listing_id: str,
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SecondaryListing:
        """ACTIVE → CANCELLED. Only the seller may cancel when actor_id is given."""
        now = _utc_now(now)
        listing = self.get_listing(listing_id)
        if actor_id is not None and actor_id != listing.seller_id:
            raise ValidationError(
                f"{actor_id} cannot cancel listing {listing.listing_number} "
                f"owned by {listing.seller_id}"
            )
        with self._locks.serialized(listing.offering_id):
            ListingStateMachine.apply_transition(listing, ListingStatus.CANCELLED)
            listing.cancelled_utc = now
        logger.info("Listing %s cancelled", listing.listing_number)
        return listing

    def expire_sweep(
        self,
        now: Optional[datetime] = None,
        offering_id: Optional[str] = None,
    ) -> List[SecondaryListing]:
        """Expire every ACTIVE listing whose expires_at ≤ now.

        Returns only the listings expired by this pass; a second pass with
        the same ``now`` returns an empty list and changes nothing.
        """
        now = _utc_now(now)
        offerings = {l.offering_id for l in self._listings.values()}
        if offering_id is not None:
            offerings &= {offering_id}

        expired: List[SecondaryListing] = []
        for oid in sorted(offerings):
            with self._locks.serialized(oid):
                for listing in self._listings.values():
                    if (
                        listing.offering_id == oid
                        and listing.status == ListingStatus.ACTIVE
                        and listing.is_past_expiry(now)
                    ):
                        ListingStateMachine.apply_transition(listing, ListingStatus.EXPIRED)
                        listing.expired_utc = now
                        expired.append(listing)
        if expired:
            logger.info("Expiry sweep expired %d listing(s)", len(expired))
        return expired

    def execute_purchase(
        self,
        listing_id: str,
        buyer_id: str,
        quantity: int,
        now: Optional[datetime] = None,
        settle: Optional[Callable[[PurchaseSettlement], None]] = None,
    ) -> PurchaseSettlement:
        """Buy the whole listing; ACTIVE → SOLD.

        Raises ValidationError (listing unchanged) when the listing is not
        active or has expired, when quantity is not exactly the listed
        quantity, or when the buyer is the seller.

        ``settle`` is called with the settlement after every check has
        passed and before the listing is marked SOLD, under the offering's
        lock. If it raises, the error propagates and the listing is left
        ACTIVE.
        """
        now = _utc_now(now)
        listing = self.get_listing(listing_id)
        with self._locks.serialized(listing.offering_id):
            if listing.status != ListingStatus.ACTIVE:
                raise ValidationError(
                    f"Listing {listing.listing_number} is {listing.status.value}, not active"
                )
            if listing.is_past_expiry(now):
                raise ValidationError(f"Listing {listing.listing_number} has expired")
            if quantity <= 0:
                raise ValidationError(f"Purchase quantity must be positive, got {quantity}")
            if quantity > listing.quantity:
                raise ValidationError(
                    f"Cannot buy {quantity} tokens; listing offers {listing.quantity}"
                )
            if quantity != listing.quantity:
                raise ValidationError(
                    f"Partial purchases are not supported; listing requires {listing.quantity}"
                )
            if buyer_id == listing.seller_id:
                raise ValidationError("Sellers cannot buy their own listing")

            settlement = PurchaseSettlement(
                listing_id=listing.listing_id,
                offering_id=listing.offering_id,
                seller_id=listing.seller_id,
                buyer_id=buyer_id,
                quantity=quantity,
                price_per_token=listing.price_per_token,
                total=PricingPolicy.settlement_amount(quantity, listing.price_per_token),
                settled_utc=now,
            )
            if settle is not None:
                settle(settlement)
            ListingStateMachine.apply_transition(listing, ListingStatus.SOLD)
            listing.buyer_id = buyer_id
            listing.sold_utc = now

        logger.info(
            "Listing %s sold to %s for %s", listing.listing_number, buyer_id, settlement.total,
        )
        return settlement

    def summarize(
        self,
        listings: Optional[Iterable[SecondaryListing]] = None,
        offering_id: Optional[str] = None,
    ) -> SecondaryMarketSummary:
        """Market summary over ``listings`` (default: all managed listings)."""
        source = self._listings.values() if listings is None else listings
        return PricingPolicy.summarize(source, offering_id)

    def get_listing(self, listing_id: str) -> SecondaryListing:
        listing = self._listings.get(listing_id)
        if listing is None:
            raise NotFoundError(f"Unknown listing: {listing_id}")
        return listing

    def listings(
        self,
        offering_id: Optional[str] = None,
        status: Optional[ListingStatus] = None,
    ) -> List[SecondaryListing]:
        """Listings, optionally filtered; ordered by ascending price like an order book."""
        result = list(self._listings.values())
        if offering_id is not None:
            result = [l for l in result if l.offering_id == offering_id]
        if status is not None:
            result = [l for l in result if l.status == status]
        return sorted(result, key=lambda l: l.price_per_token)

    def restore(self, listing: SecondaryListing) -> None:
        """Re-attach a persisted listing."""
        with self._locks.serialized(listing.offering_id):
            if listing.listing_id in self._listings:
                raise ValidationError(f"Listing ID already exists: {listing.listing_id}")
            self._listings[listing.listing_id] = listing
            parsed = parse_number(listing.listing_number)
            if parsed is not None:
                year, seq = parsed
                with self._sequence_lock:
                    self._sequence[year] = max(self._sequence.get(year, 0), seq)

    def _next_number(self, year: int) -> str:
        with self._sequence_lock:
            seq = self._sequence.get(year, 0) + 1
            self._sequence[year] = seq
        return format_number(self._resolver.listing_number_prefix, year, seq)
