"""Secondary market models — peer-to-peer resale listings.

Listing lifecycle: ACTIVE → SOLD / CANCELLED / EXPIRED (all terminal).
price_change_percent is derived from the two prices and cannot be set.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from liquidity_gate.errors import ValidationError
from liquidity_gate.models.values import (
    HUNDRED,
    PERCENT_QUANTUM,
    ZERO,
    as_utc,
    iso_or_none,
    parse_dt,
    to_decimal,
)


class ListingStatus(str, enum.Enum):
    """Lifecycle state of a secondary listing."""
    ACTIVE = "active"
    SOLD = "sold"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# Valid listing transitions
LISTING_TRANSITIONS: Dict[ListingStatus, frozenset] = {
    ListingStatus.ACTIVE: frozenset({
        ListingStatus.SOLD,
        ListingStatus.CANCELLED,
        ListingStatus.EXPIRED,
    }),
    # Terminal states: no outgoing transitions
    ListingStatus.SOLD: frozenset(),
    ListingStatus.CANCELLED: frozenset(),
    ListingStatus.EXPIRED: frozenset(),
}


def price_change_percent(price_per_token: Decimal, original_token_price: Decimal) -> Decimal:
    """(price − original) / original × 100, rounded to two places."""
    if original_token_price <= ZERO:
        raise ValidationError(
            f"original_token_price must be positive, got {original_token_price}"
        )
    change = (price_per_token - original_token_price) / original_token_price * HUNDRED
    return change.quantize(PERCENT_QUANTUM)


# Naive values in these fields are taken to be UTC
_TIMESTAMP_FIELDS = ("listed_utc", "expires_at", "sold_utc", "cancelled_utc", "expired_utc")


@dataclass
class SecondaryListing:
    """A seller's offer to resell previously issued tokens."""
    listing_id: str
    listing_number: str
    seller_id: str
    offering_id: str
    quantity: int
    price_per_token: Decimal
    original_token_price: Decimal
    status: ListingStatus = ListingStatus.ACTIVE
    listed_utc: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    sold_utc: Optional[datetime] = None
    buyer_id: Optional[str] = None
    cancelled_utc: Optional[datetime] = None
    expired_utc: Optional[datetime] = None
    token_holding_id: Optional[str] = None

    def __post_init__(self) -> None:
        self.price_per_token = to_decimal(self.price_per_token)
        self.original_token_price = to_decimal(self.original_token_price)
        for name in _TIMESTAMP_FIELDS:
            setattr(self, name, as_utc(getattr(self, name)))
        if self.quantity <= 0:
            raise ValidationError(f"Listing quantity must be positive, got {self.quantity}")
        if self.price_per_token <= ZERO:
            raise ValidationError(
                f"price_per_token must be positive, got {self.price_per_token}"
            )
        if self.original_token_price <= ZERO:
            raise ValidationError(
                f"original_token_price must be positive, got {self.original_token_price}"
            )

    @property
    def price_change_percent(self) -> Decimal:
        return price_change_percent(self.price_per_token, self.original_token_price)

    @property
    def total_price(self) -> Decimal:
        return self.price_per_token * self.quantity

    def is_past_expiry(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= as_utc(now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "listing_id": self.listing_id,
            "listing_number": self.listing_number,
            "seller_id": self.seller_id,
            "offering_id": self.offering_id,
            "quantity": self.quantity,
            "price_per_token": str(self.price_per_token),
            "original_token_price": str(self.original_token_price),
            "price_change_percent": str(self.price_change_percent),
            "status": self.status.value,
            "listed_utc": iso_or_none(self.listed_utc),
            "expires_at": iso_or_none(self.expires_at),
            "sold_utc": iso_or_none(self.sold_utc),
            "buyer_id": self.buyer_id,
            "cancelled_utc": iso_or_none(self.cancelled_utc),
            "expired_utc": iso_or_none(self.expired_utc),
            "token_holding_id": self.token_holding_id,
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> SecondaryListing:
        # price_change_percent is derived; a stored value is ignored.
        return SecondaryListing(
            listing_id=data["listing_id"],
            listing_number=data["listing_number"],
            seller_id=data["seller_id"],
            offering_id=data["offering_id"],
            quantity=int(data["quantity"]),
            price_per_token=to_decimal(data["price_per_token"]),
            original_token_price=to_decimal(data["original_token_price"]),
            status=ListingStatus(data["status"]),
            listed_utc=parse_dt(data.get("listed_utc")),
            expires_at=parse_dt(data.get("expires_at")),
            sold_utc=parse_dt(data.get("sold_utc")),
            buyer_id=data.get("buyer_id"),
            cancelled_utc=parse_dt(data.get("cancelled_utc")),
            expired_utc=parse_dt(data.get("expired_utc")),
            token_holding_id=data.get("token_holding_id"),
        )


@dataclass(frozen=True)
class PurchaseSettlement:
    """Settlement handed to the ownership-transfer collaborator."""
    listing_id: str
    offering_id: str
    seller_id: str
    buyer_id: str
    quantity: int
    price_per_token: Decimal
    total: Decimal
    settled_utc: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "listing_id": self.listing_id,
            "offering_id": self.offering_id,
            "seller_id": self.seller_id,
            "buyer_id": self.buyer_id,
            "quantity": self.quantity,
            "price_per_token": str(self.price_per_token),
            "total": str(self.total),
            "settled_utc": self.settled_utc.isoformat(),
        }


@dataclass(frozen=True)
class SecondaryMarketSummary:
    """Ask-side aggregates over an offering's active listings."""
    lowest_ask: Decimal = ZERO
    highest_ask: Decimal = ZERO
    average_price: Decimal = ZERO
    total_listings: int = 0
    total_tokens_listed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "lowest_ask": str(self.lowest_ask),
            "highest_ask": str(self.highest_ask),
            "average_price": str(self.average_price),
            "total_listings": self.total_listings,
            "total_tokens_listed": self.total_tokens_listed,
        }
