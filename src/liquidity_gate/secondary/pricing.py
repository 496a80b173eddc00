"""Pricing policy for secondary listings.

Price change is measured against the token's original issue price:

    price_change_percent = (price_per_token − original) / original × 100

Settlement is all-or-nothing against the listed quantity:

    total = quantity × price_per_token

The market summary aggregates asks over active listings only; the
average is weighted by token quantity.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional

from liquidity_gate.errors import ValidationError
from liquidity_gate.models.secondary import (
    ListingStatus,
    SecondaryListing,
    SecondaryMarketSummary,
    price_change_percent,
)
from liquidity_gate.models.values import ZERO, quantize_money, to_decimal


class PricingPolicy:
    """Pure price computations for the secondary market."""

    @staticmethod
    def validate_listing_terms(
        quantity: int,
        price_per_token: Decimal,
        original_token_price: Decimal,
    ) -> list[str]:
        """Return validation errors for proposed listing terms (empty = OK)."""
        errors: list[str] = []
        if quantity <= 0:
            errors.append(f"Listing quantity must be positive, got {quantity}")
        if to_decimal(price_per_token) <= ZERO:
            errors.append(f"price_per_token must be positive, got {price_per_token}")
        if to_decimal(original_token_price) <= ZERO:
            errors.append(f"original_token_price must be positive, got {original_token_price}")
        return errors

    @staticmethod
    def price_change_percent(price_per_token: Decimal, original_token_price: Decimal) -> Decimal:
        return price_change_percent(to_decimal(price_per_token), to_decimal(original_token_price))

    @staticmethod
    def settlement_amount(quantity: int, price_per_token: Decimal) -> Decimal:
        if quantity <= 0:
            raise ValidationError(f"Purchase quantity must be positive, got {quantity}")
        return to_decimal(price_per_token) * quantity

    @staticmethod
    def summarize(
        listings: Iterable[SecondaryListing],
        offering_id: Optional[str] = None,
    ) -> SecondaryMarketSummary:
        """Aggregate asks over active listings. Zeroed summary when none."""
        active = [
            l for l in listings
            if l.status == ListingStatus.ACTIVE
            and (offering_id is None or l.offering_id == offering_id)
        ]
        if not active:
            return SecondaryMarketSummary()

        prices = [l.price_per_token for l in active]
        total_tokens = sum(l.quantity for l in active)
        total_value = sum((l.total_price for l in active), ZERO)
        return SecondaryMarketSummary(
            lowest_ask=min(prices),
            highest_ask=max(prices),
            average_price=quantize_money(total_value / total_tokens),
            total_listings=len(active),
            total_tokens_listed=total_tokens,
        )
