"""Secondary market — peer-to-peer resale listings.

Sellers list tokens, buyers take whole listings, and settlements are
handed to the ownership-transfer collaborator.
"""

from liquidity_gate.secondary.listing_state_machine import ListingStateMachine
from liquidity_gate.secondary.manager import SecondaryListingManager
from liquidity_gate.secondary.pricing import PricingPolicy

__all__ = ["ListingStateMachine", "PricingPolicy", "SecondaryListingManager"]
