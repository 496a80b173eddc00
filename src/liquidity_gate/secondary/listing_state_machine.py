"""Listing state machine — enforces valid secondary listing transitions.

Listing lifecycle:
    ACTIVE → SOLD       (buyer purchased the full listed quantity)
    ACTIVE → CANCELLED  (seller withdrew the listing)
    ACTIVE → EXPIRED    (expiry sweep passed expires_at)

SOLD, CANCELLED and EXPIRED are terminal. There are no implicit
transitions.
"""

from __future__ import annotations

from liquidity_gate.errors import InvalidStateTransitionError
from liquidity_gate.models.secondary import (
    LISTING_TRANSITIONS,
    ListingStatus,
    SecondaryListing,
)


class ListingStateMachine:
    """Validates and applies listing status transitions.

    Pure computation: timestamps and persistence are handled by the
    listing manager.
    """

    @staticmethod
    def validate_transition(
        listing: SecondaryListing,
        target: ListingStatus,
    ) -> list[str]:
        """Check if a transition is valid. Returns errors (empty = OK)."""
        current = listing.status
        allowed = LISTING_TRANSITIONS.get(current, frozenset())

        if target not in allowed:
            allowed_str = ", ".join(s.value for s in sorted(allowed, key=lambda x: x.value))
            return [
                f"Invalid listing transition for {listing.listing_id}: "
                f"{current.value} → {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            ]
        return []

    @staticmethod
    def apply_transition(listing: SecondaryListing, target: ListingStatus) -> None:
        """Validate and apply a transition, mutating listing.status.

        Raises InvalidStateTransitionError and leaves the listing untouched
        when the transition is not allowed.
        """
        errors = ListingStateMachine.validate_transition(listing, target)
        if errors:
            raise InvalidStateTransitionError(errors[0])
        listing.status = target

    @staticmethod
    def is_terminal(status: ListingStatus) -> bool:
        """Check if a status is terminal (no further transitions)."""
        return status in (ListingStatus.SOLD, ListingStatus.CANCELLED, ListingStatus.EXPIRED)

    @staticmethod
    def valid_transitions(status: ListingStatus) -> set[ListingStatus]:
        """Return the set of valid target statuses from the given status."""
        return set(LISTING_TRANSITIONS.get(status, frozenset()))
