"""Request state machine — enforces valid liquidity request transitions.

Request lifecycle:
    PENDING → APPROVED → PROCESSING → COMPLETED
    PENDING → DENIED
    PENDING → CANCELLED
    APPROVED → CANCELLED

State semantics:
- PENDING: submitted by the investor, awaiting review.
- APPROVED: reserve capacity held for the net payout.
- PROCESSING: payout being executed.
- COMPLETED: terminal — payout made, counted toward the monthly cap.
- DENIED: terminal — rejected by a reviewer or by reserve/cap limits.
- CANCELLED: terminal — withdrawn; any held reserve is returned.

Fail-closed: any transition not listed raises. There are no implicit
transitions.
"""

from __future__ import annotations

from liquidity_gate.errors import InvalidStateTransitionError
from liquidity_gate.models.liquidity import (
    REQUEST_TRANSITIONS,
    LiquidityRequest,
    RequestStatus,
)


class RequestStateMachine:
    """Validates and applies request status transitions.

    Pure computation: side effects (reserve, timestamps, persistence) are
    handled by the engine.
    """

    @staticmethod
    def validate_transition(
        request: LiquidityRequest,
        target: RequestStatus,
    ) -> list[str]:
        """Check if a transition is valid. Returns errors (empty = OK)."""
        current = request.status
        allowed = REQUEST_TRANSITIONS.get(current, frozenset())

        if target not in allowed:
            allowed_str = ", ".join(s.value for s in sorted(allowed, key=lambda x: x.value))
            return [
                f"Invalid request transition for {request.request_id}: "
                f"{current.value} → {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            ]
        return []

    @staticmethod
    def require_transition(request: LiquidityRequest, target: RequestStatus) -> None:
        """Raise InvalidStateTransitionError if the transition is not allowed."""
        errors = RequestStateMachine.validate_transition(request, target)
        if errors:
            raise InvalidStateTransitionError(errors[0])

    @staticmethod
    def apply_transition(request: LiquidityRequest, target: RequestStatus) -> None:
        """Validate and apply a transition, mutating request.status."""
        RequestStateMachine.require_transition(request, target)
        request.status = target

    @staticmethod
    def is_terminal(status: RequestStatus) -> bool:
        """Check if a status is terminal (no further transitions)."""
        return not REQUEST_TRANSITIONS.get(status)

    @staticmethod
    def valid_transitions(status: RequestStatus) -> set[RequestStatus]:
        """Return the set of valid target statuses from the given status."""
        return set(REQUEST_TRANSITIONS.get(status, frozenset()))
