"""Tests for the liquidity request state machine."""

from decimal import Decimal

import pytest

from liquidity_gate.errors import InvalidStateTransitionError
from liquidity_gate.liquidity.request_state_machine import RequestStateMachine
from liquidity_gate.models.liquidity import FeeTier, LiquidityRequest, RequestStatus


def _make_request(status: RequestStatus = RequestStatus.PENDING) -> LiquidityRequest:
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
        status=status,
    )


class TestValidTransitions:
    @pytest.mark.parametrize("current,target", [
        (RequestStatus.PENDING, RequestStatus.APPROVED),
        (RequestStatus.PENDING, RequestStatus.DENIED),
        (RequestStatus.PENDING, RequestStatus.CANCELLED),
        (RequestStatus.APPROVED, RequestStatus.PROCESSING),
        (RequestStatus.APPROVED, RequestStatus.CANCELLED),
        (RequestStatus.PROCESSING, RequestStatus.COMPLETED),
    ])
    def test_allowed(self, current: RequestStatus, target: RequestStatus) -> None:
        errors = RequestStateMachine.validate_transition(_make_request(current), target)
        assert errors == []


class TestInvalidTransitions:
    def test_pending_cannot_skip_to_completed(self) -> None:
        errors = RequestStateMachine.validate_transition(
            _make_request(), RequestStatus.COMPLETED,
        )
        assert len(errors) == 1
        assert "Invalid request transition" in errors[0]

    def test_processing_cannot_be_cancelled(self) -> None:
        errors = RequestStateMachine.validate_transition(
            _make_request(RequestStatus.PROCESSING), RequestStatus.CANCELLED,
        )
        assert len(errors) == 1

    def test_terminal_states_accept_nothing(self) -> None:
        for terminal in (RequestStatus.COMPLETED, RequestStatus.DENIED, RequestStatus.CANCELLED):
            request = _make_request(terminal)
            for target in RequestStatus:
                assert RequestStateMachine.validate_transition(request, target), (
                    f"{terminal.value} → {target.value} should be rejected"
                )

    def test_apply_invalid_raises_and_leaves_status(self) -> None:
        request = _make_request(RequestStatus.DENIED)
        with pytest.raises(InvalidStateTransitionError, match="denied → approved"):
            RequestStateMachine.apply_transition(request, RequestStatus.APPROVED)
        assert request.status == RequestStatus.DENIED


class TestHelpers:
    def test_apply_valid(self) -> None:
        request = _make_request()
        RequestStateMachine.apply_transition(request, RequestStatus.APPROVED)
        assert request.status == RequestStatus.APPROVED

    def test_is_terminal(self) -> None:
        assert RequestStateMachine.is_terminal(RequestStatus.COMPLETED)
        assert RequestStateMachine.is_terminal(RequestStatus.DENIED)
        assert RequestStateMachine.is_terminal(RequestStatus.CANCELLED)
        assert not RequestStateMachine.is_terminal(RequestStatus.PENDING)
        assert not RequestStateMachine.is_terminal(RequestStatus.PROCESSING)

    def test_valid_transitions(self) -> None:
        assert RequestStateMachine.valid_transitions(RequestStatus.APPROVED) == {
            RequestStatus.PROCESSING, RequestStatus.CANCELLED,
        }
        assert RequestStateMachine.valid_transitions(RequestStatus.COMPLETED) == set()
