"""Liquidity program — fee schedules, reserve ledger, redemption requests."""

from liquidity_gate.liquidity.engine import LiquidityRequestEngine
from liquidity_gate.liquidity.fee_schedule import FeeScheduleResolver
from liquidity_gate.liquidity.request_state_machine import RequestStateMachine
from liquidity_gate.liquidity.reserve import ReserveLedger, ReserveLedgerBook

__all__ = [
    "FeeScheduleResolver",
    "LiquidityRequestEngine",
    "RequestStateMachine",
    "ReserveLedger",
    "ReserveLedgerBook",
]
