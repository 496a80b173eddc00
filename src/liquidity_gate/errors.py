"""Error taxonomy for the compliance gate and redemption engine.

Every error carries a stable machine-readable ``code`` so that callers
(and the gateway's result objects) can branch without parsing messages.

- ValidationError / NotFoundError: caller mistakes, surfaced as-is.
- IneligibleError: a compliance or holding-period gate failed.
- InsufficientReserveError / CapExceededError: raised by the reserve
  ledger. During review they are converted into a denied request.
- InvalidStateTransitionError: always fatal to the attempted call.
- TransferError: the ownership transfer for a purchase failed before the
  listing was sold.
"""

from __future__ import annotations


class LiquidityGateError(Exception):
    """Base class for all engine errors."""

    code = "liquidity_gate_error"


class ValidationError(LiquidityGateError, ValueError):
    """Malformed input: bad quantities, disabled program, bad schedule."""

    code = "validation_error"


class ScheduleError(ValidationError):
    """Fee schedule missing or not a partition of [0, inf)."""

    code = "schedule_error"


class IneligibleError(LiquidityGateError):
    """Compliance or holding-period gate failed."""

    code = "ineligible"


class InsufficientReserveError(LiquidityGateError):
    """Reservation would take the reserve balance below zero."""

    code = "insufficient_reserve"


class CapExceededError(LiquidityGateError):
    """Monthly redemption cap already reached."""

    code = "monthly_cap_exceeded"


class InvalidStateTransitionError(LiquidityGateError):
    """Transition not in the allowed set for the entity's lifecycle."""

    code = "invalid_state_transition"


class NotFoundError(LiquidityGateError, LookupError):
    """Unknown request, listing, offering, or investor."""

    code = "not_found"


class TransferError(LiquidityGateError):
    """The ownership-transfer collaborator failed; the listing stays active."""

    code = "transfer_failed"
