"""Program policy and defaults."""

from liquidity_gate.policy.resolver import PolicyResolver

__all__ = ["PolicyResolver"]
