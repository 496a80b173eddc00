"""Investor eligibility gate."""

from liquidity_gate.eligibility.evaluator import EligibilityEvaluator

__all__ = ["EligibilityEvaluator"]
