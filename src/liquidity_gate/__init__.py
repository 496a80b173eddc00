"""Investor compliance gate and liquidity redemption engine."""

__version__ = "0.1.0"
