"""Policy resolver — program defaults loaded from the config directory.

The config directory holds ``liquidity_policy.json``. Every value has a
built-in default, so ``PolicyResolver.defaults()`` works without a file;
the file only overrides what it names.

Sponsors configure their own LiquidityProgramSettings per offering. The
resolver fills in whatever a stored settings record leaves out.
"""

from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path
from typing import Any, Mapping, Optional

from liquidity_gate.errors import ValidationError
from liquidity_gate.models.liquidity import FeeSchedule, LiquidityProgramSettings
from liquidity_gate.models.values import ZERO, to_decimal

POLICY_FILENAME = "liquidity_policy.json"

_DEFAULT_POLICY: dict[str, Any] = {
    "liquidity_program": {
        "default_fee_tiers_months": [
            {"min_months": 0, "max_months": 12, "fee_percent": "10"},
            {"min_months": 12, "max_months": 24, "fee_percent": "7"},
            {"min_months": 24, "max_months": 36, "fee_percent": "5"},
            {"min_months": 36, "max_months": None, "fee_percent": "3"},
        ],
        "default_min_holding_days": 30,
        "default_reserve_percent": "5",
        "reserve_low_threshold": "0.20",
    },
    "numbering": {
        "request_number_prefix": "LIQ",
        "listing_number_prefix": "LST",
    },
}


class PolicyResolver:
    """Resolves program defaults and numbering policy.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        schedule = resolver.default_fee_schedule()
        settings = resolver.settings_from_record(stored_row)
    """

    def __init__(self, policy: Mapping[str, Any]) -> None:
        program = {**_DEFAULT_POLICY["liquidity_program"], **policy.get("liquidity_program", {})}
        numbering = {**_DEFAULT_POLICY["numbering"], **policy.get("numbering", {})}

        self._fee_schedule = FeeSchedule.from_records(program["default_fee_tiers_months"])
        self._min_holding_days = int(program["default_min_holding_days"])
        self._reserve_percent = to_decimal(program["default_reserve_percent"])
        self._low_threshold = to_decimal(program["reserve_low_threshold"])
        self._request_prefix = str(numbering["request_number_prefix"])
        self._listing_prefix = str(numbering["listing_number_prefix"])

        if self._min_holding_days < 0:
            raise ValidationError("default_min_holding_days must be >= 0")
        if not (ZERO <= self._low_threshold <= Decimal("1")):
            raise ValidationError("reserve_low_threshold must be in [0, 1]")

    @classmethod
    def defaults(cls) -> PolicyResolver:
        return cls({})

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        """Load ``liquidity_policy.json`` from ``config_dir``.

        A missing file falls back to built-in defaults; an unreadable or
        malformed file raises.
        """
        path = Path(config_dir) / POLICY_FILENAME
        if not path.exists():
            return cls.defaults()
        with path.open("r", encoding="utf-8") as handle:
            return cls(json.load(handle))

    def default_fee_schedule(self) -> FeeSchedule:
        return self._fee_schedule

    @property
    def default_min_holding_days(self) -> int:
        return self._min_holding_days

    @property
    def default_reserve_percent(self) -> Decimal:
        return self._reserve_percent

    @property
    def reserve_low_threshold(self) -> Decimal:
        return self._low_threshold

    @property
    def request_number_prefix(self) -> str:
        return self._request_prefix

    @property
    def listing_number_prefix(self) -> str:
        return self._listing_prefix

    def default_settings(
        self,
        offering_id: str,
        reserve_balance: Decimal = ZERO,
        max_monthly_redemptions: Optional[int] = None,
    ) -> LiquidityProgramSettings:
        return LiquidityProgramSettings(
            offering_id=offering_id,
            fee_schedule=self._fee_schedule,
            enabled=True,
            reserve_percent=self._reserve_percent,
            reserve_balance=to_decimal(reserve_balance),
            max_monthly_redemptions=max_monthly_redemptions,
            min_holding_days=self._min_holding_days,
        )

    def settings_from_record(self, record: Mapping[str, Any]) -> LiquidityProgramSettings:
        """Build settings from a stored row, defaulting any missing field."""
        tiers = record.get("fee_tiers")
        reserve_percent = record.get("reserve_percent")
        min_holding = record.get("min_holding_days")
        enabled = record.get("enabled")
        return LiquidityProgramSettings(
            offering_id=record["offering_id"],
            fee_schedule=FeeSchedule.from_records(tiers) if tiers else self._fee_schedule,
            enabled=True if enabled is None else bool(enabled),
            reserve_percent=(
                to_decimal(reserve_percent) if reserve_percent is not None
                else self._reserve_percent
            ),
            reserve_balance=to_decimal(record.get("reserve_balance") or "0"),
            max_monthly_redemptions=record.get("max_monthly_redemptions"),
            min_holding_days=(
                int(min_holding) if min_holding is not None else self._min_holding_days
            ),
        )
