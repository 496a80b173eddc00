#!/usr/bin/env python3
"""Liquidity policy invariant checks against config/liquidity_policy.json."""

import json
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional


ROOT = Path(__file__).resolve().parents[1]
POLICY_PATH = ROOT / "config" / "liquidity_policy.json"


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def as_decimal(value: object, label: str, errors: list[str]) -> Optional[Decimal]:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        errors.append(f"{label} must be a decimal, got {value!r}")
        return None


def check_fee_tiers(tiers: list, errors: list[str]) -> None:
    """Fee tiers must partition [0, inf) months with fees in [0, 100]."""
    if not tiers:
        errors.append("default_fee_tiers_months must not be empty")
        return
    if tiers[0].get("min_months") != 0:
        errors.append("first fee tier must start at 0 months")

    previous_fee: Optional[Decimal] = None
    for i, tier in enumerate(tiers):
        label = f"fee tier {i}"
        lo = tier.get("min_months")
        hi = tier.get("max_months")
        last = i == len(tiers) - 1
        if hi is None and not last:
            errors.append(f"{label} is unbounded but is not the last tier")
        if hi is not None and last:
            errors.append(f"{label} is the last tier and must be unbounded")
        if hi is not None and (lo is None or hi <= lo):
            errors.append(f"{label} max_months must exceed min_months")
        if not last and hi is not None and tiers[i + 1].get("min_months") != hi:
            errors.append(
                f"{label} ends at {hi} months but tier {i + 1} starts at "
                f"{tiers[i + 1].get('min_months')}"
            )

        fee = as_decimal(tier.get("fee_percent"), f"{label} fee_percent", errors)
        if fee is None:
            continue
        if not (Decimal("0") <= fee <= Decimal("100")):
            errors.append(f"{label} fee_percent must be in [0, 100], got {fee}")
        if previous_fee is not None and fee > previous_fee:
            errors.append(f"{label} fee {fee} exceeds the shorter tier's fee {previous_fee}")
        previous_fee = fee


def check(policy_path: Path = POLICY_PATH) -> int:
    policy = load_json(policy_path)
    errors: list[str] = []

    # --- Program defaults ---
    program = policy.get("liquidity_program", {})
    check_fee_tiers(program.get("default_fee_tiers_months", []), errors)

    min_days = program.get("default_min_holding_days", 0)
    if not isinstance(min_days, int) or min_days < 0:
        errors.append(f"default_min_holding_days must be a non-negative int, got {min_days!r}")

    reserve_pct = as_decimal(program.get("default_reserve_percent", "5"), "default_reserve_percent", errors)
    if reserve_pct is not None and not (Decimal("0") <= reserve_pct <= Decimal("100")):
        errors.append(f"default_reserve_percent must be in [0, 100], got {reserve_pct}")

    low = as_decimal(program.get("reserve_low_threshold", "0.20"), "reserve_low_threshold", errors)
    if low is not None and not (Decimal("0") <= low <= Decimal("1")):
        errors.append(f"reserve_low_threshold must be in [0, 1], got {low}")

    # --- Numbering ---
    numbering = policy.get("numbering", {})
    request_prefix = numbering.get("request_number_prefix", "LIQ")
    listing_prefix = numbering.get("listing_number_prefix", "LST")
    for label, prefix in (("request", request_prefix), ("listing", listing_prefix)):
        if not prefix or "-" in prefix:
            errors.append(f"{label}_number_prefix must be non-empty and contain no '-'")
    if request_prefix == listing_prefix:
        errors.append("request and listing number prefixes must differ")

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check(Path(sys.argv[1]) if len(sys.argv) > 1 else POLICY_PATH))
