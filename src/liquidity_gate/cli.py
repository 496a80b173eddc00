"""Liquidity gate CLI — command-line interface for the compliance engine.

Usage:
    python -m liquidity_gate.cli status
    python -m liquidity_gate.cli fee-schedule --days 400
    python -m liquidity_gate.cli quote --offering OFF-1 --investor inv-1 \\
        --quantity 100 --token-value 10 --holding-days 400
    python -m liquidity_gate.cli check-eligibility --investor inv-1 --kyc verified \\
        --requires-kyc --min-investment 1000 --amount 5000
    python -m liquidity_gate.cli check-invariants

Environment (a ``.env`` file at the repository root is loaded first):
    LIQUIDITY_GATE_CONFIG     config directory (default: config/)
    LIQUIDITY_GATE_DATA       data directory for entity snapshots (default: data/)
    LIQUIDITY_GATE_LOG_LEVEL  log level (default: WARNING)
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path

from dotenv import load_dotenv

from liquidity_gate.errors import LiquidityGateError
from liquidity_gate.liquidity.fee_schedule import (
    FeeScheduleResolver,
    holding_months,
    holding_period_days,
)
from liquidity_gate.log_config import setup_logging
from liquidity_gate.models.compliance import (
    AccreditationMethod,
    AccreditationStatus,
    ComplianceState,
    KycStatus,
    OfferingRequirements,
)
from liquidity_gate.models.liquidity import InvestorHolding
from liquidity_gate.persistence.entity_store import JsonlEntityStore
from liquidity_gate.policy.resolver import POLICY_FILENAME, PolicyResolver
from liquidity_gate.providers import InMemoryComplianceProvider
from liquidity_gate.service import ComplianceGateway


ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG = ROOT / "config"
DEFAULT_DATA = ROOT / "data"


def _make_gateway(config_dir: Path, data_dir: Path) -> ComplianceGateway:
    """Create a gateway with durable entity snapshots, restored from disk."""
    data_dir.mkdir(parents=True, exist_ok=True)
    resolver = PolicyResolver.from_config_dir(config_dir)
    store = JsonlEntityStore(data_dir / "entities.jsonl")
    gateway = ComplianceGateway(resolver, entity_store=store)
    gateway.restore_from_store()
    return gateway


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a decimal amount: {value}") from None


def cmd_status(args: argparse.Namespace) -> int:
    gateway = _make_gateway(args.config, args.data)
    print(json.dumps(gateway.status(), indent=2))
    return 0


def cmd_fee_schedule(args: argparse.Namespace) -> int:
    """Print the default fee schedule, or the tier for --days."""
    resolver = PolicyResolver.from_config_dir(args.config)
    schedule = resolver.default_fee_schedule()
    if args.days is None:
        print(json.dumps(schedule.to_records(), indent=2))
        return 0
    try:
        tier = FeeScheduleResolver.resolve(schedule, args.days)
    except LiquidityGateError as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(
        {
            "holding_period_days": args.days,
            "holding_months": holding_months(args.days),
            "tier": tier.to_dict(),
        },
        indent=2,
    ))
    return 0


def cmd_quote(args: argparse.Namespace) -> int:
    """Price a redemption against the default program settings."""
    resolver = PolicyResolver.from_config_dir(args.config)
    if args.holding_start is not None:
        days = holding_period_days(date.fromisoformat(args.holding_start), date.today())
    else:
        days = args.holding_days
    gateway = ComplianceGateway(resolver)
    settings = resolver.default_settings(args.offering)
    if args.min_holding_days is not None:
        settings.min_holding_days = args.min_holding_days
    registered = gateway.register_program(settings)
    if not registered.success:
        print(f"Failed: {'; '.join(registered.errors)}", file=sys.stderr)
        return 1

    holding = InvestorHolding(
        investor_id=args.investor,
        offering_id=args.offering,
        quantity=args.quantity,
        token_value=args.token_value,
        holding_period_days=days,
    )
    result = gateway.quote_redemption(holding)
    if result.success:
        print(json.dumps(result.data, indent=2))
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_check_eligibility(args: argparse.Namespace) -> int:
    compliance = InMemoryComplianceProvider()
    compliance.set_state(ComplianceState(
        investor_id=args.investor,
        kyc_status=KycStatus(args.kyc),
        accreditation_status=AccreditationStatus(args.accreditation),
        accreditation_method=AccreditationMethod(args.method) if args.method else None,
    ))
    requirements = OfferingRequirements(
        requires_kyc=args.requires_kyc,
        requires_accreditation=args.requires_accreditation,
        min_investment=args.min_investment,
    )
    gateway = ComplianceGateway(PolicyResolver.from_config_dir(args.config), compliance)
    result = gateway.check_eligibility(requirements, args.investor, args.amount)
    if result.success:
        print(json.dumps(result.data, indent=2))
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run policy invariant checks."""
    tools_dir = ROOT / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    return check(args.config / POLICY_FILENAME)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="liquidity-gate",
        description="Investor compliance gate and liquidity redemption engine",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(os.environ.get("LIQUIDITY_GATE_CONFIG", DEFAULT_CONFIG)),
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=Path(os.environ.get("LIQUIDITY_GATE_DATA", DEFAULT_DATA)),
        help="Path to data directory (default: data/)",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LIQUIDITY_GATE_LOG_LEVEL", "WARNING"),
        help="Log level (default: WARNING)",
    )
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show request and listing counts")

    # fee-schedule
    p_fee = sub.add_parser("fee-schedule", help="Show the default fee schedule")
    p_fee.add_argument("--days", type=int, help="Resolve the tier for this holding period")

    # quote
    p_quote = sub.add_parser("quote", help="Price a redemption without submitting it")
    p_quote.add_argument("--offering", required=True, help="Offering ID")
    p_quote.add_argument("--investor", required=True, help="Investor ID")
    p_quote.add_argument("--quantity", type=int, required=True, help="Tokens to redeem")
    p_quote.add_argument("--token-value", type=_decimal, required=True, help="Value per token")
    held = p_quote.add_mutually_exclusive_group(required=True)
    held.add_argument("--holding-days", type=int, help="Holding period in days")
    held.add_argument("--holding-start", help="Holding start date (YYYY-MM-DD)")
    p_quote.add_argument("--min-holding-days", type=int, help="Override the minimum holding period")

    # check-eligibility
    p_elig = sub.add_parser("check-eligibility", help="Evaluate investor eligibility")
    p_elig.add_argument("--investor", required=True, help="Investor ID")
    p_elig.add_argument(
        "--kyc", default="not_started",
        choices=[s.value for s in KycStatus],
        help="KYC status (default: not_started)",
    )
    p_elig.add_argument(
        "--accreditation", default="not_started",
        choices=[s.value for s in AccreditationStatus],
        help="Accreditation status (default: not_started)",
    )
    p_elig.add_argument(
        "--method", choices=[m.value for m in AccreditationMethod],
        help="Accreditation method",
    )
    p_elig.add_argument("--requires-kyc", action="store_true")
    p_elig.add_argument("--requires-accreditation", action="store_true")
    p_elig.add_argument("--min-investment", type=_decimal, default=Decimal("0"))
    p_elig.add_argument("--amount", type=_decimal, required=True, help="Requested amount")

    # check-invariants
    sub.add_parser("check-invariants", help="Run policy invariant checks")

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv(ROOT / ".env")
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "fee-schedule": cmd_fee_schedule,
        "quote": cmd_quote,
        "check-eligibility": cmd_check_eligibility,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
