"""Command-line interface for the credit engine."""
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import sys
from collections.abc import Awaitable, Callable

from .config import AppConfig, load_config
from .engine import CreditEngine
from .errors import CreditEngineError
from .logging_setup import configure_logging
from .pricing import compute_terms


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="credit-engine",
        description="Collateralized credit and risk lifecycle engine",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--ledger",
        default=None,
        help="Ledger snapshot file (overrides ledger.snapshot_path)",
    )

    sub = parser.add_subparsers(dest="command")

    terms_parser = sub.add_parser("terms", help="Quote loan terms")
    terms_parser.add_argument("asset", help="Collateral asset, e.g. BTC")
    terms_parser.add_argument("term_days", type=int, help="Loan term in days")
    terms_parser.add_argument("ltv", type=float, help="Loan-to-value ratio in percent")

    sub.add_parser("scan", help="Run one risk scan over the ledger snapshot")

    alerts_parser = sub.add_parser("alerts", help="Show the most recent risk alerts")
    alerts_parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Number of alerts to show (default: risk.alert_limit)",
    )

    monitor_parser = sub.add_parser("monitor", help="Continuous risk scanning loop")
    monitor_parser.add_argument(
        "interval",
        nargs="?",
        type=int,
        default=None,
        help="Scan interval in minutes (overrides config)",
    )

    return parser


def _apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    if args.ledger:
        ledger = dataclasses.replace(config.ledger, snapshot_path=args.ledger)
        config = dataclasses.replace(config, ledger=ledger)
    return config


def _print_terms(config: AppConfig, args: argparse.Namespace) -> None:
    terms = compute_terms(
        args.asset, args.term_days, args.ltv, base_rates=config.lending.base_rates
    )
    print(f"Asset:              {args.asset.upper()}")
    print(f"Term:               {args.term_days} days")
    print(f"LTV:                {args.ltv:.2f}%")
    print(f"APR:                {terms.apr:.4f}%")
    print(f"Total interest:     {terms.total_interest} per unit principal")
    print(f"Total repayment:    {terms.total_repayment} per unit principal")
    print(f"Daily interest:     {terms.daily_interest}")
    print(f"Liquidation mult.:  {terms.liquidation_price_multiplier}")


def _monitor_pass(engine: CreditEngine) -> Callable[[], Awaitable[int]]:
    """Scan pass for the ``monitor`` process.

    Other CLI invocations write the snapshot file, so each pass starts from
    the latest snapshot. The monitor itself only appends alerts, which it
    saves before the next reload.
    """

    async def run_pass() -> int:
        snapshot = engine.config.ledger.snapshot_path
        if snapshot:
            engine.ledger.reload(snapshot)
        return await engine.scan_pass()

    return run_pass


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = _apply_overrides(load_config(args.config), args)

    if args.command == "terms":
        _print_terms(config, args)
        return

    engine = CreditEngine.from_config(config)

    if args.command == "scan":
        created = await engine.scan()
        engine.save()
        print(f"{created} alert(s) raised")
    elif args.command == "alerts":
        for alert in await engine.get_alerts(args.limit):
            hf = alert.metrics.get("healthFactor")
            print(
                f"{alert.created_at.isoformat()}  {alert.severity:<8}  "
                f"{alert.entity_type}:{alert.entity_id}  owner={alert.owner_id}  "
                f"hf={hf if hf is not None else '-'}"
                f"{'  (processed)' if alert.processed else ''}"
            )
    elif args.command == "monitor":
        await engine.risk.run_continuous(args.interval, scan_pass=_monitor_pass(engine))
    else:
        build_parser().print_help()
        sys.exit(1)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        asyncio.run(_run(args))
    except CreditEngineError as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(2)
