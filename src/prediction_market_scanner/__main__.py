"""Command-line entry point: run one operation and print its JSON document."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Any

from prediction_market_scanner import __version__
from prediction_market_scanner.alerter import post_calls
from prediction_market_scanner.config import Settings, get_settings
from prediction_market_scanner.engine import Engine
from prediction_market_scanner.scan import (
    CorrelationOptions,
    Exchange,
    ScanError,
    ScanOptions,
    SignalAction,
    SignalOptions,
    backtest,
    correlations,
    generate_signals,
    pulse,
    scan,
    scorecard,
    track_resolutions,
)
from prediction_market_scanner.storage import SignalLog, SignalLogError

logger = logging.getLogger(__name__)

Command = Callable[[Engine, argparse.Namespace], Awaitable[dict[str, Any]]]


async def _scan(engine: Engine, args: argparse.Namespace) -> dict[str, Any]:
    options = ScanOptions(limit=args.limit, exchange=Exchange(args.exchange), slug=args.slug)
    if args.whale:
        options.include_whale = True
    if args.no_velocity:
        options.include_velocity = False
    result = await scan(engine, options)
    return result.to_dict()


async def _pulse(engine: Engine, args: argparse.Namespace) -> dict[str, Any]:
    return await pulse(engine)


async def _signals(engine: Engine, args: argparse.Namespace) -> dict[str, Any]:
    actions = tuple(SignalAction(a) for a in args.action) if args.action else None
    options = SignalOptions(
        min_confidence=args.min_confidence,
        actions=actions,
        limit=args.limit,
        max_days=args.max_days,
        min_edge=args.min_edge,
    )
    return await generate_signals(engine, options)


async def _correlations(engine: Engine, args: argparse.Namespace) -> dict[str, Any]:
    options = CorrelationOptions(
        window_hours=args.window_hours,
        min_shared_wallets=args.min_wallets,
        max_markets=args.limit,
        min_strength=args.min_strength,
    )
    return await correlations(engine, options)


async def _backtest(engine: Engine, args: argparse.Namespace) -> dict[str, Any]:
    log = SignalLog.from_settings(engine.settings.storage)
    return await backtest(engine, log, limit=args.limit, status=args.status)


async def _scorecard(engine: Engine, args: argparse.Namespace) -> dict[str, Any]:
    return scorecard(SignalLog.from_settings(engine.settings.storage), engine.now())


async def _track_resolutions(engine: Engine, args: argparse.Namespace) -> dict[str, Any]:
    log = SignalLog.from_settings(engine.settings.storage)
    return await track_resolutions(engine, log, dry_run=args.dry_run or engine.settings.dry_run)


async def _select_calls(engine: Engine, args: argparse.Namespace) -> dict[str, Any]:
    log = SignalLog.from_settings(engine.settings.storage)
    return await post_calls(engine, log, dry_run=args.dry_run or engine.settings.dry_run)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="market-scan",
        description="Threat scoring and signals over prediction-market trade flow",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--indent", type=int, default=2, help="JSON indent (0 for compact)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("scan", help="Score the most active markets")
    p.add_argument("--limit", type=int, default=100)
    p.add_argument("--exchange", choices=[e.value for e in Exchange], default=Exchange.BOTH.value)
    p.add_argument("--slug", help="Scan a single Polymarket market")
    p.add_argument("--whale", action="store_true", help="Add whale intelligence to deep entries")
    p.add_argument("--no-velocity", action="store_true", help="Skip velocity enrichment")
    p.set_defaults(handler=_scan)

    p = sub.add_parser("pulse", help="Venue-wide threat pulse")
    p.set_defaults(handler=_pulse)

    p = sub.add_parser("signals", help="Actionable trading signals")
    p.add_argument("--min-confidence", choices=["HIGH", "MEDIUM", "LOW"])
    p.add_argument(
        "--action",
        action="append",
        choices=[a.value for a in SignalAction if a is not SignalAction.AVOID],
        help="Keep only this action (repeatable)",
    )
    p.add_argument("--limit", type=int)
    p.add_argument("--max-days", type=int)
    p.add_argument("--min-edge", type=float)
    p.set_defaults(handler=_signals)

    p = sub.add_parser("correlations", help="Clusters of markets sharing wallets")
    p.add_argument("--window-hours", type=int)
    p.add_argument("--min-wallets", type=int)
    p.add_argument("--limit", type=int, help="Markets analyzed")
    p.add_argument("--min-strength", choices=["WEAK", "MODERATE", "STRONG"])
    p.set_defaults(handler=_correlations)

    p = sub.add_parser("backtest", help="Replay posted calls against prices")
    p.add_argument("--limit", type=int, default=20)
    p.add_argument("--status", default="all")
    p.set_defaults(handler=_backtest)

    p = sub.add_parser("scorecard", help="Open and resolved calls")
    p.set_defaults(handler=_scorecard)

    p = sub.add_parser("track-resolutions", help="Write receipts for resolved calls")
    p.add_argument("--dry-run", action="store_true")
    p.set_defaults(handler=_track_resolutions)

    p = sub.add_parser("select-calls", help="Select and log new calls from a scan")
    p.add_argument("--dry-run", action="store_true")
    p.set_defaults(handler=_select_calls)
    return parser


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


async def run(handler: Command, args: argparse.Namespace, settings: Settings) -> dict[str, Any]:
    engine = Engine.create(settings)
    try:
        return await handler(engine, args)
    finally:
        await engine.aclose()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings)
    logger.debug("Settings: %s", settings.redacted_summary())

    try:
        document = asyncio.run(run(args.handler, args, settings))
    except (ScanError, SignalLogError) as e:
        logger.error("%s failed: %s", args.command, e)
        return 1
    json.dump(document, sys.stdout, indent=args.indent or None, default=str)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
