#!/usr/bin/env python
"""
CLI for scanning strategies over historical bars.

Usage:
    python -m strategylab.cli scan --strategy <file> --symbol <SYM> --start <date> --end <date> [options]
    python -m strategylab.cli evaluate --strategy <file> --symbol <SYM> [--at <datetime>] [options]
    python -m strategylab.cli symbols

Examples:
    # Scan January on ES from a single CSV file
    python -m strategylab.cli scan --strategy vwap_bounce.json --symbol ES \\
        --csv es_1m.csv --start 2024-01-02 --end 2024-01-31

    # Same scan reading <DATA_DIR>/ES.csv, machine-readable output
    python -m strategylab.cli scan --strategy vwap_bounce.json --symbol ES \\
        --start 2024-01-02 --end 2024-01-31 --json

    # Check the entry conditions at one bar
    python -m strategylab.cli evaluate --strategy vwap_bounce.json --symbol ES \\
        --csv es_1m.csv --at 2024-01-05T14:31:00
"""

import argparse
import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import structlog
from pydantic import ValidationError

from strategylab.config import Settings, get_settings
from strategylab.core.logging import configure_logging
from strategylab.core.sentry import init_sentry
from strategylab.services.backtest.analysis import analyze_results
from strategylab.services.backtest.data import (
    CsvBarProvider,
    InMemoryBarProvider,
    OHLCVParseError,
    enrich_bars,
    parse_ohlcv_csv,
)
from strategylab.services.backtest.engines.base import BarProvider
from strategylab.services.backtest.engines.scanner import StrategyScanner
from strategylab.services.backtest.trade_analysis import find_patterns
from strategylab.services.errors import ErrorTracker
from strategylab.services.strategy.evaluator import ConditionEvaluator
from strategylab.services.strategy.history import BarHistory
from strategylab.services.strategy.models import Strategy
from strategylab.utils.instruments import CONTRACT_SPECS, get_slippage_cost, is_valid_symbol
from strategylab.utils.time import as_utc

logger = structlog.get_logger(__name__)

_ALL_TIME = (
    datetime(1970, 1, 1, tzinfo=timezone.utc),
    datetime(9999, 12, 31, tzinfo=timezone.utc),
)


def _load_strategy(path: str) -> Optional[Strategy]:
    try:
        return Strategy.model_validate_json(Path(path).read_text())
    except OSError as e:
        logger.error("Cannot read strategy file", path=path, error=str(e))
    except ValidationError as e:
        logger.error("Invalid strategy definition", path=path, errors=e.error_count())
        print(e, file=sys.stderr)
    return None


def _parse_datetime(value: str, name: str) -> Optional[datetime]:
    try:
        return as_utc(datetime.fromisoformat(value))
    except ValueError:
        logger.error("Invalid date format", argument=name, value=value)
        return None


def _bar_provider(args: argparse.Namespace, settings: Settings) -> Optional[BarProvider]:
    if not args.csv:
        return CsvBarProvider(args.data_dir or settings.data_dir)

    path = Path(args.csv)
    try:
        result = parse_ohlcv_csv(path.read_bytes(), args.symbol, filename=path.name)
    except OSError as e:
        logger.error("Cannot read CSV file", path=args.csv, error=str(e))
        return None
    except OHLCVParseError as e:
        logger.error("Invalid CSV file", path=args.csv, error=e.message, **e.details)
        return None

    for warning in result.warnings:
        logger.warning("CSV parse warning", warning=warning)
    return InMemoryBarProvider({args.symbol: enrich_bars(result.bars)})


def _print_errors(tracker: ErrorTracker) -> None:
    errors = tracker.get_recent_errors(10)
    if not errors:
        return
    print(f"\nEvaluation errors ({len(tracker)} total, latest {len(errors)}):")
    for error in errors:
        print(f"  [{error.severity.value}] {error.message}")
        if error.details:
            print(f"      {error.details}")
        if error.suggested_fix:
            print(f"      fix: {error.suggested_fix}")


def cmd_scan(args: argparse.Namespace, settings: Settings) -> int:
    """Run a scan and print trades plus summary."""
    strategy = _load_strategy(args.strategy)
    start = _parse_datetime(args.start, "start")
    end = _parse_datetime(args.end, "end")
    if strategy is None or start is None or end is None:
        return 1
    if not is_valid_symbol(args.symbol):
        logger.error("Unsupported symbol", symbol=args.symbol)
        return 1

    provider = _bar_provider(args, settings)
    if provider is None:
        return 1

    tracker = ErrorTracker()
    scan_settings = settings.scan_settings()
    scanner = StrategyScanner(
        provider,
        ConditionEvaluator(error_sink=tracker, settings=scan_settings),
        settings=scan_settings,
    )

    try:
        report = scanner.run(strategy, args.symbol, start, end)
    except (FileNotFoundError, OHLCVParseError) as e:
        logger.error("Cannot load bars", symbol=args.symbol, error=str(e))
        return 1

    summary = analyze_results(report.trades, strategy)
    patterns = find_patterns(report.trades)

    if args.json:
        payload = {
            "strategy": strategy.name,
            "symbol": args.symbol.upper(),
            "stats": {
                "bars_loaded": report.stats.bars_loaded,
                "bars_evaluated": report.stats.bars_evaluated,
                "signals": report.stats.signals,
                "trades": report.stats.trades,
                "failed_simulations": report.stats.failed_simulations,
                "elapsed_ms": report.stats.elapsed_ms,
            },
            "summary": {
                "total_trades": summary.total_trades,
                "win_rate": float(summary.win_rate),
                "total_pnl": float(summary.total_pnl),
                "avg_win": float(summary.avg_win),
                "avg_loss": float(summary.avg_loss),
                "max_drawdown": float(summary.max_drawdown),
                "profit_factor": (
                    float(summary.profit_factor) if summary.profit_factor is not None else None
                ),
                "sharpe_ratio": (
                    float(summary.sharpe_ratio) if summary.sharpe_ratio is not None else None
                ),
                "expectancy": float(summary.expectancy),
                "insights": summary.insights,
            },
            "patterns": [
                {
                    "name": p.name,
                    "description": p.description,
                    "frequency": p.frequency,
                    "avg_impact": float(p.avg_impact),
                    "type": p.type.value,
                    "confidence": p.confidence,
                }
                for p in patterns
            ],
            "trades": [t.to_dict() for t in report.trades],
            "errors": len(tracker),
        }
        print(json.dumps(payload, indent=2))
        return 0

    print("\n" + "=" * 60)
    print("SCAN REPORT")
    print("=" * 60)
    print(f"Strategy:       {strategy.summary()}")
    print(f"Symbol:         {args.symbol.upper()}")
    print(f"Bars Loaded:    {report.stats.bars_loaded}")
    print(f"Bars Evaluated: {report.stats.bars_evaluated}")
    print(f"Duration:       {report.stats.elapsed_ms}ms")
    print("-" * 60)
    for t in report.trades:
        print(
            f"  {t.entry_time:%Y-%m-%d %H:%M} {t.side:5} {t.result.value:7} "
            f"entry={t.entry_price} exit={t.exit_price} pnl=${t.pnl:.2f} bars={t.bars_held}"
        )
    print("-" * 60)
    print(f"Trades:         {summary.total_trades}")
    print(f"Win Rate:       {summary.win_rate:.1%}")
    print(f"Total P&L:      ${summary.total_pnl:.2f}")
    print(f"Max Drawdown:   ${summary.max_drawdown:.2f}")
    if summary.profit_factor is not None:
        print(f"Profit Factor:  {summary.profit_factor:.2f}")
    if summary.sharpe_ratio is not None:
        print(f"Sharpe:         {summary.sharpe_ratio:.2f}")
    print(f"\n{summary.insights}")
    for p in patterns:
        print(f"  [{p.type.value}] {p.description} (confidence {p.confidence}%)")
    print("=" * 60)
    _print_errors(tracker)
    return 0


def cmd_evaluate(args: argparse.Namespace, settings: Settings) -> int:
    """Evaluate entry conditions at a single bar."""
    strategy = _load_strategy(args.strategy)
    if strategy is None:
        return 1
    if not is_valid_symbol(args.symbol):
        logger.error("Unsupported symbol", symbol=args.symbol)
        return 1

    at = _parse_datetime(args.at, "at") if args.at else None
    if args.at and at is None:
        return 1

    provider = _bar_provider(args, settings)
    if provider is None:
        return 1

    if at is None:
        start, end = _ALL_TIME
    else:
        start, end = at - timedelta(days=settings.warmup_days), at
    try:
        bars = list(provider.get_bars(args.symbol, start, end))
    except (FileNotFoundError, OHLCVParseError) as e:
        logger.error("Cannot load bars", symbol=args.symbol, error=str(e))
        return 1
    if not bars:
        logger.error("No bars at or before the requested time", symbol=args.symbol)
        return 1

    tracker = ErrorTracker()
    evaluator = ConditionEvaluator(error_sink=tracker, settings=settings.scan_settings())
    history = BarHistory(bars)
    current = bars[-1]
    compiled = evaluator.compile(strategy)

    print(f"\n{strategy.summary()} @ {current.ts.isoformat()} close={current.close}")
    for cond in compiled.conditions:
        passed = evaluator.evaluate_condition(cond, current, history, strategy.id)
        print(f"  [{'PASS' if passed else 'FAIL'}] {cond.condition.expression}")

    signal = evaluator.evaluate_entry(compiled, current, history)
    print(f"\nEntry signal: {'YES' if signal else 'NO'}")
    _print_errors(tracker)
    return 0


def cmd_symbols(args: argparse.Namespace, settings: Settings) -> int:
    """List supported contracts."""
    print(f"{'Symbol':<8}{'Name':<22}{'$/pt':>8}{'Tick':>8}{'$/tick':>9}{'Slippage':>10}")
    for spec in CONTRACT_SPECS.values():
        print(
            f"{spec.symbol:<8}{spec.display_name:<22}{spec.point_value:>8}"
            f"{spec.tick_size:>8}{spec.tick_value:>9}"
            f"{get_slippage_cost(spec.symbol, settings.slippage_ticks):>10}"
        )
    return 0


def _add_data_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--strategy", "-s", required=True, help="Strategy JSON file")
    parser.add_argument("--symbol", required=True, help="Contract root (ES, NQ, YM, BTC, CL)")
    parser.add_argument("--csv", help="Bar CSV file (otherwise <data-dir>/<SYMBOL>.csv)")
    parser.add_argument("--data-dir", help="Directory of <SYMBOL>.csv files (default: DATA_DIR)")


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Strategy backtesting CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    scan_parser = subparsers.add_parser("scan", help="Scan bars and simulate trades")
    _add_data_arguments(scan_parser)
    scan_parser.add_argument("--start", required=True, help="First entry date (ISO)")
    scan_parser.add_argument("--end", required=True, help="Last bar date (ISO)")
    scan_parser.add_argument("--json", action="store_true", help="Print JSON instead of text")

    evaluate_parser = subparsers.add_parser("evaluate", help="Evaluate entry conditions at a bar")
    _add_data_arguments(evaluate_parser)
    evaluate_parser.add_argument("--at", help="Bar timestamp (ISO, default: last bar)")

    subparsers.add_parser("symbols", help="List supported contracts")

    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings)
    init_sentry(settings)

    if args.command == "scan":
        return cmd_scan(args, settings)
    if args.command == "evaluate":
        return cmd_evaluate(args, settings)
    if args.command == "symbols":
        return cmd_symbols(args, settings)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
