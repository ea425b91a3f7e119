"""Bar-by-bar strategy scanner."""

from __future__ import annotations

import time
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog

from strategylab.config import ScanSettings
from strategylab.services.backtest.engines.base import BarProvider, TradeResult
from strategylab.services.strategy.evaluator import ConditionEvaluator
from strategylab.services.strategy.history import BarHistory
from strategylab.services.strategy.models import Bar, Strategy
from strategylab.utils.instruments import get_contract_spec, get_slippage_cost
from strategylab.utils.time import as_utc

from .simulator import TradeSimulator
from .types import ContractCosts, ScanPhase, ScanReport, ScanStats

logger = structlog.get_logger(__name__)


class StrategyScanner:
    """
    Walks historical bars looking for entry signals and simulates a trade
    for each one.

    Trades never overlap: after a trade the scan resumes on the bar after
    its exit. Nothing inside the loop is fatal; evaluation errors go to the
    evaluator's error sink and simulation errors are logged and skipped.

    Usage:
        scanner = StrategyScanner(provider, ConditionEvaluator(ErrorTracker()))
        trades = scanner.scan(strategy, "ES", start, end)
    """

    name = "scanner"

    def __init__(
        self,
        bar_provider: BarProvider,
        evaluator: Optional[ConditionEvaluator] = None,
        settings: Optional[ScanSettings] = None,
        simulator: Optional[TradeSimulator] = None,
    ) -> None:
        self._settings = settings or ScanSettings()
        self._provider = bar_provider
        self._evaluator = evaluator or ConditionEvaluator(settings=self._settings)
        self._simulator = simulator or TradeSimulator(self._settings)

    def costs_for(self, symbol: str) -> ContractCosts:
        """Resolve point value and slippage for *symbol*.

        Raises:
            ValueError: If the symbol is not supported
        """
        spec = get_contract_spec(symbol)
        return ContractCosts(
            symbol=spec.symbol,
            point_value=spec.point_value,
            slippage_cost=get_slippage_cost(spec.symbol, self._settings.slippage_ticks),
        )

    def scan(
        self,
        strategy: Strategy,
        symbol: str,
        start: datetime,
        end: datetime,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> list[TradeResult]:
        """Run the scan and return the simulated trades in entry order."""
        return self.run(strategy, symbol, start, end, should_cancel).trades

    def run(
        self,
        strategy: Strategy,
        symbol: str,
        start: datetime,
        end: datetime,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> ScanReport:
        """
        Run the scan and return trades plus scan counters.

        Args:
            strategy: Strategy to evaluate
            symbol: Contract root (case-insensitive)
            start: First timestamp eligible for entry (naive values are read as UTC)
            end: Last timestamp loaded (naive values are read as UTC)
            should_cancel: Checked between bars; returning True stops the scan
                and returns the trades found so far

        Returns:
            ScanReport with trades in entry order

        Raises:
            ValueError: If the symbol is not supported
        """
        start, end = as_utc(start), as_utc(end)
        costs = self.costs_for(symbol)
        settings = self._settings
        report = ScanReport()
        stats: ScanStats = report.stats
        started = time.perf_counter()

        log = logger.bind(strategy=strategy.name, symbol=costs.symbol)
        log.info(
            "Starting strategy scan",
            start=start.isoformat(),
            end=end.isoformat(),
            point_value=str(costs.point_value),
            slippage_cost=str(costs.slippage_cost),
        )

        # Step 1: Load bars with warm-up days before start
        data_start = start - timedelta(days=settings.warmup_days)
        bars = list(self._provider.get_bars(costs.symbol, data_start, end))
        stats.bars_loaded = len(bars)
        if not bars:
            log.warning("No bars found", data_start=data_start.isoformat(), end=end.isoformat())
            return report

        scan_start = next((i for i, b in enumerate(bars) if b.ts >= start), None)
        if scan_start is None:
            log.warning("Start date not found in bar data", start=start.isoformat())
            return report

        first_index = max(scan_start, settings.min_historical_bars)
        stats.first_index = first_index
        log.info(
            "Scanning bars",
            bars_loaded=len(bars),
            first_index=first_index,
            candidates=max(0, len(bars) - first_index),
        )

        # Step 2: Bar loop
        compiled = self._evaluator.compile(strategy)
        history = BarHistory(bars)
        phase = ScanPhase.SEARCHING
        i = first_index

        while i < len(bars):
            if phase == ScanPhase.SEARCHING:
                if should_cancel is not None and should_cancel():
                    stats.cancelled = True
                    log.info("Scan cancelled", index=i, trades=len(report.trades))
                    break

                # Leave room for a full trade window
                if i + settings.max_bars_in_trade >= len(bars):
                    log.debug("Insufficient future bars, stopping", index=i)
                    break

                stats.bars_evaluated += 1
                if self._evaluator.evaluate_entry(compiled, bars[i], history.prefix(i + 1)):
                    stats.signals += 1
                    phase = ScanPhase.IN_TRADE
                    log.debug(
                        "Entry signal",
                        ts=bars[i].ts.isoformat(),
                        price=str(bars[i].close),
                    )
                else:
                    i += 1
                continue

            # IN_TRADE: bars[i] is the entry bar
            trade = self._simulate(strategy, bars, history, i, costs, stats, log)
            if trade is not None:
                report.trades.append(trade)
                # Skip the bars the trade was open for
                i += trade.bars_held
            phase = ScanPhase.SEARCHING
            i += 1

        stats.elapsed_ms = int((time.perf_counter() - started) * 1000)
        log.info(
            "Scan completed",
            elapsed_ms=stats.elapsed_ms,
            trades=stats.trades,
            signals=stats.signals,
            bars_evaluated=stats.bars_evaluated,
        )
        return report

    def _simulate(
        self,
        strategy: Strategy,
        bars: list[Bar],
        history: BarHistory,
        i: int,
        costs: ContractCosts,
        stats: ScanStats,
        log,
    ) -> Optional[TradeResult]:
        settings = self._settings
        entry_bar = bars[i]
        setup_bars = bars[max(0, i - settings.setup_bars) : i]
        future_bars = bars[i + 1 : i + 1 + settings.max_bars_in_trade]
        try:
            trade = self._simulator.simulate(
                strategy,
                entry_bar,
                history.prefix(i + 1),
                future_bars,
                costs.point_value,
                costs.slippage_cost,
                setup_bars,
            )
        except Exception:
            stats.failed_simulations += 1
            log.exception("Error simulating trade", ts=entry_bar.ts.isoformat())
            return None

        if trade is not None:
            stats.trades += 1
            log.info(
                "Trade completed",
                entry=str(trade.entry_price),
                exit=str(trade.exit_price),
                pnl=str(trade.pnl),
                result=trade.result.value,
                bars_held=trade.bars_held,
            )
        return trade
