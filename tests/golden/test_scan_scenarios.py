"""Golden scenario tests for the scanner, simulator and indicators.

If any of these change, you changed engine semantics. Either the change
is intentional (update the scenario) or you introduced a regression.

Scenarios:
  - indicator readings on known inputs (RSI 100 on rising closes, ATR 0 on flat bars)
  - long stop-out on the third bar after entry
  - stop wins when a bar touches both stop and target
  - trades never overlap
  - literal thresholds ("price > 0" always, "price > 999999" never)
  - crossovers depend only on the two bars evaluated
  - identical inputs give identical trades
"""

from __future__ import annotations

import math
from datetime import timedelta
from decimal import Decimal

import pytest

from strategylab.config import ScanSettings
from strategylab.services.backtest.analysis import analyze_results
from strategylab.services.backtest.data import InMemoryBarProvider, enrich_bars
from strategylab.services.backtest.engines.scanner import StrategyScanner, TradeSimulator
from strategylab.services.strategy.evaluator import ConditionEvaluator
from strategylab.services.strategy.history import BarHistory
from strategylab.services.strategy.indicators import values as ind
from strategylab.services.strategy.models import TradeOutcome

D = Decimal

SETTINGS = ScanSettings(
    max_bars_in_trade=20,
    min_historical_bars=10,
    setup_bars=5,
    warmup_days=0,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _wave_closes(n_bars: int, base: float = 4800.0, amplitude: float = 12.0) -> list[Decimal]:
    """Deterministic oscillating closes rounded to ES ticks."""
    closes = []
    for i in range(n_bars):
        value = base + amplitude * math.sin(i / 7.0) + 0.05 * i
        closes.append(D(round(value * 4) / 4).quantize(D("0.01")))
    return closes


def _scan(make_bars, make_strategy, closes, conditions, spread="1.00", **strategy_kwargs):
    bars = enrich_bars(make_bars(closes, spread=D(spread)))
    provider = InMemoryBarProvider({"ES": bars})
    strategy = make_strategy(conditions=conditions, **strategy_kwargs)
    scanner = StrategyScanner(provider, settings=SETTINGS)
    report = scanner.run(strategy, "ES", bars[0].ts, bars[-1].ts)
    return bars, strategy, report


# ---------------------------------------------------------------------------
# Indicators
# ---------------------------------------------------------------------------


class TestIndicatorGolden:
    """Known indicator readings."""

    def test_rsi_rising_closes(self, make_bars):
        assert ind.rsi(make_bars(range(100, 115)), 14) == 100

    def test_atr_flat_bars(self, make_bars):
        assert ind.atr(make_bars([100] * 15), 14) == 0

    def test_rsi_neutral_below_period(self, make_bars):
        assert ind.rsi(make_bars(range(100, 114)), 14) == 50


# ---------------------------------------------------------------------------
# Trade simulation
# ---------------------------------------------------------------------------


class TestSimulationGolden:
    """Fixed trade outcomes."""

    def test_long_stopped_on_third_bar(self, make_bar, make_strategy):
        entry = make_bar(100)
        rows = [(101, 99, 100), (102, 98, 101), (95, 89, 90)]
        future = [
            make_bar(c, ts=entry.ts + timedelta(minutes=i + 1), high=h, low=l)
            for i, (h, l, c) in enumerate(rows)
        ]
        strategy = make_strategy(stop=("points", "10"), target=("points", "20"))

        trade = TradeSimulator(SETTINGS).simulate(
            strategy, entry, [entry], future, D(50), D(0)
        )

        assert trade.result == TradeOutcome.LOSS
        assert trade.bars_held == 3
        assert trade.exit_price == 90

    def test_stop_wins_tie(self, make_bar, make_strategy):
        entry = make_bar(100)
        future = [make_bar(100, ts=entry.ts + timedelta(minutes=1), high=130, low=70)]

        for direction in ("long", "short"):
            trade = TradeSimulator(SETTINGS).simulate(
                make_strategy(direction=direction), entry, [entry], future, D(50), D(0)
            )
            assert trade.result == TradeOutcome.LOSS


# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------


class TestScanGolden:
    """Whole-scan scenarios on deterministic data."""

    def test_always_true_trades_never_overlap(self, make_bars, make_strategy):
        _, _, report = _scan(make_bars, make_strategy, _wave_closes(300), [("price", ">", "0")])

        assert report.trades
        for prev, curr in zip(report.trades, report.trades[1:]):
            assert curr.entry_time > prev.exit_time

    def test_never_true_has_no_trades(self, make_bars, make_strategy):
        _, _, report = _scan(
            make_bars, make_strategy, _wave_closes(300), [("price", ">", "999999")]
        )

        assert report.trades == []
        assert report.stats.bars_evaluated == 300 - 20 - 10

    def test_crossover_entries_match_stateless_check(self, make_bars, make_strategy):
        """Every crossover entry is confirmed by re-evaluating that bar alone."""
        conditions = [("price", "crosses_above", "ema9")]
        bars, strategy, report = _scan(make_bars, make_strategy, _wave_closes(300), conditions)

        evaluator = ConditionEvaluator()
        history = BarHistory(bars)
        index = {b.ts: i for i, b in enumerate(bars)}

        assert report.trades
        for trade in report.trades:
            i = index[trade.entry_time]
            assert evaluator.evaluate_entry(strategy, bars[i], history.prefix(i + 1))
            assert evaluator.evaluate_entry(strategy, bars[i], bars[i - 1 : i + 1])

    def test_identical_inputs_identical_trades(self, make_bars, make_strategy):
        conditions = [("rsi", "<", "45"), ("price", "<", "bb_middle")]
        _, _, first = _scan(make_bars, make_strategy, _wave_closes(400), conditions)
        _, _, second = _scan(make_bars, make_strategy, _wave_closes(400), conditions)

        assert [t.to_dict() for t in first.trades] == [t.to_dict() for t in second.trades]

    def test_summary_consistent_with_trades(self, make_bars, make_strategy):
        _, strategy, report = _scan(
            make_bars,
            make_strategy,
            _wave_closes(400),
            [("price", ">", "ema20")],
            stop=("points", "4"),
            target=("points", "6"),
        )

        summary = analyze_results(report.trades, strategy)

        assert summary.total_trades == len(report.trades)
        assert summary.total_pnl == sum((t.pnl for t in report.trades), D(0))
        assert summary.is_valid()


@pytest.mark.slow
class TestLargeScan:
    """Full-week minute data; skipped unless run with -m slow."""

    def test_week_of_minutes(self, make_bars, make_strategy):
        closes = _wave_closes(5 * 1380)
        _, strategy, report = _scan(
            make_bars,
            make_strategy,
            closes,
            [("macd_line", "crosses_above", "macd_signal"), ("adx", ">", "20")],
            stop=("atr", "0.1"),
            target=("atr", "0.2"),
        )

        assert report.stats.bars_evaluated > 0
        assert all(t.bars_held <= SETTINGS.max_bars_in_trade for t in report.trades)
