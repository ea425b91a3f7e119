"""Unit tests for single-trade simulation."""

import json
from datetime import timedelta
from decimal import Decimal

import pytest

from strategylab.config import ScanSettings
from strategylab.services.backtest.engines.scanner.simulator import (
    TradeSimulator,
    capture_indicator_values,
)
from strategylab.services.strategy.models import ExitType, TradeOutcome

D = Decimal
POINT_VALUE = D(50)


@pytest.fixture
def simulator():
    return TradeSimulator(ScanSettings())


@pytest.fixture
def entry(make_bar):
    return make_bar(100)


def _future(make_bar, entry, rows):
    """Bars after *entry* from (high, low, close) rows."""
    return [
        make_bar(close, ts=entry.ts + timedelta(minutes=i + 1), high=high, low=low)
        for i, (high, low, close) in enumerate(rows)
    ]


def _run(simulator, strategy, entry, future, slippage=D(0), setup=()):
    return simulator.simulate(
        strategy, entry, [entry], future, POINT_VALUE, slippage, setup_bars=setup
    )


class TestExitDistance:
    """Tests for stop/target distance conversion."""

    def test_points(self, simulator, entry):
        assert simulator.exit_distance(ExitType.POINTS, D(10), entry, [entry]) == 10

    def test_percentage_of_entry_close(self, simulator, entry):
        assert simulator.exit_distance(ExitType.PERCENTAGE, D(1), entry, [entry]) == 1

    def test_atr_price_percent_proxy(self, simulator, entry):
        assert simulator.exit_distance(ExitType.ATR, D(2), entry, [entry]) == 2

    def test_atr_live_mode(self, make_bars):
        history = make_bars([100] * 20, spread=1)  # ATR(14) = 2
        simulator = TradeSimulator(ScanSettings(atr_distance_mode="live_atr"))
        assert simulator.exit_distance(ExitType.ATR, D("1.5"), history[-1], history) == 3


class TestLongTrades:
    """Tests for long trade exits."""

    def test_stop_hit(self, simulator, make_strategy, make_bar, entry):
        strategy = make_strategy(stop=("points", "10"), target=("points", "20"))
        future = _future(make_bar, entry, [(101, 99, 100), (102, 98, 101), (95, 89, 90)])

        trade = _run(simulator, strategy, entry, future)

        assert trade.result == TradeOutcome.LOSS
        assert trade.exit_price == 90
        assert trade.bars_held == 3
        assert trade.pnl == D(-504)  # -10 pts * $50 - $4 commission
        assert trade.exit_time == future[2].ts

    def test_excursions_skip_exit_bar(self, simulator, make_strategy, make_bar, entry):
        strategy = make_strategy()
        future = _future(make_bar, entry, [(101, 99, 100), (102, 98, 101), (95, 89, 90)])

        trade = _run(simulator, strategy, entry, future)

        assert trade.max_adverse_excursion == 0
        assert trade.max_favorable_excursion == 50

    def test_target_hit(self, simulator, make_strategy, make_bar, entry):
        strategy = make_strategy()
        future = _future(make_bar, entry, [(105, 99, 104), (121, 103, 119)])

        trade = _run(simulator, strategy, entry, future)

        assert trade.result == TradeOutcome.WIN
        assert trade.exit_price == 120
        assert trade.pnl == D(996)
        assert trade.is_win

    def test_stop_checked_before_target(self, simulator, make_strategy, make_bar, entry):
        strategy = make_strategy()
        future = _future(make_bar, entry, [(125, 85, 100)])

        trade = _run(simulator, strategy, entry, future)

        assert trade.result == TradeOutcome.LOSS
        assert trade.bars_held == 1

    def test_risk_reward_ratio(self, simulator, make_strategy, make_bar, entry):
        future = _future(make_bar, entry, [(101, 89, 90)])
        trade = _run(simulator, make_strategy(), entry, future)
        assert trade.risk_reward_ratio == D("1.008")  # 504 / (10 * 50)

    def test_timeout_exits_at_last_close_with_slippage(
        self, simulator, make_strategy, make_bar, entry
    ):
        strategy = make_strategy()
        future = _future(make_bar, entry, [(101, 99, 100), (103, 100, 102)])

        trade = _run(simulator, strategy, entry, future, slippage=D(25))

        assert trade.result == TradeOutcome.TIMEOUT
        assert trade.entry_price == D("100.5")
        assert trade.stop_price == D("90.5")
        assert trade.target_price == D("120.5")
        assert trade.exit_price == D("101.5")
        assert trade.bars_held == 2
        assert trade.pnl == D(46)

    def test_no_future_bars(self, simulator, make_strategy, entry):
        assert _run(simulator, make_strategy(), entry, []) is None


class TestShortTrades:
    """Tests for short and 'both' direction trades."""

    def test_short_stop_above_entry(self, simulator, make_strategy, make_bar, entry):
        strategy = make_strategy(direction="short")
        future = _future(make_bar, entry, [(111, 100, 108)])

        trade = _run(simulator, strategy, entry, future)

        assert trade.side == "short"
        assert trade.result == TradeOutcome.LOSS
        assert trade.stop_price == 110
        assert trade.pnl == D(-504)

    def test_short_target_below_entry(self, simulator, make_strategy, make_bar, entry):
        strategy = make_strategy(direction="short")
        future = _future(make_bar, entry, [(101, 79, 81)])

        trade = _run(simulator, strategy, entry, future)

        assert trade.result == TradeOutcome.WIN
        assert trade.exit_price == 80
        assert trade.pnl == D(996)

    def test_both_is_simulated_short(self, simulator, make_strategy, make_bar, entry):
        strategy = make_strategy(direction="both")
        future = _future(make_bar, entry, [(101, 99, 100)])
        assert _run(simulator, strategy, entry, future).side == "short"


class TestTradeContext:
    """Tests for chart context and snapshots."""

    def test_setup_and_indexes(self, simulator, make_strategy, make_bar, make_bars, entry):
        setup = make_bars([100] * 5, start=entry.ts - timedelta(minutes=5))
        future = _future(make_bar, entry, [(101, 99, 100), (101, 89, 90)])

        trade = _run(simulator, make_strategy(), entry, future, setup=setup)

        assert trade.entry_bar_index == 5
        assert trade.exit_bar_index == 7
        assert trade.chart_data_start == setup[0].ts
        assert trade.chart_data_end == future[1].ts
        assert trade.trade_bars == tuple(future)
        assert trade.duration_minutes == 2

    def test_to_dict_is_json_serializable(self, simulator, make_strategy, make_bar, entry):
        future = _future(make_bar, entry, [(121, 99, 120)])
        payload = _run(simulator, make_strategy(), entry, future).to_dict()

        data = json.loads(json.dumps(payload))
        assert data["result"] == "win"
        assert data["trade_bars"][0]["c"] == 120.0
        assert data["indicator_values"]["entry"]["price"] == 100.0

    def test_snapshot_needs_history_for_averages(self, make_bars):
        history = make_bars([100] * 10)
        snapshot = capture_indicator_values(history, history[-1], None)
        assert set(snapshot["entry"]) == {"price", "volume"}
        assert "exit" not in snapshot

    def test_snapshot_with_full_history(self, make_bars):
        history = make_bars([100] * 60)
        snapshot = capture_indicator_values(history, history[-1], history[-1])
        assert snapshot["entry"]["ema20"] == 100
        assert snapshot["entry"]["avg_volume20"] == 1000
        assert snapshot["exit"]["price"] == 100

    def test_efficiency_and_gave_back(self, simulator, make_strategy, make_bar, entry):
        future = _future(make_bar, entry, [(104, 99, 103), (101, 89, 90)])
        trade = _run(simulator, make_strategy(), entry, future)

        assert trade.max_favorable_excursion == 150
        assert trade.gave_back_profit
        assert trade.efficiency == trade.pnl / 150
