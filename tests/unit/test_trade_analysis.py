"""Unit tests for per-trade analysis, patterns and heatmaps."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from strategylab.services.backtest.engines.base import TradeResult
from strategylab.services.backtest.trade_analysis import (
    MarketCondition,
    PatternType,
    TimeOfDay,
    TradeListSummary,
    analyze_trade,
    classify_market_condition,
    classify_time_of_day,
    entry_quality_score,
    exit_quality_score,
    find_patterns,
    generate_heatmap,
    stats_by_day,
    stats_by_dimension,
    stats_by_hour,
    summarize_trades,
    trend_strength,
)
from strategylab.services.strategy.models import TradeOutcome

D = Decimal
MONDAY = datetime(2024, 1, 8, 14, 30, tzinfo=timezone.utc)


def _at(hour, minute=0, day=MONDAY):
    return day.replace(hour=hour, minute=minute)


def _trade(
    pnl,
    entry_time=MONDAY,
    bars_held=5,
    result=None,
    mfe=0,
    mae=0,
    setup_bars=(),
    indicator_values=None,
):
    pnl = D(str(pnl))
    if result is None:
        result = TradeOutcome.WIN if pnl > 0 else TradeOutcome.LOSS
    return TradeResult(
        entry_time=entry_time,
        exit_time=entry_time + timedelta(minutes=bars_held),
        entry_price=D(100),
        exit_price=D(100),
        stop_price=D(90),
        target_price=D(120),
        side="long",
        pnl=pnl,
        result=result,
        bars_held=bars_held,
        max_adverse_excursion=D(str(mae)),
        max_favorable_excursion=D(str(mfe)),
        risk_reward_ratio=D(1),
        setup_bars=tuple(setup_bars),
        indicator_values=indicator_values or {},
    )


@pytest.fixture
def trending_bars(make_bars):
    """20 bars rising one point per bar, each two points tall."""
    return make_bars(range(100, 120), spread=1)


class TestClassification:
    """Tests for market condition and session classification."""

    @pytest.mark.parametrize(
        "hour,minute,expected",
        [
            (9, 29, TimeOfDay.OUTSIDE_HOURS),
            (9, 30, TimeOfDay.MORNING),
            (12, 0, TimeOfDay.MIDDAY),
            (14, 30, TimeOfDay.AFTERNOON),
            (16, 10, TimeOfDay.CLOSE),
            (16, 15, TimeOfDay.OUTSIDE_HOURS),
        ],
    )
    def test_time_of_day(self, hour, minute, expected):
        assert classify_time_of_day(_at(hour, minute)) == expected

    def test_too_few_bars_is_unknown(self, make_bars):
        bars = make_bars([100] * 14, spread=1)
        assert classify_market_condition(bars) == MarketCondition.UNKNOWN

    def test_trending(self, trending_bars):
        assert trend_strength(trending_bars) == 100
        assert classify_market_condition(trending_bars) == MarketCondition.TRENDING

    def test_ranging(self, make_bars):
        bars = make_bars([100] * 20, spread=1)
        assert trend_strength(bars) == 0
        assert classify_market_condition(bars) == MarketCondition.RANGING

    def test_volatile(self, make_bar):
        """Gapping closes with no intrabar range and a late volume surge."""
        bars = [
            make_bar(
                100 if i % 2 == 0 else 110,
                ts=MONDAY + timedelta(minutes=i),
                volume=2000 if i >= 15 else 1000,
            )
            for i in range(20)
        ]
        assert classify_market_condition(bars) == MarketCondition.VOLATILE

    def test_quiet(self, make_bar):
        """Ranges and volume both shrink into the end of the window."""
        bars = [
            make_bar(
                100,
                ts=MONDAY + timedelta(minutes=i),
                spread=5 if i < 5 else D("0.5"),
                volume=500 if i >= 15 else 1000,
            )
            for i in range(20)
        ]
        assert classify_market_condition(bars) == MarketCondition.QUIET


class TestQualityScores:
    """Tests for entry and exit scoring."""

    def test_entry_neutral_afternoon(self, make_strategy):
        assert entry_quality_score(_trade(10), make_strategy()) == 60

    def test_entry_best_case(self, make_strategy):
        strategy = make_strategy(
            conditions=[("rsi", "<", "30"), ("price", ">", "ema20"), ("volume", ">", "1000")]
        )
        trade = _trade(100, entry_time=_at(10), mfe=300, mae=-100)
        assert entry_quality_score(trade, strategy) == 100

    def test_entry_at_close(self, make_strategy):
        trade = _trade(10, entry_time=_at(16, 5), bars_held=1)
        assert entry_quality_score(trade, make_strategy()) == 30

    def test_exit_target_with_most_of_the_move(self):
        assert exit_quality_score(_trade(250, mfe=300, mae=-50)) == 100

    def test_exit_quick_stop(self):
        assert exit_quality_score(_trade(-100, bars_held=3, mae=-100)) == 65

    def test_exit_slow_stop(self):
        assert exit_quality_score(_trade(-100, bars_held=30, mae=-100)) == 40

    def test_exit_timeout_gave_back(self):
        trade = _trade(10, mfe=100, result=TradeOutcome.TIMEOUT)
        assert exit_quality_score(trade) == 35


class TestAnalyzeTrade:
    """Tests for single trade analysis."""

    def test_full_context(self, trending_bars, make_strategy):
        strategy = make_strategy(conditions=[("rsi", ">", "50"), ("price", ">", "ema20")])
        trade = _trade(
            996,
            setup_bars=trending_bars,
            indicator_values={"entry": {"price": D("100.5"), "rsi": D("61.234")}},
        )

        analysis = analyze_trade(trade, strategy)

        assert analysis.entry_reason == (
            "Conditions met: rsi > 50 AND price > ema20. Indicators: price=100.50, rsi=61.23"
        )
        assert analysis.exit_reason == "Take profit target reached (+996.00)"
        assert analysis.market_condition == MarketCondition.TRENDING
        assert analysis.time_of_day == TimeOfDay.AFTERNOON
        assert analysis.day_of_week == "Monday"
        assert analysis.adx_value == 100
        assert analysis.atr_value == 2

    def test_short_setup_has_no_readings(self, make_bars, make_strategy):
        trade = _trade(-504, setup_bars=make_bars([100] * 5))

        analysis = analyze_trade(trade, make_strategy())

        assert analysis.exit_reason == "Stop loss hit (-504.00)"
        assert analysis.market_condition == MarketCondition.UNKNOWN
        assert analysis.adx_value is None
        assert analysis.atr_value is None

    def test_timeout_reason(self, make_strategy):
        trade = _trade(46, bars_held=10, result=TradeOutcome.TIMEOUT)
        assert analyze_trade(trade, make_strategy()).exit_reason == "Timed out after 10 bars"


class TestFindPatterns:
    """Tests for recurring pattern detection."""

    SPREAD_TIMES = [(10, 0), (12, 30), (14, 30), (16, 5), (20, 0)]

    def test_needs_five_trades(self):
        assert find_patterns([_trade(100, entry_time=_at(10))] * 4) == []

    def test_time_of_day_pattern(self):
        trades = [_trade(100, entry_time=_at(10, i), bars_held=10) for i in range(5)]

        (pattern,) = find_patterns(trades)

        assert pattern.name == "morning_performance"
        assert pattern.type == PatternType.POSITIVE
        assert pattern.frequency == 5
        assert pattern.avg_impact == 100
        assert pattern.confidence == 75
        assert pattern.description == "Trades during morning show strong performance (+100.00 avg)"

    def test_quick_losses_ranked_by_confidence(self):
        trades = [_trade(-50, entry_time=_at(20, i), bars_held=2) for i in range(5)]

        patterns = find_patterns(trades)

        assert [p.name for p in patterns] == ["outside_hours_performance", "quick_exit_pattern"]
        assert [p.confidence for p in patterns] == [75, 55]
        assert all(p.type == PatternType.NEGATIVE for p in patterns)

    def test_gave_back_profit(self):
        trades = [
            _trade(100, entry_time=_at(h, m), bars_held=10, mfe=400)
            for h, m in self.SPREAD_TIMES
        ]

        (pattern,) = find_patterns(trades)

        assert pattern.name == "gave_back_profit"
        assert pattern.type == PatternType.NEGATIVE
        assert pattern.confidence == 85
        assert pattern.description == (
            "5 trades gave back significant profit (avg final P&L: 100.00 vs peak profit)"
        )

    def test_long_holds(self):
        trades = [_trade(30, entry_time=_at(h, m), bars_held=25) for h, m in self.SPREAD_TIMES]

        (pattern,) = find_patterns(trades)

        assert pattern.name == "long_hold_pattern"
        assert pattern.type == PatternType.POSITIVE
        assert pattern.confidence == 75


class TestDimensionStats:
    """Tests for grouped summaries."""

    def test_summarize(self):
        trades = [
            _trade(200),
            _trade(-100),
            _trade(25, result=TradeOutcome.TIMEOUT),
            _trade(50),
        ]

        summary = summarize_trades(trades)

        assert summary == TradeListSummary(
            total_trades=4,
            wins=2,
            losses=1,
            timeouts=1,
            total_pnl=D(175),
            avg_pnl=D("43.75"),
            win_rate=D(50),
            avg_win=D(125),
            avg_loss=D(-100),
            largest_win=D(200),
            largest_loss=D(-100),
        )

    def test_summarize_empty(self):
        assert summarize_trades([]) == TradeListSummary()

    def test_by_hour_and_day_are_ordered(self):
        trades = [
            _trade(10, entry_time=_at(15, day=MONDAY + timedelta(days=1))),
            _trade(-10, entry_time=_at(14)),
        ]

        assert list(stats_by_hour(trades)) == ["14:00", "15:00"]
        assert list(stats_by_day(trades)) == ["Monday", "Tuesday"]
        assert stats_by_day(trades)["Tuesday"].wins == 1

    def test_by_dimension(self, trending_bars):
        trades = [_trade(10, setup_bars=trending_bars), _trade(-10)]

        stats = stats_by_dimension(trades)

        assert [d.dimension for d in stats.values()] == [
            "Hour of Day",
            "Day of Week",
            "Market Condition",
        ]
        assert set(stats["condition"].stats) == {"trending", "unknown"}


class TestHeatmaps:
    """Tests for heatmap cells."""

    def test_hour_heatmap(self):
        trades = [
            _trade(20, entry_time=_at(15)),
            _trade(10, entry_time=_at(14)),
            _trade(20, entry_time=_at(14, 30)),
            _trade(2, entry_time=_at(16)),
            _trade(-5, entry_time=_at(15, 30)),
        ]

        heatmap = generate_heatmap(trades, "HOUR")

        assert heatmap.dimension == "hour"
        assert [c.label for c in heatmap.cells] == ["14:00", "15:00", "16:00"]
        assert [c.color for c in heatmap.cells] == ["green", "green", "yellow"]
        assert heatmap.cells[0].tooltip == "2 trades, 100.0% win rate, 15.00 avg P&L"

    def test_day_heatmap_skips_weekend(self):
        saturday = MONDAY + timedelta(days=5)
        trades = [_trade(-20), _trade(30, entry_time=saturday)]

        heatmap = generate_heatmap(trades, "day")

        assert [(c.label, c.color) for c in heatmap.cells] == [("Monday", "red")]

    def test_condition_heatmap(self, trending_bars):
        trades = [_trade(10, setup_bars=trending_bars), _trade(-10)]

        heatmap = generate_heatmap(trades, "condition")

        assert [c.label for c in heatmap.cells] == ["trending"]
        assert heatmap.cells[0].count == 1

    def test_unknown_dimension(self):
        with pytest.raises(ValueError, match="Unknown dimension"):
            generate_heatmap([], "symbol")
