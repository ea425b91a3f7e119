"""Per-trade analysis, recurring trade patterns and performance heatmaps.

Pure-function module over TradeResult. Market context comes from the setup
bars captured before each entry; session windows are read on the UTC clock,
the same clock the ``time`` indicator uses.

Usage:
    analysis = analyze_trade(trade, strategy)
    patterns = find_patterns(report.trades)
    heatmap = generate_heatmap(report.trades, "hour")
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Hashable, Optional, Sequence

import structlog

from strategylab.services.backtest.engines.base import TradeResult
from strategylab.services.strategy.indicators import values as ind
from strategylab.services.strategy.models import Bar, Strategy, TradeOutcome
from strategylab.utils.time import minutes_since_midnight

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ZERO = Decimal(0)
CONTEXT_PERIOD = 14
MIN_CONTEXT_BARS = CONTEXT_PERIOD + 1
RECENT_VOLUME_BARS = 5
MIN_PATTERN_TRADES = 5
MEANINGFUL_AVG_PNL = Decimal(5)

QUICK_EXIT_BARS = 5
LONG_HOLD_BARS = 20

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


class MarketCondition(str, Enum):
    TRENDING = "trending"
    RANGING = "ranging"
    VOLATILE = "volatile"
    QUIET = "quiet"
    UNKNOWN = "unknown"


class TimeOfDay(str, Enum):
    MORNING = "morning"
    MIDDAY = "midday"
    AFTERNOON = "afternoon"
    CLOSE = "close"
    OUTSIDE_HOURS = "outside_hours"


class PatternType(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"


# (start minute inclusive, end minute exclusive)
SESSION_WINDOWS = [
    (TimeOfDay.MORNING, 570, 720),
    (TimeOfDay.MIDDAY, 720, 840),
    (TimeOfDay.AFTERNOON, 840, 960),
    (TimeOfDay.CLOSE, 960, 975),
]

HEATMAP_CONDITIONS = [
    MarketCondition.TRENDING,
    MarketCondition.RANGING,
    MarketCondition.VOLATILE,
    MarketCondition.QUIET,
]


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class TradeAnalysis:
    entry_reason: str
    exit_reason: str
    market_condition: MarketCondition
    time_of_day: TimeOfDay
    day_of_week: str
    adx_value: Optional[Decimal] = None
    atr_value: Optional[Decimal] = None
    entry_quality: int = 50
    exit_quality: int = 50


@dataclass
class TradePattern:
    name: str
    description: str
    frequency: int
    avg_impact: Decimal
    type: PatternType
    confidence: int  # 0..100


@dataclass
class TradeListSummary:
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    timeouts: int = 0
    total_pnl: Decimal = ZERO
    avg_pnl: Decimal = ZERO
    win_rate: Decimal = ZERO  # percent, 0..100
    avg_win: Decimal = ZERO
    avg_loss: Decimal = ZERO
    largest_win: Decimal = ZERO
    largest_loss: Decimal = ZERO


@dataclass
class DimensionStats:
    dimension: str
    stats: dict[str, TradeListSummary] = field(default_factory=dict)


@dataclass
class HeatmapCell:
    label: str
    value: Decimal  # average pnl
    count: int
    color: str
    tooltip: str


@dataclass
class HeatmapData:
    dimension: str
    label: str
    cells: list[HeatmapCell] = field(default_factory=list)


def _mean(values: Sequence[Decimal]) -> Decimal:
    return sum(values, ZERO) / len(values) if values else ZERO


def _group(
    trades: Sequence[TradeResult], key: Callable[[TradeResult], Hashable]
) -> dict[Hashable, list[TradeResult]]:
    groups: dict[Hashable, list[TradeResult]] = defaultdict(list)
    for trade in trades:
        groups[key(trade)].append(trade)
    return groups


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def trend_strength(bars: Sequence[Bar], period: int = CONTEXT_PERIOD) -> Decimal:
    """
    Net move over the last *period* bars relative to their average range,
    scaled so 25 marks a trend and capped at 100.

    A quick stand-in for ADX on short context windows; 0 when there are
    fewer than *period* bars or the bars have no range.
    """
    if len(bars) < period:
        return ZERO
    recent = bars[-period:]
    avg_range = _mean([b.high - b.low for b in recent])
    if avg_range == 0:
        return ZERO
    move = abs(recent[-1].close - recent[0].close)
    return min(Decimal(100), move / avg_range * 25)


def classify_market_condition(bars: Sequence[Bar]) -> MarketCondition:
    """Label the market in *bars* as trending, volatile, quiet or ranging."""
    if len(bars) < MIN_CONTEXT_BARS:
        return MarketCondition.UNKNOWN

    atr = ind.atr(bars, CONTEXT_PERIOD)
    avg_range = _mean([b.high - b.low for b in bars])
    avg_volume = _mean([Decimal(b.volume) for b in bars])
    recent_volume = _mean([Decimal(b.volume) for b in bars[-RECENT_VOLUME_BARS:]])

    if trend_strength(bars) > 25:
        return MarketCondition.TRENDING
    if atr > avg_range * Decimal("1.5") and recent_volume > avg_volume * Decimal("1.3"):
        return MarketCondition.VOLATILE
    if atr < avg_range * Decimal("0.7") and recent_volume < avg_volume * Decimal("0.8"):
        return MarketCondition.QUIET
    return MarketCondition.RANGING


def classify_time_of_day(ts: datetime) -> TimeOfDay:
    minutes = minutes_since_midnight(ts)
    for label, start, end in SESSION_WINDOWS:
        if start <= minutes < end:
            return label
    return TimeOfDay.OUTSIDE_HOURS


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def entry_quality_score(trade: TradeResult, strategy: Strategy) -> int:
    """Heuristic 0-100 score of how well the entry was placed (50 is neutral)."""
    score = 50
    if len(strategy.entry_conditions) >= 3:
        score += 10
    if trade.max_favorable_excursion > abs(trade.max_adverse_excursion) * 2:
        score += 15
    if trade.bars_held >= 3:
        score += 10

    time_of_day = classify_time_of_day(trade.entry_time)
    if time_of_day in (TimeOfDay.MORNING, TimeOfDay.MIDDAY):
        score += 15
    elif time_of_day == TimeOfDay.CLOSE:
        score -= 20

    return max(0, min(100, score))


def exit_quality_score(trade: TradeResult) -> int:
    """Heuristic 0-100 score of how much of the move the exit kept."""
    score = 50

    efficiency = trade.efficiency
    if efficiency is not None:
        if efficiency >= Decimal("0.8"):
            score += 30
        elif efficiency >= Decimal("0.6"):
            score += 20
        elif efficiency >= Decimal("0.4"):
            score += 10
        elif efficiency < Decimal("0.2"):
            score -= 20

    if trade.result == TradeOutcome.LOSS:
        if trade.bars_held <= 5:
            score += 15
        elif trade.bars_held > 20:
            score -= 10

    if trade.result == TradeOutcome.WIN:
        score += 20
    elif trade.result == TradeOutcome.TIMEOUT:
        score -= 5

    if abs(trade.max_adverse_excursion) < abs(trade.pnl) * Decimal("0.5"):
        score += 10

    return max(0, min(100, score))


# ---------------------------------------------------------------------------
# Single trade
# ---------------------------------------------------------------------------


def entry_reason(trade: TradeResult, strategy: Strategy) -> str:
    conditions = [c.expression for c in strategy.entry_conditions]
    if not conditions:
        return "Strategy conditions met"

    reason = f"Conditions met: {' AND '.join(conditions)}"
    indicators = trade.indicator_values.get("entry") or {}
    if indicators:
        values = ", ".join(f"{name}={value:.2f}" for name, value in indicators.items())
        reason += f". Indicators: {values}"
    return reason


def exit_reason(trade: TradeResult) -> str:
    if trade.result == TradeOutcome.WIN:
        return f"Take profit target reached ({trade.pnl:+.2f})"
    if trade.result == TradeOutcome.LOSS:
        return f"Stop loss hit ({trade.pnl:+.2f})"
    return f"Timed out after {trade.bars_held} bars"


def analyze_trade(trade: TradeResult, strategy: Strategy) -> TradeAnalysis:
    """
    Explain one trade from its captured context.

    Args:
        trade: Simulated trade with setup bars and indicator snapshot
        strategy: Strategy the trade came from

    Returns:
        TradeAnalysis; ADX and ATR are None when the setup window is too
        short to measure them.
    """
    context = trade.setup_bars
    adx_value = atr_value = None
    if len(context) >= MIN_CONTEXT_BARS:
        adx_value = trend_strength(context)
        atr_value = ind.atr(context, CONTEXT_PERIOD)

    return TradeAnalysis(
        entry_reason=entry_reason(trade, strategy),
        exit_reason=exit_reason(trade),
        market_condition=classify_market_condition(context),
        time_of_day=classify_time_of_day(trade.entry_time),
        day_of_week=WEEKDAYS[trade.entry_time.weekday()],
        adx_value=adx_value,
        atr_value=atr_value,
        entry_quality=entry_quality_score(trade, strategy),
        exit_quality=exit_quality_score(trade),
    )


# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------


def _signed(value: Decimal) -> str:
    return f"+{value:.2f}" if value > 0 else f"{value:.2f}"


def find_time_patterns(trades: Sequence[TradeResult]) -> list[TradePattern]:
    patterns = []
    groups = _group(trades, lambda t: classify_time_of_day(t.entry_time))
    for time_of_day, group in groups.items():
        avg_pnl = _mean([t.pnl for t in group])
        if len(group) < 3 or abs(avg_pnl) <= MEANINGFUL_AVG_PNL:
            continue
        positive = avg_pnl > 0
        label = time_of_day.value
        patterns.append(
            TradePattern(
                name=f"{label}_performance",
                description=(
                    f"Trades during {label} show strong performance ({_signed(avg_pnl)} avg)"
                    if positive
                    else f"Trades during {label} tend to lose ({_signed(avg_pnl)} avg)"
                ),
                frequency=len(group),
                avg_impact=avg_pnl,
                type=PatternType.POSITIVE if positive else PatternType.NEGATIVE,
                confidence=min(95, 50 + len(group) * 5),
            )
        )
    return patterns


def find_duration_patterns(trades: Sequence[TradeResult]) -> list[TradePattern]:
    patterns = []

    quick = [t for t in trades if t.bars_held < QUICK_EXIT_BARS]
    if len(quick) >= 5:
        avg_pnl = _mean([t.pnl for t in quick])
        positive = avg_pnl > 0
        patterns.append(
            TradePattern(
                name="quick_exit_pattern",
                description=(
                    f"Quick exits (< {QUICK_EXIT_BARS} bars) often profitable "
                    f"({_signed(avg_pnl)} avg)"
                    if positive
                    else f"Quick exits (< {QUICK_EXIT_BARS} bars) frequently stopped out "
                    f"({_signed(avg_pnl)} avg)"
                ),
                frequency=len(quick),
                avg_impact=avg_pnl,
                type=PatternType.POSITIVE if positive else PatternType.NEGATIVE,
                confidence=min(85, 40 + len(quick) * 3),
            )
        )

    long_holds = [t for t in trades if t.bars_held > LONG_HOLD_BARS]
    if len(long_holds) >= 3:
        avg_pnl = _mean([t.pnl for t in long_holds])
        positive = avg_pnl > 0
        patterns.append(
            TradePattern(
                name="long_hold_pattern",
                description=(
                    f"Trades held > {LONG_HOLD_BARS} bars show patience pays off "
                    f"({_signed(avg_pnl)} avg)"
                    if positive
                    else f"Holding > {LONG_HOLD_BARS} bars often gives back profits "
                    f"({_signed(avg_pnl)} avg)"
                ),
                frequency=len(long_holds),
                avg_impact=avg_pnl,
                type=PatternType.POSITIVE if positive else PatternType.NEGATIVE,
                confidence=min(80, 50 + len(long_holds) * 5),
            )
        )

    return patterns


def find_excursion_patterns(trades: Sequence[TradeResult]) -> list[TradePattern]:
    gave_back = [
        t
        for t in trades
        if t.gave_back_profit and t.pnl < t.max_favorable_excursion * Decimal("0.5")
    ]
    if len(gave_back) < 3:
        return []

    avg_pnl = _mean([t.pnl for t in gave_back])
    return [
        TradePattern(
            name="gave_back_profit",
            description=(
                f"{len(gave_back)} trades gave back significant profit "
                f"(avg final P&L: {avg_pnl:.2f} vs peak profit)"
            ),
            frequency=len(gave_back),
            avg_impact=avg_pnl,
            type=PatternType.NEGATIVE,
            confidence=min(90, 60 + len(gave_back) * 5),
        )
    ]


def find_patterns(trades: Sequence[TradeResult]) -> list[TradePattern]:
    """Recurring time, duration and excursion patterns, most confident first.

    Fewer than five trades gives no patterns.
    """
    if len(trades) < MIN_PATTERN_TRADES:
        return []

    patterns = (
        find_time_patterns(trades)
        + find_duration_patterns(trades)
        + find_excursion_patterns(trades)
    )
    patterns.sort(key=lambda p: p.confidence, reverse=True)
    logger.debug("Trade patterns found", trades=len(trades), patterns=len(patterns))
    return patterns


# ---------------------------------------------------------------------------
# Dimension stats and heatmaps
# ---------------------------------------------------------------------------


def summarize_trades(trades: Sequence[TradeResult]) -> TradeListSummary:
    if not trades:
        return TradeListSummary()

    wins = [t.pnl for t in trades if t.result == TradeOutcome.WIN]
    losses = [t.pnl for t in trades if t.result == TradeOutcome.LOSS]
    pnls = [t.pnl for t in trades]
    return TradeListSummary(
        total_trades=len(trades),
        wins=len(wins),
        losses=len(losses),
        timeouts=sum(1 for t in trades if t.result == TradeOutcome.TIMEOUT),
        total_pnl=sum(pnls, ZERO),
        avg_pnl=_mean(pnls),
        win_rate=Decimal(len(wins)) / len(trades) * 100,
        avg_win=_mean(wins),
        avg_loss=_mean(losses),
        largest_win=max(wins, default=ZERO),
        largest_loss=min(losses, default=ZERO),
    )


def _hour_label(trade: TradeResult) -> str:
    return f"{trade.entry_time.hour:02d}:00"


def _day_label(trade: TradeResult) -> str:
    return WEEKDAYS[trade.entry_time.weekday()]


def _condition_label(trade: TradeResult) -> str:
    return classify_market_condition(trade.setup_bars).value


def stats_by_hour(trades: Sequence[TradeResult]) -> dict[str, TradeListSummary]:
    groups = _group(sorted(trades, key=lambda t: t.entry_time.hour), _hour_label)
    return {label: summarize_trades(group) for label, group in groups.items()}


def stats_by_day(trades: Sequence[TradeResult]) -> dict[str, TradeListSummary]:
    groups = _group(sorted(trades, key=lambda t: t.entry_time.weekday()), _day_label)
    return {label: summarize_trades(group) for label, group in groups.items()}


def stats_by_condition(trades: Sequence[TradeResult]) -> dict[str, TradeListSummary]:
    groups = _group(trades, _condition_label)
    return {label: summarize_trades(group) for label, group in groups.items()}


def stats_by_dimension(trades: Sequence[TradeResult]) -> dict[str, DimensionStats]:
    return {
        "hour": DimensionStats("Hour of Day", stats_by_hour(trades)),
        "day": DimensionStats("Day of Week", stats_by_day(trades)),
        "condition": DimensionStats("Market Condition", stats_by_condition(trades)),
    }


def _heatmap_cell(label: str, trades: Sequence[TradeResult]) -> HeatmapCell:
    avg_pnl = _mean([t.pnl for t in trades])
    win_rate = Decimal(sum(1 for t in trades if t.is_win)) / len(trades) * 100
    if avg_pnl > MEANINGFUL_AVG_PNL:
        color = "green"
    elif avg_pnl < -MEANINGFUL_AVG_PNL:
        color = "red"
    else:
        color = "yellow"
    return HeatmapCell(
        label=label,
        value=avg_pnl,
        count=len(trades),
        color=color,
        tooltip=f"{len(trades)} trades, {win_rate:.1f}% win rate, {avg_pnl:.2f} avg P&L",
    )


def generate_heatmap(trades: Sequence[TradeResult], dimension: str) -> HeatmapData:
    """
    Average pnl per bucket of *dimension*.

    Args:
        trades: Simulated trades
        dimension: "hour", "day" (Monday-Friday) or "condition"

    Raises:
        ValueError: If the dimension is unknown
    """
    key = dimension.lower()
    if key == "hour":
        groups = _group(sorted(trades, key=lambda t: t.entry_time.hour), _hour_label)
        cells = [_heatmap_cell(label, group) for label, group in groups.items()]
        return HeatmapData("hour", "Performance by Hour of Day", cells)

    if key == "day":
        groups = _group(trades, _day_label)
        cells = [_heatmap_cell(day, groups[day]) for day in WEEKDAYS[:5] if groups.get(day)]
        return HeatmapData("day", "Performance by Day of Week", cells)

    if key == "condition":
        groups = _group(trades, _condition_label)
        cells = [
            _heatmap_cell(c.value, groups[c.value])
            for c in HEATMAP_CONDITIONS
            if groups.get(c.value)
        ]
        return HeatmapData("condition", "Performance by Market Condition", cells)

    raise ValueError(f"Unknown dimension: {dimension}")
