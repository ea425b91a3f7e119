"""Summary statistics and loss patterns for a set of simulated trades.

Pure-function module: trades in, StrategyResultSummary out.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

import structlog

from strategylab.services.backtest.engines.base import TradeResult
from strategylab.services.strategy.models import Strategy, TradeOutcome

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ZERO = Decimal(0)
TRADING_DAYS_PER_YEAR = 252
TOP_PATTERN_BUCKETS = 3
WORST_TRADES = 5
LONG_LOSS_BARS = 50

EMPTY_INSIGHTS = (
    "No trades were executed during the backtest period. Strategy conditions "
    "may be too restrictive or data may be insufficient."
)

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class LossPatterns:
    hour_distribution: str = "No losses"
    day_distribution: str = "No losses"
    avg_bars_held: Decimal = ZERO


@dataclass
class StrategyResultSummary:
    strategy_id: Optional[int]
    total_trades: int
    win_rate: Decimal  # 0..1
    total_pnl: Decimal
    avg_win: Decimal
    avg_loss: Decimal
    max_drawdown: Decimal  # <= 0
    profit_factor: Optional[Decimal]
    sharpe_ratio: Optional[Decimal]
    backtest_start: datetime
    backtest_end: datetime
    insights: str
    loss_patterns: LossPatterns = field(default_factory=LossPatterns)
    worst_trades_pnl: Decimal = ZERO

    @property
    def expectancy(self) -> Decimal:
        if self.total_trades == 0:
            return ZERO
        return self.win_rate * self.avg_win + (1 - self.win_rate) * self.avg_loss

    @property
    def winning_trades(self) -> int:
        return int((self.total_trades * self.win_rate).to_integral_value())

    @property
    def losing_trades(self) -> int:
        return self.total_trades - self.winning_trades

    @property
    def duration_days(self) -> int:
        return (self.backtest_end - self.backtest_start).days

    def is_valid(self) -> bool:
        return (
            self.total_trades >= 0
            and 0 <= self.win_rate <= 1
            and self.backtest_end >= self.backtest_start
            and self.max_drawdown <= 0
        )


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


def _mean(values: Sequence[Decimal]) -> Decimal:
    return sum(values, ZERO) / len(values) if values else ZERO


def max_drawdown(trades: Sequence[TradeResult]) -> Decimal:
    """Largest peak-to-trough drop of cumulative pnl, as a negative number."""
    cumulative = ZERO
    peak = ZERO
    worst = ZERO
    for trade in sorted(trades, key=lambda t: t.entry_time):
        cumulative += trade.pnl
        peak = max(peak, cumulative)
        worst = max(worst, peak - cumulative)
    return -worst


def sample_std(values: Sequence[Decimal]) -> Decimal:
    if len(values) < 2:
        return ZERO
    avg = _mean(values)
    variance = sum(((v - avg) * (v - avg) for v in values), ZERO) / (len(values) - 1)
    return variance.sqrt()


def sharpe_ratio(trades: Sequence[TradeResult]) -> Decimal:
    """Per-trade Sharpe annualised with sqrt(252); 0 when undefined."""
    if len(trades) < 2:
        return ZERO
    returns = [t.pnl for t in trades]
    std = sample_std(returns)
    if std == 0:
        return ZERO
    return _mean(returns) / std * Decimal(TRADING_DAYS_PER_YEAR).sqrt()


def _top_buckets(counts: Counter, label) -> str:
    # Ties keep first-seen order
    return ", ".join(
        f"{label(key)} ({count} losses)" for key, count in counts.most_common(TOP_PATTERN_BUCKETS)
    )


def analyze_loss_patterns(losing: Sequence[TradeResult]) -> LossPatterns:
    """Most frequent entry hours and weekdays among losing trades."""
    if not losing:
        return LossPatterns()

    hours = Counter(t.entry_time.hour for t in losing)
    days = Counter(t.entry_time.weekday() for t in losing)
    patterns = LossPatterns(
        hour_distribution=_top_buckets(hours, lambda h: f"{h}:00"),
        day_distribution=_top_buckets(days, lambda d: WEEKDAYS[d]),
        avg_bars_held=_mean([Decimal(t.bars_held) for t in losing]),
    )
    logger.debug(
        "Loss patterns",
        hours=patterns.hour_distribution,
        days=patterns.day_distribution,
        avg_bars_held=str(patterns.avg_bars_held),
    )
    return patterns


def default_insights(
    total_trades: int, win_rate: Decimal, total_pnl: Decimal, losing: Sequence[TradeResult]
) -> str:
    """Rule-based summary of the main weaknesses."""
    parts = [
        f"Strategy executed {total_trades} trades with a {win_rate:.1%} win rate "
        f"and ${total_pnl:.2f} total P&L."
    ]
    if win_rate < Decimal("0.5"):
        parts.append(
            "The win rate is below 50%, suggesting entry conditions may need refinement."
        )
    if losing:
        hour, _ = Counter(t.entry_time.hour for t in losing).most_common(1)[0]
        parts.append(
            f"Most losses occur around {hour}:00, indicating potential time-based weakness."
        )
        if _mean([Decimal(t.bars_held) for t in losing]) > LONG_LOSS_BARS:
            parts.append("Losing trades are held too long on average, consider tighter stops.")
    return " ".join(parts)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def empty_result(strategy: Strategy) -> StrategyResultSummary:
    now = datetime.now(timezone.utc)
    return StrategyResultSummary(
        strategy_id=strategy.id,
        total_trades=0,
        win_rate=ZERO,
        total_pnl=ZERO,
        avg_win=ZERO,
        avg_loss=ZERO,
        max_drawdown=ZERO,
        profit_factor=None,
        sharpe_ratio=None,
        backtest_start=now,
        backtest_end=now,
        insights=EMPTY_INSIGHTS,
    )


def analyze_results(
    trades: Sequence[TradeResult], strategy: Strategy
) -> StrategyResultSummary:
    """
    Summarise a scan's trades.

    Args:
        trades: Simulated trades (any order)
        strategy: Strategy the trades came from

    Returns:
        StrategyResultSummary; profit factor and Sharpe are None when not
        positive. An empty trade list gives an empty summary.
    """
    if not trades:
        logger.warning("No trades to analyze", strategy_id=strategy.id)
        return empty_result(strategy)

    total = len(trades)
    wins = [t for t in trades if t.result == TradeOutcome.WIN]
    losses = [t for t in trades if t.result == TradeOutcome.LOSS]

    win_rate = Decimal(len(wins)) / total
    total_pnl = sum((t.pnl for t in trades), ZERO)
    gross_profit = sum((t.pnl for t in wins), ZERO)
    gross_loss = abs(sum((t.pnl for t in losses), ZERO))
    profit_factor = gross_profit / gross_loss if gross_loss > 0 else ZERO
    sharpe = sharpe_ratio(trades)
    worst = sorted(trades, key=lambda t: t.pnl)[:WORST_TRADES]

    summary = StrategyResultSummary(
        strategy_id=strategy.id,
        total_trades=total,
        win_rate=win_rate,
        total_pnl=total_pnl,
        avg_win=_mean([t.pnl for t in wins]),
        avg_loss=_mean([t.pnl for t in losses]),
        max_drawdown=max_drawdown(trades),
        profit_factor=profit_factor if profit_factor > 0 else None,
        sharpe_ratio=sharpe if sharpe > 0 else None,
        backtest_start=min(t.entry_time for t in trades),
        backtest_end=max(t.exit_time for t in trades),
        insights=default_insights(total, win_rate, total_pnl, losses),
        loss_patterns=analyze_loss_patterns(losses),
        worst_trades_pnl=sum((t.pnl for t in worst), ZERO),
    )

    logger.info(
        "Results analyzed",
        strategy_id=strategy.id,
        total_trades=total,
        win_rate=f"{win_rate:.2%}",
        total_pnl=f"{total_pnl:.2f}",
        profit_factor=f"{profit_factor:.2f}",
    )
    return summary
