"""Single-trade simulation from an entry bar through a window of future bars."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional, Sequence

import structlog

from strategylab.config import ScanSettings
from strategylab.services.backtest.engines.base import TradeResult
from strategylab.services.strategy.indicators import values as ind
from strategylab.services.strategy.models import Bar, ExitType, Strategy, TradeOutcome

logger = structlog.get_logger(__name__)

ZERO = Decimal(0)

# ATR values are read as a percent of price unless live ATR is configured
ATR_PROXY_FACTOR = Decimal("0.01")
ATR_PERIOD = 14

# Bars required before entry snapshots include moving averages
SNAPSHOT_MIN_BARS = 50


class TradeSimulator:
    """
    Simulates one trade with fixed stop and target.

    The stop is checked before the target on every bar, so a bar that
    touches both is a loss. The trade times out at the last future bar's
    close when neither level is hit.
    """

    def __init__(self, settings: Optional[ScanSettings] = None) -> None:
        self._settings = settings or ScanSettings()

    def exit_distance(
        self, exit_type: ExitType, value: Decimal, entry_bar: Bar, history: Sequence[Bar]
    ) -> Decimal:
        """Price distance of a stop or target measured from the entry bar close."""
        if exit_type == ExitType.POINTS:
            return value
        if exit_type == ExitType.PERCENTAGE:
            return entry_bar.close * (value / 100)
        if self._settings.atr_distance_mode == "live_atr":
            return value * ind.atr(history, ATR_PERIOD)
        return entry_bar.close * value * ATR_PROXY_FACTOR

    def simulate(
        self,
        strategy: Strategy,
        entry_bar: Bar,
        history: Sequence[Bar],
        future_bars: Sequence[Bar],
        point_multiplier: Decimal,
        slippage_cost: Decimal,
        setup_bars: Sequence[Bar] = (),
    ) -> Optional[TradeResult]:
        """
        Simulate a trade entered at the close of *entry_bar*.

        Args:
            strategy: Strategy supplying direction, stop and target
            entry_bar: Bar whose close is the entry reference
            history: Bars up to and including entry_bar (for snapshots and ATR)
            future_bars: Bars after entry_bar, at most max_bars_in_trade
            point_multiplier: Dollars per point for the symbol
            slippage_cost: Slippage in dollars applied on entry and on timeout exit
            setup_bars: Context bars before entry_bar

        Returns:
            TradeResult, or None when there are no future bars
        """
        if not future_bars:
            logger.warning("No future bars for trade simulation", ts=entry_bar.ts.isoformat())
            return None

        is_long = strategy.is_long
        slippage = slippage_cost / point_multiplier
        entry_price = entry_bar.close + slippage if is_long else entry_bar.close - slippage

        stop_distance = self.exit_distance(
            strategy.stop_loss.type, strategy.stop_loss.value, entry_bar, history
        )
        target_distance = self.exit_distance(
            strategy.take_profit.type, strategy.take_profit.value, entry_bar, history
        )
        if is_long:
            stop_price = entry_price - stop_distance
            target_price = entry_price + target_distance
        else:
            stop_price = entry_price + stop_distance
            target_price = entry_price - target_distance

        logger.debug(
            "Trade setup",
            entry=str(entry_price),
            stop=str(stop_price),
            target=str(target_price),
            direction=strategy.direction.value,
        )

        mae = ZERO
        mfe = ZERO
        outcome = TradeOutcome.TIMEOUT
        exit_price = ZERO
        bars_held = len(future_bars)

        for i, bar in enumerate(future_bars):
            if is_long:
                if bar.low <= stop_price:
                    outcome, exit_price, bars_held = TradeOutcome.LOSS, stop_price, i + 1
                    break
                if bar.high >= target_price:
                    outcome, exit_price, bars_held = TradeOutcome.WIN, target_price, i + 1
                    break
                unrealized = (bar.close - entry_price) * point_multiplier
            else:
                if bar.high >= stop_price:
                    outcome, exit_price, bars_held = TradeOutcome.LOSS, stop_price, i + 1
                    break
                if bar.low <= target_price:
                    outcome, exit_price, bars_held = TradeOutcome.WIN, target_price, i + 1
                    break
                unrealized = (entry_price - bar.close) * point_multiplier

            mae = min(mae, unrealized)
            mfe = max(mfe, unrealized)

        if outcome == TradeOutcome.TIMEOUT:
            last_close = future_bars[-1].close
            exit_price = last_close - slippage if is_long else last_close + slippage
            logger.debug("Trade timed out", bars=bars_held, exit=str(exit_price))

        delta = exit_price - entry_price if is_long else entry_price - exit_price
        pnl = delta * point_multiplier - self._settings.commission

        risk = abs(entry_price - stop_price)
        risk_reward = abs(pnl) / (risk * point_multiplier) if risk > 0 else ZERO

        trade_bars = tuple(future_bars[:bars_held])
        setup = tuple(setup_bars)

        return TradeResult(
            entry_time=entry_bar.ts,
            exit_time=trade_bars[-1].ts,
            entry_price=entry_price,
            exit_price=exit_price,
            stop_price=stop_price,
            target_price=target_price,
            side="long" if is_long else "short",
            pnl=pnl,
            result=outcome,
            bars_held=bars_held,
            max_adverse_excursion=mae,
            max_favorable_excursion=mfe,
            risk_reward_ratio=risk_reward,
            setup_bars=setup,
            trade_bars=trade_bars,
            chart_data_start=setup[0].ts if setup else None,
            chart_data_end=trade_bars[-1].ts,
            entry_bar_index=len(setup),
            exit_bar_index=len(setup) + bars_held,
            indicator_values=capture_indicator_values(history, entry_bar, trade_bars[-1]),
        )


def capture_indicator_values(
    history: Sequence[Bar], entry_bar: Bar, exit_bar: Optional[Bar]
) -> dict[str, dict[str, Decimal]]:
    """Indicator snapshot at entry (and price/volume at exit)."""
    entry = {"price": entry_bar.close, "volume": Decimal(entry_bar.volume)}

    if len(history) >= SNAPSHOT_MIN_BARS:
        entry["ema9"] = ind.snapshot_ema(history, 9)
        entry["ema20"] = ind.snapshot_ema(history, 20)
        entry["ema50"] = ind.snapshot_ema(history, 50)
        entry["vwap"] = ind.session_vwap(history)
        entry["avg_volume20"] = ind.average_volume(history, 20)

    snapshot = {"entry": entry}
    if exit_bar is not None:
        snapshot["exit"] = {"price": exit_bar.close, "volume": Decimal(exit_bar.volume)}
    return snapshot
