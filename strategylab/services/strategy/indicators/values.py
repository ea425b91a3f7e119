"""
Current-value indicators for per-bar condition evaluation.

Each function takes the bar history up to and including the evaluation bar
(oldest first, non-empty) and returns the indicator reading at that bar.
Insufficient history is not an error: each indicator has a documented
degraded value (neutral RSI, zero ATR, current price, ...).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Sequence

import structlog

from strategylab.services.strategy.history import running_value
from strategylab.services.strategy.indicators import series as ind
from strategylab.services.strategy.models import Bar

logger = structlog.get_logger(__name__)

ZERO = Decimal(0)
HUNDRED = Decimal(100)
FIFTY = Decimal(50)

# Previous trading day search window (weekends and holidays)
PREV_DAY_LOOKBACK_DAYS = 7


def _insufficient(name: str, required: int, actual: int) -> None:
    logger.debug(
        "Insufficient bars for indicator",
        indicator=name,
        required=required,
        actual=actual,
    )


def _closes(bars: Sequence[Bar]) -> list[Decimal]:
    return [b.close for b in bars]


def _high_low(bars: Sequence[Bar], period: int) -> tuple[Decimal, Decimal]:
    window = bars[-period:] if len(bars) > period else bars
    return max(b.high for b in window), min(b.low for b in window)


# ---------------------------------------------------------------------------
# Moving averages
# ---------------------------------------------------------------------------


def ema(bars: Sequence[Bar], period: int) -> Decimal:
    """EMA of closes over the whole history (plain average below *period* bars)."""
    if not bars:
        return ZERO
    return running_value(
        bars, ("ema_close", period), lambda b: ind.running_ema(_closes(b), period)
    )


def sma(bars: Sequence[Bar], period: int) -> Decimal:
    window = bars[-period:] if len(bars) > period else bars
    return ind.mean(_closes(window))


def snapshot_ema(bars: Sequence[Bar], period: int) -> Decimal:
    """EMA over the trailing ``2 * period`` bars, used for trade snapshots."""
    if len(bars) < period:
        return bars[-1].close

    recent = bars[-period * 2 :]
    multiplier = ind.ema_multiplier(period)
    current = ind.mean(_closes(recent[:period]))
    for bar in recent[period:]:
        current = (bar.close - current) * multiplier + current
    return current


# ---------------------------------------------------------------------------
# Momentum
# ---------------------------------------------------------------------------


def rsi(bars: Sequence[Bar], period: int = 14) -> Decimal:
    """Simple-average RSI over the last *period* close changes (50 if short)."""
    if len(bars) < period + 1:
        _insufficient("rsi", period + 1, len(bars))
        return FIFTY

    closes = _closes(bars[-(period + 1) :])
    gains = []
    losses = []
    for prev, curr in zip(closes, closes[1:]):
        change = curr - prev
        gains.append(change if change > 0 else ZERO)
        losses.append(-change if change < 0 else ZERO)

    avg_gain = ind.mean(gains)
    avg_loss = ind.mean(losses)
    if avg_loss == 0:
        return HUNDRED

    rs = avg_gain / avg_loss
    return HUNDRED - HUNDRED / (1 + rs)


@dataclass(frozen=True)
class MACDReading:
    macd: Decimal
    signal: Decimal
    histogram: Decimal


def macd(
    bars: Sequence[Bar],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> MACDReading:
    """MACD line, signal and histogram (all zero below *slow_period* bars)."""
    if len(bars) < slow_period:
        _insufficient("macd", slow_period, len(bars))
        return MACDReading(ZERO, ZERO, ZERO)

    def _line(all_bars: Sequence[Bar]) -> list[Decimal]:
        closes = _closes(all_bars)
        fast = ind.running_ema(closes, fast_period)
        slow = ind.running_ema(closes, slow_period)
        return [f - s for f, s in zip(fast, slow)]

    def _signal(all_bars: Sequence[Bar]) -> list[Decimal]:
        # MACD values exist from the first bar that completes the slow EMA.
        line = _line(all_bars)
        tail = ind.running_ema(line[slow_period - 1 :], signal_period)
        return [ZERO] * (slow_period - 1) + tail

    key = (fast_period, slow_period, signal_period)
    line_value = running_value(bars, ("macd_line",) + key, _line)

    macd_count = len(bars) - slow_period + 1
    if macd_count >= signal_period:
        signal_value = running_value(bars, ("macd_signal",) + key, _signal)
    else:
        signal_value = line_value

    return MACDReading(line_value, signal_value, line_value - signal_value)


@dataclass(frozen=True)
class StochasticReading:
    k: Decimal
    d: Decimal


def stochastic(
    bars: Sequence[Bar], k_period: int = 14, d_period: int = 3, smooth_k: int = 3
) -> StochasticReading:
    """Smoothed %K and %D (both 50 below *k_period* bars)."""
    if len(bars) < k_period:
        _insufficient("stochastic", k_period, len(bars))
        return StochasticReading(FIFTY, FIFTY)

    # Only the trailing raw %K values feed the smoothing windows.
    k_count = len(bars) - k_period + 1
    needed = min(k_count, max(smooth_k, d_period))
    recent = list(bars[-(k_period + needed - 1) :])

    k_values: list[Decimal] = []
    for end in range(k_period, len(recent) + 1):
        window = recent[end - k_period : end]
        highest = max(b.high for b in window)
        lowest = min(b.low for b in window)
        close = window[-1].close
        if highest == lowest:
            k_values.append(FIFTY)
        else:
            k_values.append((close - lowest) / (highest - lowest) * HUNDRED)

    smoothed_k = ind.mean(k_values[-smooth_k:]) if k_count >= smooth_k else k_values[-1]
    d_value = ind.mean(k_values[-d_period:]) if k_count >= d_period else smoothed_k
    return StochasticReading(smoothed_k, d_value)


def williams_r(bars: Sequence[Bar], period: int = 14) -> Decimal:
    """Williams %R in [-100, 0] (-50 when short or flat)."""
    if len(bars) < period:
        _insufficient("williams_r", period, len(bars))
        return -FIFTY

    highest, lowest = _high_low(bars, period)
    if highest == lowest:
        return -FIFTY
    return (highest - bars[-1].close) / (highest - lowest) * -HUNDRED


def cci(bars: Sequence[Bar], period: int = 20) -> Decimal:
    """Commodity Channel Index (0 when short or without deviation)."""
    if len(bars) < period:
        _insufficient("cci", period, len(bars))
        return ZERO

    typical = [(b.high + b.low + b.close) / 3 for b in bars[-period:]]
    average = ind.mean(typical)
    deviation = ind.mean_deviation(typical)
    if deviation == 0:
        return ZERO

    last = bars[-1]
    current = (last.high + last.low + last.close) / 3
    return (current - average) / (Decimal("0.015") * deviation)


# ---------------------------------------------------------------------------
# Volatility and trend
# ---------------------------------------------------------------------------


def atr(bars: Sequence[Bar], period: int = 14) -> Decimal:
    """Simple average of the last *period* true ranges (0 if short)."""
    if len(bars) < period + 1:
        _insufficient("atr", period + 1, len(bars))
        return ZERO

    recent = bars[-(period + 1) :]
    ranges = [ind.true_range(curr, prev.close) for prev, curr in zip(recent, recent[1:])]
    return ind.mean(ranges)


def adx(bars: Sequence[Bar], period: int = 14) -> Decimal:
    """Directional movement index over the last *period* bars.

    This is the unsmoothed DX reading; 0 when short or when ATR is 0.
    """
    if len(bars) < period + 1:
        _insufficient("adx", period + 1, len(bars))
        return ZERO

    recent = bars[-(period + 1) :]
    plus_dm = ZERO
    minus_dm = ZERO
    ranges = []
    for prev, curr in zip(recent, recent[1:]):
        high_diff = curr.high - prev.high
        low_diff = prev.low - curr.low
        if high_diff > low_diff and high_diff > 0:
            plus_dm += high_diff
        if low_diff > high_diff and low_diff > 0:
            minus_dm += low_diff
        ranges.append(ind.true_range(curr, prev.close))

    average_range = ind.mean(ranges)
    if average_range == 0:
        return ZERO

    plus_di = plus_dm / period / average_range * HUNDRED
    minus_di = minus_dm / period / average_range * HUNDRED
    di_sum = plus_di + minus_di
    if di_sum == 0:
        return ZERO
    return abs(plus_di - minus_di) / di_sum * HUNDRED


@dataclass(frozen=True)
class BollingerReading:
    upper: Decimal
    middle: Decimal
    lower: Decimal


def bollinger_bands(
    bars: Sequence[Bar],
    period: int = 20,
    std_dev_multiplier: Decimal = Decimal(2),
    source: str = "close",
) -> BollingerReading:
    """Bands around the SMA (all equal to the close when short)."""
    if len(bars) < period:
        _insufficient("bollinger", period, len(bars))
        price = bars[-1].close
        return BollingerReading(price, price, price)

    values = ind.get_source(bars[-period:], source)
    middle = ind.mean(values)
    std_dev = ind.population_std(values)
    return BollingerReading(
        upper=middle + std_dev * std_dev_multiplier,
        middle=middle,
        lower=middle - std_dev * std_dev_multiplier,
    )


@dataclass(frozen=True)
class IchimokuReading:
    tenkan: Decimal  # conversion line
    kijun: Decimal  # base line
    senkou_a: Decimal  # leading span A
    senkou_b: Decimal  # leading span B
    chikou: Decimal  # lagging span


def ichimoku(
    bars: Sequence[Bar],
    tenkan_period: int = 9,
    kijun_period: int = 26,
    senkou_b_period: int = 52,
) -> IchimokuReading:
    """Undisplaced Ichimoku lines (all equal to the close below 52 bars)."""
    if len(bars) < senkou_b_period:
        _insufficient("ichimoku", senkou_b_period, len(bars))
        price = bars[-1].close
        return IchimokuReading(price, price, price, price, price)

    tenkan_high, tenkan_low = _high_low(bars, tenkan_period)
    tenkan = (tenkan_high + tenkan_low) / 2
    kijun_high, kijun_low = _high_low(bars, kijun_period)
    kijun = (kijun_high + kijun_low) / 2
    span_b_high, span_b_low = _high_low(bars, senkou_b_period)

    return IchimokuReading(
        tenkan=tenkan,
        kijun=kijun,
        senkou_a=(tenkan + kijun) / 2,
        senkou_b=(span_b_high + span_b_low) / 2,
        chikou=bars[-1].close,
    )


def parabolic_sar(bars: Sequence[Bar]) -> Decimal:
    """Parabolic SAR at the last bar (its close when fewer than 2 bars)."""
    if len(bars) < 2:
        _insufficient("psar", 2, len(bars))
        return bars[-1].close
    return running_value(bars, ("psar",), ind.parabolic_sar)


# ---------------------------------------------------------------------------
# Volume
# ---------------------------------------------------------------------------


def obv(bars: Sequence[Bar]) -> Decimal:
    """On-balance volume over the whole history (last volume if one bar)."""
    if len(bars) < 2:
        _insufficient("obv", 2, len(bars))
        return Decimal(bars[-1].volume)
    return running_value(bars, ("obv",), ind.obv)


def session_vwap(bars: Sequence[Bar]) -> Decimal:
    """VWAP of the last bar's calendar day."""
    last = bars[-1]
    day = last.ts.date()
    total_pv = ZERO
    total_volume = 0
    for i in range(len(bars) - 1, -1, -1):
        bar = bars[i]
        if bar.ts.date() != day:
            break
        total_pv += (bar.high + bar.low + bar.close) / 3 * bar.volume
        total_volume += bar.volume

    if total_volume == 0:
        return last.close
    return total_pv / total_volume


def average_volume(bars: Sequence[Bar], period: int = 20) -> Decimal:
    window = bars[-period:] if len(bars) > period else bars
    return ind.mean([Decimal(b.volume) for b in window])


def volume_profile(bars: Sequence[Bar], bins: int = 20) -> dict[Decimal, int]:
    """Volume traded per price bin (bin keyed by its lower price bound)."""
    if not bars:
        return {}

    highest = max(b.high for b in bars)
    lowest = min(b.low for b in bars)
    price_range = highest - lowest
    if price_range == 0:
        return {bars[-1].close: sum(b.volume for b in bars)}

    bin_size = price_range / bins
    profile = {lowest + bin_size * i: 0 for i in range(bins)}
    for bar in bars:
        index = int((bar.close - lowest) / bin_size)
        index = min(max(index, 0), bins - 1)
        profile[lowest + bin_size * index] += bar.volume
    return profile


# ---------------------------------------------------------------------------
# Session levels
# ---------------------------------------------------------------------------


def _previous_day_bars(current: Bar, bars: Sequence[Bar]) -> list[Bar]:
    """Bars of the most recent calendar day before *current*'s day.

    Scans backwards at most PREV_DAY_LOOKBACK_DAYS to skip weekends and
    holidays.
    """
    current_day = current.ts.date()
    earliest = current_day - timedelta(days=PREV_DAY_LOOKBACK_DAYS)
    found: list[Bar] = []
    previous_day = None

    for i in range(len(bars) - 1, -1, -1):
        bar = bars[i]
        day = bar.ts.date()
        if day >= current_day:
            continue
        if day < earliest:
            break
        if previous_day is None:
            previous_day = day
        elif day != previous_day:
            break
        found.append(bar)
    return found


def previous_day_high(current: Bar, bars: Sequence[Bar]) -> Decimal:
    """Previous trading day's high (current bar high if none found)."""
    day_bars = _previous_day_bars(current, bars)
    if not day_bars:
        logger.debug("No previous day data found", date=str(current.ts.date()))
        return current.high
    return max(b.high for b in day_bars)


def previous_day_low(current: Bar, bars: Sequence[Bar]) -> Decimal:
    """Previous trading day's low (current bar low if none found)."""
    day_bars = _previous_day_bars(current, bars)
    if not day_bars:
        logger.debug("No previous day data found", date=str(current.ts.date()))
        return current.low
    return min(b.low for b in day_bars)
