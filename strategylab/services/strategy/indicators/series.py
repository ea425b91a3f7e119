"""
Full-length indicator series.

Every function returns a list aligned with its input: position ``i`` holds
the indicator value after observing input ``i``, or ``None`` while the
indicator is still warming up. Insufficient input yields an all-``None``
series instead of an error.

All arithmetic is ``Decimal`` so identical inputs always give identical
outputs.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional, Sequence

from strategylab.services.strategy.models import Bar

Series = list[Optional[Decimal]]

ZERO = Decimal(0)
HUNDRED = Decimal(100)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def mean(values: Sequence[Decimal]) -> Decimal:
    """Arithmetic mean (sum then divide), 0 for an empty sequence."""
    if not values:
        return ZERO
    return sum(values, ZERO) / len(values)


def population_std(values: Sequence[Decimal]) -> Decimal:
    """Population standard deviation (divide by N)."""
    if not values:
        return ZERO
    avg = mean(values)
    sum_of_squares = sum(((v - avg) * (v - avg) for v in values), ZERO)
    return (sum_of_squares / len(values)).sqrt()


def mean_deviation(values: Sequence[Decimal]) -> Decimal:
    if not values:
        return ZERO
    avg = mean(values)
    return sum((abs(v - avg) for v in values), ZERO) / len(values)


def ema_multiplier(period: int) -> Decimal:
    return Decimal(2) / (period + 1)


def true_range(bar: Bar, prev_close: Decimal) -> Decimal:
    return max(
        bar.high - bar.low,
        abs(bar.high - prev_close),
        abs(bar.low - prev_close),
    )


def get_source(bars: Sequence[Bar], source: str = "close") -> list[Decimal]:
    """Extract a price source from bars (close, open, high, low, hl2, hlc3, ohlc4)."""
    source = source.lower()
    if source == "open":
        return [b.open for b in bars]
    if source == "high":
        return [b.high for b in bars]
    if source == "low":
        return [b.low for b in bars]
    if source == "hl2":
        return [(b.high + b.low) / 2 for b in bars]
    if source == "hlc3":
        return [(b.high + b.low + b.close) / 3 for b in bars]
    if source == "ohlc4":
        return [(b.open + b.high + b.low + b.close) / 4 for b in bars]
    return [b.close for b in bars]


# ---------------------------------------------------------------------------
# Moving averages
# ---------------------------------------------------------------------------


def ema(values: Sequence[Decimal], period: int) -> Series:
    """Exponential moving average seeded with the SMA of the first *period* values."""
    out: Series = [None] * len(values)
    if period <= 0 or len(values) < period:
        return out

    multiplier = ema_multiplier(period)
    current = mean(values[:period])
    out[period - 1] = current
    for i in range(period, len(values)):
        current = (values[i] - current) * multiplier + current
        out[i] = current
    return out


def running_ema(values: Sequence[Decimal], period: int) -> list[Decimal]:
    """EMA of every prefix of *values*.

    ``out[i]`` equals the EMA computed from scratch over ``values[: i + 1]``.
    Prefixes shorter than *period* fall back to their plain average.
    """
    out: list[Decimal] = []
    total = ZERO
    for i, value in enumerate(values[:period]):
        total += value
        out.append(total / (i + 1))
    if len(values) <= period:
        return out

    multiplier = ema_multiplier(period)
    current = out[period - 1]
    for value in values[period:]:
        current = (value - current) * multiplier + current
        out.append(current)
    return out


def sma(values: Sequence[Decimal], period: int) -> Series:
    out: Series = [None] * len(values)
    if period <= 0 or len(values) < period:
        return out

    for i in range(period - 1, len(values)):
        out[i] = mean(values[i - period + 1 : i + 1])
    return out


# ---------------------------------------------------------------------------
# Oscillators
# ---------------------------------------------------------------------------


def rsi(closes: Sequence[Decimal], period: int = 14) -> Series:
    """Wilder-smoothed RSI; the first value appears at index *period*."""
    out: Series = [None] * len(closes)
    if len(closes) < period + 1:
        return out

    gains = [ZERO] * len(closes)
    losses = [ZERO] * len(closes)
    for i in range(1, len(closes)):
        change = closes[i] - closes[i - 1]
        gains[i] = max(change, ZERO)
        losses[i] = max(-change, ZERO)

    avg_gain = mean(gains[1 : period + 1])
    avg_loss = mean(losses[1 : period + 1])

    for i in range(period, len(closes)):
        if i > period:
            avg_gain = (avg_gain * (period - 1) + gains[i]) / period
            avg_loss = (avg_loss * (period - 1) + losses[i]) / period

        if avg_loss == 0:
            out[i] = HUNDRED
        else:
            rs = avg_gain / avg_loss
            out[i] = HUNDRED - HUNDRED / (1 + rs)
    return out


def stochastic(
    bars: Sequence[Bar], k_period: int = 14, d_period: int = 3
) -> tuple[Series, Series]:
    """Raw %K and %D (SMA of %K)."""
    k: Series = [None] * len(bars)
    d: Series = [None] * len(bars)
    if len(bars) < k_period:
        return k, d

    for i in range(k_period - 1, len(bars)):
        window = bars[i - k_period + 1 : i + 1]
        highest = max(b.high for b in window)
        lowest = min(b.low for b in window)
        if highest == lowest:
            k[i] = Decimal(50)
        else:
            k[i] = (bars[i].close - lowest) / (highest - lowest) * HUNDRED

    valid_k = [v for v in k if v is not None]
    d_values = sma(valid_k, d_period)
    offset = len(bars) - len(valid_k)
    for i, value in enumerate(d_values):
        d[offset + i] = value
    return k, d


# ---------------------------------------------------------------------------
# Bands and trend
# ---------------------------------------------------------------------------


def bollinger_bands(
    closes: Sequence[Decimal], period: int = 20, std_dev_multiplier: Decimal = Decimal(2)
) -> tuple[Series, Series, Series]:
    """Returns (upper, middle, lower)."""
    middle = sma(closes, period)
    upper: Series = [None] * len(closes)
    lower: Series = [None] * len(closes)

    for i in range(period - 1, len(closes)):
        mid = middle[i]
        if mid is None:
            continue
        std_dev = population_std(closes[i - period + 1 : i + 1])
        upper[i] = mid + std_dev * std_dev_multiplier
        lower[i] = mid - std_dev * std_dev_multiplier
    return upper, middle, lower


def macd(
    closes: Sequence[Decimal],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> tuple[Series, Series, Series]:
    """Returns (macd, signal, histogram)."""
    fast = ema(closes, fast_period)
    slow = ema(closes, slow_period)

    line: Series = [
        f - s if f is not None and s is not None else None for f, s in zip(fast, slow)
    ]

    defined = [v for v in line if v is not None]
    signal_values = ema(defined, signal_period)
    signal: Series = [None] * len(closes)
    offset = len(closes) - len(defined)
    for i, value in enumerate(signal_values):
        signal[offset + i] = value

    histogram: Series = [
        m - s if m is not None and s is not None else None for m, s in zip(line, signal)
    ]
    return line, signal, histogram


def atr(bars: Sequence[Bar], period: int = 14) -> Series:
    """Wilder ATR; the first value (index *period*) is the SMA of the first TRs."""
    out: Series = [None] * len(bars)
    if len(bars) < period + 1:
        return out

    tr = [ZERO] * len(bars)
    for i in range(1, len(bars)):
        tr[i] = true_range(bars[i], bars[i - 1].close)

    current = mean(tr[1 : period + 1])
    out[period] = current
    for i in range(period + 1, len(bars)):
        current = (current * (period - 1) + tr[i]) / period
        out[i] = current
    return out


def parabolic_sar(
    bars: Sequence[Bar],
    acceleration_start: Decimal = Decimal("0.02"),
    acceleration_max: Decimal = Decimal("0.2"),
) -> list[Decimal]:
    """Parabolic SAR for every bar (a single close when fewer than 2 bars)."""
    if len(bars) < 2:
        return [bars[-1].close] if bars else []

    up_trend = bars[1].close > bars[0].close
    sar = bars[0].low if up_trend else bars[0].high
    extreme = bars[1].high if up_trend else bars[1].low
    acceleration = acceleration_start
    out = [sar]

    for bar in bars[1:]:
        sar = sar + acceleration * (extreme - sar)

        reversed_ = False
        if up_trend and bar.low < sar:
            reversed_ = True
            up_trend = False
            sar = extreme
            extreme = bar.low
            acceleration = acceleration_start
        elif not up_trend and bar.high > sar:
            reversed_ = True
            up_trend = True
            sar = extreme
            extreme = bar.high
            acceleration = acceleration_start

        if not reversed_:
            if up_trend and bar.high > extreme:
                extreme = bar.high
                acceleration = min(acceleration + acceleration_start, acceleration_max)
            elif not up_trend and bar.low < extreme:
                extreme = bar.low
                acceleration = min(acceleration + acceleration_start, acceleration_max)

        out.append(sar)
    return out


# ---------------------------------------------------------------------------
# Volume
# ---------------------------------------------------------------------------


def obv(bars: Sequence[Bar]) -> list[Decimal]:
    """Cumulative on-balance volume; the first bar contributes nothing."""
    out: list[Decimal] = []
    total = ZERO
    for i, bar in enumerate(bars):
        if i > 0:
            prev_close = bars[i - 1].close
            if bar.close > prev_close:
                total += bar.volume
            elif bar.close < prev_close:
                total -= bar.volume
        out.append(total)
    return out


def session_vwap(bars: Sequence[Bar]) -> list[Decimal]:
    """VWAP of typical price, reset at every calendar day."""
    out: list[Decimal] = []
    current_day = None
    cumulative_pv = ZERO
    cumulative_volume = 0

    for bar in bars:
        day = bar.ts.date()
        if day != current_day:
            current_day = day
            cumulative_pv = ZERO
            cumulative_volume = 0

        typical = (bar.high + bar.low + bar.close) / 3
        cumulative_pv += typical * bar.volume
        cumulative_volume += bar.volume
        out.append(cumulative_pv / cumulative_volume if cumulative_volume > 0 else bar.close)
    return out


def rolling_avg_volume(bars: Sequence[Bar], period: int = 20) -> list[Optional[int]]:
    """Integer (floored) rolling average volume."""
    out: list[Optional[int]] = [None] * len(bars)
    if len(bars) < period:
        return out

    window_sum = sum(b.volume for b in bars[:period])
    out[period - 1] = window_sum // period
    for i in range(period, len(bars)):
        window_sum += bars[i].volume - bars[i - period].volume
        out[i] = window_sum // period
    return out
