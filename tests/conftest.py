"""Root conftest for test suite.

Auto-skips slow tests (large synthetic scans).
Run explicitly with: pytest -m slow

Also provides deterministic bar and strategy builders shared by the unit
and golden suites.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from strategylab.services.strategy.models import (
    Bar,
    Condition,
    StopLoss,
    Strategy,
    TakeProfit,
)

# Tuesday 2024-01-02 14:30 UTC (US cash open)
START = datetime(2024, 1, 2, 14, 30, tzinfo=timezone.utc)


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless explicitly requested via -m."""
    markexpr = config.getoption("-m", default="")
    explicit_slow = "slow" in markexpr

    skip_slow = pytest.mark.skip(
        reason="slow tests skipped by default. Run with: pytest -m slow"
    )

    for item in items:
        if "slow" in item.keywords and not explicit_slow:
            item.add_marker(skip_slow)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def _dec(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def build_bar(
    close,
    ts: datetime = START,
    open=None,
    high=None,
    low=None,
    volume: int = 1000,
    symbol: str = "ES",
    spread=0,
    **fields,
) -> Bar:
    """Bar around *close*; high/low default to the body widened by *spread*."""
    close = _dec(close)
    open_ = _dec(open) if open is not None else close
    spread = _dec(spread)
    high = _dec(high) if high is not None else max(open_, close) + spread
    low = _dec(low) if low is not None else min(open_, close) - spread
    for key in ("vwap", "ema9", "ema20", "ema50"):
        if key in fields:
            fields[key] = _dec(fields[key])
    return Bar(
        symbol=symbol,
        ts=ts,
        open=open_,
        high=high,
        low=low,
        close=close,
        volume=volume,
        **fields,
    )


def build_bars(
    closes,
    start: datetime = START,
    step: timedelta = timedelta(minutes=1),
    volume: int = 1000,
    spread=0,
    **fields,
) -> list[Bar]:
    """One bar per close, *step* apart."""
    return [
        build_bar(close, ts=start + step * i, volume=volume, spread=spread, **fields)
        for i, close in enumerate(closes)
    ]


def build_strategy(
    conditions=(("price", ">", "0"),),
    direction: str = "long",
    stop=("points", "10"),
    target=("points", "20"),
    strategy_id: int = 1,
    name: str = "Test Strategy",
) -> Strategy:
    return Strategy(
        id=strategy_id,
        name=name,
        direction=direction,
        entry_conditions=tuple(
            Condition(indicator=i, operator=o, value=v) for i, o, v in conditions
        ),
        stop_loss=StopLoss(type=stop[0], value=stop[1]),
        take_profit=TakeProfit(type=target[0], value=target[1]),
    )


@pytest.fixture
def make_bar():
    return build_bar


@pytest.fixture
def make_bars():
    return build_bars


@pytest.fixture
def make_strategy():
    return build_strategy


class RecordingSink:
    """Error sink that keeps every call for assertions."""

    def __init__(self):
        self.calls = []

    def log_error(self, error_type, message, **kwargs):
        self.calls.append({"error_type": error_type, "message": message, **kwargs})


@pytest.fixture
def sink():
    return RecordingSink()
