"""Backtest engines."""

from strategylab.services.backtest.engines.base import BarProvider, TradeResult
from strategylab.services.backtest.engines.scanner import StrategyScanner, TradeSimulator

__all__ = [
    "BarProvider",
    "TradeResult",
    "StrategyScanner",
    "TradeSimulator",
]
