"""Strategy scanner: entry search plus fixed stop/target trade simulation."""

from strategylab.services.backtest.engines.scanner.engine import StrategyScanner
from strategylab.services.backtest.engines.scanner.simulator import TradeSimulator
from strategylab.services.backtest.engines.scanner.types import ScanPhase, ScanReport, ScanStats

__all__ = ["StrategyScanner", "TradeSimulator", "ScanPhase", "ScanReport", "ScanStats"]
