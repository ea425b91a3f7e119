"""Backtest service layer: bar data, strategy scanning, results and trade analysis."""

from strategylab.services.backtest.analysis import StrategyResultSummary, analyze_results
from strategylab.services.backtest.data import (
    CsvBarProvider,
    InMemoryBarProvider,
    OHLCVParseError,
    OHLCVParseResult,
    enrich_bars,
    parse_ohlcv_csv,
)
from strategylab.services.backtest.engines import StrategyScanner, TradeResult, TradeSimulator
from strategylab.services.backtest.trade_analysis import (
    TradeAnalysis,
    TradePattern,
    analyze_trade,
    find_patterns,
    generate_heatmap,
)

__all__ = [
    "StrategyResultSummary",
    "analyze_results",
    "CsvBarProvider",
    "InMemoryBarProvider",
    "OHLCVParseError",
    "OHLCVParseResult",
    "enrich_bars",
    "parse_ohlcv_csv",
    "StrategyScanner",
    "TradeResult",
    "TradeSimulator",
    "TradeAnalysis",
    "TradePattern",
    "analyze_trade",
    "find_patterns",
    "generate_heatmap",
]
