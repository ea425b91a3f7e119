"""strategylab - Trading Strategy Backtesting Engine

Evaluates indicator-based entry conditions against historical 1-minute
futures bars and simulates the resulting trades.
"""

__version__ = "0.1.0"
