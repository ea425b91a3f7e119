"""
Technical indicators.

- series: full-length aligned series (None while warming up)
- values: current reading at the last bar of a history
"""

from strategylab.services.strategy.indicators.values import (
    BollingerReading,
    IchimokuReading,
    MACDReading,
    StochasticReading,
)

__all__ = [
    "BollingerReading",
    "IchimokuReading",
    "MACDReading",
    "StochasticReading",
]
