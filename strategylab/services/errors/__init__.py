"""Strategy evaluation error tracking."""

from strategylab.services.errors.tracker import (
    ErrorPattern,
    ErrorSeverity,
    ErrorStatistics,
    ErrorTracker,
    StrategyError,
)

__all__ = [
    "ErrorPattern",
    "ErrorSeverity",
    "ErrorStatistics",
    "ErrorTracker",
    "StrategyError",
]
