"""
Strategy definitions and entry-condition evaluation.

Models:
- Bar: one OHLCV sample with optional pre-computed indicators
- Strategy, Condition, StopLoss, TakeProfit: immutable strategy definition

Evaluation:
- ConditionEvaluator: fail-closed entry evaluation
- BarHistory: prefix view with shared indicator cache
"""

from strategylab.services.strategy.evaluator import (
    CompiledStrategy,
    ConditionEvaluator,
    EvalError,
    EvalErrorKind,
    IndicatorKind,
    Operator,
    ValueKind,
    compile_strategy,
)
from strategylab.services.strategy.history import BarHistory
from strategylab.services.strategy.models import (
    Bar,
    Condition,
    Direction,
    ExitType,
    StopLoss,
    Strategy,
    TakeProfit,
    TradeOutcome,
)

__all__ = [
    # Models
    "Bar",
    "Condition",
    "Direction",
    "ExitType",
    "StopLoss",
    "Strategy",
    "TakeProfit",
    "TradeOutcome",
    # Evaluation
    "BarHistory",
    "CompiledStrategy",
    "ConditionEvaluator",
    "EvalError",
    "EvalErrorKind",
    "IndicatorKind",
    "Operator",
    "ValueKind",
    "compile_strategy",
]
