"""
Condition evaluator for strategy entry rules.

A strategy's conditions are compiled once into enum-tagged expressions
(indicator kind, operator, value expression). Evaluation then resolves each
side for the current bar and compares. Evaluation is fail-closed: anything
that cannot be resolved makes the condition False and is reported to the
error sink; it never raises into the scan loop.
"""

from __future__ import annotations

import re
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Optional, Protocol, Sequence, Union

import structlog

from strategylab.config import ScanSettings
from strategylab.services.strategy.indicators import values as ind
from strategylab.services.strategy.models import Bar, Condition, Strategy
from strategylab.utils.time import minutes_since_midnight

logger = structlog.get_logger(__name__)


# ===========================================
# Enums
# ===========================================


class IndicatorKind(str, Enum):
    """Every indicator name a condition side may reference."""

    PRICE = "price"
    OPEN = "open"
    HIGH = "high"
    LOW = "low"
    VOLUME = "volume"
    VWAP = "vwap"
    EMA9 = "ema9"
    EMA20 = "ema20"
    EMA50 = "ema50"
    RSI = "rsi"
    ATR = "atr"
    ADX = "adx"
    CCI = "cci"
    WILLIAMS_R = "williams_r"
    OBV = "obv"
    BB_UPPER = "bb_upper"
    BB_MIDDLE = "bb_middle"
    BB_LOWER = "bb_lower"
    MACD_LINE = "macd_line"
    MACD_SIGNAL = "macd_signal"
    MACD_HISTOGRAM = "macd_histogram"
    STOCH_K = "stoch_k"
    STOCH_D = "stoch_d"
    ICHIMOKU_TENKAN = "ichimoku_tenkan"
    ICHIMOKU_KIJUN = "ichimoku_kijun"
    ICHIMOKU_SENKOU_A = "ichimoku_senkou_a"
    ICHIMOKU_SENKOU_B = "ichimoku_senkou_b"
    ICHIMOKU_CHIKOU = "ichimoku_chikou"
    PSAR = "psar"
    PREV_DAY_HIGH = "prev_day_high"
    PREV_DAY_LOW = "prev_day_low"
    TIME = "time"


class Operator(str, Enum):
    GT = ">"
    LT = "<"
    GTE = ">="
    LTE = "<="
    EQ = "="
    CROSSES_ABOVE = "crosses_above"
    CROSSES_BELOW = "crosses_below"


class ValueKind(str, Enum):
    """Shape of the right-hand side of a condition."""

    LITERAL = "literal"  # "70", "-0.5"
    MULTIPLIER = "multiplier"  # "1.5x_average", "1.01x_vwap"
    CLOCK = "clock"  # "10:30"
    INDICATOR = "indicator"  # "ema20", "bb_upper"


class MultiplierBase(str, Enum):
    AVG_VOLUME20 = "avg_volume20"
    VWAP = "vwap"


class EvalErrorKind(str, Enum):
    UNSUPPORTED_INDICATOR = "unsupported_indicator"
    UNSUPPORTED_OPERATOR = "unsupported_operator"
    MALFORMED_VALUE = "malformed_value"
    COMPUTATION_FAILED = "computation_failed"


# Name aliases, all lower-case
INDICATOR_ALIASES: dict[str, IndicatorKind] = {
    "price": IndicatorKind.PRICE,
    "close": IndicatorKind.PRICE,
    "open": IndicatorKind.OPEN,
    "high": IndicatorKind.HIGH,
    "low": IndicatorKind.LOW,
    "volume": IndicatorKind.VOLUME,
    "vwap": IndicatorKind.VWAP,
    "ema9": IndicatorKind.EMA9,
    "ema_9": IndicatorKind.EMA9,
    "ema20": IndicatorKind.EMA20,
    "ema_20": IndicatorKind.EMA20,
    "ema50": IndicatorKind.EMA50,
    "ema_50": IndicatorKind.EMA50,
    "rsi": IndicatorKind.RSI,
    "atr": IndicatorKind.ATR,
    "adx": IndicatorKind.ADX,
    "cci": IndicatorKind.CCI,
    "williams_r": IndicatorKind.WILLIAMS_R,
    "williamsr": IndicatorKind.WILLIAMS_R,
    "obv": IndicatorKind.OBV,
    "bb_upper": IndicatorKind.BB_UPPER,
    "bb_middle": IndicatorKind.BB_MIDDLE,
    "bb_lower": IndicatorKind.BB_LOWER,
    "macd": IndicatorKind.MACD_LINE,
    "macd_line": IndicatorKind.MACD_LINE,
    "macd_signal": IndicatorKind.MACD_SIGNAL,
    "macd_sig": IndicatorKind.MACD_SIGNAL,
    "macd_histogram": IndicatorKind.MACD_HISTOGRAM,
    "macd_hist": IndicatorKind.MACD_HISTOGRAM,
    "stoch_k": IndicatorKind.STOCH_K,
    "stoch_d": IndicatorKind.STOCH_D,
    "ichimoku_tenkan": IndicatorKind.ICHIMOKU_TENKAN,
    "ichimoku_kijun": IndicatorKind.ICHIMOKU_KIJUN,
    "ichimoku_senkou_a": IndicatorKind.ICHIMOKU_SENKOU_A,
    "ichimoku_senkoua": IndicatorKind.ICHIMOKU_SENKOU_A,
    "ichimoku_senkou_b": IndicatorKind.ICHIMOKU_SENKOU_B,
    "ichimoku_senkoub": IndicatorKind.ICHIMOKU_SENKOU_B,
    "ichimoku_chikou": IndicatorKind.ICHIMOKU_CHIKOU,
    "psar": IndicatorKind.PSAR,
    "parabolic_sar": IndicatorKind.PSAR,
    "prev_day_high": IndicatorKind.PREV_DAY_HIGH,
    "prev_day_low": IndicatorKind.PREV_DAY_LOW,
    "time": IndicatorKind.TIME,
}

MULTIPLIER_BASES: dict[str, MultiplierBase] = {
    "average": MultiplierBase.AVG_VOLUME20,
    "avg_volume": MultiplierBase.AVG_VOLUME20,
    "avgvolume20": MultiplierBase.AVG_VOLUME20,
    "vwap": MultiplierBase.VWAP,
}

_LITERAL_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)$")
_MULTIPLIER_RE = re.compile(r"^([\d.]+)x_(\w+)$", re.IGNORECASE)
_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


# ===========================================
# Compiled expressions
# ===========================================


@dataclass(frozen=True)
class EvalError:
    """Why a condition could not be evaluated."""

    kind: EvalErrorKind
    message: str
    expression: str
    exception: Optional[BaseException] = field(default=None, compare=False)


@dataclass(frozen=True)
class ValueExpr:
    kind: ValueKind
    number: Decimal = Decimal(0)  # literal, multiplier factor or clock minutes
    base: Optional[MultiplierBase] = None
    indicator: Optional[IndicatorKind] = None


@dataclass(frozen=True)
class CompiledCondition:
    condition: Condition
    indicator: Union[IndicatorKind, EvalError]
    operator: Union[Operator, EvalError]
    value: Union[ValueExpr, EvalError]

    @property
    def error(self) -> Optional[EvalError]:
        """First compile error in left, right, operator order."""
        for part in (self.indicator, self.value, self.operator):
            if isinstance(part, EvalError):
                return part
        return None


@dataclass(frozen=True)
class CompiledStrategy:
    strategy: Strategy
    conditions: tuple[CompiledCondition, ...]


def parse_indicator(name: str) -> Union[IndicatorKind, EvalError]:
    kind = INDICATOR_ALIASES.get(name.strip().lower())
    if kind is None:
        return EvalError(
            EvalErrorKind.UNSUPPORTED_INDICATOR, f"Unsupported indicator: {name}", name
        )
    return kind


def parse_operator(op: str) -> Union[Operator, EvalError]:
    try:
        return Operator(op.strip().lower())
    except ValueError:
        return EvalError(
            EvalErrorKind.UNSUPPORTED_OPERATOR, f"Unsupported operator: {op}", op
        )


def parse_value(raw: str) -> Union[ValueExpr, EvalError]:
    """Classify a right-hand side expression.

    Precedence: number, ``<factor>x_<base>``, ``HH:MM``, indicator name.
    """
    text = raw.strip()

    if _LITERAL_RE.match(text):
        return ValueExpr(ValueKind.LITERAL, number=Decimal(text))

    match = _MULTIPLIER_RE.match(text)
    if match:
        try:
            factor = Decimal(match.group(1))
        except InvalidOperation:
            return EvalError(
                EvalErrorKind.MALFORMED_VALUE, f"Invalid multiplier: {match.group(1)}", raw
            )
        base = MULTIPLIER_BASES.get(match.group(2).lower())
        if base is None:
            return EvalError(
                EvalErrorKind.MALFORMED_VALUE,
                f"Unsupported multiplier base: {match.group(2).lower()}",
                raw,
            )
        return ValueExpr(ValueKind.MULTIPLIER, number=factor, base=base)

    match = _CLOCK_RE.match(text)
    if match:
        minutes = int(match.group(1)) * 60 + int(match.group(2))
        return ValueExpr(ValueKind.CLOCK, number=Decimal(minutes))

    kind = INDICATOR_ALIASES.get(text.lower())
    if kind is None:
        return EvalError(EvalErrorKind.MALFORMED_VALUE, f"Cannot resolve value: {raw}", raw)
    return ValueExpr(ValueKind.INDICATOR, indicator=kind)


def compile_condition(condition: Condition) -> CompiledCondition:
    return CompiledCondition(
        condition=condition,
        indicator=parse_indicator(condition.indicator),
        operator=parse_operator(condition.operator),
        value=parse_value(condition.value),
    )


def compile_strategy(strategy: Strategy) -> CompiledStrategy:
    return CompiledStrategy(
        strategy=strategy,
        conditions=tuple(compile_condition(c) for c in strategy.entry_conditions),
    )


# ===========================================
# Indicator resolution
# ===========================================

Resolver = Callable[[Bar, Sequence[Bar]], Decimal]


RESOLVERS: dict[IndicatorKind, Resolver] = {
    IndicatorKind.PRICE: lambda bar, h: bar.close,
    IndicatorKind.OPEN: lambda bar, h: bar.open,
    IndicatorKind.HIGH: lambda bar, h: bar.high,
    IndicatorKind.LOW: lambda bar, h: bar.low,
    IndicatorKind.VOLUME: lambda bar, h: Decimal(bar.volume),
    IndicatorKind.VWAP: lambda bar, h: bar.vwap,
    IndicatorKind.EMA9: lambda bar, h: bar.ema9,
    IndicatorKind.EMA20: lambda bar, h: bar.ema20,
    IndicatorKind.EMA50: lambda bar, h: bar.ema50,
    IndicatorKind.RSI: lambda bar, h: ind.rsi(h, 14),
    IndicatorKind.ATR: lambda bar, h: ind.atr(h, 14),
    IndicatorKind.ADX: lambda bar, h: ind.adx(h, 14),
    IndicatorKind.CCI: lambda bar, h: ind.cci(h, 20),
    IndicatorKind.WILLIAMS_R: lambda bar, h: ind.williams_r(h, 14),
    IndicatorKind.OBV: lambda bar, h: ind.obv(h),
    IndicatorKind.BB_UPPER: lambda bar, h: ind.bollinger_bands(h).upper,
    IndicatorKind.BB_MIDDLE: lambda bar, h: ind.bollinger_bands(h).middle,
    IndicatorKind.BB_LOWER: lambda bar, h: ind.bollinger_bands(h).lower,
    IndicatorKind.MACD_LINE: lambda bar, h: ind.macd(h).macd,
    IndicatorKind.MACD_SIGNAL: lambda bar, h: ind.macd(h).signal,
    IndicatorKind.MACD_HISTOGRAM: lambda bar, h: ind.macd(h).histogram,
    IndicatorKind.STOCH_K: lambda bar, h: ind.stochastic(h).k,
    IndicatorKind.STOCH_D: lambda bar, h: ind.stochastic(h).d,
    IndicatorKind.ICHIMOKU_TENKAN: lambda bar, h: ind.ichimoku(h).tenkan,
    IndicatorKind.ICHIMOKU_KIJUN: lambda bar, h: ind.ichimoku(h).kijun,
    IndicatorKind.ICHIMOKU_SENKOU_A: lambda bar, h: ind.ichimoku(h).senkou_a,
    IndicatorKind.ICHIMOKU_SENKOU_B: lambda bar, h: ind.ichimoku(h).senkou_b,
    IndicatorKind.ICHIMOKU_CHIKOU: lambda bar, h: ind.ichimoku(h).chikou,
    IndicatorKind.PSAR: lambda bar, h: ind.parabolic_sar(h),
    IndicatorKind.PREV_DAY_HIGH: ind.previous_day_high,
    IndicatorKind.PREV_DAY_LOW: ind.previous_day_low,
    IndicatorKind.TIME: lambda bar, h: Decimal(minutes_since_midnight(bar.ts)),
}


# ===========================================
# Error sink
# ===========================================


class ErrorSink(Protocol):
    """Receiver for evaluation failures (see ErrorTracker)."""

    def log_error(
        self,
        error_type: str,
        message: str,
        exception: Optional[BaseException] = None,
        strategy_id: Optional[int] = None,
        failed_expression: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
        details: Optional[str] = None,
    ) -> Any: ...


# ===========================================
# Evaluator
# ===========================================

COMPILE_CACHE_SIZE = 256


class ConditionEvaluator:
    """
    Evaluates a strategy's entry conditions against one bar.

    Usage:
        evaluator = ConditionEvaluator(error_sink=ErrorTracker())
        if evaluator.evaluate_entry(strategy, history[-1], history):
            ...

    Compiled strategies are cached per strategy object so repeated
    evaluation over a scan parses names exactly once. The cache keeps the
    COMPILE_CACHE_SIZE most recently used strategies.
    """

    def __init__(
        self,
        error_sink: Optional[ErrorSink] = None,
        settings: Optional[ScanSettings] = None,
    ) -> None:
        self._error_sink = error_sink
        self._settings = settings or ScanSettings()
        self._compiled: OrderedDict[int, CompiledStrategy] = OrderedDict()

    def compile(self, strategy: Strategy) -> CompiledStrategy:
        key = id(strategy)
        compiled = self._compiled.get(key)
        if compiled is None or compiled.strategy is not strategy:
            compiled = compile_strategy(strategy)
            self._compiled[key] = compiled
            # Least recently used entries are evicted first
            while len(self._compiled) > COMPILE_CACHE_SIZE:
                self._compiled.popitem(last=False)
        else:
            self._compiled.move_to_end(key)
        return compiled

    def evaluate_entry(
        self,
        strategy: Union[Strategy, CompiledStrategy],
        current_bar: Bar,
        history: Sequence[Bar],
    ) -> bool:
        """
        Check whether every entry condition holds at *current_bar*.

        Args:
            strategy: Strategy (or its compiled form)
            current_bar: Bar being evaluated
            history: Bars up to and including current_bar, oldest first

        Returns:
            True only if all conditions pass. No conditions, empty history
            or any unresolvable condition gives False.
        """
        compiled = strategy if isinstance(strategy, CompiledStrategy) else self.compile(strategy)
        strategy_id = compiled.strategy.id

        if not compiled.conditions:
            logger.warning("Strategy has no entry conditions", strategy_id=strategy_id)
            return False

        if not history:
            logger.warning("No historical bars provided for evaluation", strategy_id=strategy_id)
            return False

        for cond in compiled.conditions:
            passed = self.evaluate_condition(cond, current_bar, history, strategy_id)
            logger.debug(
                "Condition evaluated",
                expression=cond.condition.expression,
                result="PASS" if passed else "FAIL",
            )
            if not passed:
                return False

        logger.debug(
            "All entry conditions passed",
            strategy_id=strategy_id,
            ts=current_bar.ts.isoformat(),
        )
        return True

    def evaluate_condition(
        self,
        cond: CompiledCondition,
        current_bar: Bar,
        history: Sequence[Bar],
        strategy_id: Optional[int] = None,
    ) -> bool:
        """Evaluate one compiled condition; failures are reported and give False."""
        error = cond.error
        if error is not None:
            self._report(cond, error, strategy_id)
            return False

        assert isinstance(cond.indicator, IndicatorKind)
        assert isinstance(cond.operator, Operator)
        assert isinstance(cond.value, ValueExpr)

        try:
            left = self.indicator_value(cond.indicator, current_bar, history)
            right = self.compare_value(cond.value, current_bar, history)
            return self._compare(cond, left, right, current_bar, history)
        except Exception as e:
            error = EvalError(
                EvalErrorKind.COMPUTATION_FAILED,
                f"{type(e).__name__}: {e}",
                cond.condition.value,
                exception=e,
            )
            self._report(cond, error, strategy_id)
            return False

    def _compare(
        self,
        cond: CompiledCondition,
        left: Decimal,
        right: Decimal,
        current_bar: Bar,
        history: Sequence[Bar],
    ) -> bool:
        op = cond.operator
        if op == Operator.GT:
            return left > right
        if op == Operator.LT:
            return left < right
        if op == Operator.GTE:
            return left >= right
        if op == Operator.LTE:
            return left <= right
        if op == Operator.EQ:
            return abs(left - right) <= self._settings.equality_tolerance

        # Crossovers: previous pair recomputed from history[:-1]
        if len(history) < 2:
            return False
        previous_bar = history[-2]
        previous_history = history[:-1]
        prev_left = self.indicator_value(cond.indicator, previous_bar, previous_history)
        prev_right = self.compare_value(cond.value, previous_bar, previous_history)

        if op == Operator.CROSSES_ABOVE:
            return prev_left <= prev_right and left > right
        return prev_left >= prev_right and left < right

    def indicator_value(
        self, kind: IndicatorKind, bar: Bar, history: Sequence[Bar]
    ) -> Decimal:
        return RESOLVERS[kind](bar, history)

    def compare_value(self, expr: ValueExpr, bar: Bar, history: Sequence[Bar]) -> Decimal:
        if expr.kind in (ValueKind.LITERAL, ValueKind.CLOCK):
            return expr.number
        if expr.kind == ValueKind.MULTIPLIER:
            if expr.base == MultiplierBase.VWAP:
                return expr.number * bar.vwap
            return expr.number * bar.avg_volume20
        assert expr.indicator is not None
        return self.indicator_value(expr.indicator, bar, history)

    def calculate_indicator(self, name: str, bars: Sequence[Bar], period: int) -> Decimal:
        """Compute a supported single-value indicator with a custom period.

        Raises:
            ValueError: If *name* is not rsi or atr
        """
        key = name.lower()
        if key == "rsi":
            return ind.rsi(bars, period)
        if key == "atr":
            return ind.atr(bars, period)
        raise ValueError(f"Unsupported indicator: {name}")

    def _report(
        self, cond: CompiledCondition, error: EvalError, strategy_id: Optional[int]
    ) -> None:
        condition = cond.condition
        # The sink records its own warning
        log = logger.warning if self._error_sink is None else logger.debug
        log(
            "Error evaluating condition",
            expression=condition.expression,
            error_kind=error.kind.value,
            error=error.message,
            strategy_id=strategy_id,
        )
        if self._error_sink is None:
            return

        self._error_sink.log_error(
            "Evaluation",
            f"Error evaluating condition: {condition.expression}",
            exception=error.exception,
            strategy_id=strategy_id,
            failed_expression=condition.value,
            context={
                "Indicator": condition.indicator,
                "Operator": condition.operator,
                "FullCondition": condition.expression,
                "ErrorKind": error.kind.value,
            },
            details=error.message,
        )
