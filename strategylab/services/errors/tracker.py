"""
In-memory tracker for strategy evaluation errors.

Every failed condition lands here with the expression that failed, a
severity and (when a known mistake is recognised) a suggested fix. The
tracker also aggregates recent errors so recurring authoring mistakes
("1.5 * average_volume" instead of "1.5x_average") can be surfaced.
"""

from __future__ import annotations

import json
import re
import traceback
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional

import structlog

from strategylab.core.sentry import capture_exception

logger = structlog.get_logger(__name__)

VALID_VALUE_HINT = (
    "Valid indicators: price, volume, vwap, ema9, ema20, ema50, avgVolume20. "
    "Valid formats: '1.5x_average', '0.8x_vwap'"
)

STRATEGY_ERRORS_LIMIT = 100
STATISTICS_WINDOW = timedelta(days=7)
PATTERN_WINDOW = timedelta(days=30)


class ErrorSeverity(str, Enum):
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"


@dataclass
class StrategyError:
    """One recorded evaluation failure."""

    id: int
    error_type: str
    message: str
    severity: ErrorSeverity
    timestamp: datetime
    details: Optional[str] = None
    stack_trace: Optional[str] = None
    strategy_id: Optional[int] = None
    failed_expression: Optional[str] = None
    context: Optional[str] = None  # JSON
    suggested_fix: Optional[str] = None
    is_resolved: bool = False


@dataclass
class ErrorStatistics:
    total_errors: int = 0
    errors_by_type: dict[str, int] = field(default_factory=dict)
    errors_by_severity: dict[str, int] = field(default_factory=dict)
    top_failed_expressions: dict[str, int] = field(default_factory=dict)
    unresolved_errors: int = 0


@dataclass
class ErrorPattern:
    pattern: str
    occurrences: int
    suggested_fix: str
    examples: list[str] = field(default_factory=list)


def determine_severity(error_type: str, exception: Optional[BaseException]) -> ErrorSeverity:
    if "Critical" in error_type or isinstance(exception, (AttributeError, TypeError)):
        return ErrorSeverity.CRITICAL
    if "Parsing" in error_type or "Evaluation" in error_type:
        return ErrorSeverity.WARNING
    return ErrorSeverity.ERROR


def convert_multiply_to_x_format(expression: str) -> str:
    """'1.5 * average_volume' -> '1.5x_average'."""
    parts = expression.split(" * ")
    if len(parts) != 2:
        return expression
    multiplier = parts[0].strip()
    base = parts[1].strip().replace("average_volume", "average").replace("_", "")
    return f"{multiplier}x_{base}"


def extract_indicator_name(expression: Optional[str]) -> Optional[str]:
    """Last non-numeric word of an expression."""
    if not expression:
        return None
    words = [w for w in re.split(r"[ *x_]+", expression) if w]
    for word in reversed(words):
        try:
            float(word)
        except ValueError:
            return word
    return None


def suggest_fix(message: str, failed_expression: Optional[str]) -> Optional[str]:
    if not failed_expression:
        return None

    if " * " in failed_expression:
        converted = convert_multiply_to_x_format(failed_expression)
        return f"Change '{failed_expression}' to '{converted}'"

    if "average_volume" in failed_expression:
        return "Use 'avgVolume20' indicator or format as '1.5x_average'"

    if " " in failed_expression:
        return "Remove spaces from expressions. Use underscores instead."

    if "Cannot resolve value" in message:
        return VALID_VALUE_HINT

    return None


class ErrorTracker:
    """
    Error sink for the condition evaluator.

    Usage:
        tracker = ErrorTracker()
        evaluator = ConditionEvaluator(error_sink=tracker)
        ...
        for pattern in tracker.analyze_error_patterns():
            print(pattern.pattern, pattern.suggested_fix)
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._errors: list[StrategyError] = []
        self._next_id = 1

    def __len__(self) -> int:
        return len(self._errors)

    def log_error(
        self,
        error_type: str,
        message: str,
        exception: Optional[BaseException] = None,
        strategy_id: Optional[int] = None,
        failed_expression: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
        details: Optional[str] = None,
    ) -> StrategyError:
        """Record an error and return the stored entry."""
        if details is None and exception is not None:
            details = str(exception)

        stack_trace = None
        if exception is not None and exception.__traceback__ is not None:
            stack_trace = "".join(traceback.format_tb(exception.__traceback__))

        error = StrategyError(
            id=self._next_id,
            error_type=error_type,
            message=message,
            details=details,
            stack_trace=stack_trace,
            strategy_id=strategy_id,
            failed_expression=failed_expression,
            context=json.dumps(context, default=str) if context is not None else None,
            suggested_fix=suggest_fix(" ".join(filter(None, [message, details])), failed_expression),
            severity=determine_severity(error_type, exception),
            timestamp=self._clock(),
        )
        self._next_id += 1
        self._errors.append(error)

        logger.warning(
            "Strategy error recorded",
            error_type=error_type,
            error_message=message,
            details=details,
            expression=failed_expression or "N/A",
            suggested_fix=error.suggested_fix or "N/A",
            severity=error.severity.value,
            strategy_id=strategy_id,
        )

        if exception is not None:
            capture_exception(
                exception,
                tags={"error_type": error_type, "severity": error.severity.value},
                extras={"strategy_id": strategy_id, "failed_expression": failed_expression},
            )

        return error

    def get_strategy_errors(self, strategy_id: int) -> list[StrategyError]:
        """Latest errors for one strategy, newest first."""
        errors = [e for e in self._errors if e.strategy_id == strategy_id]
        return self._newest_first(errors)[:STRATEGY_ERRORS_LIMIT]

    def get_recent_errors(self, count: int = 50) -> list[StrategyError]:
        return self._newest_first(self._errors)[:count]

    def get_error_statistics(self) -> ErrorStatistics:
        """Totals over the last 7 days."""
        errors = self._since(STATISTICS_WINDOW)
        expressions = Counter(e.failed_expression for e in errors if e.failed_expression)

        return ErrorStatistics(
            total_errors=len(errors),
            errors_by_type=dict(Counter(e.error_type for e in errors)),
            errors_by_severity=dict(Counter(e.severity.value for e in errors)),
            top_failed_expressions=dict(expressions.most_common(10)),
            unresolved_errors=sum(1 for e in errors if not e.is_resolved),
        )

    def analyze_error_patterns(self) -> list[ErrorPattern]:
        """
        Detect recurring authoring mistakes over the last 30 days.

        Two patterns are recognised: multiplication syntax ("1.5 * vwap")
        where the "1.5x_vwap" form is expected, and value names that could
        not be resolved to an indicator.
        """
        errors = [e for e in self._since(PATTERN_WINDOW) if e.failed_expression]
        patterns: list[ErrorPattern] = []

        multiply: dict[str, list[StrategyError]] = {}
        for e in errors:
            if " * " in e.failed_expression:
                multiply.setdefault(e.failed_expression, []).append(e)
        for expression, group in multiply.items():
            patterns.append(
                ErrorPattern(
                    pattern="Using ' * ' instead of 'x_' format",
                    occurrences=len(group),
                    suggested_fix=(
                        f"Change '{expression}' to '{convert_multiply_to_x_format(expression)}'"
                    ),
                    examples=[expression],
                )
            )

        unknown: dict[str, list[StrategyError]] = {}
        for e in errors:
            text = " ".join(filter(None, [e.message, e.details]))
            if "Cannot resolve value" not in text:
                continue
            name = extract_indicator_name(e.failed_expression)
            if name:
                unknown.setdefault(name, []).append(e)
        for name, group in unknown.items():
            examples = list(dict.fromkeys(e.failed_expression for e in group))[:3]
            patterns.append(
                ErrorPattern(
                    pattern=f"Unknown indicator: {name}",
                    occurrences=len(group),
                    suggested_fix=VALID_VALUE_HINT.split(". ")[0],
                    examples=examples,
                )
            )

        return [p for p in patterns if p.occurrences > 0]

    def resolve(self, error_id: int) -> bool:
        """Mark an error resolved. Returns False if the id is unknown."""
        for e in self._errors:
            if e.id == error_id:
                e.is_resolved = True
                return True
        return False

    def _since(self, window: timedelta) -> list[StrategyError]:
        cutoff = self._clock() - window
        return [e for e in self._errors if e.timestamp >= cutoff]

    @staticmethod
    def _newest_first(errors: list[StrategyError]) -> list[StrategyError]:
        return sorted(errors, key=lambda e: (e.timestamp, e.id), reverse=True)
