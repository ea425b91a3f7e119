"""
Strategy and market data models.

Bars are plain frozen dataclasses (they are created by the hundred thousand
during a scan); strategy definitions are Pydantic models so they can be
loaded straight from JSON.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_ZERO = Decimal(0)


# ===========================================
# Enums
# ===========================================


class Direction(str, Enum):
    """Trade direction of a strategy."""

    LONG = "long"
    SHORT = "short"
    BOTH = "both"


class ExitType(str, Enum):
    """How a stop-loss or take-profit value is turned into a price distance."""

    POINTS = "points"
    PERCENTAGE = "percentage"
    ATR = "atr"


class TradeOutcome(str, Enum):
    """Classification of a completed simulated trade."""

    WIN = "win"
    LOSS = "loss"
    TIMEOUT = "timeout"


# ===========================================
# Market data
# ===========================================


@dataclass(frozen=True)
class Bar:
    """One OHLCV sample for a symbol, with optional pre-computed indicators."""

    symbol: str
    ts: datetime  # UTC
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: int
    vwap: Decimal = _ZERO
    ema9: Decimal = _ZERO
    ema20: Decimal = _ZERO
    ema50: Decimal = _ZERO
    avg_volume20: int = 0

    def is_valid(self) -> bool:
        """High is the highest price in the bar and low the lowest."""
        return (
            self.high >= self.open
            and self.high >= self.close
            and self.high >= self.low
            and self.low <= self.open
            and self.low <= self.close
            and self.low <= self.high
        )

    def to_compact(self) -> dict[str, Any]:
        """Compact chart payload: t, o, h, l, c, v."""
        return {
            "t": self.ts.isoformat(),
            "o": float(self.open),
            "h": float(self.high),
            "l": float(self.low),
            "c": float(self.close),
            "v": self.volume,
        }


# ===========================================
# Strategy definition
# ===========================================


class _ExitLevel(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ExitType = Field(..., description="points, percentage or atr")
    value: Decimal = Field(..., gt=0, le=1000, description="Distance value")
    description: Optional[str] = Field(None, max_length=500)

    @field_validator("type", mode="before")
    @classmethod
    def _lower_type(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v


class StopLoss(_ExitLevel):
    """Stop-loss configuration."""


class TakeProfit(_ExitLevel):
    """Take-profit configuration."""


class Condition(BaseModel):
    """A single entry condition: ``<indicator> <operator> <value>``.

    Indicator and operator are kept as raw strings; they are resolved when
    the strategy is compiled so that unknown names fail closed at evaluation
    time instead of rejecting the whole strategy.
    """

    model_config = ConfigDict(frozen=True)

    indicator: str = Field(..., min_length=1, max_length=50)
    operator: str = Field(..., min_length=1, max_length=20)
    value: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)

    @field_validator("value", mode="before")
    @classmethod
    def _value_to_str(cls, v: Any) -> Any:
        if isinstance(v, (int, float, Decimal)) and not isinstance(v, bool):
            return str(v)
        return v

    @property
    def expression(self) -> str:
        return f"{self.indicator} {self.operator} {self.value}"


class Strategy(BaseModel):
    """Immutable strategy definition evaluated by the engine."""

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = Field(None, description="Strategy id used in error reports")
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    direction: Direction = Field(..., description="long, short or both")
    symbol: Optional[str] = None
    timeframe: Optional[str] = None
    entry_conditions: tuple[Condition, ...] = Field(default_factory=tuple)
    stop_loss: StopLoss
    take_profit: TakeProfit

    @field_validator("direction", mode="before")
    @classmethod
    def _lower_direction(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v

    @property
    def is_long(self) -> bool:
        """Only 'long' is simulated long; 'short' and 'both' are simulated short."""
        return self.direction == Direction.LONG

    def summary(self) -> str:
        return (
            f"{self.name} - {self.direction.value.upper()} - "
            f"{len(self.entry_conditions)} conditions"
        )
