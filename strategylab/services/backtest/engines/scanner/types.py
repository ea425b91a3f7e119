"""Type definitions for the bar-by-bar strategy scanner."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from strategylab.services.backtest.engines.base import TradeResult


class ScanPhase(Enum):
    """Scanner state: looking for an entry or holding a simulated trade."""

    SEARCHING = "searching"
    IN_TRADE = "in_trade"


@dataclass(frozen=True)
class ContractCosts:
    """Per-symbol trade cost inputs."""

    symbol: str
    point_value: Decimal  # dollars per point
    slippage_cost: Decimal  # dollars per side


@dataclass
class ScanStats:
    """Counters collected during one scan."""

    bars_loaded: int = 0
    first_index: int = 0
    bars_evaluated: int = 0
    signals: int = 0
    trades: int = 0
    failed_simulations: int = 0
    cancelled: bool = False
    elapsed_ms: int = 0


@dataclass
class ScanReport:
    trades: list[TradeResult] = field(default_factory=list)
    stats: ScanStats = field(default_factory=ScanStats)
