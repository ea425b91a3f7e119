"""Base types shared by backtest engines."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Optional, Protocol, Sequence

from strategylab.services.strategy.models import Bar, TradeOutcome


@dataclass(frozen=True)
class TradeResult:
    """Single simulated trade.

    Prices are in instrument points, pnl and excursions in dollars.
    """

    entry_time: datetime
    exit_time: datetime
    entry_price: Decimal
    exit_price: Decimal
    stop_price: Decimal
    target_price: Decimal
    side: str  # "long" or "short"
    pnl: Decimal
    result: TradeOutcome
    bars_held: int

    # Excursions over the bars that did not exit (MAE <= 0 <= MFE)
    max_adverse_excursion: Decimal
    max_favorable_excursion: Decimal

    risk_reward_ratio: Decimal

    # Chart context: setup bars before entry, trade bars through exit
    setup_bars: tuple[Bar, ...] = ()
    trade_bars: tuple[Bar, ...] = ()
    chart_data_start: Optional[datetime] = None
    chart_data_end: Optional[datetime] = None
    entry_bar_index: int = 0
    exit_bar_index: int = 0

    # {"entry": {"price": ..., "ema9": ...}, "exit": {"price": ...}}
    indicator_values: Mapping[str, Mapping[str, Decimal]] = field(default_factory=dict)

    @property
    def is_win(self) -> bool:
        return self.result == TradeOutcome.WIN

    @property
    def duration_minutes(self) -> int:
        return int((self.exit_time - self.entry_time).total_seconds() // 60)

    @property
    def efficiency(self) -> Optional[Decimal]:
        """Realised pnl as a fraction of the best unrealised pnl."""
        if self.max_favorable_excursion <= 0:
            return None
        return self.pnl / self.max_favorable_excursion

    @property
    def gave_back_profit(self) -> bool:
        return self.max_favorable_excursion > 0 and self.pnl < self.max_favorable_excursion

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation with compact chart bars."""
        return {
            "entry_time": self.entry_time.isoformat(),
            "exit_time": self.exit_time.isoformat(),
            "entry_price": float(self.entry_price),
            "exit_price": float(self.exit_price),
            "stop_price": float(self.stop_price),
            "target_price": float(self.target_price),
            "side": self.side,
            "pnl": float(self.pnl),
            "result": self.result.value,
            "bars_held": self.bars_held,
            "max_adverse_excursion": float(self.max_adverse_excursion),
            "max_favorable_excursion": float(self.max_favorable_excursion),
            "risk_reward_ratio": float(self.risk_reward_ratio),
            "chart_data_start": (
                self.chart_data_start.isoformat() if self.chart_data_start else None
            ),
            "chart_data_end": self.chart_data_end.isoformat() if self.chart_data_end else None,
            "entry_bar_index": self.entry_bar_index,
            "exit_bar_index": self.exit_bar_index,
            "setup_bars": [b.to_compact() for b in self.setup_bars],
            "trade_bars": [b.to_compact() for b in self.trade_bars],
            "indicator_values": {
                phase: {k: float(v) for k, v in values.items()}
                for phase, values in self.indicator_values.items()
            },
        }


class BarProvider(Protocol):
    """Source of ordered bars for a symbol.

    Implement this interface to plug a new data store into the scanner.

    Usage:
        provider = CsvBarProvider("data")
        bars = provider.get_bars("ES", start, end)
    """

    def get_bars(self, symbol: str, start: datetime, end: datetime) -> Sequence[Bar]:
        """
        Bars with ``start <= ts <= end``, oldest first, unique timestamps.

        Args:
            symbol: Contract root (ES, NQ, ...)
            start: Inclusive UTC start
            end: Inclusive UTC end

        Returns:
            Ordered bars (possibly empty)
        """
        ...
