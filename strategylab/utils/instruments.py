"""Instrument metadata: point values, tick sizes, contract specs."""

from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

# Ticks of slippage charged per trade
DEFAULT_SLIPPAGE_TICKS = Decimal("2")


@dataclass(frozen=True)
class ContractSpec:
    """Static contract specification for one futures root."""

    symbol: str
    display_name: str
    point_value: Decimal  # dollars per full point
    tick_size: Decimal  # minimum price increment

    @property
    def tick_value(self) -> Decimal:
        return self.tick_size * self.point_value


CONTRACT_SPECS: Mapping[str, ContractSpec] = MappingProxyType(
    {
        "ES": ContractSpec("ES", "E-mini S&P 500", Decimal("50"), Decimal("0.25")),
        "NQ": ContractSpec("NQ", "E-mini Nasdaq 100", Decimal("20"), Decimal("0.25")),
        "YM": ContractSpec("YM", "E-mini Dow", Decimal("5"), Decimal("1.00")),
        "BTC": ContractSpec("BTC", "Bitcoin Futures", Decimal("5"), Decimal("5.00")),
        "CL": ContractSpec("CL", "Crude Oil", Decimal("1000"), Decimal("0.01")),
    }
)


def get_contract_spec(symbol: str) -> ContractSpec:
    """Look up the contract spec for *symbol* (case-insensitive).

    Raises:
        ValueError: If the symbol is not supported.
    """
    spec = CONTRACT_SPECS.get(symbol.upper())
    if spec is None:
        raise ValueError(
            f"Invalid symbol: {symbol}. "
            f"Supported symbols: {', '.join(get_supported_symbols())}"
        )
    return spec


def get_point_value(symbol: str) -> Decimal:
    """Get point value (dollars per full point move) for the instrument.

    >>> get_point_value("es")
    Decimal('50')
    """
    return get_contract_spec(symbol).point_value


def get_tick_size(symbol: str) -> Decimal:
    return get_contract_spec(symbol).tick_size


def get_tick_value(symbol: str) -> Decimal:
    """Dollar value of a single tick."""
    return get_contract_spec(symbol).tick_value


def get_slippage_cost(symbol: str, ticks: Decimal = DEFAULT_SLIPPAGE_TICKS) -> Decimal:
    """Dollar slippage charged per trade side (2 ticks by default)."""
    return get_tick_value(symbol) * ticks


def get_display_name(symbol: str) -> str:
    spec = CONTRACT_SPECS.get(symbol.upper())
    return spec.display_name if spec else symbol


def is_valid_symbol(symbol: str) -> bool:
    return symbol.upper() in CONTRACT_SPECS


def get_supported_symbols() -> list[str]:
    return list(CONTRACT_SPECS)
