"""Unit tests for strategylab.utils.instruments."""

from decimal import Decimal

import pytest

from strategylab.utils.instruments import (
    CONTRACT_SPECS,
    get_contract_spec,
    get_display_name,
    get_point_value,
    get_slippage_cost,
    get_supported_symbols,
    get_tick_size,
    get_tick_value,
    is_valid_symbol,
)


class TestGetPointValue:
    """Tests for get_point_value()."""

    @pytest.mark.parametrize(
        "symbol,expected",
        [("ES", 50), ("NQ", 20), ("YM", 5), ("BTC", 5), ("CL", 1000)],
    )
    def test_point_values(self, symbol, expected):
        assert get_point_value(symbol) == Decimal(expected)

    def test_case_insensitive(self):
        assert get_point_value("es") == get_point_value("ES")
        assert get_point_value("Nq") == get_point_value("NQ")

    def test_unknown_symbol_raises(self):
        with pytest.raises(ValueError) as exc_info:
            get_point_value("AAPL")
        assert "Invalid symbol: AAPL" in str(exc_info.value)
        assert "ES, NQ, YM, BTC, CL" in str(exc_info.value)


class TestTicks:
    """Tests for tick size, tick value and slippage."""

    def test_tick_sizes(self):
        assert get_tick_size("ES") == Decimal("0.25")
        assert get_tick_size("YM") == Decimal("1")
        assert get_tick_size("CL") == Decimal("0.01")

    def test_tick_values(self):
        assert get_tick_value("ES") == Decimal("12.50")
        assert get_tick_value("NQ") == Decimal("5")
        assert get_tick_value("BTC") == Decimal("25")
        assert get_tick_value("CL") == Decimal("10")

    def test_slippage_defaults_to_two_ticks(self):
        assert get_slippage_cost("ES") == Decimal("25")
        assert get_slippage_cost("YM") == Decimal("10")

    def test_slippage_custom_ticks(self):
        assert get_slippage_cost("NQ", Decimal("1")) == Decimal("5")
        assert get_slippage_cost("NQ", Decimal("0")) == 0


class TestSymbolLookup:
    """Tests for symbol helpers."""

    def test_supported_symbols_in_order(self):
        assert get_supported_symbols() == ["ES", "NQ", "YM", "BTC", "CL"]

    def test_is_valid_symbol(self):
        assert is_valid_symbol("btc")
        assert not is_valid_symbol("MNQ")

    def test_display_name(self):
        assert get_display_name("es") == "E-mini S&P 500"
        assert get_display_name("XYZ") == "XYZ"

    def test_contract_spec(self):
        spec = get_contract_spec("cl")
        assert spec.symbol == "CL"
        assert spec.tick_value == Decimal("10")

    def test_specs_are_read_only(self):
        with pytest.raises(TypeError):
            CONTRACT_SPECS["MNQ"] = CONTRACT_SPECS["NQ"]
