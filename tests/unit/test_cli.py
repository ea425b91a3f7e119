"""Unit tests for the strategylab command line."""

import json
import os
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from strategylab.cli import main
from strategylab.config import get_settings

STRATEGY = {
    "id": 4,
    "name": "Always In",
    "direction": "long",
    "entry_conditions": [{"indicator": "price", "operator": ">", "value": 0}],
    "stop_loss": {"type": "points", "value": 10},
    "take_profit": {"type": "points", "value": 20},
}


@pytest.fixture
def strategy_file(tmp_path):
    path = tmp_path / "strategy.json"
    path.write_text(json.dumps(STRATEGY))
    return path


@pytest.fixture
def csv_file(tmp_path):
    start = datetime(2024, 1, 2, 14, 30)
    lines = ["date,open,high,low,close,volume"]
    for i in range(60):
        ts = start + timedelta(minutes=i)
        lines.append(f"{ts:%Y-%m-%d %H:%M:%S},100,100.5,99.5,100,1000")
    path = tmp_path / "es.csv"
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def short_scan_settings():
    with patch.dict(
        os.environ,
        {"MIN_HISTORICAL_BARS": "5", "MAX_BARS_IN_TRADE": "10", "WARMUP_DAYS": "0"},
    ):
        get_settings.cache_clear()
        yield
    get_settings.cache_clear()


class TestScanCommand:
    """Tests for `scan`."""

    def test_json_report(self, strategy_file, csv_file, short_scan_settings, capsys):
        exit_code = main(
            [
                "scan",
                "-s", str(strategy_file),
                "--symbol", "ES",
                "--csv", str(csv_file),
                "--start", "2024-01-02",
                "--end", "2024-01-03",
                "--json",
            ]
        )

        assert exit_code == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["symbol"] == "ES"
        assert payload["stats"]["trades"] == 5
        assert payload["summary"]["total_trades"] == 5
        assert payload["trades"][0]["result"] == "timeout"
        assert payload["errors"] == 0
        assert isinstance(payload["patterns"], list)

    def test_text_report(self, strategy_file, csv_file, short_scan_settings, capsys):
        exit_code = main(
            [
                "scan",
                "-s", str(strategy_file),
                "--symbol", "ES",
                "--csv", str(csv_file),
                "--start", "2024-01-02",
                "--end", "2024-01-03",
            ]
        )

        assert exit_code == 0
        out = capsys.readouterr().out
        assert "SCAN REPORT" in out
        assert "Always In - LONG - 1 conditions" in out

    def test_unsupported_symbol(self, strategy_file, csv_file):
        exit_code = main(
            [
                "scan",
                "-s", str(strategy_file),
                "--symbol", "AAPL",
                "--csv", str(csv_file),
                "--start", "2024-01-02",
                "--end", "2024-01-03",
            ]
        )
        assert exit_code == 1

    def test_bad_date(self, strategy_file, csv_file):
        exit_code = main(
            [
                "scan",
                "-s", str(strategy_file),
                "--symbol", "ES",
                "--start", "yesterday",
                "--end", "2024-01-03",
            ]
        )
        assert exit_code == 1

    def test_missing_strategy_file(self, tmp_path, csv_file):
        exit_code = main(
            [
                "scan",
                "-s", str(tmp_path / "nope.json"),
                "--symbol", "ES",
                "--start", "2024-01-02",
                "--end", "2024-01-03",
            ]
        )
        assert exit_code == 1

    def test_invalid_strategy_definition(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({**STRATEGY, "direction": "sideways"}))
        exit_code = main(
            ["scan", "-s", str(path), "--symbol", "ES", "--start", "2024-01-02", "--end", "2024-01-03"]
        )
        assert exit_code == 1


class TestEvaluateCommand:
    """Tests for `evaluate`."""

    def test_evaluate_at_bar(self, strategy_file, csv_file, capsys):
        exit_code = main(
            [
                "evaluate",
                "-s", str(strategy_file),
                "--symbol", "ES",
                "--csv", str(csv_file),
                "--at", "2024-01-02T15:00:00",
            ]
        )

        assert exit_code == 0
        out = capsys.readouterr().out
        assert "[PASS] price > 0" in out
        assert "Entry signal: YES" in out

    def test_evaluate_reports_errors(self, tmp_path, csv_file, capsys):
        path = tmp_path / "broken.json"
        conditions = [{"indicator": "price", "operator": ">", "value": "1.5 * vwap"}]
        path.write_text(json.dumps({**STRATEGY, "entry_conditions": conditions}))

        exit_code = main(
            ["evaluate", "-s", str(path), "--symbol", "ES", "--csv", str(csv_file)]
        )

        assert exit_code == 0
        out = capsys.readouterr().out
        assert "Entry signal: NO" in out
        assert "fix: Change '1.5 * vwap' to '1.5x_vwap'" in out

    def test_missing_data_dir_file(self, strategy_file, tmp_path):
        exit_code = main(
            [
                "evaluate",
                "-s", str(strategy_file),
                "--symbol", "NQ",
                "--data-dir", str(tmp_path),
            ]
        )
        assert exit_code == 1


class TestSymbolsCommand:
    """Tests for `symbols`."""

    def test_lists_contracts(self, capsys):
        assert main(["symbols"]) == 0
        out = capsys.readouterr().out
        assert "E-mini S&P 500" in out
        assert "CL" in out

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
