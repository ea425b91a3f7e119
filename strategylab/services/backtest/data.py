"""OHLCV bar parsing, enrichment, validation and bar providers."""

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from io import StringIO
from pathlib import Path
from typing import Optional, Sequence, Union

import pandas as pd
import structlog

from strategylab.services.strategy.indicators import series as ind
from strategylab.services.strategy.models import Bar
from strategylab.utils.time import as_utc, ensure_utc

logger = structlog.get_logger(__name__)

# Required columns (case-insensitive)
REQUIRED_COLUMNS = {"date", "open", "high", "low", "close", "volume"}

# Column aliases mapping (lowercase)
COLUMN_ALIASES = {
    "timestamp": "date",
    "datetime": "date",
    "time": "date",
    "adj_close": "close",
    "adjusted_close": "close",
    "adj close": "close",
    "o": "open",
    "h": "high",
    "l": "low",
    "c": "close",
    "v": "volume",
    "vol": "volume",
}

# Data vendor export without header: "20250616 094000,5012.25,5013.00,..."
HEADERLESS_DATE_FORMAT = "%Y%m%d %H%M%S"
_HEADERLESS_FIRST_FIELD = re.compile(r"^\s*\d{8} \d{6}\s*$")
HEADERLESS_COLUMNS = ["date", "open", "high", "low", "close", "volume"]

PRICE_COLUMNS = ["open", "high", "low", "close"]
NUMERIC_COLUMNS = PRICE_COLUMNS + ["volume"]

# Anomaly thresholds
LARGE_MOVE_FRACTION = Decimal("0.05")
VOLUME_SPIKE_MULTIPLE = 10
ANOMALY_WARMUP_BARS = 20


@dataclass
class OHLCVParseResult:
    """Result of parsing OHLCV CSV data."""

    bars: list[Bar]
    row_count: int
    date_min: datetime
    date_max: datetime
    warnings: list[str] = field(default_factory=list)


class OHLCVParseError(Exception):
    """Error parsing OHLCV data."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


def _to_decimal(value: str) -> Decimal:
    return Decimal(value.strip())


def _read_frame(content_str: str) -> tuple[pd.DataFrame, bool]:
    """Read CSV text as strings; returns (frame, headerless)."""
    first_line = content_str.lstrip().split("\n", 1)[0]
    delimiter = ";" if ";" in first_line else ","
    headerless = bool(_HEADERLESS_FIRST_FIELD.match(first_line.split(delimiter)[0]))

    if headerless:
        df = pd.read_csv(
            StringIO(content_str),
            sep=delimiter,
            header=None,
            names=HEADERLESS_COLUMNS,
            usecols=range(len(HEADERLESS_COLUMNS)),
            dtype=str,
        )
    else:
        df = pd.read_csv(StringIO(content_str), sep=delimiter, dtype=str)
    return df, headerless


def parse_ohlcv_csv(
    file_content: Union[bytes, str],
    symbol: str,
    filename: str = "data.csv",
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    max_rows: int = 2_000_000,
    max_file_size_mb: int = 100,
    min_rows: int = 1,
) -> OHLCVParseResult:
    """
    Parse OHLCV CSV data into bars.

    Accepts a headered CSV (column aliases allowed, any pandas-parsable
    date) or the headerless ``yyyyMMdd HHmmss,open,high,low,close,volume``
    export. Prices are parsed straight from text into Decimal.

    Args:
        file_content: Raw CSV bytes or text
        symbol: Symbol stamped on every bar
        filename: Original filename (for error messages)
        date_from: Optional filter - only include rows >= this date
        date_to: Optional filter - only include rows <= this date
        max_rows: Maximum allowed rows
        max_file_size_mb: Maximum file size in MB
        min_rows: Minimum rows required after filtering

    Returns:
        OHLCVParseResult with bars sorted by timestamp

    Raises:
        OHLCVParseError: If data is invalid
    """
    warnings = []

    if isinstance(file_content, bytes):
        # Check file size
        file_size_mb = len(file_content) / (1024 * 1024)
        if file_size_mb > max_file_size_mb:
            raise OHLCVParseError(
                f"File too large: {file_size_mb:.1f}MB (max {max_file_size_mb}MB)",
                {"file_size_mb": file_size_mb, "max_mb": max_file_size_mb},
            )
        try:
            content_str = file_content.decode("utf-8")
        except UnicodeDecodeError:
            content_str = file_content.decode("latin-1")
            warnings.append("File decoded as latin-1 (non-UTF8)")
    else:
        content_str = file_content

    if not content_str.strip():
        raise OHLCVParseError("CSV file is empty")

    # Parse CSV
    try:
        df, headerless = _read_frame(content_str)
    except pd.errors.EmptyDataError:
        raise OHLCVParseError("CSV file is empty")
    except (pd.errors.ParserError, ValueError) as e:
        raise OHLCVParseError(f"Failed to parse CSV: {e}")

    if len(df) == 0:
        raise OHLCVParseError("CSV has no data rows")

    # Check row limit
    if len(df) > max_rows:
        raise OHLCVParseError(
            f"Too many rows: {len(df)} (max {max_rows})",
            {"row_count": len(df), "max_rows": max_rows},
        )

    if not headerless:
        # Normalize column names (lowercase, strip whitespace)
        df.columns = df.columns.str.lower().str.strip()

        # Apply column aliases
        rename_map = {}
        for col in df.columns:
            if col in COLUMN_ALIASES and COLUMN_ALIASES[col] not in df.columns:
                rename_map[col] = COLUMN_ALIASES[col]
                warnings.append(f"Column '{col}' mapped to '{COLUMN_ALIASES[col]}'")
        if rename_map:
            df = df.rename(columns=rename_map)

        # Check required columns
        missing = REQUIRED_COLUMNS - set(df.columns)
        if missing:
            raise OHLCVParseError(
                f"Missing required columns: {', '.join(sorted(missing))}",
                {"missing_columns": sorted(missing), "found_columns": list(df.columns)},
            )

    # Parse date column
    try:
        if headerless:
            df["date"] = pd.to_datetime(
                df["date"].str.strip(), format=HEADERLESS_DATE_FORMAT, utc=True
            )
        else:
            df["date"] = pd.to_datetime(df["date"], utc=True)
    except (ValueError, TypeError) as e:
        raise OHLCVParseError(
            f"Failed to parse date column: {e}",
            {"sample_values": df["date"].head(5).tolist()},
        )

    # Drop rows whose OHLCV text is not numeric
    numeric = df[NUMERIC_COLUMNS].apply(pd.to_numeric, errors="coerce")
    bad_rows = numeric.isna().any(axis=1)
    if bad_rows.any():
        warnings.append(f"Dropped {int(bad_rows.sum())} rows with NaN values in OHLCV columns")
        df = df[~bad_rows]
        numeric = numeric[~bad_rows]

    if len(df) == 0:
        raise OHLCVParseError("No valid rows after removing NaN values")

    # Check for non-positive prices
    for col in PRICE_COLUMNS:
        if (numeric[col] <= 0).any():
            raise OHLCVParseError(
                f"Column '{col}' contains zero or negative values",
                {"min_value": float(numeric[col].min())},
            )

    # Sort by date ascending
    if not df["date"].is_monotonic_increasing:
        warnings.append("Data was sorted by date (was not in chronological order)")
        df = df.sort_values("date", ascending=True, kind="stable")

    # Remove duplicates on date
    original_len = len(df)
    df = df.drop_duplicates(subset=["date"], keep="last")
    duplicates_removed = original_len - len(df)
    if duplicates_removed > 0:
        warnings.append(f"Removed {duplicates_removed} duplicate timestamps")

    # Apply date filters
    if date_from:
        original_len = len(df)
        df = df[df["date"] >= pd.Timestamp(as_utc(date_from))]
        filtered = original_len - len(df)
        if filtered > 0:
            warnings.append(f"Filtered out {filtered} rows before {date_from}")

    if date_to:
        original_len = len(df)
        df = df[df["date"] <= pd.Timestamp(as_utc(date_to))]
        filtered = original_len - len(df)
        if filtered > 0:
            warnings.append(f"Filtered out {filtered} rows after {date_to}")

    # Convert to bars, skipping rows with broken OHLC relationships
    symbol = symbol.upper()
    bars: list[Bar] = []
    invalid = 0
    for row in df.itertuples(index=False):
        try:
            bar = Bar(
                symbol=symbol,
                ts=ensure_utc(row.date.to_pydatetime()),
                open=_to_decimal(row.open),
                high=_to_decimal(row.high),
                low=_to_decimal(row.low),
                close=_to_decimal(row.close),
                volume=int(_to_decimal(row.volume)),
            )
        except InvalidOperation:
            invalid += 1
            continue
        if not bar.is_valid():
            invalid += 1
            continue
        bars.append(bar)
    if invalid:
        warnings.append(f"Skipped {invalid} rows with invalid OHLC relationships")

    if len(bars) < min_rows:
        raise OHLCVParseError(
            f"Insufficient data: only {len(bars)} rows (minimum {min_rows} required)",
            {"row_count": len(bars)},
        )

    logger.info(
        "Parsed OHLCV data",
        filename=filename,
        symbol=symbol,
        row_count=len(bars),
        date_min=bars[0].ts.isoformat(),
        date_max=bars[-1].ts.isoformat(),
        warnings_count=len(warnings),
    )

    return OHLCVParseResult(
        bars=bars,
        row_count=len(bars),
        date_min=bars[0].ts,
        date_max=bars[-1].ts,
        warnings=warnings,
    )


# ===========================================
# Enrichment
# ===========================================


def enrich_bars(bars: Sequence[Bar]) -> list[Bar]:
    """
    Return copies of *bars* with pre-computed indicator fields.

    - vwap: typical-price VWAP, reset every calendar day
    - ema9 / ema20 / ema50: SMA-seeded EMA of closes
    - avg_volume20: floored 20-bar average volume

    Fields stay 0 where the indicator is not yet defined.
    """
    if not bars:
        logger.warning("No bars to calculate indicators for")
        return []

    closes = [b.close for b in bars]
    vwap = ind.session_vwap(bars)
    ema9 = ind.ema(closes, 9)
    ema20 = ind.ema(closes, 20)
    ema50 = ind.ema(closes, 50)
    avg_volume = ind.rolling_avg_volume(bars, 20)

    zero = Decimal(0)
    enriched = [
        replace(
            bar,
            vwap=vwap[i],
            ema9=ema9[i] if ema9[i] is not None else zero,
            ema20=ema20[i] if ema20[i] is not None else zero,
            ema50=ema50[i] if ema50[i] is not None else zero,
            avg_volume20=avg_volume[i] if avg_volume[i] is not None else 0,
        )
        for i, bar in enumerate(bars)
    ]
    logger.info("Indicator calculation complete", bar_count=len(enriched))
    return enriched


# ===========================================
# Validation
# ===========================================


@dataclass
class ValidationReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    duplicates: int = 0

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class TimeGap:
    start: datetime
    end: datetime
    duration: timedelta
    missing_bars: int

    def __str__(self) -> str:
        return (
            f"{self.start:%Y-%m-%d %H:%M} to {self.end:%Y-%m-%d %H:%M} "
            f"({self.missing_bars} missing bars)"
        )


def validate_bars(bars: Sequence[Bar]) -> ValidationReport:
    """Check OHLC relationships, prices, volume and duplicate timestamps."""
    report = ValidationReport()
    seen: set[datetime] = set()

    for row, bar in enumerate(bars, start=1):
        if not bar.is_valid():
            report.errors.append(
                f"Row {row}: Invalid OHLC relationship - High={bar.high}, Low={bar.low}, "
                f"Open={bar.open}, Close={bar.close}"
            )
        if bar.ts in seen:
            report.warnings.append(f"Row {row}: Duplicate timestamp - {bar.ts.isoformat()}")
            report.duplicates += 1
        else:
            seen.add(bar.ts)
        if min(bar.open, bar.high, bar.low, bar.close) <= 0:
            report.errors.append(f"Row {row}: Zero or negative price detected")
        if bar.volume <= 0:
            report.warnings.append(f"Row {row}: Zero or negative volume - {bar.volume}")

    logger.info(
        "Validation complete",
        errors=len(report.errors),
        warnings=len(report.warnings),
        duplicates=report.duplicates,
    )
    return report


def find_time_gaps(
    bars: Sequence[Bar], expected_interval: timedelta = timedelta(minutes=1)
) -> list[TimeGap]:
    """Gaps longer than twice the expected bar interval."""
    gaps = []
    for prev, curr in zip(bars, bars[1:]):
        diff = curr.ts - prev.ts
        if diff > expected_interval * 2:
            gaps.append(
                TimeGap(
                    start=prev.ts,
                    end=curr.ts,
                    duration=diff,
                    missing_bars=int(diff / expected_interval) - 1,
                )
            )
    logger.info("Found time gaps", count=len(gaps))
    return gaps


def find_anomalies(bars: Sequence[Bar]) -> list[str]:
    """Large one-bar moves (> 5%) and volume spikes (> 10x avg_volume20)."""
    anomalies: list[str] = []
    if len(bars) < ANOMALY_WARMUP_BARS:
        return anomalies

    for i in range(ANOMALY_WARMUP_BARS, len(bars)):
        bar = bars[i]
        prev = bars[i - 1]
        change = abs((bar.close - prev.close) / prev.close)
        if change > LARGE_MOVE_FRACTION:
            anomalies.append(
                f"{bar.ts:%Y-%m-%d %H:%M}: Large price move {change:.2%} "
                f"(${prev.close} -> ${bar.close})"
            )
        if bar.avg_volume20 > 0 and bar.volume > bar.avg_volume20 * VOLUME_SPIKE_MULTIPLE:
            anomalies.append(
                f"{bar.ts:%Y-%m-%d %H:%M}: Volume spike {bar.volume} (avg: {bar.avg_volume20})"
            )

    logger.info("Found potential anomalies", count=len(anomalies))
    return anomalies


# ===========================================
# Bar providers
# ===========================================


def _select(bars: Sequence[Bar], start: datetime, end: datetime) -> list[Bar]:
    start = as_utc(start)
    end = as_utc(end)
    return [b for b in bars if start <= b.ts <= end]


class InMemoryBarProvider:
    """Bar provider over bars already in memory, keyed by symbol."""

    def __init__(self, bars_by_symbol: Optional[dict[str, Sequence[Bar]]] = None) -> None:
        self._bars: dict[str, list[Bar]] = {}
        for symbol, bars in (bars_by_symbol or {}).items():
            self.add(symbol, bars)

    def add(self, symbol: str, bars: Sequence[Bar]) -> None:
        self._bars[symbol.upper()] = sorted(bars, key=lambda b: b.ts)

    def get_bars(self, symbol: str, start: datetime, end: datetime) -> list[Bar]:
        return _select(self._bars.get(symbol.upper(), []), start, end)


class CsvBarProvider:
    """Reads ``<data_dir>/<SYMBOL>.csv`` once per symbol and enriches it."""

    def __init__(self, data_dir: Union[str, Path], enrich: bool = True) -> None:
        self._data_dir = Path(data_dir)
        self._enrich = enrich
        self._cache: dict[str, list[Bar]] = {}

    def path_for(self, symbol: str) -> Path:
        return self._data_dir / f"{symbol.upper()}.csv"

    def load(self, symbol: str) -> list[Bar]:
        """All bars for *symbol*.

        Raises:
            FileNotFoundError: If the symbol has no CSV file
            OHLCVParseError: If the file is malformed
        """
        symbol = symbol.upper()
        cached = self._cache.get(symbol)
        if cached is not None:
            return cached

        path = self.path_for(symbol)
        result = parse_ohlcv_csv(path.read_bytes(), symbol, filename=path.name)
        for warning in result.warnings:
            logger.warning("CSV parse warning", filename=path.name, warning=warning)

        bars = enrich_bars(result.bars) if self._enrich else result.bars
        self._cache[symbol] = bars
        return bars

    def get_bars(self, symbol: str, start: datetime, end: datetime) -> list[Bar]:
        return _select(self.load(symbol), start, end)
