"""Configuration management using Pydantic Settings."""

from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(
        default=False,
        description="Render log events as JSON instead of the console renderer",
    )

    # Scanner
    max_bars_in_trade: int = Field(
        default=100, ge=1, description="Maximum bars a simulated trade is held"
    )
    min_historical_bars: int = Field(
        default=50, ge=0, description="Bars required before the first entry check"
    )
    setup_bars: int = Field(
        default=20, ge=0, description="Bars captured before entry as setup context"
    )
    warmup_days: int = Field(
        default=10,
        ge=0,
        description="Extra calendar days loaded before the scan start for indicator warm-up",
    )

    # Trade costs (symbol-independent)
    commission_per_round_trip: Decimal = Field(
        default=Decimal("4"), ge=0, description="Commission in dollars per round trip"
    )
    slippage_ticks: Decimal = Field(
        default=Decimal("2"), ge=0, description="Slippage in ticks applied per trade"
    )

    # Condition evaluation
    equality_tolerance: Decimal = Field(
        default=Decimal("0.01"), ge=0, description="Absolute tolerance for the '=' operator"
    )
    atr_distance_mode: Literal["price_percent", "live_atr"] = Field(
        default="price_percent",
        description=(
            "How 'atr' stop/target values become distances: price_percent treats the "
            "value as a percentage of the entry close, live_atr multiplies ATR(14)"
        ),
    )

    # Bar data
    data_dir: str = Field(
        default="data", description="Directory holding <SYMBOL>.csv bar files"
    )

    # Sentry Observability
    sentry_dsn: Optional[str] = Field(
        default=None,
        description="Sentry DSN for error tracking"
    )
    sentry_environment: str = Field(
        default="development",
        description="Sentry environment tag (development, staging, production)"
    )

    def scan_settings(self) -> "ScanSettings":
        """Freeze the scanner-relevant subset of the settings."""
        return ScanSettings(
            max_bars_in_trade=self.max_bars_in_trade,
            min_historical_bars=self.min_historical_bars,
            setup_bars=self.setup_bars,
            warmup_days=self.warmup_days,
            commission=self.commission_per_round_trip,
            slippage_ticks=self.slippage_ticks,
            equality_tolerance=self.equality_tolerance,
            atr_distance_mode=self.atr_distance_mode,
        )


@dataclass(frozen=True)
class ScanSettings:
    """Immutable engine configuration handed to the evaluator and scanner."""

    max_bars_in_trade: int = 100
    min_historical_bars: int = 50
    setup_bars: int = 20
    warmup_days: int = 10
    commission: Decimal = Decimal("4")
    slippage_ticks: Decimal = Decimal("2")
    equality_tolerance: Decimal = Decimal("0.01")
    atr_distance_mode: str = "price_percent"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
