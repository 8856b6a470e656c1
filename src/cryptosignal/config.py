from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed runtime settings."""

    app_name: str = "CryptoSignal"
    env: str = "dev"
    log_level: str = "INFO"
    default_symbol: str = "ETHUSDT"
    data_dir: Path = Path("data")
    database_url: str | None = "sqlite:///data/cryptosignal.db"

    # Paper account
    initial_balance: float = Field(default=10_000, gt=0)
    fee_bps_per_side: float = Field(default=8.0, ge=0)
    max_position_size_fraction: float = Field(default=0.95, gt=0, le=1)
    stop_loss_percent: float = Field(default=5.0, gt=0)
    take_profit_percent: float = Field(default=15.0, gt=0)
    single_position_per_symbol: bool = True

    # Signal thresholds
    min_confidence_for_generation: float = Field(default=0.6, ge=0, le=1)
    min_return_threshold_for_generation: float = Field(default=0.02, ge=0)
    execution_confidence_gate: float = Field(default=0.59, ge=0, le=1)
    execution_return_gate: float = Field(default=0.012, ge=0)
    exit_confidence_gate: float = Field(default=0.55, ge=0, le=1)
    exit_return_gate: float = Field(default=0.012, ge=0)

    # Prediction
    prediction_horizon_hours: int = Field(default=24, gt=0, le=168)
    monitoring_horizon_hours: int = Field(default=6, gt=0, le=168)
    indicator_lookback_bars: int = Field(default=400, ge=100)
    min_history_bars: int = Field(default=100, ge=20)
    metrics_window_days: int = Field(default=30, gt=0)

    # Market data
    market_data_provider: Literal["yfinance", "coingecko"] = "yfinance"
    history_source: Literal["provider", "storage"] = "provider"
    coingecko_api_key: str | None = None
    coingecko_base_url: str = "https://pro-api.coingecko.com/api/v3"
    coingecko_rate_limit_per_minute: int = Field(default=400, gt=0)
    http_timeout_seconds: float = Field(default=10.0, gt=0)

    @field_validator("database_url", "coingecko_api_key", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    model_config = SettingsConfigDict(
        env_prefix="CRYPTOSIG_",
        env_file=".env",
        env_file_encoding="utf-8-sig",
        extra="ignore",
    )
