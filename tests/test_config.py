import pytest
from pydantic import ValidationError

from cryptosignal.config import Settings


def test_settings_defaults_are_valid() -> None:
    settings = Settings()
    assert settings.initial_balance > 0
    assert settings.fee_bps_per_side == 8.0
    assert settings.stop_loss_percent == 5.0
    assert settings.take_profit_percent == 15.0
    assert settings.execution_confidence_gate == 0.59
    assert settings.execution_return_gate == 0.012
    assert settings.min_confidence_for_generation == 0.6
    assert settings.min_return_threshold_for_generation == 0.02
    assert settings.prediction_horizon_hours == 24
    assert settings.market_data_provider == "yfinance"
    assert settings.coingecko_api_key is None


def test_settings_read_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CRYPTOSIG_DEFAULT_SYMBOL", "BTCUSDT")
    monkeypatch.setenv("CRYPTOSIG_COINGECKO_API_KEY", "  ")
    monkeypatch.setenv("CRYPTOSIG_MARKET_DATA_PROVIDER", "coingecko")

    settings = Settings()

    assert settings.default_symbol == "BTCUSDT"
    assert settings.coingecko_api_key is None
    assert settings.market_data_provider == "coingecko"


def test_settings_reject_out_of_range_values() -> None:
    with pytest.raises(ValidationError):
        Settings(indicator_lookback_bars=50)
    with pytest.raises(ValidationError):
        Settings(max_position_size_fraction=1.5)
    with pytest.raises(ValidationError):
        Settings(history_source="csv")
