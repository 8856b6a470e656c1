from __future__ import annotations

import logging
import runpy
from datetime import datetime

import pytest

import cryptosignal
import cryptosignal.data as data_mod
import cryptosignal.domain as domain_mod
from cryptosignal.data.symbols import asset_code, resolve_coin, trading_symbol
from cryptosignal.domain.models import Action, MarketBar, PositionSide
from cryptosignal.logging_config import configure_logging


def test_top_level_package_exports() -> None:
    assert "Settings" in cryptosignal.__all__
    assert "TradingService" in cryptosignal.__all__
    assert isinstance(cryptosignal.__version__, str)


def test_reexport_modules() -> None:
    assert "MarketDataProvider" in data_mod.__all__
    assert "CoinGeckoProvider" in data_mod.__all__
    assert "PaperTrade" in domain_mod.__all__
    assert "Prediction" in domain_mod.__all__


def test_domain_models_are_constructible() -> None:
    bar = MarketBar(
        symbol="ETHUSDT",
        timestamp=datetime(2026, 1, 1),
        open=1.0,
        high=2.0,
        low=0.5,
        close=1.5,
        volume=100.0,
    )
    assert bar.close == 1.5
    assert bar.market_cap is None
    assert PositionSide.for_action(Action.SELL) == PositionSide.SHORT
    with pytest.raises(ValueError):
        PositionSide.for_action(Action.HOLD)


def test_symbol_helpers() -> None:
    assert asset_code("ETHUSDT") == "ETH"
    assert asset_code("btc") == "BTC"
    assert trading_symbol("sol") == "SOLUSDT"
    assert resolve_coin("ETHUSDT").coingecko_id == "ethereum"
    assert resolve_coin("BTC").yahoo_ticker == "BTC-USD"


def test_configure_logging_uses_uppercase_level(monkeypatch) -> None:
    captured: dict[str, object] = {}

    def _fake_basic_config(**kwargs) -> None:
        captured.update(kwargs)

    monkeypatch.setattr(logging, "basicConfig", _fake_basic_config)
    configure_logging("debug")
    assert captured["level"] == "DEBUG"


def test_main_module_invokes_cli_main(monkeypatch) -> None:
    called = {"count": 0}

    def _fake_main() -> None:
        called["count"] += 1

    monkeypatch.setattr("cryptosignal.cli.main", _fake_main)
    runpy.run_module("cryptosignal.__main__", run_name="__main__")
    assert called["count"] == 1
