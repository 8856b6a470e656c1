from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path
from types import SimpleNamespace

import pytest

import cryptosignal.cli as cli
import cryptosignal.service as service_mod
from cryptosignal.config import Settings
from cryptosignal.domain.models import Action, MarketBar, Prediction, TradingSignal
from cryptosignal.storage import TradingStorage


class _Provider:
    price = 100.0

    def get_current_price(self, symbol: str) -> float:
        return self.price

    def get_historical_bars(self, symbol: str, lookback_hours: int) -> list[MarketBar]:
        start = datetime(2026, 1, 1, tzinfo=UTC)
        return [
            MarketBar(
                symbol=symbol,
                timestamp=start + timedelta(hours=i),
                open=100.0 + i,
                high=101.0 + i,
                low=99.0 + i,
                close=100.0 + i,
                volume=1_000.0,
            )
            for i in range(min(lookback_hours, 6))
        ]


def _settings(tmp_path: Path) -> Settings:
    return Settings(database_url=f"sqlite:///{tmp_path / 'cli.db'}")


class _BullishScorer:
    def predict(
        self,
        symbol: str,
        bars: list[MarketBar],
        current_price: float,
        horizon_hours: int = 24,
    ) -> Prediction:
        return Prediction(
            symbol=symbol,
            timestamp=bars[-1].timestamp,
            horizon_hours=horizon_hours,
            current_price=current_price,
            predicted_price=current_price * 1.05,
            predicted_return=0.05,
            confidence_score=0.8,
            quantile_low=current_price * 1.04,
            quantile_high=current_price * 1.06,
        )


def _use_fake_provider(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "build_market_data_provider", lambda settings: _Provider())
    monkeypatch.setattr(service_mod, "build_market_data_provider", lambda settings: _Provider())


def test_build_service_uses_database_override(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    _use_fake_provider(monkeypatch)
    db_url = f"sqlite:///{tmp_path / 'override.db'}"

    service = cli._build_service(Settings(), SimpleNamespace(database_url=db_url))

    assert service.storage.database_url == db_url
    assert isinstance(service.provider, _Provider)
    with pytest.raises(SystemExit, match="database-url is required"):
        cli._build_service(Settings(database_url=""), SimpleNamespace(database_url=None))


def test_signal_execute_opens_position(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    _use_fake_provider(monkeypatch)
    service = cli._build_service(_settings(tmp_path), SimpleNamespace(database_url=None))
    service.scorer = _BullishScorer()

    assert cli._handle_signal(SimpleNamespace(symbol="ETHUSDT", execute=False), service) == 0
    shown = json.loads(capsys.readouterr().out)
    assert shown["action"] == "buy"
    assert "trade" not in shown
    assert service.get_open_positions() == []

    assert cli._handle_signal(SimpleNamespace(symbol="ETHUSDT", execute=True), service) == 0
    executed = json.loads(capsys.readouterr().out)
    assert executed["trade"]["side"] == "long"
    assert executed["trade"]["stop_loss_price"] == pytest.approx(95.0)
    assert [t.id for t in service.get_open_positions()] == [executed["trade"]["id"]]


def test_handle_fetch_writes_csv(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    _use_fake_provider(monkeypatch)
    output = tmp_path / "out.csv"
    args = SimpleNamespace(symbol="ETHUSDT", lookback_hours=24, output=str(output))

    assert cli._handle_fetch(args, Settings()) == 0
    assert output.exists()
    assert output.read_text().splitlines()[0] == "timestamp,open,high,low,close,volume"


def test_handle_fetch_rejects_invalid_lookback() -> None:
    args = SimpleNamespace(symbol="ETHUSDT", lookback_hours=0, output="unused.csv")
    with pytest.raises(SystemExit, match="lookback-hours must be greater than zero"):
        cli._handle_fetch(args, Settings())


def test_predict_and_db_predictions(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    _use_fake_provider(monkeypatch)
    settings = _settings(tmp_path)
    service = cli._build_service(settings, SimpleNamespace(database_url=None))

    assert cli._handle_predict(SimpleNamespace(symbol="ETHUSDT", horizon_hours=None), service) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["symbol"] == "ETHUSDT"
    assert payload["predicted_return"] == 0.0
    assert payload["timestamp"].startswith("2026-01-01T05:00:00")

    list_args = SimpleNamespace(database_url=None, limit=5, symbol=None)
    assert cli._handle_db_predictions(list_args, settings) == 0
    rows = json.loads(capsys.readouterr().out)["predictions"]
    assert len(rows) == 1
    assert rows[0]["prediction_id"] > 0


def test_positions_close_and_history(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    _use_fake_provider(monkeypatch)
    service = cli._build_service(_settings(tmp_path), SimpleNamespace(database_url=None))
    trade = service.execute_signal(
        TradingSignal(
            symbol="ETHUSDT",
            action=Action.BUY,
            confidence=0.8,
            price=100.0,
            predicted_return=0.03,
            timestamp=datetime(2026, 1, 1, tzinfo=UTC),
            stop_loss=95.0,
            take_profit=115.0,
        )
    )
    assert trade is not None

    assert cli._handle_positions(SimpleNamespace(symbol=None), service) == 0
    positions = json.loads(capsys.readouterr().out)["positions"]
    assert [p["id"] for p in positions] == [trade.id]
    assert positions[0]["side"] == "long"

    assert cli._handle_close(SimpleNamespace(trade_id=trade.id, price=110.0), service) == 0
    closed = json.loads(capsys.readouterr().out)
    assert closed["status"] == "closed"
    assert closed["exit_reason"] == "manual"

    assert cli._handle_history(SimpleNamespace(limit=5, symbol=None), service) == 0
    history = json.loads(capsys.readouterr().out)["trades"]
    assert len(history) == 1

    assert cli._handle_metrics(SimpleNamespace(window_days=None, symbol=None), service) == 0
    metrics = json.loads(capsys.readouterr().out)
    assert metrics["total_trades"] == 1
    assert metrics["current_balance"] == pytest.approx(metrics["ending_balance"])


def test_check_exits_uses_explicit_price(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    _use_fake_provider(monkeypatch)
    service = cli._build_service(_settings(tmp_path), SimpleNamespace(database_url=None))
    service.execute_signal(
        TradingSignal(
            symbol="ETHUSDT",
            action=Action.SELL,
            confidence=0.8,
            price=100.0,
            predicted_return=-0.03,
            timestamp=datetime(2026, 1, 1, tzinfo=UTC),
            stop_loss=105.0,
            take_profit=85.0,
        )
    )

    args = SimpleNamespace(symbol="ETHUSDT", price=106.0)
    assert cli._handle_check_exits(args, service) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["closed"][0]["exit_reason"] == "stop_loss"


def test_close_rejects_non_positive_price(tmp_path: Path) -> None:
    service = cli._build_service(_settings(tmp_path), SimpleNamespace(database_url=None))
    with pytest.raises(SystemExit, match="price must be greater than zero"):
        cli._handle_close(SimpleNamespace(trade_id=1, price=-1.0), service)


def test_db_init_requires_database_url() -> None:
    with pytest.raises(SystemExit, match="database-url is required"):
        cli._handle_db_init(SimpleNamespace(database_url=None), Settings(database_url=""))


def test_db_init_creates_schema(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    db_url = f"sqlite:///{tmp_path / 'init.db'}"
    assert cli._handle_db_init(SimpleNamespace(database_url=db_url), Settings()) == 0
    assert json.loads(capsys.readouterr().out) == {"status": "ok"}
    assert TradingStorage(db_url).list_open_trades() == []


def test_main_converts_value_error_to_clean_exit(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(cli, "configure_logging", lambda level: None)
    monkeypatch.setattr(
        cli,
        "_handle_fetch",
        lambda args, settings: (_ for _ in ()).throw(ValueError("boom")),
    )
    monkeypatch.setattr("sys.argv", ["cryptosignal", "fetch"])

    with pytest.raises(SystemExit, match="boom"):
        cli.main()


def test_parser_defaults_symbol_from_settings() -> None:
    parser = cli._build_parser(Settings(default_symbol="BTCUSDT"))
    assert parser.parse_args(["predict"]).symbol == "BTCUSDT"
    assert parser.parse_args(["positions"]).symbol is None
    assert parser.parse_args(["close", "--trade-id", "3"]).trade_id == 3
    assert parser.parse_args(["signal"]).execute is False
    assert parser.parse_args(["signal", "--execute"]).execute is True
