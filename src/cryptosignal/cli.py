from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any

from cryptosignal.config import Settings
from cryptosignal.domain.models import ExitReason, PaperTrade
from cryptosignal.indicators import bars_to_frame
from cryptosignal.logging_config import configure_logging
from cryptosignal.service import TradingService, build_market_data_provider
from cryptosignal.storage import TradingStorage

logger = logging.getLogger(__name__)


def _build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="CryptoSignal CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_command(name: str, help_text: str, symbol: bool = True) -> argparse.ArgumentParser:
        command = subparsers.add_parser(name, help=help_text)
        if symbol:
            command.add_argument("--symbol", default=settings.default_symbol)
        command.add_argument("--database-url", default=None)
        return command

    fetch = subparsers.add_parser("fetch", help="Download hourly OHLCV bars to CSV")
    fetch.add_argument("--symbol", default=settings.default_symbol)
    fetch.add_argument("--lookback-hours", type=int, default=settings.indicator_lookback_bars)
    fetch.add_argument("--output", default=str(settings.data_dir / "latest.csv"))

    sync = add_command("sync", "Store recent hourly bars in the database")
    sync.add_argument("--lookback-hours", type=int, default=None)

    predict = add_command("predict", "Generate and store a price prediction")
    predict.add_argument("--horizon-hours", type=int, default=None)

    signal_cmd = add_command("signal", "Generate a trading signal")
    signal_cmd.add_argument(
        "--execute",
        action="store_true",
        help="Open or reverse a paper position from the signal",
    )
    add_command("trade", "Run one automation cycle (stops, prediction, execution)")
    add_command("monitor", "Check stops and predictive exits for open positions")

    positions = add_command("positions", "List open paper positions")
    positions.set_defaults(symbol=None)

    close = add_command("close", "Close an open paper position", symbol=False)
    close.add_argument("--trade-id", type=int, required=True)
    close.add_argument("--price", type=float, default=None)

    check_exits = add_command("check-exits", "Apply stop-loss / take-profit at a price")
    check_exits.add_argument("--price", type=float, default=None)

    metrics = add_command("metrics", "Show paper-trading performance")
    metrics.set_defaults(symbol=None)
    metrics.add_argument("--window-days", type=int, default=None)

    history = add_command("history", "List recently closed paper trades")
    history.set_defaults(symbol=None)
    history.add_argument("--limit", type=int, default=20)

    add_command("db-init", "Initialize persistence schema", symbol=False)

    db_predictions = add_command("db-predictions", "List recent stored predictions")
    db_predictions.set_defaults(symbol=None)
    db_predictions.add_argument("--limit", type=int, default=20)

    return parser


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Unsupported value: {value!r}")


def _emit(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, default=_json_default))


def _trades(trades: list[PaperTrade]) -> list[dict[str, Any]]:
    return [asdict(trade) for trade in trades]


def _handle_fetch(args: argparse.Namespace, settings: Settings) -> int:
    if args.lookback_hours <= 0:
        raise SystemExit("lookback-hours must be greater than zero")
    provider = build_market_data_provider(settings)
    frame = bars_to_frame(provider.get_historical_bars(args.symbol, args.lookback_hours))
    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(output)
    logger.info("Saved %s rows to %s", len(frame), output)
    return 0


def _handle_sync(args: argparse.Namespace, service: TradingService) -> int:
    inserted = service.sync_market_data(args.symbol, args.lookback_hours)
    _emit({"symbol": args.symbol, "inserted": inserted})
    return 0


def _handle_predict(args: argparse.Namespace, service: TradingService) -> int:
    prediction = service.generate_prediction(args.symbol, args.horizon_hours)
    _emit(asdict(prediction))
    return 0


def _handle_signal(args: argparse.Namespace, service: TradingService) -> int:
    signal = service.generate_signal(args.symbol)
    payload = asdict(signal)
    if getattr(args, "execute", False):
        trade = service.execute_signal(signal)
        payload["trade"] = asdict(trade) if trade else None
    _emit(payload)
    return 0


def _handle_trade(args: argparse.Namespace, service: TradingService) -> int:
    result = service.run_cycle(args.symbol)
    _emit(
        {
            "symbol": result.symbol,
            "current_price": result.current_price,
            "action": result.signal.action,
            "confidence": result.prediction.confidence_score,
            "predicted_return": result.prediction.predicted_return,
            "executed": result.executed,
            "opened": asdict(result.opened) if result.opened else None,
            "closed": _trades(result.closed),
        }
    )
    return 0


def _handle_monitor(args: argparse.Namespace, service: TradingService) -> int:
    result = service.monitor_positions(args.symbol)
    _emit(
        {
            "symbol": result.symbol,
            "current_price": result.current_price,
            "prediction": asdict(result.prediction) if result.prediction else None,
            "closed": _trades(result.closed),
        }
    )
    return 0


def _handle_positions(args: argparse.Namespace, service: TradingService) -> int:
    _emit({"positions": _trades(service.get_open_positions(args.symbol))})
    return 0


def _handle_close(args: argparse.Namespace, service: TradingService) -> int:
    if args.price is not None and args.price <= 0:
        raise SystemExit("price must be greater than zero")
    trade = service.close_position(args.trade_id, args.price, ExitReason.MANUAL)
    _emit(asdict(trade))
    return 0


def _handle_check_exits(args: argparse.Namespace, service: TradingService) -> int:
    price = args.price if args.price is not None else service.provider.get_current_price(args.symbol)
    closed = service.check_stop_loss_take_profit(price, args.symbol)
    _emit({"symbol": args.symbol, "current_price": price, "closed": _trades(closed)})
    return 0


def _handle_metrics(args: argparse.Namespace, service: TradingService) -> int:
    metrics = service.get_performance_metrics(args.window_days, symbol=args.symbol)
    payload = asdict(metrics)
    payload["current_balance"] = service.ledger.current_balance()
    _emit(payload)
    return 0


def _handle_history(args: argparse.Namespace, service: TradingService) -> int:
    if args.limit <= 0:
        raise SystemExit("limit must be greater than zero")
    _emit({"trades": _trades(service.recent_trades(limit=args.limit, symbol=args.symbol))})
    return 0


def _handle_db_init(args: argparse.Namespace, settings: Settings) -> int:
    storage = _require_storage(settings, args.database_url)
    storage.init_schema()
    _emit({"status": "ok"})
    return 0


def _handle_db_predictions(args: argparse.Namespace, settings: Settings) -> int:
    if args.limit <= 0:
        raise SystemExit("limit must be greater than zero")
    storage = _require_storage(settings, args.database_url)
    rows = storage.list_predictions(limit=args.limit, symbol=args.symbol)
    _emit(
        {
            "predictions": [
                {"prediction_id": row.prediction_id, **asdict(row.prediction)}
                for row in rows
            ]
        }
    )
    return 0


def _require_storage(settings: Settings, override_database_url: str | None) -> TradingStorage:
    database_url = override_database_url or settings.database_url
    if not database_url:
        raise SystemExit("database-url is required (or set CRYPTOSIG_DATABASE_URL)")
    storage = TradingStorage(database_url)
    storage.init_schema()
    return storage


def _build_service(settings: Settings, args: argparse.Namespace) -> TradingService:
    database_url = args.database_url or settings.database_url
    if not database_url:
        raise SystemExit("database-url is required (or set CRYPTOSIG_DATABASE_URL)")
    return TradingService.from_settings(settings.model_copy(update={"database_url": database_url}))


_SERVICE_COMMANDS = {
    "sync": _handle_sync,
    "predict": _handle_predict,
    "signal": _handle_signal,
    "trade": _handle_trade,
    "monitor": _handle_monitor,
    "positions": _handle_positions,
    "close": _handle_close,
    "check-exits": _handle_check_exits,
    "metrics": _handle_metrics,
    "history": _handle_history,
}


def main() -> None:
    settings = Settings()
    configure_logging(settings.log_level)

    parser = _build_parser(settings)
    args = parser.parse_args()

    try:
        if args.command == "fetch":
            raise SystemExit(_handle_fetch(args, settings))
        if args.command == "db-init":
            raise SystemExit(_handle_db_init(args, settings))
        if args.command == "db-predictions":
            raise SystemExit(_handle_db_predictions(args, settings))
        handler = _SERVICE_COMMANDS.get(args.command)
        if handler is not None:
            raise SystemExit(handler(args, _build_service(settings, args)))
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc

    raise SystemExit("Unknown command")


if __name__ == "__main__":
    main()
