from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from cryptosignal.config import Settings
from cryptosignal.data.base import MarketDataProvider
from cryptosignal.data.coingecko_provider import CoinGeckoProvider
from cryptosignal.data.stored_provider import StoredBarsProvider
from cryptosignal.data.yfinance_provider import YFinanceProvider
from cryptosignal.domain.models import (
    Action,
    ExitReason,
    PaperTrade,
    PerformanceMetrics,
    Prediction,
    TradingSignal,
)
from cryptosignal.errors import NoOpenPositionError
from cryptosignal.ledger import LedgerConfig, PaperTradingLedger
from cryptosignal.rate_limit import InMemoryRateLimiter
from cryptosignal.scoring import PredictionScorer
from cryptosignal.signals import ExitGate, SignalThresholds, StopPolicy, generate_signal
from cryptosignal.storage import TradingStorage

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class CycleResult:
    symbol: str
    current_price: float
    prediction: Prediction
    signal: TradingSignal
    executed: bool
    opened: PaperTrade | None = None
    closed: list[PaperTrade] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class MonitorResult:
    symbol: str
    current_price: float
    prediction: Prediction | None
    closed: list[PaperTrade] = field(default_factory=list)


def build_market_data_provider(settings: Settings) -> MarketDataProvider:
    if settings.market_data_provider == "coingecko":
        return CoinGeckoProvider(
            base_url=settings.coingecko_base_url,
            rate_limiter=InMemoryRateLimiter(settings.coingecko_rate_limit_per_minute),
            api_key=settings.coingecko_api_key,
            timeout_seconds=settings.http_timeout_seconds,
        )
    return YFinanceProvider()


class TradingService:
    """Caller-facing API: predictions, signals, paper trades and metrics.

    ``provider`` supplies current prices. Historical bars come from the same
    provider unless ``settings.history_source`` is ``"storage"``, in which
    case they are read from the bars persisted by :meth:`sync_market_data`.
    """

    def __init__(
        self,
        provider: MarketDataProvider,
        storage: TradingStorage,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.provider = provider
        self.storage = storage
        self.history: MarketDataProvider = provider
        if self.settings.history_source == "storage":
            self.history = StoredBarsProvider(storage, provider)

        self.scorer = PredictionScorer(min_history_bars=self.settings.min_history_bars)
        self.ledger = PaperTradingLedger(
            storage,
            LedgerConfig(
                initial_balance=self.settings.initial_balance,
                fee_bps_per_side=self.settings.fee_bps_per_side,
                max_position_size_fraction=self.settings.max_position_size_fraction,
                single_position_per_symbol=self.settings.single_position_per_symbol,
            ),
        )
        self.generation_thresholds = SignalThresholds(
            min_confidence=self.settings.min_confidence_for_generation,
            min_return=self.settings.min_return_threshold_for_generation,
        )
        self.execution_gate = SignalThresholds(
            min_confidence=self.settings.execution_confidence_gate,
            min_return=self.settings.execution_return_gate,
            strict_confidence=True,
        )
        self.exit_gate = ExitGate(
            min_confidence=self.settings.exit_confidence_gate,
            min_adverse_return=self.settings.exit_return_gate,
        )
        self.stops = StopPolicy(
            stop_loss_percent=self.settings.stop_loss_percent,
            take_profit_percent=self.settings.take_profit_percent,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> TradingService:
        if not settings.database_url:
            raise ValueError("database-url is required (or set CRYPTOSIG_DATABASE_URL)")
        storage = TradingStorage(settings.database_url)
        storage.init_schema()
        return cls(build_market_data_provider(settings), storage, settings)

    # Predictions and signals

    def generate_prediction(self, symbol: str, horizon_hours: int | None = None) -> Prediction:
        price = self.provider.get_current_price(symbol)
        return self._predict(symbol, price, horizon_hours or self.settings.prediction_horizon_hours)

    def generate_signal(self, symbol: str) -> TradingSignal:
        price = self.provider.get_current_price(symbol)
        prediction = self._predict(symbol, price, self.settings.prediction_horizon_hours)
        return generate_signal(
            prediction,
            price,
            thresholds=self.generation_thresholds,
            stops=self.stops,
            timestamp=datetime.now(UTC),
        )

    # Paper trading

    def execute_signal(self, signal: TradingSignal) -> PaperTrade | None:
        return self.ledger.execute_signal(signal)

    def close_position(
        self,
        trade_id: int,
        exit_price: float | None = None,
        reason: ExitReason = ExitReason.MANUAL,
    ) -> PaperTrade:
        if exit_price is None:
            trade = self.storage.get_trade(trade_id)
            if trade is None:
                raise NoOpenPositionError(trade_id)
            exit_price = self.provider.get_current_price(trade.symbol)
        return self.ledger.close_position(trade_id, exit_price, reason)

    def check_stop_loss_take_profit(
        self,
        current_price: float,
        symbol: str | None = None,
    ) -> list[PaperTrade]:
        return self.ledger.check_stop_loss_take_profit(current_price, symbol)

    def get_open_positions(self, symbol: str | None = None) -> list[PaperTrade]:
        return self.ledger.get_open_positions(symbol)

    def recent_trades(self, limit: int = 20, symbol: str | None = None) -> list[PaperTrade]:
        return self.ledger.recent_trades(limit=limit, symbol=symbol)

    def get_performance_metrics(
        self,
        window_days: int | None = None,
        symbol: str | None = None,
    ) -> PerformanceMetrics:
        return self.ledger.get_performance_metrics(
            window_days or self.settings.metrics_window_days,
            symbol=symbol,
        )

    # Automation

    def run_cycle(self, symbol: str) -> CycleResult:
        """One automation tick: stops, fresh prediction, gated execution."""
        with self.ledger.symbol_lock(symbol):
            price = self.provider.get_current_price(symbol)
            closed = self.ledger.check_stop_loss_take_profit(price, symbol)
            prediction = self._predict(symbol, price, self.settings.prediction_horizon_hours)
            signal = generate_signal(
                prediction,
                price,
                thresholds=self.execution_gate,
                stops=self.stops,
                timestamp=datetime.now(UTC),
            )
            opened: PaperTrade | None = None
            if signal.action != Action.HOLD:
                opened = self.ledger.execute_signal(signal)
            else:
                logger.info(
                    "Execution gate held %s: return=%.4f confidence=%.3f",
                    symbol,
                    prediction.predicted_return,
                    prediction.confidence_score,
                )
        return CycleResult(
            symbol=symbol,
            current_price=price,
            prediction=prediction,
            signal=signal,
            executed=opened is not None,
            opened=opened,
            closed=closed,
        )

    def monitor_positions(self, symbol: str) -> MonitorResult:
        """Lightweight tick: stops, then a short-horizon predictive exit check."""
        with self.ledger.symbol_lock(symbol):
            price = self.provider.get_current_price(symbol)
            closed = self.ledger.check_stop_loss_take_profit(price, symbol)
            if not self.ledger.get_open_positions(symbol):
                return MonitorResult(symbol=symbol, current_price=price, prediction=None, closed=closed)

            prediction = self._predict(symbol, price, self.settings.monitoring_horizon_hours)
            closed.extend(self.ledger.close_on_prediction(prediction, price, self.exit_gate))
        return MonitorResult(symbol=symbol, current_price=price, prediction=prediction, closed=closed)

    def sync_market_data(self, symbol: str, lookback_hours: int | None = None) -> int:
        bars = self.provider.get_historical_bars(
            symbol,
            lookback_hours or self.settings.indicator_lookback_bars,
        )
        inserted = self.storage.upsert_bars(bars)
        logger.info("Stored %s new bars for %s (%s fetched)", inserted, symbol, len(bars))
        return inserted

    def _predict(self, symbol: str, price: float, horizon_hours: int) -> Prediction:
        bars = self.history.get_historical_bars(symbol, self.settings.indicator_lookback_bars)
        prediction = self.scorer.predict(symbol, bars, price, horizon_hours=horizon_hours)
        self.storage.record_prediction(prediction)
        return prediction
