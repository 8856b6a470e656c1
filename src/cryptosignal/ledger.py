from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from threading import Lock, RLock

from cryptosignal.domain.models import (
    Action,
    ExitReason,
    PaperTrade,
    PerformanceMetrics,
    PositionSide,
    Prediction,
    TradingSignal,
)
from cryptosignal.errors import ConcurrentPositionConflict, NoOpenPositionError
from cryptosignal.risk import compute_pnl, fee_for, performance_metrics
from cryptosignal.signals import ExitGate, evaluate_exit, stop_triggered
from cryptosignal.storage import TradeClose, TradingStorage

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LedgerConfig:
    initial_balance: float = 10_000.0
    fee_bps_per_side: float = 8.0
    max_position_size_fraction: float = 0.95
    single_position_per_symbol: bool = True

    def __post_init__(self) -> None:
        if self.initial_balance <= 0:
            raise ValueError("initial_balance must be greater than zero")
        if self.fee_bps_per_side < 0:
            raise ValueError("fee_bps_per_side must be non-negative")
        if not 0 < self.max_position_size_fraction <= 1:
            raise ValueError("max_position_size_fraction must be within (0, 1]")


class PaperTradingLedger:
    """Owns the paper position lifecycle.

    Every open/close decision for a symbol runs under that symbol's lock, so
    concurrent callers cannot both open a position for the same symbol. The
    lock only covers this process; storage's open-slot index enforces the
    same rule between processes sharing one database. Stops are swept at the
    signal price before a new signal is considered.
    """

    def __init__(self, storage: TradingStorage, config: LedgerConfig | None = None) -> None:
        self.storage = storage
        self.config = config or LedgerConfig()
        self._locks: dict[str, RLock] = {}
        self._registry_lock = Lock()

    @contextmanager
    def symbol_lock(self, symbol: str) -> Iterator[None]:
        with self._registry_lock:
            lock = self._locks.setdefault(symbol, RLock())
        with lock:
            yield

    def execute_signal(
        self,
        signal: TradingSignal,
        now: datetime | None = None,
    ) -> PaperTrade | None:
        if signal.action == Action.HOLD:
            return None
        if signal.price <= 0:
            raise ValueError("signal price must be greater than zero")

        side = PositionSide.for_action(signal.action)
        with self.symbol_lock(signal.symbol):
            self.check_stop_loss_take_profit(signal.price, signal.symbol, now)
            for existing in self.storage.list_open_trades(signal.symbol):
                if existing.side == side:
                    if not self.config.single_position_per_symbol:
                        continue
                    conflict = ConcurrentPositionConflict(signal.symbol, existing.id)
                    logger.info("Skipping signal: %s", conflict)
                    return None
                self._close(existing, signal.price, ExitReason.SIGNAL_CHANGE, now)

            balance = self.current_balance()
            notional = balance * self.config.max_position_size_fraction
            if notional <= 0:
                raise ValueError("Insufficient balance to open a position")
            try:
                trade = self.storage.insert_trade(
                    symbol=signal.symbol,
                    side=side,
                    entry_price=signal.price,
                    quantity=notional / signal.price,
                    entry_fee=fee_for(notional, self.config.fee_bps_per_side),
                    opened_at=now or datetime.now(UTC),
                    stop_loss_price=signal.stop_loss,
                    take_profit_price=signal.take_profit,
                    exclusive=self.config.single_position_per_symbol,
                )
            except ConcurrentPositionConflict as conflict:
                # another process opened the symbol between our check and insert
                logger.info("Skipping signal: %s", conflict)
                return None
        logger.info(
            "Opened %s %.6f %s at %.2f (id=%s)",
            trade.side,
            trade.quantity,
            trade.symbol,
            trade.entry_price,
            trade.id,
        )
        return trade

    def close_position(
        self,
        trade_id: int,
        exit_price: float,
        reason: ExitReason = ExitReason.MANUAL,
        now: datetime | None = None,
    ) -> PaperTrade:
        if exit_price <= 0:
            raise ValueError("exit_price must be greater than zero")
        trade = self.storage.get_trade(trade_id)
        if trade is None:
            raise NoOpenPositionError(trade_id)
        with self.symbol_lock(trade.symbol):
            return self._close(trade, exit_price, reason, now)

    def check_stop_loss_take_profit(
        self,
        current_price: float,
        symbol: str | None = None,
        now: datetime | None = None,
    ) -> list[PaperTrade]:
        closed: list[PaperTrade] = []
        for trade in self.storage.list_open_trades(symbol):
            reason = stop_triggered(trade, current_price)
            if reason is None:
                continue
            with self.symbol_lock(trade.symbol):
                try:
                    closed.append(self._close(trade, current_price, reason, now))
                except NoOpenPositionError:
                    logger.info("Trade %s already closed before %s", trade.id, reason)
        return closed

    def close_on_prediction(
        self,
        prediction: Prediction,
        current_price: float,
        gate: ExitGate,
        now: datetime | None = None,
    ) -> list[PaperTrade]:
        closed: list[PaperTrade] = []
        with self.symbol_lock(prediction.symbol):
            for trade in self.storage.list_open_trades(prediction.symbol):
                if not evaluate_exit(trade, prediction, gate):
                    continue
                logger.info(
                    "Predictive exit for %s %s (id=%s): return=%.4f confidence=%.3f",
                    trade.side,
                    trade.symbol,
                    trade.id,
                    prediction.predicted_return,
                    prediction.confidence_score,
                )
                closed.append(self._close(trade, current_price, ExitReason.PREDICTIVE_EXIT, now))
        return closed

    def get_open_positions(self, symbol: str | None = None) -> list[PaperTrade]:
        return self.storage.list_open_trades(symbol)

    def recent_trades(self, limit: int = 20, symbol: str | None = None) -> list[PaperTrade]:
        return self.storage.list_closed_trades(symbol=symbol, limit=limit, newest_first=True)

    def current_balance(self, symbol: str | None = None) -> float:
        return self.config.initial_balance + self.storage.sum_net_pnl(symbol)

    def get_performance_metrics(
        self,
        window_days: int = 30,
        symbol: str | None = None,
        now: datetime | None = None,
    ) -> PerformanceMetrics:
        if window_days <= 0:
            raise ValueError("window_days must be greater than zero")
        since = (now or datetime.now(UTC)) - timedelta(days=window_days)
        trades = self.storage.list_closed_trades(since=since, symbol=symbol)
        starting_balance = self.config.initial_balance + self.storage.sum_net_pnl(
            symbol,
            before=since,
        )
        return performance_metrics(trades, starting_balance, window_days)

    def _close(
        self,
        trade: PaperTrade,
        exit_price: float,
        reason: ExitReason,
        now: datetime | None,
    ) -> PaperTrade:
        exit_fee = fee_for(exit_price * trade.quantity, self.config.fee_bps_per_side)
        gross, net = compute_pnl(
            trade.side,
            trade.entry_price,
            exit_price,
            trade.quantity,
            entry_fee=trade.entry_fee,
            exit_fee=exit_fee,
        )
        close = TradeClose(
            exit_price=exit_price,
            exit_fee=exit_fee,
            gross_pnl=gross,
            net_pnl=net,
            exit_reason=reason,
            closed_at=now or datetime.now(UTC),
        )
        if not self.storage.close_trade(trade.id, close):
            raise NoOpenPositionError(trade.id)

        closed = self.storage.get_trade(trade.id)
        if closed is None:
            raise NoOpenPositionError(trade.id)
        logger.info(
            "Closed %s %.6f %s at %.2f reason=%s net_pnl=%.2f (id=%s)",
            closed.side,
            closed.quantity,
            closed.symbol,
            exit_price,
            reason,
            net,
            closed.id,
        )
        return closed
