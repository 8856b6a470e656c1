from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class Action(StrEnum):
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


class PositionSide(StrEnum):
    LONG = "long"
    SHORT = "short"

    @classmethod
    def for_action(cls, action: Action) -> PositionSide:
        if action == Action.BUY:
            return cls.LONG
        if action == Action.SELL:
            return cls.SHORT
        raise ValueError("hold has no position side")


class TradeStatus(StrEnum):
    OPEN = "open"
    CLOSED = "closed"


class ExitReason(StrEnum):
    MANUAL = "manual"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    SIGNAL_CHANGE = "signal_change"
    PREDICTIVE_EXIT = "predictive_exit"


@dataclass(slots=True, frozen=True)
class MarketBar:
    symbol: str
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float
    market_cap: float | None = None


@dataclass(slots=True, frozen=True)
class Prediction:
    symbol: str
    timestamp: datetime
    horizon_hours: int
    current_price: float
    predicted_price: float
    predicted_return: float
    confidence_score: float
    quantile_low: float
    quantile_high: float
    model_version: str = "heuristic-1.0"


@dataclass(slots=True, frozen=True)
class TradingSignal:
    symbol: str
    action: Action
    confidence: float
    price: float
    predicted_return: float
    timestamp: datetime
    predicted_price: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None


@dataclass(slots=True, frozen=True)
class PaperTrade:
    """A simulated position. Closing produces a new instance; status moves open -> closed once."""

    id: int
    symbol: str
    side: PositionSide
    entry_price: float
    quantity: float
    entry_fee: float
    opened_at: datetime
    status: TradeStatus = TradeStatus.OPEN
    stop_loss_price: float | None = None
    take_profit_price: float | None = None
    exit_price: float | None = None
    exit_fee: float | None = None
    gross_pnl: float | None = None
    net_pnl: float | None = None
    exit_reason: ExitReason | None = None
    closed_at: datetime | None = None

    @property
    def fees(self) -> float:
        return self.entry_fee + (self.exit_fee or 0.0)

    @property
    def is_open(self) -> bool:
        return self.status == TradeStatus.OPEN


@dataclass(slots=True, frozen=True)
class PerformanceMetrics:
    window_days: int
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    total_pnl: float
    net_pnl: float
    total_fees: float
    avg_win: float
    avg_loss: float
    profit_factor: float
    max_drawdown: float
    starting_balance: float
    ending_balance: float
    total_return: float
