from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from cryptosignal.domain.models import (
    Action,
    ExitReason,
    PaperTrade,
    PositionSide,
    Prediction,
    TradingSignal,
)


@dataclass(slots=True, frozen=True)
class SignalThresholds:
    """Confidence/return gate.

    The return comparison is always strict; ``strict_confidence`` selects
    ``>`` instead of ``>=`` for the confidence comparison.
    """

    min_confidence: float
    min_return: float
    strict_confidence: bool = False

    def __post_init__(self) -> None:
        if not 0 <= self.min_confidence <= 1:
            raise ValueError("min_confidence must be within [0, 1]")
        if self.min_return < 0:
            raise ValueError("min_return must be non-negative")

    def confident(self, confidence: float) -> bool:
        if self.strict_confidence:
            return confidence > self.min_confidence
        return confidence >= self.min_confidence


GENERATION_THRESHOLDS = SignalThresholds(min_confidence=0.6, min_return=0.02)
EXECUTION_GATE = SignalThresholds(min_confidence=0.59, min_return=0.012, strict_confidence=True)


@dataclass(slots=True, frozen=True)
class StopPolicy:
    stop_loss_percent: float = 5.0
    take_profit_percent: float = 15.0

    def __post_init__(self) -> None:
        if self.stop_loss_percent <= 0:
            raise ValueError("stop_loss_percent must be greater than zero")
        if self.take_profit_percent <= 0:
            raise ValueError("take_profit_percent must be greater than zero")


@dataclass(slots=True, frozen=True)
class ExitGate:
    min_confidence: float = 0.55
    min_adverse_return: float = 0.012


def decide_action(predicted_return: float, confidence: float, thresholds: SignalThresholds) -> Action:
    if not thresholds.confident(confidence):
        return Action.HOLD
    if predicted_return > thresholds.min_return:
        return Action.BUY
    if predicted_return < -thresholds.min_return:
        return Action.SELL
    return Action.HOLD


def stop_levels(side: PositionSide, entry_price: float, policy: StopPolicy) -> tuple[float, float]:
    """Return ``(stop_loss, take_profit)`` prices around ``entry_price``."""
    sl = policy.stop_loss_percent / 100
    tp = policy.take_profit_percent / 100
    if side == PositionSide.LONG:
        return entry_price * (1 - sl), entry_price * (1 + tp)
    return entry_price * (1 + sl), entry_price * (1 - tp)


def generate_signal(
    prediction: Prediction,
    current_price: float,
    thresholds: SignalThresholds = GENERATION_THRESHOLDS,
    stops: StopPolicy | None = None,
    timestamp: datetime | None = None,
) -> TradingSignal:
    if current_price <= 0:
        raise ValueError("current_price must be greater than zero")

    action = decide_action(prediction.predicted_return, prediction.confidence_score, thresholds)
    stop_loss: float | None = None
    take_profit: float | None = None
    if action != Action.HOLD:
        stop_loss, take_profit = stop_levels(
            PositionSide.for_action(action),
            current_price,
            stops or StopPolicy(),
        )

    return TradingSignal(
        symbol=prediction.symbol,
        action=action,
        confidence=prediction.confidence_score,
        price=current_price,
        predicted_return=prediction.predicted_return,
        predicted_price=prediction.predicted_price,
        stop_loss=stop_loss,
        take_profit=take_profit,
        timestamp=timestamp or prediction.timestamp,
    )


def stop_triggered(trade: PaperTrade, price: float) -> ExitReason | None:
    """Stop-loss takes precedence over take-profit."""
    if trade.stop_loss_price is not None:
        if trade.side == PositionSide.LONG and price <= trade.stop_loss_price:
            return ExitReason.STOP_LOSS
        if trade.side == PositionSide.SHORT and price >= trade.stop_loss_price:
            return ExitReason.STOP_LOSS
    if trade.take_profit_price is not None:
        if trade.side == PositionSide.LONG and price >= trade.take_profit_price:
            return ExitReason.TAKE_PROFIT
        if trade.side == PositionSide.SHORT and price <= trade.take_profit_price:
            return ExitReason.TAKE_PROFIT
    return None


def evaluate_exit(trade: PaperTrade, prediction: Prediction, gate: ExitGate) -> bool:
    """True when a fresh prediction strongly contradicts the held side."""
    if prediction.confidence_score <= gate.min_confidence:
        return False
    direction = 1.0 if trade.side == PositionSide.LONG else -1.0
    return prediction.predicted_return * direction < -gate.min_adverse_return
