"""Heuristic return/confidence scoring.

Each indicator family yields a :class:`SignalContribution`; the prediction is
the sum of contributions followed by the volatility/horizon adjustment, the
clamps and the small-return floor.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from cryptosignal.domain.models import MarketBar, Prediction
from cryptosignal.indicators import IndicatorConfig, Indicators, bars_to_frame, compute_indicators
from cryptosignal.trend import TrendAnalysis, TrendDirection, analyze_trend

logger = logging.getLogger(__name__)

BASE_CONFIDENCE = 0.5
MAX_RETURN = 0.15
MIN_CONFIDENCE = 0.4
MAX_CONFIDENCE = 0.95
RETURN_FLOOR = 0.005
FLOOR_CAP = 0.02
QUANTILE_SPREAD = 0.7
NEUTRAL_BAND = 0.02


@dataclass(slots=True, frozen=True)
class SignalContribution:
    source: str
    return_delta: float
    confidence_delta: float
    strength: float


@dataclass(slots=True, frozen=True)
class Score:
    predicted_return: float
    confidence: float
    signal_strength: float


def rsi_contribution(value: float) -> SignalContribution | None:
    if value > 75:
        return SignalContribution("rsi", -0.025, 0.15, 1.0)
    if value > 65:
        return SignalContribution("rsi", -0.015, 0.08, 0.6)
    if value < 25:
        return SignalContribution("rsi", 0.025, 0.15, 1.0)
    if value < 35:
        return SignalContribution("rsi", 0.015, 0.08, 0.6)
    return None


def ema_contribution(price: float, ema_fast: float, ema_slow: float) -> SignalContribution | None:
    spread = abs(ema_fast - ema_slow) / ema_slow if ema_slow else 0.0
    weight = min(1.0 + spread * 10, 2.0)
    if price > ema_fast > ema_slow:
        return SignalContribution("ema", 0.015 * weight, 0.10, 1.0)
    if price < ema_fast < ema_slow:
        return SignalContribution("ema", -0.015 * weight, 0.10, 1.0)
    return None


def bollinger_contribution(price: float, upper: float, lower: float) -> SignalContribution | None:
    width = (upper - lower) / price if price else 0.0
    weight = min(1.0 + width * 5, 2.0)
    if price > upper:
        return SignalContribution("bollinger", -0.02 * weight, 0.05, 0.5)
    if price < lower:
        return SignalContribution("bollinger", 0.02 * weight, 0.05, 0.5)
    return None


def trend_contribution(trend: TrendAnalysis) -> SignalContribution | None:
    if trend.direction == TrendDirection.BULLISH:
        return SignalContribution("trend", trend.strength * 0.03, 0.10 * trend.strength, trend.strength)
    if trend.direction == TrendDirection.BEARISH:
        return SignalContribution("trend", -trend.strength * 0.03, 0.10 * trend.strength, trend.strength)
    return None


def momentum_contribution(value: float) -> SignalContribution | None:
    if value == 0:
        return None
    return SignalContribution("momentum", value * 0.8, 0.0, min(abs(value) * 50, 1.0))


def collect_contributions(
    price: float,
    indicators: Indicators,
    trend: TrendAnalysis,
) -> list[SignalContribution]:
    candidates = (
        rsi_contribution(indicators.rsi),
        ema_contribution(price, indicators.ema_fast, indicators.ema_slow),
        bollinger_contribution(price, indicators.bollinger_upper, indicators.bollinger_lower),
        trend_contribution(trend),
        momentum_contribution(indicators.momentum),
    )
    return [c for c in candidates if c is not None]


def combine(contributions: Iterable[SignalContribution]) -> Score:
    items = list(contributions)
    strength = sum(c.strength for c in items)
    confidence = BASE_CONFIDENCE + sum(c.confidence_delta for c in items)
    if strength >= 2:
        confidence += 0.15
    elif strength >= 1.5:
        confidence += 0.10
    return Score(
        predicted_return=sum(c.return_delta for c in items),
        confidence=confidence,
        signal_strength=strength,
    )


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def adjust_for_horizon(predicted_return: float, volatility: float, horizon_hours: int) -> float:
    vol_adjustment = min(volatility * horizon_hours / 24, 0.6) * 0.8
    adjusted = predicted_return * (1 + vol_adjustment)
    return adjusted * math.sqrt(horizon_hours / 24)


def score(
    price: float,
    horizon_hours: int,
    indicators: Indicators,
    trend: TrendAnalysis,
) -> Score:
    raw = combine(collect_contributions(price, indicators, trend))
    predicted_return = adjust_for_horizon(raw.predicted_return, indicators.volatility, horizon_hours)
    predicted_return = _clamp(predicted_return, -MAX_RETURN, MAX_RETURN)
    confidence = _clamp(raw.confidence, MIN_CONFIDENCE, MAX_CONFIDENCE)

    if abs(predicted_return) < RETURN_FLOOR:
        predicted_return = _clamp(indicators.momentum * 0.5, -FLOOR_CAP, FLOOR_CAP)

    return Score(
        predicted_return=predicted_return,
        confidence=confidence,
        signal_strength=raw.signal_strength,
    )


def build_prediction(
    symbol: str,
    price: float,
    horizon_hours: int,
    result: Score,
    timestamp: datetime,
) -> Prediction:
    predicted_price = price * (1 + result.predicted_return)
    spread = abs(result.predicted_return) * QUANTILE_SPREAD
    return Prediction(
        symbol=symbol,
        timestamp=timestamp,
        horizon_hours=horizon_hours,
        current_price=price,
        predicted_price=predicted_price,
        predicted_return=result.predicted_return,
        confidence_score=result.confidence,
        quantile_low=predicted_price * (1 - spread),
        quantile_high=predicted_price * (1 + spread),
    )


def neutral_prediction(
    symbol: str,
    price: float,
    horizon_hours: int,
    timestamp: datetime | None = None,
) -> Prediction:
    return Prediction(
        symbol=symbol,
        timestamp=timestamp or datetime.now(UTC),
        horizon_hours=horizon_hours,
        current_price=price,
        predicted_price=price,
        predicted_return=0.0,
        confidence_score=BASE_CONFIDENCE,
        quantile_low=price * (1 - NEUTRAL_BAND),
        quantile_high=price * (1 + NEUTRAL_BAND),
    )


class PredictionScorer:
    """Turns a bar history and a current price into a :class:`Prediction`.

    Falls back to a neutral prediction when fewer than ``min_history_bars`` bars
    are available or when indicator computation fails; those failures are
    logged, never raised.
    """

    def __init__(
        self,
        min_history_bars: int = 100,
        indicator_config: IndicatorConfig | None = None,
    ) -> None:
        if min_history_bars <= 0:
            raise ValueError("min_history_bars must be greater than zero")
        self.min_history_bars = min_history_bars
        self.indicator_config = indicator_config or IndicatorConfig()

    def predict(
        self,
        symbol: str,
        bars: Sequence[MarketBar],
        current_price: float,
        horizon_hours: int = 24,
    ) -> Prediction:
        if current_price <= 0:
            raise ValueError("current_price must be greater than zero")
        if horizon_hours <= 0:
            raise ValueError("horizon_hours must be greater than zero")

        frame = bars_to_frame(bars)
        as_of = bars[-1].timestamp if bars else None
        if len(frame) < self.min_history_bars:
            logger.info(
                "Neutral prediction for %s: %s bars available, %s required",
                symbol,
                len(frame),
                self.min_history_bars,
            )
            return neutral_prediction(symbol, current_price, horizon_hours, as_of)

        try:
            indicators = compute_indicators(frame, self.indicator_config)
            trend = analyze_trend(frame["close"])
            result = score(current_price, horizon_hours, indicators, trend)
        except Exception:
            logger.exception("Scoring failed for %s; using neutral prediction", symbol)
            return neutral_prediction(symbol, current_price, horizon_hours, as_of)

        prediction = build_prediction(
            symbol,
            current_price,
            horizon_hours,
            result,
            timestamp=frame.index[-1].to_pydatetime(),
        )
        logger.debug(
            "Prediction %s h=%s return=%.4f confidence=%.3f strength=%.2f",
            symbol,
            horizon_hours,
            prediction.predicted_return,
            prediction.confidence_score,
            result.signal_strength,
        )
        return prediction
