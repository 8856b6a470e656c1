"""Technical indicators over hourly OHLCV frames.

Every indicator returns the value at the last bar of the frame. Frames are
expected in ascending timestamp order with ``open/high/low/close/volume``
columns, as produced by :func:`bars_to_frame`.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
import pandas as pd

from cryptosignal.domain.models import MarketBar
from cryptosignal.errors import InsufficientDataError

HOURS_PER_YEAR = 365 * 24
OHLCV_COLUMNS = ["open", "high", "low", "close", "volume"]


@dataclass(slots=True, frozen=True)
class IndicatorConfig:
    rsi_period: int = 14
    ema_fast: int = 20
    ema_slow: int = 50
    bollinger_period: int = 20
    bollinger_std: float = 2.0
    atr_period: int = 14
    momentum_period: int = 10
    volatility_period: int = 20
    min_bars: int = 20

    def __post_init__(self) -> None:
        if self.ema_fast >= self.ema_slow:
            raise ValueError("ema_fast must be < ema_slow")


@dataclass(slots=True, frozen=True)
class Indicators:
    rsi: float
    ema_fast: float
    ema_slow: float
    bollinger_upper: float
    bollinger_lower: float
    atr: float
    momentum: float
    volatility: float


def bars_to_frame(bars: Sequence[MarketBar]) -> pd.DataFrame:
    if not bars:
        return pd.DataFrame(columns=OHLCV_COLUMNS, dtype=float)
    frame = pd.DataFrame(
        {
            "open": [bar.open for bar in bars],
            "high": [bar.high for bar in bars],
            "low": [bar.low for bar in bars],
            "close": [bar.close for bar in bars],
            "volume": [bar.volume for bar in bars],
        },
        index=pd.DatetimeIndex([bar.timestamp for bar in bars], name="timestamp"),
        dtype=float,
    )
    frame = frame[~frame.index.duplicated(keep="last")]
    return frame.sort_index()


def rsi(close: pd.Series, period: int = 14) -> float:
    if len(close) < period + 1:
        return 50.0
    deltas = close.diff().iloc[-period:]
    avg_gain = float(deltas.clip(lower=0.0).sum()) / period
    avg_loss = float((-deltas.clip(upper=0.0)).sum()) / period
    if avg_loss == 0:
        return 100.0
    return 100.0 - (100.0 / (1.0 + avg_gain / avg_loss))


def ema(close: pd.Series, period: int) -> float:
    """EMA seeded with the SMA of the first ``period`` values."""
    if len(close) < period:
        return float(close.iloc[-1])
    multiplier = 2.0 / (period + 1)
    value = float(close.iloc[:period].mean())
    for price in close.iloc[period:].to_numpy(dtype=float):
        value = (price - value) * multiplier + value
    return value


def bollinger_bands(
    close: pd.Series,
    period: int = 20,
    num_std: float = 2.0,
) -> tuple[float, float]:
    if len(close) < period:
        avg = float(close.mean())
        return avg * 1.02, avg * 0.98
    window = close.iloc[-period:]
    avg = float(window.mean())
    std = float(window.std(ddof=0))
    return avg + num_std * std, avg - num_std * std


def atr(frame: pd.DataFrame, period: int = 14) -> float:
    if len(frame) < period + 1:
        return 0.0
    prev_close = frame["close"].shift(1)
    true_range = pd.concat(
        [
            frame["high"] - frame["low"],
            (frame["high"] - prev_close).abs(),
            (frame["low"] - prev_close).abs(),
        ],
        axis=1,
    ).max(axis=1)
    return float(true_range.iloc[1:].iloc[-period:].mean())


def momentum(close: pd.Series, period: int = 10) -> float:
    if len(close) < period + 1:
        return 0.0
    past = float(close.iloc[-period - 1])
    return (float(close.iloc[-1]) - past) / past


def volatility(close: pd.Series, period: int = 20) -> float:
    """Realized volatility of hourly returns, annualized."""
    if len(close) < period:
        return 0.0
    returns = close.iloc[-period:].pct_change().dropna()
    if returns.empty:
        return 0.0
    return float(returns.std(ddof=0)) * float(np.sqrt(HOURS_PER_YEAR))


def compute_indicators(frame: pd.DataFrame, config: IndicatorConfig | None = None) -> Indicators:
    cfg = config or IndicatorConfig()
    if len(frame) < cfg.min_bars:
        raise InsufficientDataError(available=len(frame), required=cfg.min_bars)

    close = frame["close"].astype(float)
    upper, lower = bollinger_bands(close, cfg.bollinger_period, cfg.bollinger_std)
    return Indicators(
        rsi=rsi(close, cfg.rsi_period),
        ema_fast=ema(close, cfg.ema_fast),
        ema_slow=ema(close, cfg.ema_slow),
        bollinger_upper=upper,
        bollinger_lower=lower,
        atr=atr(frame, cfg.atr_period),
        momentum=momentum(close, cfg.momentum_period),
        volatility=volatility(close, cfg.volatility_period),
    )
