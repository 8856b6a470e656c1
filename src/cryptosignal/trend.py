from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

import pandas as pd


class TrendDirection(StrEnum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    SIDEWAYS = "sideways"


@dataclass(slots=True, frozen=True)
class TrendAnalysis:
    direction: TrendDirection
    strength: float
    support: float
    resistance: float


def analyze_trend(
    close: pd.Series,
    window: int = 20,
    level_window: int = 10,
    threshold: float = 0.02,
) -> TrendAnalysis:
    if close.empty:
        raise ValueError("close must be non-empty")

    recent = close.iloc[-window:].astype(float)
    first = float(recent.iloc[0])
    last = float(recent.iloc[-1])
    change = (last - first) / first

    if change > threshold:
        direction = TrendDirection.BULLISH
    elif change < -threshold:
        direction = TrendDirection.BEARISH
    else:
        direction = TrendDirection.SIDEWAYS

    levels = recent.iloc[-level_window:]
    return TrendAnalysis(
        direction=direction,
        strength=min(abs(change) * 10, 1.0),
        support=float(levels.min()),
        resistance=float(levels.max()),
    )
