from __future__ import annotations

import pandas as pd
import pytest

from cryptosignal.trend import TrendDirection, analyze_trend


def test_rising_series_is_bullish_with_capped_strength() -> None:
    close = pd.Series([100.0 + i for i in range(40)])
    trend = analyze_trend(close)

    assert trend.direction == TrendDirection.BULLISH
    assert trend.strength == 1.0
    assert trend.support == pytest.approx(float(close.iloc[-10:].min()))
    assert trend.resistance == pytest.approx(float(close.iloc[-1]))


def test_small_decline_is_bearish_with_proportional_strength() -> None:
    close = pd.Series([100.0] * 19 + [97.0])
    trend = analyze_trend(close)

    assert trend.direction == TrendDirection.BEARISH
    assert trend.strength == pytest.approx(0.3)


def test_flat_series_is_sideways() -> None:
    trend = analyze_trend(pd.Series([100.0] * 20 + [101.0]))
    assert trend.direction == TrendDirection.SIDEWAYS


def test_empty_series_is_rejected() -> None:
    with pytest.raises(ValueError):
        analyze_trend(pd.Series([], dtype=float))
