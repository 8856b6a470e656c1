from __future__ import annotations

import math
from typing import Any, cast

import pandas as pd
import yfinance as yf  # type: ignore[import-untyped]

from cryptosignal.data.base import MarketDataProvider
from cryptosignal.data.symbols import resolve_coin
from cryptosignal.domain.models import MarketBar
from cryptosignal.errors import UpstreamDataUnavailable

# Yahoo serves hourly history for at most 730 days.
MAX_HOURLY_DAYS = 730


class YFinanceProvider(MarketDataProvider):
    def _download(self, ticker_symbol: str, period: str, interval: str) -> pd.DataFrame:
        frame = cast(
            pd.DataFrame,
            yf.download(
                ticker_symbol,
                period=period,
                interval=interval,
                progress=False,
                auto_adjust=True,
                threads=False,
            ),
        )
        if not frame.empty:
            return frame

        ticker = yf.Ticker(ticker_symbol)
        return cast(
            pd.DataFrame,
            ticker.history(
                period=period,
                interval=interval,
                auto_adjust=True,
            ),
        )

    def fetch_ohlcv(self, symbol: str, period: str = "30d", interval: str = "1h") -> pd.DataFrame:
        ticker_symbol = resolve_coin(symbol).yahoo_ticker
        frame = self._download(ticker_symbol, period=period, interval=interval)
        if frame.empty:
            raise UpstreamDataUnavailable(
                "No data returned for "
                f"symbol={ticker_symbol} period={period} interval={interval}"
            )

        if isinstance(frame.columns, pd.MultiIndex):
            frame.columns = frame.columns.get_level_values(0)

        normalized = frame.rename(columns=str.lower)
        ordered_columns = ["open", "high", "low", "close", "volume"]
        missing = set(ordered_columns).difference(normalized.columns)
        if missing:
            raise UpstreamDataUnavailable(f"Missing expected columns: {sorted(missing)}")

        result: Any = normalized[ordered_columns].dropna(subset=["close"]).sort_index()
        return cast(pd.DataFrame, result)

    def get_historical_bars(self, symbol: str, lookback_hours: int) -> list[MarketBar]:
        if lookback_hours <= 0:
            raise ValueError("lookback_hours must be greater than zero")
        days = min(math.ceil(lookback_hours / 24) + 1, MAX_HOURLY_DAYS)
        frame = self.fetch_ohlcv(symbol, period=f"{days}d", interval="1h").tail(lookback_hours)
        return [
            MarketBar(
                symbol=symbol,
                timestamp=pd.Timestamp(timestamp).to_pydatetime(),
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                volume=float(row.volume),
            )
            for timestamp, row in zip(frame.index, frame.itertuples(index=False), strict=True)
        ]

    def get_current_price(self, symbol: str) -> float:
        frame = self.fetch_ohlcv(symbol, period="1d", interval="1m")
        price = float(frame["close"].iloc[-1])
        if price <= 0:
            raise UpstreamDataUnavailable(f"Invalid price {price} for {symbol}")
        return price
