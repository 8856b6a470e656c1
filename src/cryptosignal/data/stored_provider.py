from __future__ import annotations

from datetime import UTC, datetime, timedelta

from cryptosignal.data.base import MarketDataProvider
from cryptosignal.domain.models import MarketBar
from cryptosignal.storage import TradingStorage


class StoredBarsProvider(MarketDataProvider):
    """Reads history from persisted bars; prices still come from ``upstream``."""

    def __init__(self, storage: TradingStorage, upstream: MarketDataProvider) -> None:
        self.storage = storage
        self.upstream = upstream

    def get_current_price(self, symbol: str) -> float:
        return self.upstream.get_current_price(symbol)

    def get_historical_bars(self, symbol: str, lookback_hours: int) -> list[MarketBar]:
        if lookback_hours <= 0:
            raise ValueError("lookback_hours must be greater than zero")
        since = datetime.now(UTC) - timedelta(hours=lookback_hours)
        return self.storage.list_bars(symbol, since=since, limit=lookback_hours)
