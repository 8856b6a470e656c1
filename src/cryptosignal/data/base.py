from __future__ import annotations

from abc import ABC, abstractmethod

from cryptosignal.domain.models import MarketBar


class MarketDataProvider(ABC):
    @abstractmethod
    def get_current_price(self, symbol: str) -> float:
        """Return the latest traded price for ``symbol``."""

    @abstractmethod
    def get_historical_bars(self, symbol: str, lookback_hours: int) -> list[MarketBar]:
        """Return hourly bars covering ``lookback_hours``, oldest first."""
