from cryptosignal.data.base import MarketDataProvider
from cryptosignal.data.coingecko_provider import CoinGeckoProvider
from cryptosignal.data.stored_provider import StoredBarsProvider
from cryptosignal.data.symbols import SUPPORTED_COINS, asset_code, resolve_coin, trading_symbol
from cryptosignal.data.yfinance_provider import YFinanceProvider

__all__ = [
    "MarketDataProvider",
    "CoinGeckoProvider",
    "StoredBarsProvider",
    "YFinanceProvider",
    "SUPPORTED_COINS",
    "asset_code",
    "resolve_coin",
    "trading_symbol",
]
