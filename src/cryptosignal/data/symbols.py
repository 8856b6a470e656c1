from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class CoinConfig:
    code: str
    coingecko_id: str
    yahoo_ticker: str
    display_name: str


SUPPORTED_COINS: dict[str, CoinConfig] = {
    "ETH": CoinConfig("ETH", "ethereum", "ETH-USD", "Ethereum"),
    "BTC": CoinConfig("BTC", "bitcoin", "BTC-USD", "Bitcoin"),
    "SOL": CoinConfig("SOL", "solana", "SOL-USD", "Solana"),
}

_QUOTE_SUFFIXES = ("USDT", "USD")


def asset_code(symbol: str) -> str:
    """``ETHUSDT`` -> ``ETH``; bare codes pass through upper-cased."""
    normalized = symbol.strip().upper()
    for suffix in _QUOTE_SUFFIXES:
        if normalized.endswith(suffix) and len(normalized) > len(suffix):
            return normalized.removesuffix(suffix).rstrip("-")
    return normalized


def trading_symbol(code: str) -> str:
    return f"{asset_code(code)}USDT"


def resolve_coin(symbol: str) -> CoinConfig:
    code = asset_code(symbol)
    coin = SUPPORTED_COINS.get(code)
    if coin is None:
        supported = ", ".join(sorted(SUPPORTED_COINS))
        raise ValueError(f"Unsupported cryptocurrency: {code}. Supported: {supported}")
    return coin
