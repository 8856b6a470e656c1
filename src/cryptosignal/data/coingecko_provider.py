from __future__ import annotations

import json
import logging
import math
from datetime import UTC, datetime
from typing import Any, Protocol
from urllib import error as urllib_error
from urllib import parse as urllib_parse
from urllib import request as urllib_request

from cryptosignal.data.base import MarketDataProvider
from cryptosignal.data.symbols import resolve_coin
from cryptosignal.domain.models import MarketBar
from cryptosignal.errors import UpstreamDataUnavailable
from cryptosignal.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

USER_AGENT = "cryptosignal/0.1"
HOUR_MS = 3_600_000


class JsonTransport(Protocol):
    def get_json(
        self,
        url: str,
        headers: dict[str, str],
        timeout_seconds: float,
    ) -> Any: ...


class UrllibJsonTransport:
    def get_json(
        self,
        url: str,
        headers: dict[str, str],
        timeout_seconds: float,
    ) -> Any:
        req = urllib_request.Request(url=url, method="GET", headers=headers)
        try:
            with urllib_request.urlopen(req, timeout=timeout_seconds) as resp:
                content = resp.read().decode("utf-8")
        except (urllib_error.URLError, TimeoutError) as exc:
            raise UpstreamDataUnavailable(f"CoinGecko request failed: {exc}") from exc
        if not content.strip():
            raise UpstreamDataUnavailable("CoinGecko returned an empty response")
        try:
            return json.loads(content)
        except json.JSONDecodeError as exc:
            raise UpstreamDataUnavailable("CoinGecko returned invalid JSON") from exc


class CoinGeckoProvider(MarketDataProvider):
    """CoinGecko REST client.

    Every request first takes a slot from ``rate_limiter``; retries and
    backoff are left to callers.
    """

    def __init__(
        self,
        base_url: str,
        rate_limiter: RateLimiter,
        api_key: str | None = None,
        timeout_seconds: float = 10.0,
        transport: JsonTransport | None = None,
    ) -> None:
        if not base_url.strip():
            raise ValueError("base_url must be non-empty")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be greater than zero")
        self.base_url = base_url.rstrip("/")
        self.rate_limiter = rate_limiter
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.transport: JsonTransport = transport or UrllibJsonTransport()

    def get_current_price(self, symbol: str) -> float:
        coin = resolve_coin(symbol)
        data = self._get("simple/price", {"ids": coin.coingecko_id, "vs_currencies": "usd"})
        try:
            price = float(data[coin.coingecko_id]["usd"])
        except (KeyError, TypeError, ValueError) as exc:
            raise UpstreamDataUnavailable(f"No price returned for {coin.code}") from exc
        if price <= 0:
            raise UpstreamDataUnavailable(f"Invalid price {price} for {coin.code}")
        return price

    def get_historical_bars(self, symbol: str, lookback_hours: int) -> list[MarketBar]:
        if lookback_hours <= 0:
            raise ValueError("lookback_hours must be greater than zero")
        coin = resolve_coin(symbol)
        days = max(1, math.ceil(lookback_hours / 24))
        candles = self._get(
            f"coins/{coin.coingecko_id}/ohlc",
            {"vs_currency": "usd", "days": days, "interval": "hourly"},
        )
        if not isinstance(candles, list) or not candles:
            raise UpstreamDataUnavailable(f"No OHLC data received for {coin.code}")

        volumes = self._volumes(coin.coingecko_id, days)
        bars: list[MarketBar] = []
        for candle in candles:
            stamp_ms, open_, high, low, close = (float(v) for v in candle[:5])
            bars.append(
                MarketBar(
                    symbol=symbol,
                    timestamp=datetime.fromtimestamp(stamp_ms / 1000, tz=UTC),
                    open=open_,
                    high=high,
                    low=low,
                    close=close,
                    volume=_nearest_volume(volumes, stamp_ms),
                )
            )
        bars.sort(key=lambda bar: bar.timestamp)
        return bars[-lookback_hours:]

    def _volumes(self, coin_id: str, days: int) -> list[tuple[float, float]]:
        try:
            chart = self._get(
                f"coins/{coin_id}/market_chart",
                {"vs_currency": "usd", "days": days, "interval": "hourly"},
            )
        except UpstreamDataUnavailable:
            logger.warning("Volume data unavailable for %s; using zero volume", coin_id)
            return []
        raw = chart.get("total_volumes", []) if isinstance(chart, dict) else []
        return [(float(point[0]), float(point[1])) for point in raw]

    def _get(self, endpoint: str, params: dict[str, object]) -> Any:
        self.rate_limiter.acquire("coingecko")
        query = urllib_parse.urlencode({k: v for k, v in params.items() if v is not None})
        url = f"{self.base_url}/{endpoint}?{query}"
        headers = {"accept": "application/json", "User-Agent": USER_AGENT}
        if self.api_key:
            headers["x-cg-pro-api-key"] = self.api_key
        return self.transport.get_json(url, headers, self.timeout_seconds)


def _nearest_volume(volumes: list[tuple[float, float]], stamp_ms: float) -> float:
    best = 0.0
    best_distance = float(HOUR_MS)
    for point_ms, volume in volumes:
        distance = abs(point_ms - stamp_ms)
        if distance < best_distance:
            best, best_distance = volume, distance
    return best
