"""
Binance public market data feed.

These endpoints require NO API credentials:
  GET /api/v3/klines           (candles)
  GET /api/v3/ticker/price     (latest price)
  GET /api/v3/exchangeInfo     (symbol validation)
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from ema_trader.exceptions import DataUnavailableError
from ema_trader.price_feeds.base import MarketDataSource
from ema_trader.trading_engine.types import Candle

logger = logging.getLogger(__name__)

BASE_URL = "https://api.binance.com"

# Kline array layout: [open_time, open, high, low, close, volume, close_time, ...]
KLINE_OPEN_TIME = 0
KLINE_CLOSE = 4

# Binance answers 400 with this code for unknown symbols
INVALID_SYMBOL_CODE = -1121


class BinanceMarketData(MarketDataSource):
    """Market data from the Binance spot REST API"""

    def __init__(
        self,
        base_url: str = BASE_URL,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__("binance")
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def _request(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Make a GET request to a public Binance endpoint.

        Retries once on 429 or transport errors after a short backoff.

        Raises:
            DataUnavailableError: request failed after the retry
        """
        for attempt in range(2):
            try:
                resp = await self._client.get(endpoint, params=params)

                if resp.status_code == 429:
                    if attempt == 0:
                        logger.warning("Binance rate-limited (429), backing off 1s")
                        await asyncio.sleep(1.0)
                    continue

                resp.raise_for_status()
                return resp.json()

            except httpx.HTTPStatusError as exc:
                logger.error(
                    "Binance HTTP %s for %s: %s",
                    exc.response.status_code,
                    endpoint,
                    exc.response.text[:200],
                )
                raise DataUnavailableError(
                    f"Binance HTTP {exc.response.status_code} for {endpoint}"
                ) from exc
            except (httpx.HTTPError, ValueError) as exc:
                if attempt == 0:
                    logger.warning("Binance request failed (%s), retrying: %s", endpoint, exc)
                    await asyncio.sleep(0.5)
                    continue
                raise DataUnavailableError(f"Binance request failed for {endpoint}: {exc}") from exc

        raise DataUnavailableError(f"Binance request failed after retries: {endpoint}")

    async def get_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        data = await self._request(
            "/api/v3/klines",
            params={"symbol": symbol, "interval": interval, "limit": limit},
        )
        try:
            # Binance returns oldest first already
            return [
                Candle(
                    open_time=datetime.utcfromtimestamp(row[KLINE_OPEN_TIME] / 1000),
                    close=float(row[KLINE_CLOSE]),
                )
                for row in data
            ]
        except (TypeError, IndexError, ValueError) as e:
            raise DataUnavailableError(f"Malformed klines for {symbol}: {e}") from e

    async def get_latest_price(self, symbol: str) -> float:
        data = await self._request("/api/v3/ticker/price", params={"symbol": symbol})
        try:
            return float(data["price"])
        except (TypeError, KeyError, ValueError) as e:
            raise DataUnavailableError(f"Malformed ticker for {symbol}: {e}") from e

    async def symbol_exists(self, symbol: str) -> bool:
        try:
            resp = await self._client.get("/api/v3/exchangeInfo", params={"symbol": symbol})
        except httpx.HTTPError as e:
            raise DataUnavailableError(f"Binance exchangeInfo failed: {e}") from e

        if resp.status_code == 400:
            try:
                code = resp.json().get("code")
            except ValueError:
                code = None
            if code == INVALID_SYMBOL_CODE:
                return False
        if resp.status_code >= 400:
            raise DataUnavailableError(f"Binance exchangeInfo HTTP {resp.status_code}")

        symbols = resp.json().get("symbols", [])
        return any(s.get("symbol") == symbol for s in symbols)

    async def close(self):
        await self._client.aclose()
