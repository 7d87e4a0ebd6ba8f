from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, List, Optional, Set

import aiohttp
from loguru import logger

from packages.common.constants import KLINES_MAX_LIMIT
from packages.ohlcv_sync.types import ExchangeInfoResult, KlineRow, KlinesFetchError
from packages.ohlcv_sync.universe import pairs_from_exchange_info


BINANCE_SUPPORTED_TFS: Set[str] = {
    "1m", "3m", "5m", "15m", "30m",
    "1h", "2h", "4h", "6h", "8h", "12h",
    "1d", "3d", "1w", "1M",
}


@dataclass
class BinanceSpotClient:
    """
    Public Binance spot REST endpoints used by the sync: klines and exchangeInfo.

    One aiohttp session per client, opened and closed around a run.
    No retries: callers decide what a failure means.
    """

    base_url: str = "https://api.binance.com"
    request_timeout_s: int = 30
    _session: Optional[aiohttp.ClientSession] = field(default=None, init=False, repr=False)

    async def open(self) -> "BinanceSpotClient":
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "BinanceSpotClient":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _sess(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError("BinanceSpotClient is not open")
        return self._session

    def _validate_tf(self, timeframe: str) -> None:
        if timeframe not in BINANCE_SUPPORTED_TFS:
            raise ValueError(
                f"Unsupported Binance interval timeframe={timeframe!r}. "
                f"Supported: {sorted(BINANCE_SUPPORTED_TFS)}"
            )

    async def fetch_klines(
        self,
        symbol: str,
        interval: str,
        start_ms: int,
        end_ms: int,
        limit: int = KLINES_MAX_LIMIT,
    ) -> List[KlineRow]:
        self._validate_tf(interval)

        params = {
            "symbol": symbol.upper(),
            "interval": interval,
            "startTime": str(int(start_ms)),
            "endTime": str(int(end_ms)),
            "limit": str(min(int(limit), KLINES_MAX_LIMIT)),
        }
        url = f"{self.base_url}/api/v3/klines"

        try:
            async with self._sess().get(url, params=params) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise KlinesFetchError(f"Binance klines HTTP {resp.status}: {text[:200]}")
                data: Any = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise KlinesFetchError(f"Binance klines request failed for {symbol}: {e!r}") from e

        if not isinstance(data, list):
            raise KlinesFetchError(f"Unexpected klines payload for {symbol}: {str(data)[:200]}")
        return data

    async def fetch_exchange_info(self) -> ExchangeInfoResult:
        url = f"{self.base_url}/api/v3/exchangeInfo"
        try:
            async with self._sess().get(url) as resp:
                if resp.status != 200:
                    logger.warning("Binance exchangeInfo HTTP {} {}", resp.status, resp.reason)
                    return ExchangeInfoResult(source=url, error=f"HTTP {resp.status}")
                payload = await resp.json(content_type=None)
            return ExchangeInfoResult(source=url, pairs=pairs_from_exchange_info(payload))
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            return ExchangeInfoResult(source=url, error=repr(e))
