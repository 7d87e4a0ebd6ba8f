from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
from loguru import logger

from packages.common.datetime_utils import datetime_to_iso8601_z, parse_iso8601_to_ms
from packages.ohlcv_sync.types import Candidate, OHLCVRecord, StoreError, SymbolRange


def record_to_json(r: OHLCVRecord) -> Dict[str, Any]:
    # numeric columns accept strings; avoids float rounding of Decimal
    return {
        "symbol": r.symbol,
        "open_time": datetime_to_iso8601_z(r.open_time),
        "close_time": datetime_to_iso8601_z(r.close_time),
        "open": str(r.open),
        "high": str(r.high),
        "low": str(r.low),
        "close": str(r.close),
        "volume": str(r.volume),
        "quote_asset_volume": str(r.quote_asset_volume),
        "number_of_trades": int(r.number_of_trades),
        "taker_buy_base_volume": str(r.taker_buy_base_volume),
        "taker_buy_quote_volume": str(r.taker_buy_quote_volume),
    }


@dataclass
class PostgrestStore:
    """
    OHLCV store backed by a PostgREST endpoint (Supabase `/rest/v1`).

    Tables:
      - snapshot_table: symbol, name, market_cap
      - ohlcv_table: one row per (symbol, open_time)
    """

    url: str
    service_key: str
    snapshot_table: str = "snapshot"
    ohlcv_table: str = "binance_ohlcv_1d"
    request_timeout_s: int = 30
    _session: Optional[aiohttp.ClientSession] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.url = (self.url or "").strip().rstrip("/")
        if not self.url:
            raise ValueError("SUPABASE_URL must be set for the postgrest store")
        if not (self.service_key or "").strip():
            raise ValueError("SUPABASE_SERVICE_ROLE_KEY must be set for the postgrest store")

    @classmethod
    async def open(
        cls,
        url: str,
        service_key: str,
        *,
        snapshot_table: str = "snapshot",
        ohlcv_table: str = "binance_ohlcv_1d",
        request_timeout_s: int = 30,
    ) -> "PostgrestStore":
        store = cls(
            url=url,
            service_key=service_key,
            snapshot_table=snapshot_table,
            ohlcv_table=ohlcv_table,
            request_timeout_s=request_timeout_s,
        )
        store._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=request_timeout_s),
            headers={
                "apikey": store.service_key,
                "Authorization": f"Bearer {store.service_key}",
            },
        )
        logger.info("PostgrestStore ready: {}", store.url)
        return store

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
            logger.info("PostgrestStore closed")

    def _table_url(self, table: str) -> str:
        return f"{self.url}/rest/v1/{table}"

    def _sess(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise StoreError("PostgrestStore is not open")
        return self._session

    async def _select(self, table: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        try:
            async with self._sess().get(self._table_url(table), params=params) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise StoreError(f"select {table} HTTP {resp.status}: {text[:200]}")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise StoreError(f"select {table} failed: {e!r}") from e

        if not isinstance(data, list):
            raise StoreError(f"select {table} returned {type(data).__name__}, expected list")
        return data

    async def top_candidates(self, limit: int) -> List[Candidate]:
        rows = await self._select(
            self.snapshot_table,
            {"select": "symbol,name", "order": "market_cap.desc", "limit": str(int(limit))},
        )
        return [Candidate(symbol=str(r.get("symbol") or ""), name=str(r.get("name") or "")) for r in rows if r.get("symbol")]

    async def _edge_open_time(self, symbol: str, direction: str) -> int | None:
        rows = await self._select(
            self.ohlcv_table,
            {
                "select": "open_time",
                "symbol": f"eq.{symbol}",
                "order": f"open_time.{direction}",
                "limit": "1",
            },
        )
        if not rows or not rows[0].get("open_time"):
            return None
        try:
            return parse_iso8601_to_ms(str(rows[0]["open_time"]))
        except ValueError as e:
            raise StoreError(f"unparseable open_time for {symbol}: {rows[0]['open_time']!r}") from e

    async def get_range(self, symbol: str) -> SymbolRange:
        earliest = await self._edge_open_time(symbol, "asc")
        latest = await self._edge_open_time(symbol, "desc")
        return SymbolRange(earliest_ms=earliest, latest_ms=latest)

    async def upsert_ohlcv(self, records: Sequence[OHLCVRecord]) -> int:
        if not records:
            return 0

        payload = [record_to_json(r) for r in records]
        try:
            async with self._sess().post(
                self._table_url(self.ohlcv_table),
                params={"on_conflict": "symbol,open_time"},
                json=payload,
                headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
            ) as resp:
                if resp.status not in (200, 201, 204):
                    text = await resp.text()
                    raise StoreError(f"upsert {self.ohlcv_table} HTTP {resp.status}: {text[:200]}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise StoreError(f"upsert {self.ohlcv_table} failed: {e!r}") from e
        return len(payload)
