from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

import aiosqlite
from loguru import logger

from packages.common.datetime_utils import datetime_to_iso8601_z, parse_iso8601_to_ms
from packages.ohlcv_sync.types import Candidate, OHLCVRecord, StoreError, SymbolRange


def schema_sql(snapshot_table: str, ohlcv_table: str) -> str:
    # Prices/volumes are TEXT so decimal strings round-trip exactly.
    # Timestamps are fixed-width ISO8601 Z strings; text order == time order.
    return f"""
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;

CREATE TABLE IF NOT EXISTS {snapshot_table} (
  symbol TEXT NOT NULL,
  name TEXT,
  market_cap REAL
);

CREATE INDEX IF NOT EXISTS idx_{snapshot_table}_mcap
  ON {snapshot_table} (market_cap DESC);

CREATE TABLE IF NOT EXISTS {ohlcv_table} (
  symbol TEXT NOT NULL,
  open_time TEXT NOT NULL,
  close_time TEXT NOT NULL,
  open TEXT NOT NULL,
  high TEXT NOT NULL,
  low TEXT NOT NULL,
  close TEXT NOT NULL,
  volume TEXT NOT NULL,
  quote_asset_volume TEXT NOT NULL,
  number_of_trades INTEGER NOT NULL,
  taker_buy_base_volume TEXT NOT NULL,
  taker_buy_quote_volume TEXT NOT NULL,
  PRIMARY KEY (symbol, open_time)
);
"""


def _row(r: OHLCVRecord) -> tuple:
    return (
        r.symbol,
        datetime_to_iso8601_z(r.open_time),
        datetime_to_iso8601_z(r.close_time),
        str(r.open),
        str(r.high),
        str(r.low),
        str(r.close),
        str(r.volume),
        str(r.quote_asset_volume),
        int(r.number_of_trades),
        str(r.taker_buy_base_volume),
        str(r.taker_buy_quote_volume),
    )


@dataclass
class SQLiteStore:
    """Local OHLCV store with the same two tables as the hosted one."""

    db_path: Path
    conn: aiosqlite.Connection
    snapshot_table: str = "snapshot"
    ohlcv_table: str = "binance_ohlcv_1d"

    @classmethod
    async def open(
        cls,
        db_path: Path,
        *,
        snapshot_table: str = "snapshot",
        ohlcv_table: str = "binance_ohlcv_1d",
    ) -> "SQLiteStore":
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(str(db_path))
        try:
            await conn.executescript(schema_sql(snapshot_table, ohlcv_table))
            await conn.commit()
        except sqlite3.Error:
            await conn.close()
            raise
        logger.info("SQLiteStore ready: {}", db_path)
        return cls(db_path=db_path, conn=conn, snapshot_table=snapshot_table, ohlcv_table=ohlcv_table)

    async def close(self) -> None:
        await self.conn.close()
        logger.info("SQLiteStore closed")

    async def top_candidates(self, limit: int) -> List[Candidate]:
        try:
            async with self.conn.execute(
                f"SELECT symbol, name FROM {self.snapshot_table} ORDER BY market_cap DESC LIMIT ?",
                (int(limit),),
            ) as cur:
                rows = await cur.fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"snapshot query failed: {e}") from e
        return [Candidate(symbol=str(r[0]), name=str(r[1] or "")) for r in rows]

    async def get_range(self, symbol: str) -> SymbolRange:
        try:
            async with self.conn.execute(
                f"SELECT MIN(open_time), MAX(open_time) FROM {self.ohlcv_table} WHERE symbol=?",
                (symbol,),
            ) as cur:
                row = await cur.fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"range query failed for {symbol}: {e}") from e

        if not row or row[0] is None or row[1] is None:
            return SymbolRange(earliest_ms=None, latest_ms=None)
        try:
            return SymbolRange(earliest_ms=parse_iso8601_to_ms(row[0]), latest_ms=parse_iso8601_to_ms(row[1]))
        except (TypeError, ValueError) as e:
            raise StoreError(f"unparseable open_time for {symbol}: {row!r}") from e

    async def upsert_ohlcv(self, records: Sequence[OHLCVRecord]) -> int:
        if not records:
            return 0

        rows = [_row(r) for r in records]
        try:
            await self.conn.executemany(
                f"""
                INSERT INTO {self.ohlcv_table} (
                  symbol, open_time, close_time, open, high, low, close, volume,
                  quote_asset_volume, number_of_trades, taker_buy_base_volume, taker_buy_quote_volume
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(symbol, open_time) DO UPDATE SET
                  close_time=excluded.close_time,
                  open=excluded.open,
                  high=excluded.high,
                  low=excluded.low,
                  close=excluded.close,
                  volume=excluded.volume,
                  quote_asset_volume=excluded.quote_asset_volume,
                  number_of_trades=excluded.number_of_trades,
                  taker_buy_base_volume=excluded.taker_buy_base_volume,
                  taker_buy_quote_volume=excluded.taker_buy_quote_volume
                """,
                rows,
            )
            await self.conn.commit()
        except sqlite3.Error as e:
            await self.conn.rollback()
            raise StoreError(f"upsert into {self.ohlcv_table} failed: {e}") from e
        return len(rows)
