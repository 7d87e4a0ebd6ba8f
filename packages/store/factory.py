from __future__ import annotations

from pathlib import Path

from packages.common.config import StoreConfig
from packages.ohlcv_sync.types import OHLCVStore
from packages.store.postgrest_store import PostgrestStore
from packages.store.sqlite_store import SQLiteStore


async def open_store(cfg: StoreConfig) -> OHLCVStore:
    if cfg.backend == "postgrest":
        return await PostgrestStore.open(
            cfg.url,
            cfg.service_key,
            snapshot_table=cfg.snapshot_table,
            ohlcv_table=cfg.ohlcv_table,
            request_timeout_s=cfg.request_timeout_s,
        )
    if cfg.backend == "sqlite":
        return await SQLiteStore.open(
            Path(cfg.db_path),
            snapshot_table=cfg.snapshot_table,
            ohlcv_table=cfg.ohlcv_table,
        )
    raise ValueError(f"Unsupported store backend: {cfg.backend}")
