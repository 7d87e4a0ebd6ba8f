from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from loguru import logger

from packages.common.config import SyncSettings
from packages.common.datetime_utils import ms_to_iso8601_z, now_ms
from packages.ohlcv_sync.fetcher import fetch_window
from packages.ohlcv_sync.planner import horizon_start, plan_windows
from packages.ohlcv_sync.sink import write_records
from packages.ohlcv_sync.types import (
    ExchangeClient,
    FetchWindow,
    KlinesFetchError,
    OHLCVStore,
    StoreError,
    SyncSummary,
)
from packages.ohlcv_sync.universe import filter_candidates, resolve_valid_pairs, to_pair_id


@dataclass(frozen=True)
class SyncRequest:
    # Restrict the run to these base tickers (still filtered); None = whole snapshot.
    symbols: Optional[Sequence[str]] = None
    max_symbols: Optional[int] = None


class SyncService:
    """
    One sequential pass:

      valid pairs (live -> file -> unfiltered)
      -> top candidates by market cap (fatal on failure)
      -> per pair: stored range -> windows -> fetch -> upsert

    Only the candidate query can abort the run. Range failures skip the
    symbol; fetch and write failures skip the window.
    """

    def __init__(
        self,
        *,
        store: OHLCVStore,
        exchange: ExchangeClient,
        settings: SyncSettings | None = None,
        exchange_info_fallback: str | Path = "exchangeInfo.json",
    ):
        self._store = store
        self._exchange = exchange
        self._settings = settings or SyncSettings()
        self._fallback = exchange_info_fallback

    async def target_pairs(self, req: SyncRequest) -> List[str]:
        s = self._settings
        valid_pairs = await resolve_valid_pairs(self._exchange, self._fallback)

        # StoreError propagates: without candidates there is nothing to do.
        candidates = await self._store.top_candidates(s.candidate_limit)
        logger.info("Fetched top {} coins by market_cap", len(candidates))

        pairs = filter_candidates(candidates, valid_pairs, s.excluded_keywords, s.quote_asset)

        if req.symbols:
            wanted = {to_pair_id(x, s.quote_asset) for x in req.symbols}
            pairs = [p for p in pairs if p in wanted]
        if req.max_symbols is not None:
            pairs = pairs[: max(0, req.max_symbols)]

        logger.info("{} target pairs after filtering", len(pairs))
        return pairs

    async def run(self, req: SyncRequest | None = None, *, now: int | None = None) -> SyncSummary:
        req = req or SyncRequest()
        summary = SyncSummary()

        pairs = await self.target_pairs(req)
        summary.processed = len(pairs)

        run_now = now if now is not None else now_ms()
        global_start = horizon_start(run_now, self._settings.horizon_days)

        for pair in pairs:
            await self._sync_pair(pair, run_now, global_start, summary)

        logger.info(
            "Sync complete processed={} skipped={} windows={} empty={} failed={} rows={}",
            summary.processed,
            summary.symbols_skipped,
            summary.windows_planned,
            summary.windows_empty,
            summary.windows_failed,
            summary.rows_written,
        )
        return summary

    async def _sync_pair(self, pair: str, run_now: int, global_start: int, summary: SyncSummary) -> None:
        logger.info("-- Processing {} --", pair)

        try:
            rng = await self._store.get_range(pair)
        except StoreError as e:
            logger.error("[{}] range lookup failed, skipping symbol: {}", pair, e)
            summary.symbols_skipped += 1
            return

        windows = plan_windows(rng.earliest_ms, rng.latest_ms, run_now, global_start)
        summary.windows_planned += len(windows)

        if not windows:
            logger.info("[{}] up to date", pair)
            return
        if rng.empty:
            logger.info("[{}] no existing data; full fetch", pair)

        for w in windows:
            await self._sync_window(pair, w, summary)

    async def _sync_window(self, pair: str, w: FetchWindow, summary: SyncSummary) -> None:
        span = f"{ms_to_iso8601_z(w.start_ms)} -> {ms_to_iso8601_z(w.end_ms)}"
        logger.info("[{}] window {}", pair, span)

        try:
            rows = await fetch_window(
                self._exchange,
                pair,
                w,
                interval=self._settings.interval,
                limit=self._settings.chunk_limit,
            )
        except (KlinesFetchError, ValueError) as e:
            logger.error("[{}] fetch failed for window {}: {}", pair, span, e)
            summary.windows_failed += 1
            return

        if not rows:
            logger.info("[{}] no data for window {}", pair, span)
            summary.windows_empty += 1
            return

        try:
            wrote = await write_records(self._store, pair, rows)
        except (StoreError, ValueError) as e:
            logger.error("[{}] upsert failed for window {}: {}", pair, span, e)
            summary.windows_failed += 1
            return

        summary.rows_written += wrote
        logger.info("[{}] upserted {} rows for window {}", pair, wrote, span)
