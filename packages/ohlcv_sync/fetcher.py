from __future__ import annotations

from typing import List

from loguru import logger

from packages.common.constants import INTERVAL, KLINES_MAX_LIMIT
from packages.common.datetime_utils import ms_to_iso8601_z
from packages.common.timeframes import timeframe_to_ms
from packages.ohlcv_sync.types import FetchWindow, KlineRow, KlinesFetchError, KlinesSource


def chunk_end_ms(cursor_ms: int, window_end_ms: int, interval: str = INTERVAL, limit: int = KLINES_MAX_LIMIT) -> int:
    """A chunk never spans more than `limit` candles of `interval`."""
    return min(window_end_ms, cursor_ms + limit * timeframe_to_ms(interval))


async def fetch_window(
    source: KlinesSource,
    symbol: str,
    window: FetchWindow,
    *,
    interval: str = INTERVAL,
    limit: int = KLINES_MAX_LIMIT,
) -> List[KlineRow]:
    """
    Page through [window.start_ms .. window.end_ms] in chunks of at most
    `limit` candles.

    Best effort: the first failed request or malformed page ends the walk
    and the rows collected so far are returned. A page with fewer than
    `limit` rows (including an empty one) means the upstream has nothing
    more for this window.
    """
    interval_ms = timeframe_to_ms(interval)
    out: List[KlineRow] = []
    cursor = int(window.start_ms)
    pages = 0

    while cursor < window.end_ms:
        chunk_end = chunk_end_ms(cursor, window.end_ms, interval, limit)
        logger.debug(
            "[{}] fetching {} -> {}",
            symbol,
            ms_to_iso8601_z(cursor),
            ms_to_iso8601_z(chunk_end),
        )

        try:
            rows = await source.fetch_klines(
                symbol=symbol,
                interval=interval,
                start_ms=cursor,
                end_ms=chunk_end,
                limit=limit,
            )
        except KlinesFetchError as e:
            logger.warning(
                "[{}] klines fetch failed at {} (kept {} rows): {}",
                symbol,
                ms_to_iso8601_z(cursor),
                len(out),
                e,
            )
            break

        pages += 1

        try:
            opens = [int(r[0]) for r in rows]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning(
                "[{}] malformed kline row at {} (kept {} rows): {!r}",
                symbol,
                ms_to_iso8601_z(cursor),
                len(out),
                e,
            )
            break

        out.extend(rows)

        if len(rows) < limit:
            break

        next_cursor = opens[-1] + interval_ms
        if next_cursor <= cursor:
            logger.warning("[{}] cursor did not advance (cursor={} last_open={}) - stopping", symbol, cursor, opens[-1])
            break
        cursor = next_cursor

    logger.debug("[{}] window done pages={} rows={}", symbol, pages, len(out))
    return out
