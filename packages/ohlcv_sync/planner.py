from __future__ import annotations

from typing import List

from packages.common.constants import DAY_MS, HORIZON_DAYS
from packages.ohlcv_sync.types import FetchWindow


def horizon_start(now_ms: int, horizon_days: int = HORIZON_DAYS) -> int:
    """Oldest instant the sync keeps, `horizon_days` flat days before now."""
    return now_ms - horizon_days * DAY_MS


def plan_windows(
    earliest_ms: int | None,
    latest_ms: int | None,
    now_ms: int,
    global_start_ms: int,
) -> List[FetchWindow]:
    """
    Windows that must be fetched for one symbol, oldest first.

    - nothing stored: one window [global_start .. now]
    - stored data starts more than a day after global_start: backfill
      [global_start .. earliest - 1d]
    - stored data ends more than a day before now: update
      [latest + 1d .. now]

    Stored days are never re-requested, so the windows cannot overlap
    each other or [earliest .. latest].
    """
    windows: List[FetchWindow] = []

    if earliest_ms is None:
        if global_start_ms < now_ms:
            windows.append(FetchWindow(start_ms=global_start_ms, end_ms=now_ms))
    elif earliest_ms > global_start_ms + DAY_MS:
        windows.append(FetchWindow(start_ms=global_start_ms, end_ms=earliest_ms - DAY_MS))

    if latest_ms is not None and latest_ms + DAY_MS < now_ms:
        windows.append(FetchWindow(start_ms=latest_ms + DAY_MS, end_ms=now_ms))

    return windows
