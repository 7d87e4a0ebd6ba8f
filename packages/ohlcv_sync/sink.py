from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import List, Sequence

from packages.common.datetime_utils import ms_to_datetime
from packages.ohlcv_sync.types import KlineRow, OHLCVRecord, OHLCVStore

KLINE_FIELDS = 11


def _dec(v: object) -> Decimal:
    # Binance sends prices and volumes as strings; keep them exact.
    try:
        return Decimal(str(v))
    except InvalidOperation as e:
        raise ValueError(f"not a decimal: {v!r}") from e


def to_record(symbol: str, row: KlineRow) -> OHLCVRecord:
    if len(row) < KLINE_FIELDS:
        raise ValueError(f"kline row for {symbol} has {len(row)} fields, expected >= {KLINE_FIELDS}")

    try:
        return OHLCVRecord(
            symbol=symbol,
            open_time=ms_to_datetime(int(row[0])),
            open=_dec(row[1]),
            high=_dec(row[2]),
            low=_dec(row[3]),
            close=_dec(row[4]),
            volume=_dec(row[5]),
            close_time=ms_to_datetime(int(row[6])),
            quote_asset_volume=_dec(row[7]),
            number_of_trades=int(row[8]),
            taker_buy_base_volume=_dec(row[9]),
            taker_buy_quote_volume=_dec(row[10]),
        )
    except TypeError as e:
        raise ValueError(f"malformed kline row for {symbol}: {e}") from e


def to_records(symbol: str, rows: Sequence[KlineRow]) -> List[OHLCVRecord]:
    return [to_record(symbol, r) for r in rows]


async def write_records(store: OHLCVStore, symbol: str, rows: Sequence[KlineRow]) -> int:
    """
    Map raw kline rows and upsert them in one batch keyed on (symbol, open_time).

    Raises ValueError for a malformed row and StoreError when the write fails.
    """
    if not rows:
        return 0
    records = to_records(symbol, rows)
    return await store.upsert_ohlcv(records)
