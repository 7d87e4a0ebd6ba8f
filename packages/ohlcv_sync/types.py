from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, FrozenSet, List, Optional, Protocol, Sequence

# Raw Binance kline row:
# [open_time, open, high, low, close, volume, close_time,
#  quote_asset_volume, number_of_trades, taker_buy_base_volume,
#  taker_buy_quote_volume, ignore]
KlineRow = Sequence[Any]

# Set of tradable pair ids. None means "no filter": every pair passes.
PairFilter = Optional[FrozenSet[str]]


class StoreError(RuntimeError):
    """A store query or write failed."""


class KlinesFetchError(RuntimeError):
    """One klines request failed (HTTP status, payload shape, or transport)."""


@dataclass(frozen=True)
class Candidate:
    symbol: str
    name: str


@dataclass(frozen=True)
class SymbolRange:
    earliest_ms: int | None
    latest_ms: int | None

    @property
    def empty(self) -> bool:
        return self.earliest_ms is None


@dataclass(frozen=True)
class FetchWindow:
    start_ms: int
    end_ms: int

    def __post_init__(self) -> None:
        if self.start_ms >= self.end_ms:
            raise ValueError(f"FetchWindow requires start_ms < end_ms (got {self.start_ms}..{self.end_ms})")


@dataclass(frozen=True)
class OHLCVRecord:
    symbol: str
    open_time: datetime
    close_time: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal
    quote_asset_volume: Decimal
    number_of_trades: int
    taker_buy_base_volume: Decimal
    taker_buy_quote_volume: Decimal


@dataclass(frozen=True)
class ExchangeInfoResult:
    """Outcome of loading exchange metadata from one source."""
    source: str
    pairs: FrozenSet[str] | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.pairs is not None


@dataclass
class SyncSummary:
    processed: int = 0
    symbols_skipped: int = 0
    windows_planned: int = 0
    windows_empty: int = 0
    windows_failed: int = 0
    rows_written: int = 0


class KlinesSource(Protocol):
    async def fetch_klines(
        self,
        symbol: str,
        interval: str,
        start_ms: int,
        end_ms: int,
        limit: int = 1000,
    ) -> List[KlineRow]:
        """Return raw rows ascending by open_time; raise KlinesFetchError on failure."""
        ...


class ExchangeInfoSource(Protocol):
    async def fetch_exchange_info(self) -> ExchangeInfoResult:
        """Never raises; failures are reported through ExchangeInfoResult.error."""
        ...


class OHLCVStore(Protocol):
    async def top_candidates(self, limit: int) -> List[Candidate]:
        """Snapshot rows ordered by market_cap descending."""
        ...

    async def get_range(self, symbol: str) -> SymbolRange:
        """Min/max stored open_time for `symbol`; both None when no rows exist."""
        ...

    async def upsert_ohlcv(self, records: Sequence[OHLCVRecord]) -> int:
        """Insert or overwrite on (symbol, open_time). Returns rows sent."""
        ...

    async def close(self) -> None: ...


class ExchangeClient(KlinesSource, ExchangeInfoSource, Protocol):
    """Both exchange endpoints the sync needs."""
