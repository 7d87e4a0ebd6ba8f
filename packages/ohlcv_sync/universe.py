from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, List, Sequence

from loguru import logger

from packages.common.constants import QUOTE_ASSET
from packages.ohlcv_sync.types import Candidate, ExchangeInfoResult, ExchangeInfoSource, PairFilter


def pairs_from_exchange_info(payload: Any) -> frozenset[str]:
    """Extract {symbol} from an /api/v3/exchangeInfo shaped document."""
    if not isinstance(payload, dict) or not isinstance(payload.get("symbols"), list):
        raise ValueError("exchangeInfo payload has no 'symbols' list")
    out: set[str] = set()
    for item in payload["symbols"]:
        if isinstance(item, dict) and isinstance(item.get("symbol"), str):
            out.add(item["symbol"])
    return frozenset(out)


def load_exchange_info_file(path: str | Path) -> ExchangeInfoResult:
    p = Path(path)
    source = f"file:{p}"
    try:
        payload = json.loads(p.read_text(encoding="utf-8"))
        return ExchangeInfoResult(source=source, pairs=pairs_from_exchange_info(payload))
    except (OSError, ValueError) as e:
        return ExchangeInfoResult(source=source, error=str(e))


async def resolve_valid_pairs(client: ExchangeInfoSource, fallback_path: str | Path) -> PairFilter:
    """
    Live exchangeInfo first, then the local snapshot file.

    Returns None when neither source works; callers treat None as
    "do not filter", not as an error.
    """
    live = await client.fetch_exchange_info()
    if live.ok:
        logger.info("Loaded {} valid pairs from {}", len(live.pairs or ()), live.source)
        return live.pairs

    logger.warning("exchangeInfo unavailable from {} ({}); falling back to {}", live.source, live.error, fallback_path)
    local = load_exchange_info_file(fallback_path)
    if local.ok:
        logger.info("Loaded {} valid pairs from {}", len(local.pairs or ()), local.source)
        return local.pairs

    logger.warning("Fallback exchangeInfo unavailable ({}); pair filtering disabled", local.error)
    return None


def to_pair_id(symbol: str, quote_asset: str = QUOTE_ASSET) -> str:
    return symbol.strip().upper() + quote_asset


def is_excluded(name: str | None, excluded_keywords: Iterable[str]) -> bool:
    n = (name or "").lower()
    return any(k.lower() in n for k in excluded_keywords)


def filter_candidates(
    candidates: Sequence[Candidate],
    valid_pairs: PairFilter,
    excluded_keywords: Iterable[str],
    quote_asset: str = QUOTE_ASSET,
) -> List[str]:
    """
    Name blocklist first, then pair id mapping, then exchange membership.

    Keeps market-cap order; a pair id seen twice is kept at its first position.
    """
    keywords = [k.lower() for k in excluded_keywords]
    out: List[str] = []
    seen: set[str] = set()
    for c in candidates:
        if is_excluded(c.name, keywords):
            continue
        pair = to_pair_id(c.symbol, quote_asset)
        if valid_pairs is not None and pair not in valid_pairs:
            continue
        if pair in seen:
            continue
        seen.add(pair)
        out.append(pair)
    return out
