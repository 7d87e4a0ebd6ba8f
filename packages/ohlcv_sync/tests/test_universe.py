from __future__ import annotations

import asyncio
import json
import os
import tempfile
from dataclasses import dataclass

from packages.common.constants import EXCLUDED_KEYWORDS
from packages.ohlcv_sync.types import Candidate, ExchangeInfoResult
from packages.ohlcv_sync.universe import (
    filter_candidates,
    is_excluded,
    load_exchange_info_file,
    resolve_valid_pairs,
)


@dataclass
class StaticExchangeInfo:
    result: ExchangeInfoResult
    calls: int = 0

    async def fetch_exchange_info(self) -> ExchangeInfoResult:
        self.calls += 1
        return self.result


def _write_json(payload) -> str:
    with tempfile.NamedTemporaryFile("w", suffix=".json", delete=False) as tmp:
        json.dump(payload, tmp)
        return tmp.name


def test_name_filter_is_case_insensitive_substring():
    assert is_excluded("Wrapped Bitcoin", EXCLUDED_KEYWORDS)
    assert is_excluded("Lido Staked Ether", EXCLUDED_KEYWORDS)
    assert is_excluded("WETH", EXCLUDED_KEYWORDS)
    assert not is_excluded("Bitcoin", EXCLUDED_KEYWORDS)
    assert not is_excluded(None, EXCLUDED_KEYWORDS)


def test_filter_order_blocklist_then_pair_then_membership():
    candidates = [
        Candidate(symbol="btc", name="Bitcoin"),
        Candidate(symbol="wbtc", name="Wrapped Bitcoin"),
        Candidate(symbol="eth", name="Ethereum"),
        Candidate(symbol="usdt", name="Tether"),
        Candidate(symbol="sol", name="Solana"),
    ]
    valid = frozenset({"BTCUSDT", "ETHUSDT", "SOLUSDT", "WBTCUSDT"})

    pairs = filter_candidates(candidates, valid, EXCLUDED_KEYWORDS)

    # WBTC is listed on the exchange but dropped by name; USDTUSDT is not a pair.
    assert pairs == ["BTCUSDT", "ETHUSDT", "SOLUSDT"]


def test_none_filter_passes_every_pair_through():
    candidates = [Candidate(symbol="btc", name="Bitcoin"), Candidate(symbol="zzz", name="Unknown")]
    assert filter_candidates(candidates, None, EXCLUDED_KEYWORDS) == ["BTCUSDT", "ZZZUSDT"]


def test_empty_filter_is_not_the_same_as_no_filter():
    candidates = [Candidate(symbol="btc", name="Bitcoin")]
    assert filter_candidates(candidates, frozenset(), EXCLUDED_KEYWORDS) == []


def test_duplicate_tickers_keep_first_position():
    candidates = [
        Candidate(symbol="btc", name="Bitcoin"),
        Candidate(symbol="eth", name="Ethereum"),
        Candidate(symbol="BTC", name="Bitcoin (dup)"),
    ]
    assert filter_candidates(candidates, None, EXCLUDED_KEYWORDS) == ["BTCUSDT", "ETHUSDT"]


def test_load_exchange_info_file_ok_and_broken():
    good = _write_json({"symbols": [{"symbol": "BTCUSDT"}, {"symbol": "ETHBTC"}, {"nope": 1}]})
    bad = _write_json({"rateLimits": []})
    try:
        res = load_exchange_info_file(good)
        assert res.ok
        assert res.pairs == frozenset({"BTCUSDT", "ETHBTC"})

        res_bad = load_exchange_info_file(bad)
        assert not res_bad.ok
        assert "symbols" in (res_bad.error or "")

        res_missing = load_exchange_info_file(good + ".missing")
        assert not res_missing.ok
    finally:
        os.unlink(good)
        os.unlink(bad)


def test_resolve_prefers_live_source():
    live = StaticExchangeInfo(ExchangeInfoResult(source="live", pairs=frozenset({"BTCUSDT"})))
    pairs = asyncio.run(resolve_valid_pairs(live, "does-not-exist.json"))
    assert pairs == frozenset({"BTCUSDT"})
    assert live.calls == 1


def test_resolve_falls_back_to_file():
    path = _write_json({"symbols": [{"symbol": "ETHUSDT"}]})
    try:
        live = StaticExchangeInfo(ExchangeInfoResult(source="live", error="HTTP 451"))
        assert asyncio.run(resolve_valid_pairs(live, path)) == frozenset({"ETHUSDT"})
    finally:
        os.unlink(path)


def test_resolve_returns_none_when_both_sources_fail():
    live = StaticExchangeInfo(ExchangeInfoResult(source="live", error="timeout"))
    assert asyncio.run(resolve_valid_pairs(live, "does-not-exist.json")) is None
