from __future__ import annotations

import argparse
import asyncio
import sqlite3
import tempfile
from pathlib import Path

import aiohttp
from aiohttp import web
from aiohttp.test_utils import TestServer

from apps.ohlcv_sync.main import StubResponse, main_async
from packages.common.config import OhlcvSyncConfig
from packages.common.constants import DAY_MS
from packages.ohlcv_sync.handler import build_app
from packages.store.sqlite_store import SQLiteStore


def _kline(open_ms: int) -> list:
    return [
        open_ms, "1.0", "2.0", "0.5", "1.5", "10",
        open_ms + DAY_MS - 1, "15", 7, "4", "6", "0",
    ]


def fake_binance() -> web.Application:
    async def klines(request: web.Request) -> web.Response:
        start, end, limit = (int(request.query[k]) for k in ("startTime", "endTime", "limit"))
        ts = ((start + DAY_MS - 1) // DAY_MS) * DAY_MS
        out = []
        while ts <= end and len(out) < limit:
            out.append(_kline(ts))
            ts += DAY_MS
        return web.json_response(out)

    async def exchange_info(request: web.Request) -> web.Response:
        return web.json_response({"symbols": [{"symbol": "BTCUSDT"}, {"symbol": "ETHUSDT"}]})

    app = web.Application()
    app.router.add_get("/api/v3/klines", klines)
    app.router.add_get("/api/v3/exchangeInfo", exchange_info)
    return app


async def _seed(db_path: Path) -> None:
    store = await SQLiteStore.open(db_path)
    try:
        await store.conn.executemany(
            "INSERT INTO snapshot (symbol, name, market_cap) VALUES (?, ?, ?)",
            [("btc", "Bitcoin", 1_000.0), ("eth", "Ethereum", 500.0), ("doge", "Dogecoin", 10.0)],
        )
        await store.conn.commit()
    finally:
        await store.close()


def _symbols(db_path: Path) -> set:
    conn = sqlite3.connect(db_path)
    try:
        return {r[0] for r in conn.execute("SELECT DISTINCT symbol FROM binance_ohlcv_1d")}
    finally:
        conn.close()


def test_sync_endpoint_answers_get_and_post():
    with tempfile.TemporaryDirectory() as d:
        db_path = Path(d) / "sync.sqlite"

        async def scenario():
            await _seed(db_path)
            binance = TestServer(fake_binance())
            await binance.start_server()
            try:
                cfg = OhlcvSyncConfig.model_validate(
                    {
                        "store": {"backend": "sqlite", "db_path": str(db_path)},
                        "binance": {
                            "base_url": str(binance.make_url("")),
                            "exchange_info_fallback": str(Path(d) / "none.json"),
                        },
                        "sync": {"horizon_days": 30},
                    }
                )
                api = TestServer(build_app(cfg))
                await api.start_server()
                try:
                    async with aiohttp.ClientSession() as session:
                        async with session.get(api.make_url("/api/sync")) as r1:
                            first = (r1.status, await r1.json())
                        async with session.post(api.make_url("/api/sync")) as r2:
                            second = (r2.status, await r2.json())
                finally:
                    await api.close()
            finally:
                await binance.close()
            return first, second

        first, second = asyncio.run(scenario())
        # DOGEUSDT is not in exchangeInfo
        assert first == (200, {"status": "ok", "processed": 2})
        assert second == (200, {"status": "ok", "processed": 2})
        assert _symbols(db_path) == {"BTCUSDT", "ETHUSDT"}


def test_sync_endpoint_reports_fatal_error_as_500():
    cfg = OhlcvSyncConfig.model_validate({"store": {"backend": "postgrest"}})

    async def scenario():
        api = TestServer(build_app(cfg))
        await api.start_server()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(api.make_url("/api/sync")) as r:
                    return r.status, await r.json()
        finally:
            await api.close()

    status, body = asyncio.run(scenario())
    assert status == 500
    assert "SUPABASE_URL" in body["error"]


def test_stub_response_records_status_and_body():
    stub = StubResponse()
    stub.status(500).json({"error": "boom"})

    assert stub.status_code == 500
    assert stub.payload == {"error": "boom"}


def test_standalone_run_exit_code(monkeypatch):
    for var in (
        "SUPABASE_URL",
        "SUPABASE_SERVICE_ROLE_KEY",
        "OHLCV_STORE_BACKEND",
        "OHLCV_DB_PATH",
        "BINANCE_BASE_URL",
        "EXCHANGE_INFO_FALLBACK",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)

    with tempfile.TemporaryDirectory() as d:
        db_path = Path(d) / "sync.sqlite"
        config_path = Path(d) / "ohlcv_sync.yaml"

        async def scenario():
            await _seed(db_path)
            binance = TestServer(fake_binance())
            await binance.start_server()
            try:
                config_path.write_text(
                    "store:\n"
                    "  backend: sqlite\n"
                    f"  db_path: {db_path}\n"
                    "binance:\n"
                    f"  base_url: {binance.make_url('')}\n"
                    f"  exchange_info_fallback: {Path(d) / 'none.json'}\n"
                    "sync:\n"
                    "  horizon_days: 10\n"
                )
                ok = await main_async(argparse.Namespace(config=str(config_path), symbols="btc", max_symbols=None))

                config_path.write_text("store:\n  backend: postgrest\n")
                failed = await main_async(argparse.Namespace(config=str(config_path), symbols=None, max_symbols=None))
                return ok, failed
            finally:
                await binance.close()

        ok, failed = asyncio.run(scenario())
        assert ok == 0
        assert failed == 1
        assert _symbols(db_path) == {"BTCUSDT"}
