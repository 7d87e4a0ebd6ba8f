from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from aiohttp import web
from loguru import logger

from packages.adapters.binance_spot.client import BinanceSpotClient
from packages.common.config import OhlcvSyncConfig, StoreConfig
from packages.ohlcv_sync.service import SyncRequest, SyncService
from packages.ohlcv_sync.types import ExchangeClient, OHLCVStore
from packages.store.factory import open_store

StoreOpener = Callable[[StoreConfig], Awaitable[OHLCVStore]]

CONFIG_KEY = web.AppKey("ohlcv_sync_config", OhlcvSyncConfig)


@dataclass(frozen=True)
class HandlerResponse:
    status: int
    body: Dict[str, Any] = field(default_factory=dict)


async def run_sync_handler(
    cfg: OhlcvSyncConfig,
    req: SyncRequest | None = None,
    *,
    store_opener: StoreOpener = open_store,
    exchange: Optional[ExchangeClient] = None,
) -> HandlerResponse:
    """
    Run one sync pass with clients scoped to this call.

    200 {"status": "ok", "processed": n} when the pass completes (per-symbol
    and per-window failures included); 500 {"error": msg} when it cannot run.
    """
    logger.info("=== START BINANCE OHLCV SYNC ===")

    store: Optional[OHLCVStore] = None
    owned_client: Optional[BinanceSpotClient] = None
    try:
        store = await store_opener(cfg.store)

        if exchange is None:
            owned_client = BinanceSpotClient(
                base_url=cfg.binance.base_url,
                request_timeout_s=cfg.binance.request_timeout_s,
            )
            exchange = await owned_client.open()

        service = SyncService(
            store=store,
            exchange=exchange,
            settings=cfg.sync,
            exchange_info_fallback=cfg.binance.exchange_info_fallback,
        )
        summary = await service.run(req)
    except Exception as e:
        logger.exception("Fatal error: {}", e)
        return HandlerResponse(status=500, body={"error": str(e)})
    finally:
        if owned_client is not None:
            await owned_client.close()
        if store is not None:
            await store.close()

    logger.info("=== SYNC COMPLETE ===")
    return HandlerResponse(status=200, body={"status": "ok", "processed": summary.processed})


async def sync_view(request: web.Request) -> web.Response:
    cfg = request.app[CONFIG_KEY]
    res = await run_sync_handler(cfg)
    return web.json_response(res.body, status=res.status)


def build_app(cfg: OhlcvSyncConfig) -> web.Application:
    app = web.Application()
    app[CONFIG_KEY] = cfg
    app.router.add_get("/api/sync", sync_view)
    app.router.add_post("/api/sync", sync_view)
    return app
