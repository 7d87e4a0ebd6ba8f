from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from aiohttp import web
from loguru import logger

from packages.common.config import DEFAULT_CONFIG_PATH, load_ohlcv_sync_config
from packages.common.log import configure_logging
from packages.ohlcv_sync.handler import build_app, run_sync_handler
from packages.ohlcv_sync.service import SyncRequest


@dataclass
class StubResponse:
    """Stand-in for the platform response object when run by hand."""

    status_code: int = 0
    payload: Dict[str, Any] = field(default_factory=dict)

    def status(self, code: int) -> "StubResponse":
        self.status_code = code
        return self

    def json(self, payload: Dict[str, Any]) -> None:
        self.payload = payload
        logger.info("[runner] {} -> {}", self.status_code, payload)


def _split_csv(v: Optional[str]) -> Optional[List[str]]:
    if v is None:
        return None
    parts = [p.strip() for p in v.split(",")]
    out = [p for p in parts if p]
    return out or None


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Binance daily OHLCV sync (backfill 5y + append new days).")
    p.add_argument("--config", default=str(DEFAULT_CONFIG_PATH), help="Optional YAML config path")
    p.add_argument("--symbols", default=None, help="Comma-separated base tickers to restrict the run, e.g. BTC,ETH")
    p.add_argument("--max-symbols", type=int, default=None, help="Process at most this many pairs")
    p.add_argument("--serve", action="store_true", help="Serve the handler at /api/sync instead of running once")
    p.add_argument("--host", default="0.0.0.0")
    p.add_argument("--port", type=int, default=8080)
    return p.parse_args(argv)


async def main_async(args: argparse.Namespace) -> int:
    cfg = load_ohlcv_sync_config(Path(args.config))
    configure_logging(cfg.log_level)

    req = SyncRequest(symbols=_split_csv(args.symbols), max_symbols=args.max_symbols)
    res = await run_sync_handler(cfg, req)

    stub = StubResponse()
    stub.status(res.status).json(res.body)
    return 0 if res.status == 200 else 1


def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)

    if args.serve:
        cfg = load_ohlcv_sync_config(Path(args.config))
        configure_logging(cfg.log_level)
        web.run_app(build_app(cfg), host=args.host, port=args.port)
        return

    try:
        code = asyncio.run(main_async(args))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
