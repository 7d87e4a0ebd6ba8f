from __future__ import annotations

# Binance daily klines are the only series this repo syncs.
INTERVAL: str = "1d"
DAY_MS: int = 86_400_000

# Binance caps /api/v3/klines at 1000 rows per request.
KLINES_MAX_LIMIT: int = 1000

QUOTE_ASSET: str = "USDT"

# 5y horizon, no leap-year adjustment.
HORIZON_DAYS: int = 5 * 365

CANDIDATE_LIMIT: int = 1000

EXCLUDED_KEYWORDS: tuple[str, ...] = ("wrapped", "staked", "weth")
