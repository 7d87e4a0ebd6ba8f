from __future__ import annotations

import os
from pathlib import Path
from typing import Any, List, Literal, Mapping, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from .constants import (
    CANDIDATE_LIMIT,
    EXCLUDED_KEYWORDS,
    HORIZON_DAYS,
    INTERVAL,
    KLINES_MAX_LIMIT,
    QUOTE_ASSET,
)


StoreBackend = Literal["postgrest", "sqlite"]

DEFAULT_CONFIG_PATH = Path("config/ohlcv_sync.yaml")


class StoreConfig(BaseModel):
    backend: StoreBackend = "postgrest"

    # PostgREST (Supabase) credentials; required when backend == "postgrest".
    url: str = ""
    service_key: str = ""
    request_timeout_s: int = 30

    # Local SQLite file; used when backend == "sqlite".
    db_path: str = "data/ohlcv_sync.sqlite"

    snapshot_table: str = "snapshot"
    ohlcv_table: str = "binance_ohlcv_1d"

    @field_validator("url")
    @classmethod
    def _strip_url(cls, v: str) -> str:
        return v.strip().rstrip("/")


class BinanceConfig(BaseModel):
    base_url: str = "https://api.binance.com"
    request_timeout_s: int = 30
    exchange_info_fallback: str = "exchangeInfo.json"

    @field_validator("base_url")
    @classmethod
    def _strip_base_url(cls, v: str) -> str:
        return v.strip().rstrip("/")


class SyncSettings(BaseModel):
    interval: str = INTERVAL
    quote_asset: str = QUOTE_ASSET
    horizon_days: int = Field(default=HORIZON_DAYS, gt=0)
    chunk_limit: int = Field(default=KLINES_MAX_LIMIT, ge=1, le=KLINES_MAX_LIMIT)
    candidate_limit: int = Field(default=CANDIDATE_LIMIT, ge=1)
    excluded_keywords: List[str] = Field(default_factory=lambda: list(EXCLUDED_KEYWORDS))

    @field_validator("interval")
    @classmethod
    def _validate_interval(cls, v: str) -> str:
        tf = v.strip()
        if tf != INTERVAL:
            raise ValueError(f"only daily klines are supported (got interval={v!r})")
        return tf

    @field_validator("quote_asset")
    @classmethod
    def _upper_quote(cls, v: str) -> str:
        q = v.strip().upper()
        if not q:
            raise ValueError("quote_asset must be non-empty")
        return q

    @field_validator("excluded_keywords", mode="before")
    @classmethod
    def _normalize_keywords(cls, v):
        if v is None:
            return []
        return [str(k).strip().lower() for k in v if str(k).strip()]


class OhlcvSyncConfig(BaseModel):
    store: StoreConfig = Field(default_factory=StoreConfig)
    binance: BinanceConfig = Field(default_factory=BinanceConfig)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _check_backend(self) -> "OhlcvSyncConfig":
        if self.store.backend == "sqlite" and not self.store.db_path.strip():
            raise ValueError("store.db_path must be set for the sqlite backend")
        return self


def _maybe_load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text())
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML structure in {path}")
    return data


# env var -> (section, key)
_ENV_OVERRIDES: dict[str, tuple[Optional[str], str]] = {
    "SUPABASE_URL": ("store", "url"),
    "SUPABASE_SERVICE_ROLE_KEY": ("store", "service_key"),
    "OHLCV_STORE_BACKEND": ("store", "backend"),
    "OHLCV_DB_PATH": ("store", "db_path"),
    "BINANCE_BASE_URL": ("binance", "base_url"),
    "EXCHANGE_INFO_FALLBACK": ("binance", "exchange_info_fallback"),
    "LOG_LEVEL": (None, "log_level"),
}


def _apply_env(raw: dict[str, Any], env: Mapping[str, str]) -> dict[str, Any]:
    out = {k: (dict(v) if isinstance(v, dict) else v) for k, v in raw.items()}
    for var, (section, key) in _ENV_OVERRIDES.items():
        value = env.get(var)
        if value is None or value.strip() == "":
            continue
        if section is None:
            out[key] = value.strip()
        else:
            out.setdefault(section, {})[key] = value.strip()
    return out


def load_ohlcv_sync_config(
    config_path: Path = DEFAULT_CONFIG_PATH,
    env: Optional[Mapping[str, str]] = None,
) -> OhlcvSyncConfig:
    """
    YAML file (optional) first, then environment overrides.

    When `env` is omitted a local .env is loaded into the process environment
    and os.environ is used.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    raw = _apply_env(_maybe_load_yaml(config_path), env)
    return OhlcvSyncConfig.model_validate(raw)
