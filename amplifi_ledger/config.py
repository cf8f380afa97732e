from __future__ import annotations

import math
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, field_validator

DEFAULT_FRESH_TTL_S = 60
DEFAULT_STALE_TTL_S = 15 * 60


class DatabaseConfig(BaseModel):
    path: Optional[str] = None
    timeout_s: float = 5.0


class PriceCacheConfig(BaseModel):
    fresh_ttl_s: int = DEFAULT_FRESH_TTL_S
    stale_ttl_s: int = DEFAULT_STALE_TTL_S

    @field_validator("fresh_ttl_s", mode="before")
    @classmethod
    def _fresh_default(cls, value: Any) -> int:
        return _positive_seconds(value, DEFAULT_FRESH_TTL_S)

    @field_validator("stale_ttl_s", mode="before")
    @classmethod
    def _stale_default(cls, value: Any) -> int:
        return _positive_seconds(value, DEFAULT_STALE_TTL_S)


class ClaimsConfig(BaseModel):
    threshold_lamports: int = 0


class RankingsConfig(BaseModel):
    default_limit: int = 50
    max_limit: int = 100
    trend_window_s: int = 7 * 24 * 60 * 60


class SettlementConfig(BaseModel):
    max_earners_per_epoch: int = 99


class JupiterConfig(BaseModel):
    base_url: str = "https://price.jup.ag"
    request_timeout_s: int = 10
    retry_max: int = 3


class AppConfig(BaseModel):
    database: DatabaseConfig = DatabaseConfig()
    price_cache: PriceCacheConfig = PriceCacheConfig()
    claims: ClaimsConfig = ClaimsConfig()
    rankings: RankingsConfig = RankingsConfig()
    settlement: SettlementConfig = SettlementConfig()
    jupiter: JupiterConfig = JupiterConfig()

    @property
    def has_database(self) -> bool:
        return bool(self.database.path)


def load_config(path: str | Path) -> AppConfig:
    data: Dict[str, Any] = {}
    config_path = Path(path)
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle)
            if isinstance(loaded, dict):
                data = loaded
    config = AppConfig(**data)
    db_path = config.database.path
    if db_path and db_path != ":memory:" and not Path(db_path).is_absolute():
        config.database.path = str(config_path.parent / db_path)
    return config


def _positive_seconds(value: Any, default: int) -> int:
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(seconds) or seconds <= 0:
        return default
    return int(seconds)
