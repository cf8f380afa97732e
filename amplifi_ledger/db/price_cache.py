"""USD price cache keyed by token mint.

``get`` only answers within the fresh TTL; ``get_allow_stale`` answers within
the longer stale TTL and is meant for when a live fetch just failed. ``set``
overwrites whatever is stored for the mint and rejects non-finite prices.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Callable

from amplifi_ledger.config import AppConfig, PriceCacheConfig
from amplifi_ledger.db import store
from amplifi_ledger.db.schema import PRICE_CACHE_SCHEMA_SQL
from amplifi_ledger.errors import InvalidRequestError
from amplifi_ledger.utils.time import now_unix

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


class _TtlPriceCache:
    def __init__(self, settings: PriceCacheConfig | None = None, clock: Clock | None = None) -> None:
        settings = settings or PriceCacheConfig()
        self.fresh_ttl_s = settings.fresh_ttl_s
        self.stale_ttl_s = settings.stale_ttl_s
        self.clock = clock or now_unix

    def get(self, mint: str) -> float | None:
        return self._read_within(mint, self.fresh_ttl_s)

    def get_allow_stale(self, mint: str) -> float | None:
        return self._read_within(mint, self.stale_ttl_s)

    def _read_within(self, mint: str, max_age_s: int) -> float | None:
        entry = self._load(mint)
        if entry is None:
            return None
        price_usd, updated_at_unix = entry
        if not math.isfinite(price_usd) or not math.isfinite(updated_at_unix):
            return None
        if self.clock() - updated_at_unix > max_age_s:
            return None
        return price_usd

    def _load(self, mint: str) -> tuple[float, float] | None:
        raise NotImplementedError

    def set(self, mint: str, price_usd: float) -> None:
        try:
            price = float(price_usd)
        except (TypeError, ValueError) as exc:
            raise InvalidRequestError(f"Invalid price for {mint}: {price_usd!r}") from exc
        if not math.isfinite(price):
            raise InvalidRequestError(f"Invalid price for {mint}: {price_usd!r}")
        self._store(mint, price)

    def _store(self, mint: str, price_usd: float) -> None:
        raise NotImplementedError


class LocalPriceCache(_TtlPriceCache):
    def __init__(self, settings: PriceCacheConfig | None = None, clock: Clock | None = None) -> None:
        super().__init__(settings, clock)
        self._prices: dict[str, tuple[float, int]] = {}

    def _load(self, mint: str) -> tuple[float, float] | None:
        return self._prices.get(mint)

    def _store(self, mint: str, price_usd: float) -> None:
        self._prices[mint] = (price_usd, self.clock())


class SqlitePriceCache(_TtlPriceCache):
    def __init__(
        self,
        db_path: str | Path,
        settings: PriceCacheConfig | None = None,
        clock: Clock | None = None,
        timeout_s: float = 5.0,
    ) -> None:
        super().__init__(settings, clock)
        self.db_path = Path(db_path)
        self.timeout_s = timeout_s
        self._schema_ready = False

    def ensure_schema(self) -> None:
        if self._schema_ready:
            return
        with store.open_connection(self.db_path, self.timeout_s) as conn:
            conn.executescript(PRICE_CACHE_SCHEMA_SQL)
            conn.commit()
        self._schema_ready = True

    def _load(self, mint: str) -> tuple[float, float] | None:
        self.ensure_schema()
        with store.open_connection(self.db_path, self.timeout_s) as conn:
            row = conn.execute(
                "SELECT price_usd, updated_at_unix FROM token_price_cache WHERE mint = ?",
                (mint,),
            ).fetchone()
        if row is None:
            return None
        try:
            return float(row["price_usd"]), float(row["updated_at_unix"])
        except (TypeError, ValueError):
            return None

    def _store(self, mint: str, price_usd: float) -> None:
        self.ensure_schema()
        with store.open_connection(self.db_path, self.timeout_s) as conn:
            conn.execute(
                """
                INSERT INTO token_price_cache (mint, price_usd, updated_at_unix)
                VALUES (?, ?, ?)
                ON CONFLICT (mint) DO UPDATE SET
                    price_usd = excluded.price_usd,
                    updated_at_unix = excluded.updated_at_unix
                """,
                (mint, price_usd, self.clock()),
            )
            conn.commit()


def build_price_cache(config: AppConfig, clock: Clock | None = None) -> LocalPriceCache | SqlitePriceCache:
    if config.has_database:
        return SqlitePriceCache(
            config.database.path,
            settings=config.price_cache,
            clock=clock,
            timeout_s=config.database.timeout_s,
        )
    logger.info("No database configured; using in-process price cache")
    return LocalPriceCache(settings=config.price_cache, clock=clock)
