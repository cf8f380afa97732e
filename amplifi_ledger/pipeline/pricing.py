from __future__ import annotations

import logging
from typing import Protocol

import requests

logger = logging.getLogger(__name__)


class PriceCache(Protocol):
    def get(self, mint: str) -> float | None: ...

    def get_allow_stale(self, mint: str) -> float | None: ...

    def set(self, mint: str, price_usd: float) -> None: ...


class PriceSource(Protocol):
    def get_usd_price(self, mint: str) -> float | None: ...


def resolve_price_usd(cache: PriceCache, source: PriceSource | None, mint: str) -> float | None:
    """Fresh cache, then a live fetch, then whatever stale value is still tolerated."""
    price = cache.get(mint)
    if price is not None:
        return price

    if source is not None:
        try:
            price = source.get_usd_price(mint)
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Price fetch failed for %s: %s", mint, exc)
            price = None
        if price is not None:
            cache.set(mint, price)
            return price

    price = cache.get_allow_stale(mint)
    if price is not None:
        logger.info("Serving stale price for %s", mint)
    return price
