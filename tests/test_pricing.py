from __future__ import annotations

from unittest import mock

import pytest
import requests

from amplifi_ledger.api.jupiter import JupiterPriceClient
from amplifi_ledger.config import JupiterConfig, PriceCacheConfig
from amplifi_ledger.db.price_cache import LocalPriceCache
from amplifi_ledger.pipeline.pricing import resolve_price_usd

T0 = 1_760_000_000


class FakeClock:
    def __init__(self, now: int) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class FakeSource:
    def __init__(self, price=None, exc: Exception | None = None) -> None:
        self.price = price
        self.exc = exc
        self.calls = 0

    def get_usd_price(self, mint: str):
        self.calls += 1
        if self.exc is not None:
            raise self.exc
        return self.price


def _cache(clock: FakeClock) -> LocalPriceCache:
    return LocalPriceCache(PriceCacheConfig(fresh_ttl_s=60, stale_ttl_s=900), clock=clock)


def test_fresh_cache_skips_fetch() -> None:
    clock = FakeClock(T0)
    cache = _cache(clock)
    cache.set("mintA", 2.0)
    source = FakeSource(price=9.0)
    assert resolve_price_usd(cache, source, "mintA") == 2.0
    assert source.calls == 0


def test_fetch_populates_cache() -> None:
    clock = FakeClock(T0)
    cache = _cache(clock)
    source = FakeSource(price=4.2)
    assert resolve_price_usd(cache, source, "mintA") == pytest.approx(4.2)
    assert cache.get("mintA") == pytest.approx(4.2)


def test_fetch_failure_degrades_to_stale() -> None:
    clock = FakeClock(T0)
    cache = _cache(clock)
    cache.set("mintA", 1.5)
    clock.now = T0 + 120
    source = FakeSource(exc=requests.ConnectionError("down"))
    assert resolve_price_usd(cache, source, "mintA") == 1.5


def test_nothing_available_is_none() -> None:
    clock = FakeClock(T0)
    cache = _cache(clock)
    assert resolve_price_usd(cache, FakeSource(price=None), "mintA") is None
    assert resolve_price_usd(cache, None, "mintA") is None


def _response(payload, status: int = 200) -> mock.Mock:
    response = mock.Mock()
    response.status_code = status
    response.json.return_value = payload
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(response=response)
    else:
        response.raise_for_status.return_value = None
    return response


def test_jupiter_client_parses_price() -> None:
    client = JupiterPriceClient(JupiterConfig(base_url="https://price.example/", retry_max=1))
    client.session = mock.Mock()
    client.session.get.return_value = _response({"data": {"mintA": {"id": "mintA", "price": 0.0123}}})

    assert client.get_usd_price("mintA") == pytest.approx(0.0123)
    args, kwargs = client.session.get.call_args
    assert args[0] == "https://price.example/v4/price"
    assert kwargs["params"] == {"ids": "mintA"}


@pytest.mark.parametrize(
    "payload",
    [
        {"data": {}},
        {"data": {"mintA": {"price": 0}}},
        {"data": {"mintA": {"price": "1.0"}}},
        {"data": {"mintA": {"price": float("nan")}}},
        [],
    ],
)
def test_jupiter_client_rejects_unusable_prices(payload) -> None:
    client = JupiterPriceClient(JupiterConfig(retry_max=1))
    client.session = mock.Mock()
    client.session.get.return_value = _response(payload)
    assert client.get_usd_price("mintA") is None


def test_jupiter_client_does_not_retry_client_errors() -> None:
    client = JupiterPriceClient(JupiterConfig(retry_max=3))
    client.session = mock.Mock()
    client.session.get.return_value = _response({}, status=404)
    with pytest.raises(requests.HTTPError):
        client.get_usd_price("mintA")
    assert client.session.get.call_count == 1
