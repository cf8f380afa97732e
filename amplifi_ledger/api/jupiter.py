from __future__ import annotations

import math
from typing import Any

import requests
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential_jitter

from amplifi_ledger.config import JupiterConfig


def _should_retry(exc: BaseException) -> bool:
    if isinstance(exc, requests.HTTPError):
        if exc.response is None:
            return True
        status = exc.response.status_code
        return status >= 500 or status == 429
    return isinstance(exc, (requests.Timeout, requests.ConnectionError))


class JupiterPriceClient:
    def __init__(self, settings: JupiterConfig | None = None) -> None:
        settings = settings or JupiterConfig()
        self.session = requests.Session()
        self.base_url = settings.base_url.rstrip("/")
        self.timeout = (settings.request_timeout_s, settings.request_timeout_s)
        self._get_json = retry(
            stop=stop_after_attempt(max(settings.retry_max, 1)),
            wait=wait_exponential_jitter(initial=1, max=10),
            retry=retry_if_exception(_should_retry),
            reraise=True,
        )(self._get_json_once)

    def _get_json_once(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        response = self.session.get(url, params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def get_usd_price(self, mint: str) -> float | None:
        payload = self._get_json("/v4/price", params={"ids": mint})
        return self._extract_price(payload, mint)

    @staticmethod
    def _extract_price(payload: Any, mint: str) -> float | None:
        if not isinstance(payload, dict):
            return None
        data = payload.get("data")
        if not isinstance(data, dict):
            return None
        entry = data.get(mint)
        if not isinstance(entry, dict):
            return None
        price = entry.get("price")
        if isinstance(price, bool) or not isinstance(price, (int, float)):
            return None
        if not math.isfinite(price) or price <= 0:
            return None
        return float(price)
