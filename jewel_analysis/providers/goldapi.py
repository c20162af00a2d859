import logging
import os
import sqlite3
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from jewel_analysis.db import get_all_settings, get_latest_market_rate, is_rate_fresh, save_market_rate
from jewel_analysis.models import MarketRate
from jewel_analysis.providers.base import MarketRateProvider

logger = logging.getLogger(__name__)

TROY_OUNCE_GRAMS = 31.1034768


class GoldAPIProvider(MarketRateProvider):
    """
    Provider implementation for goldapi.io.

    GET {base}/XAU/USD and {base}/XAU/{currency} each return the spot price of
    one troy ounce in that currency under `price`. Dividing the two gives the
    currency's USD rate; the local ounce price divided by grams per ounce gives
    the gold price per gram.
    """

    provider_name = "goldapi"
    endpoint_base = "https://www.goldapi.io/api"

    def __init__(
        self,
        api_key: str | None = None,
        timeout_seconds: int = 10,
        troy_oz_to_grams: float = TROY_OUNCE_GRAMS,
    ):
        self.api_key = api_key or os.getenv("GOLDAPI_KEY", "")
        self.timeout_seconds = timeout_seconds
        self.troy_oz_to_grams = troy_oz_to_grams
        self.base_url = (os.getenv("GOLDAPI_BASE_URL", "").strip() or self.endpoint_base).rstrip("/")

        self.session = requests.Session()
        retry = Retry(
            total=2,
            connect=2,
            read=2,
            backoff_factor=0.5,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry)
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)

    def _fetch_ounce_price(self, currency: str) -> float:
        try:
            response = self.session.get(
                f"{self.base_url}/XAU/{currency}",
                headers={"x-access-token": self.api_key, "Content-Type": "application/json"},
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            payload: dict[str, Any] = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise RuntimeError(f"Gold API request failed for XAU/{currency}: {exc}") from exc

        if "price" not in payload:
            raise RuntimeError(f"Missing price field for XAU/{currency} from Gold API")

        returned = str(payload.get("currency", currency)).upper()
        if returned != currency:
            raise RuntimeError(f"Gold API returned {returned} for XAU/{currency}.")

        price = float(payload["price"])
        if price <= 0:
            raise RuntimeError(f"Invalid XAU/{currency} price from Gold API")
        return price

    def fetch_market_rate(self, base_currency: str) -> dict[str, float]:
        if not self.api_key:
            raise RuntimeError("Missing GOLDAPI_KEY in .env")

        base_currency = base_currency.strip().upper()
        usd_per_oz = self._fetch_ounce_price("USD")
        base_per_oz = usd_per_oz if base_currency == "USD" else self._fetch_ounce_price(base_currency)

        return {
            "usd_rate": round(base_per_oz / usd_per_oz, 4),
            "gold_price_per_gram": round(base_per_oz / self.troy_oz_to_grams, 2),
        }


def get_market_rate_with_cache(
    conn: sqlite3.Connection,
    force_refresh: bool = False,
    owner: Optional[str] = None,
    provider: Optional[MarketRateProvider] = None,
) -> tuple[Optional[MarketRate], str | None]:
    """
    Returns the latest market rate visible to `owner` and quoted in the base
    currency, fetching a new one when it is stale or missing.

    If the API fails, the cached snapshot is returned with a warning message.
    """
    settings = get_all_settings(conn)
    base_currency = settings["base_currency"]
    cached = get_latest_market_rate(conn, owner, local_currency=base_currency)

    need_refresh = force_refresh or cached is None or not is_rate_fresh(
        cached.fetched_at, settings["rate_cache_ttl_minutes"]
    )
    if not need_refresh:
        return cached, None

    provider = provider or GoldAPIProvider(troy_oz_to_grams=settings["troy_oz_to_grams"])
    try:
        fresh = provider.fetch_market_rate(base_currency)
        rate = save_market_rate(
            conn,
            usd_rate=fresh["usd_rate"],
            gold_price_per_gram=fresh["gold_price_per_gram"],
            gold_price_currency=base_currency,
            local_currency=base_currency,
            is_manual=False,
            provider=provider.provider_name,
        )
        return rate, None
    except (RuntimeError, ValueError) as exc:
        logger.warning("Market rate refresh failed: %s", exc)
        if cached is not None:
            return cached, f"Rate API unavailable. Using cached rate from {cached.fetched_at}. Details: {exc}"
        return None, f"Rate API unavailable and no cached rate yet. Details: {exc}"
