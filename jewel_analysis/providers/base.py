from abc import ABC, abstractmethod


class MarketRateProvider(ABC):
    provider_name: str

    @abstractmethod
    def fetch_market_rate(self, base_currency: str) -> dict[str, float]:
        """Returns {"usd_rate": base units per USD, "gold_price_per_gram": base units per gram}."""
        raise NotImplementedError
