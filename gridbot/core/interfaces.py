from abc import ABC, abstractmethod
from typing import List
from gridbot.core.models import Candle


class FeedError(Exception):
    """Price feed returned nothing usable."""


class RateLimitError(FeedError):
    """Feed asked us to back off (HTTP 429 or equivalent). Retryable."""


class PriceFeed(ABC):
    @abstractmethod
    async def get_current_price(self, asset_id: str) -> float:
        """
        Latest traded price for the asset.
        """
        pass

    @abstractmethod
    async def get_historical_ohlcv(self, asset_id: str, days: int) -> List[Candle]:
        """
        Candles covering the last `days` days, ascending and unique by timestamp.
        Implementations page through long ranges themselves.
        """
        pass
