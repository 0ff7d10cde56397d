import asyncio
from typing import Awaitable, Callable, Iterable, List, Optional, TypeVar
from gridbot.core.interfaces import PriceFeed, RateLimitError
from gridbot.core.logger import logging
from gridbot.core.models import Candle

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_DELAY_S = 1.5
MAX_RETRIES = 3


def normalize_candles(candles: Iterable[Candle]) -> List[Candle]:
    """Ascending by timestamp, one candle per timestamp (last one wins)."""
    by_ts = {}
    for c in candles:
        by_ts[c.timestamp] = c
    return [by_ts[ts] for ts in sorted(by_ts)]


async def with_retry(fn: Callable[[], Awaitable[T]], label: str,
                     max_retries: int = MAX_RETRIES,
                     base_delay_s: float = RATE_LIMIT_DELAY_S,
                     sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> T:
    """
    Retry `fn` on RateLimitError with backoff base*attempt*2. Any other error, or
    a rate limit on the final attempt, propagates.
    """
    for attempt in range(1, max_retries + 1):
        try:
            return await fn()
        except RateLimitError:
            if attempt >= max_retries:
                logger.error(f"{label} still rate limited after {max_retries} attempts")
                raise
            backoff = base_delay_s * attempt * 2
            logger.warning(f"Rate limited on {label}, retrying in {backoff:.1f}s "
                           f"(attempt {attempt}/{max_retries})")
            await sleep(backoff)
    raise RuntimeError(f"{label} failed after {max_retries} retries")


class RetryingFeed(PriceFeed):
    """
    Wraps another feed: rate limits are retried with backoff and history is
    normalized before it reaches the indicator window.
    """
    def __init__(self, inner: PriceFeed, max_retries: int = MAX_RETRIES,
                 base_delay_s: float = RATE_LIMIT_DELAY_S,
                 sleep: Optional[Callable[[float], Awaitable[None]]] = None):
        self.inner = inner
        self.max_retries = max_retries
        self.base_delay_s = base_delay_s
        self._sleep = sleep or asyncio.sleep

    async def get_current_price(self, asset_id: str) -> float:
        return await with_retry(lambda: self.inner.get_current_price(asset_id),
                                "get_current_price", self.max_retries,
                                self.base_delay_s, self._sleep)

    async def get_historical_ohlcv(self, asset_id: str, days: int) -> List[Candle]:
        candles = await with_retry(lambda: self.inner.get_historical_ohlcv(asset_id, days),
                                   "get_historical_ohlcv", self.max_retries,
                                   self.base_delay_s, self._sleep)
        return normalize_candles(candles)
