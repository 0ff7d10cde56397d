import numpy as np
import pandas as pd
from typing import List, Optional
from datetime import datetime, timezone
from gridbot.core.interfaces import PriceFeed
from gridbot.core.models import Candle
from gridbot.core.logger import logging

logger = logging.getLogger(__name__)

CANDLES_PER_DAY = 96  # 15m bars


class MockPriceFeed(PriceFeed):
    """
    Seeded random-walk feed for paper runs and tests. The same seed and clock
    give the same candles.
    """
    def __init__(self, start_price: float = 150.0, seed: int = 42,
                 volatility: float = 0.004, history_days: int = 2,
                 now: Optional[datetime] = None):
        self.start_price = start_price
        self.history_days = history_days
        self.seed = seed
        self.volatility = volatility
        self._now = now

    def current_time(self) -> datetime:
        return self._now or datetime.now(timezone.utc)

    def generate_candles(self, count: int) -> List[Candle]:
        end = pd.Timestamp(self.current_time()).floor("15min")
        dates = pd.date_range(end=end, periods=count, freq="15min")

        rng = np.random.default_rng(self.seed)
        returns = rng.normal(0, self.volatility, count)
        price_path = self.start_price * np.exp(np.cumsum(returns))
        wicks = np.abs(rng.normal(0, self.volatility / 2, (count, 2)))
        volumes = rng.integers(1000, 10000, count)

        candles = []
        for i, dt in enumerate(dates):
            close = float(price_path[i])
            open_p = float(price_path[i - 1]) if i > 0 else close
            candles.append(Candle(
                timestamp=dt.to_pydatetime(),
                open=open_p,
                high=max(open_p, close) * (1 + wicks[i, 0]),
                low=min(open_p, close) * (1 - wicks[i, 1]),
                close=close,
                volume=float(volumes[i]),
            ))
        return candles

    async def get_current_price(self, asset_id: str) -> float:
        # latest bar of the default history window, so price and history agree
        return self.generate_candles(self.history_days * CANDLES_PER_DAY)[-1].close

    async def get_historical_ohlcv(self, asset_id: str, days: int) -> List[Candle]:
        candles = self.generate_candles(max(1, days * CANDLES_PER_DAY))
        logger.debug(f"Mock feed generated {len(candles)} candles for {asset_id}")
        return candles
