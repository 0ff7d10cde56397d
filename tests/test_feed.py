import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from gridbot.core.interfaces import FeedError, PriceFeed, RateLimitError
from gridbot.modules.market.feed import RetryingFeed, normalize_candles, with_retry
from gridbot.modules.market.mock_provider import CANDLES_PER_DAY, MockPriceFeed
from tests.conftest import candles_from_closes

NOW = datetime(2024, 3, 1, 12, 7, tzinfo=timezone.utc)


class FlakyFeed(PriceFeed):
    def __init__(self, failures, candles=None):
        self.failures = failures
        self.calls = 0
        self.candles = candles or []

    async def get_current_price(self, asset_id):
        self.calls += 1
        if self.calls <= self.failures:
            raise RateLimitError("429")
        return 123.0

    async def get_historical_ohlcv(self, asset_id, days):
        return list(self.candles)


def test_normalize_sorts_and_keeps_last_duplicate():
    a, b, c = candles_from_closes([1.0, 2.0, 3.0])
    dup = b.model_copy(update={"close": 9.0})
    out = normalize_candles([c, b, a, dup])
    assert [x.close for x in out] == [1.0, 9.0, 3.0]


def test_retry_backoff_schedule():
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    feed = FlakyFeed(failures=2)
    price = asyncio.run(with_retry(lambda: feed.get_current_price("x"), "price", sleep=fake_sleep))
    assert price == 123.0
    assert delays == [3.0, 6.0]


def test_retry_gives_up_after_max_attempts():
    async def fake_sleep(seconds):
        pass

    feed = FlakyFeed(failures=5)
    with pytest.raises(RateLimitError):
        asyncio.run(with_retry(lambda: feed.get_current_price("x"), "price", sleep=fake_sleep))
    assert feed.calls == 3


def test_other_errors_are_not_retried():
    calls = []

    async def broken():
        calls.append(1)
        raise FeedError("empty response")

    with pytest.raises(FeedError):
        asyncio.run(with_retry(broken, "broken"))
    assert len(calls) == 1


def test_retrying_feed_normalizes_history():
    a, b = candles_from_closes([1.0, 2.0])

    async def fake_sleep(seconds):
        pass

    feed = RetryingFeed(FlakyFeed(failures=1, candles=[b, a]), sleep=fake_sleep)
    assert asyncio.run(feed.get_current_price("x")) == 123.0
    history = asyncio.run(feed.get_historical_ohlcv("x", 1))
    assert [c.close for c in history] == [1.0, 2.0]


def test_mock_feed_is_seeded():
    first = MockPriceFeed(seed=4, now=NOW).generate_candles(50)
    second = MockPriceFeed(seed=4, now=NOW).generate_candles(50)
    other = MockPriceFeed(seed=5, now=NOW).generate_candles(50)
    assert first == second
    assert first != other


def test_mock_feed_shape():
    candles = asyncio.run(MockPriceFeed(now=NOW).get_historical_ohlcv("SOL", 1))
    assert len(candles) == CANDLES_PER_DAY
    assert candles[-1].timestamp == datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
    for prev, cur in zip(candles, candles[1:]):
        assert cur.timestamp - prev.timestamp == timedelta(minutes=15)
        assert cur.open == prev.close
    for c in candles:
        assert c.low <= min(c.open, c.close)
        assert c.high >= max(c.open, c.close)
        assert 1000 <= c.volume < 10000


def test_mock_price_matches_latest_close():
    feed = MockPriceFeed(now=NOW, history_days=2)
    price = asyncio.run(feed.get_current_price("SOL"))
    history = asyncio.run(feed.get_historical_ohlcv("SOL", 2))
    assert price == history[-1].close
