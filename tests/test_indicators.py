from datetime import datetime, timezone

import pytest

from gridbot.modules.indicators.builtin import (
    atr, bollinger, calculate_ema, calculate_rsi, calculate_supertrend, ema, macd, rsi,
)
from gridbot.modules.indicators.engine import default_engine
from gridbot.modules.market.mock_provider import MockPriceFeed

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_ema_seeded_with_sma():
    data = [1, 2, 3, 4, 5, 6, 7]
    out = calculate_ema(data, 3)
    assert out[0] == pytest.approx(2.0)
    k = 2 / 4
    expected = 2.0
    for i, value in enumerate(data[3:], start=1):
        expected = (value - expected) * k + expected
        assert out[i] == pytest.approx(expected)
    assert len(out) == len(data) - 2


def test_ema_short_input():
    assert calculate_ema([1, 2], 3) == []


def test_rsi_rising_series_is_100():
    assert calculate_rsi([float(i) for i in range(1, 40)], 14) == 100.0


def test_rsi_bounds(make_candles):
    series = [100 + ((-1) ** i) * (i % 7) for i in range(60)]
    value = calculate_rsi(series, 14)
    assert 0 <= value <= 100
    out = rsi.compute(make_candles(series))
    assert 0 <= out.values["rsi"] <= 100


def test_rsi_overbought_signals_sell(make_candles):
    out = rsi.compute(make_candles([float(i) for i in range(1, 40)]))
    assert out.signal == "sell"
    assert out.confidence == pytest.approx(1.0)


def test_insufficient_candles_is_neutral_zero(make_candles):
    candles = make_candles([100.0] * 5)
    for ind in default_engine()._registry.values():
        out = ind.compute(candles)
        assert out.signal == "neutral", ind.name
        assert out.confidence == 0.0, ind.name


def test_ema_uptrend_is_buy(make_candles):
    out = ema.compute(make_candles([100 + i * 0.5 for i in range(40)]))
    assert out.signal == "buy"
    assert out.values["ema_fast"] > out.values["ema_slow"]


def test_atr_is_never_directional(make_candles):
    out = atr.compute(make_candles([100 + (i % 3) for i in range(30)]))
    assert out.signal == "neutral"
    assert out.values["atr_pct"] > 0
    assert out.metadata["volatility_level"] in ("low", "medium", "high")


def test_macd_values_present(make_candles):
    out = macd.compute(make_candles([100 + (i % 5) * 0.3 for i in range(50)]))
    assert set(out.values) == {"macd", "signal_line", "histogram"}


def test_bollinger_flat_series(make_candles):
    out = bollinger.compute(make_candles([50.0] * 25))
    assert out.values["percent_b"] == 0.5
    assert out.values["bandwidth"] == 0.0
    assert out.metadata["squeeze"] is True
    assert out.signal == "neutral"


def test_supertrend_direction_follows_trend(make_candles):
    _, up = calculate_supertrend(make_candles([100 + i for i in range(40)]), 10, 3)
    _, down = calculate_supertrend(make_candles([140 - i for i in range(40)]), 10, 3)
    assert up == 1
    assert down == -1


def test_every_indicator_handles_a_random_walk():
    candles = MockPriceFeed(start_price=150.0, seed=7, now=NOW).generate_candles(300)
    engine = default_engine()
    result = engine.compute_all(candles)
    assert set(result.indicators) == set(engine.list_indicators())
    for name, out in result.indicators.items():
        assert out.signal in ("buy", "sell", "neutral"), name
        assert 0.0 <= out.confidence <= 1.0, name


def test_indicators_are_pure():
    candles = MockPriceFeed(seed=3, now=NOW).generate_candles(200)
    engine = default_engine()
    first = engine.compute_all(candles)
    second = engine.compute_all(candles)
    assert first.model_dump() == second.model_dump()
