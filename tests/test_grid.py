import pytest

from gridbot.modules.grid.breakout import detect_breakout
from gridbot.modules.grid.calculator import (
    adjust_grid_for_volatility, calculate_grid, calculate_grid_levels, measured_spacing_pct,
)


def test_grid_is_symmetric_and_sorted():
    grid = calculate_grid(100.0, 1.0, 5, 500.0)
    assert len(grid) == 10
    assert [l.price for l in grid] == sorted(l.price for l in grid)
    buys = [l for l in grid if l.side == "buy"]
    sells = [l for l in grid if l.side == "sell"]
    assert len(buys) == len(sells) == 5
    assert all(l.price < 100 for l in buys)
    assert all(l.price > 100 for l in sells)
    assert not any(l.filled for l in grid)
    assert {l.index for l in buys} == {-1, -2, -3, -4, -5}


def test_single_level_grid_quantities():
    grid = calculate_grid_levels(100.0, 2.0, 1, 100.0)
    buy, sell = grid
    assert (buy.side, buy.price, buy.index) == ("buy", 98.0, -1)
    assert buy.quantity == pytest.approx(1.020408163)
    assert (sell.side, sell.price, sell.index) == ("sell", 102.0, 1)
    assert sell.quantity == pytest.approx(0.980392157)


def test_offsets_are_not_compounded():
    grid = calculate_grid_levels(200.0, 1.5, 3, 300.0)
    assert [l.price for l in grid] == [191.0, 194.0, 197.0, 203.0, 206.0, 209.0]


def test_zero_levels_is_empty():
    assert calculate_grid_levels(100.0, 1.0, 0, 100.0) == []


def test_adjust_widens_and_resets_fills():
    grid = calculate_grid(100.0, 1.0, 5, 500.0)
    grid[0].filled = True
    adjusted = adjust_grid_for_volatility(grid, atr_pct=5.0, min_spacing_pct=0.5)
    assert adjusted is not grid
    assert len(adjusted) == 10
    assert not any(l.filled for l in adjusted)
    assert min(l.price for l in adjusted) == pytest.approx(70.0)
    assert max(l.price for l in adjusted) == pytest.approx(130.0)


def test_adjust_keeps_adequate_grid():
    grid = calculate_grid(100.0, 3.0, 4, 400.0)
    assert adjust_grid_for_volatility(grid, atr_pct=1.0, min_spacing_pct=0.5) is grid
    assert measured_spacing_pct(grid) > 1.2


def squeeze_candles(make_candles, last_close, last_volume):
    candles = make_candles([100.0] * 21 + [last_close])
    candles[-1] = candles[-1].model_copy(update={"volume": last_volume})
    return candles


def test_breakout_long(make_candles):
    signal = detect_breakout(squeeze_candles(make_candles, 101.0, 5000.0), 20, 1.5, 1.5)
    assert signal is not None
    assert signal.direction == "long"
    assert signal.entry_price == 101.0
    assert signal.stop_loss < signal.entry_price
    assert signal.confidence == pytest.approx(0.95)
    assert signal.take_profit - signal.entry_price == pytest.approx(2 * (signal.entry_price - signal.stop_loss))


def test_breakout_short(make_candles):
    signal = detect_breakout(squeeze_candles(make_candles, 99.0, 5000.0), 20, 1.5, 1.5)
    assert signal is not None
    assert signal.direction == "short"
    assert signal.stop_loss > signal.entry_price
    assert signal.entry_price - signal.take_profit == pytest.approx(2 * (signal.stop_loss - signal.entry_price))


def test_breakout_needs_volume(make_candles):
    assert detect_breakout(squeeze_candles(make_candles, 101.0, 1000.0), 20, 1.5, 1.5) is None


def test_breakout_needs_history(make_candles):
    assert detect_breakout(make_candles([100.0] * 20), 20, 1.5, 1.5) is None


def test_breakout_needs_squeeze(make_candles):
    closes = [100.0 + (10 if i % 2 else -10) for i in range(21)] + [130.0]
    candles = make_candles(closes)
    candles[-1] = candles[-1].model_copy(update={"volume": 10000.0})
    assert detect_breakout(candles, 20, 1.5, 1.5) is None


def test_buy_side_capital_adds_up():
    grid = calculate_grid_levels(100.0, 1.0, 5, 250.0)
    buy_capital = sum(l.price * l.quantity for l in grid if l.side == "buy")
    assert buy_capital == pytest.approx(250.0, rel=1e-6)
