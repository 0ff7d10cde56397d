import math
from typing import Dict, List, Sequence, Tuple
from gridbot.core.models import Candle, IndicatorOutput
from gridbot.core.mathutils import round_to
from gridbot.modules.indicators.base import indicator, closes, r4, true_range


def calculate_ema(data: Sequence[float], period: int) -> List[float]:
    """
    EMA seeded with the SMA of the first `period` values.
    Returns an empty list when there is not enough data.
    """
    if period <= 0 or len(data) < period:
        return []
    multiplier = 2 / (period + 1)
    ema = [sum(data[:period]) / period]
    for value in data[period:]:
        ema.append((value - ema[-1]) * multiplier + ema[-1])
    return ema


def calculate_rsi(values: Sequence[float], period: int) -> float:
    if len(values) < period + 1:
        return 50.0

    gain_sum = 0.0
    loss_sum = 0.0
    for i in range(1, period + 1):
        change = values[i] - values[i - 1]
        if change > 0:
            gain_sum += change
        else:
            loss_sum += abs(change)

    avg_gain = gain_sum / period
    avg_loss = loss_sum / period

    # Wilder smoothing
    for i in range(period + 1, len(values)):
        change = values[i] - values[i - 1]
        gain = change if change > 0 else 0.0
        loss = -change if change < 0 else 0.0
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period

    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100 - (100 / (1 + rs))


def calculate_atr(candles: Sequence[Candle], period: int) -> float:
    """Wilder ATR, seeded with the mean of the first `period` true ranges."""
    if len(candles) < period + 1:
        return 0.0
    ranges = [true_range(candles[i], candles[i - 1].close) for i in range(1, len(candles))]
    atr = sum(ranges[:period]) / period
    for tr in ranges[period:]:
        atr = (atr * (period - 1) + tr) / period
    return atr


def calculate_bollinger(values: Sequence[float], period: int,
                        std_mult: float) -> Tuple[float, float, float, float]:
    window = values[-period:]
    mean = sum(window) / period
    variance = sum((v - mean) ** 2 for v in window) / period
    std = math.sqrt(variance)
    upper = mean + std_mult * std
    lower = mean - std_mult * std
    bandwidth = (upper - lower) / mean if mean else 0.0
    return upper, mean, lower, bandwidth


@indicator("rsi", "Relative Strength Index, momentum oscillator (0-100)",
           {"period": 14, "overbought": 70, "oversold": 30}, min_candles=15)
def rsi(candles: Sequence[Candle], params: Dict[str, float]) -> IndicatorOutput:
    period = int(params["period"])
    overbought = params["overbought"]
    oversold = params["oversold"]
    value = calculate_rsi(closes(candles), period)

    signal = "neutral"
    confidence = 0.5
    if value <= oversold:
        signal = "buy"
        confidence = 0.6 + (oversold - value) / oversold * 0.4
    elif value >= overbought:
        signal = "sell"
        confidence = 0.6 + (value - overbought) / (100 - overbought) * 0.4

    return IndicatorOutput(
        signal=signal,
        confidence=min(confidence, 1.0),
        values={"rsi": round_to(value, 2)},
    )


@indicator("ema", "EMA crossover, fast/slow exponential moving averages",
           {"fast_period": 9, "slow_period": 21}, min_candles=22)
def ema(candles: Sequence[Candle], params: Dict[str, float]) -> IndicatorOutput:
    data = closes(candles)
    ema_fast = calculate_ema(data, int(params["fast_period"]))
    ema_slow = calculate_ema(data, int(params["slow_period"]))

    fast, slow = ema_fast[-1], ema_slow[-1]
    prev_fast, prev_slow = ema_fast[-2], ema_slow[-2]

    signal = "neutral"
    confidence = 0.5
    if prev_fast <= prev_slow and fast > slow:
        signal = "buy"
        confidence = min(0.6 + abs(fast - slow) / slow * 10, 1.0)
    elif prev_fast >= prev_slow and fast < slow:
        signal = "sell"
        confidence = min(0.6 + abs(slow - fast) / slow * 10, 1.0)
    elif fast > slow:
        signal = "buy"
        confidence = 0.4
    elif fast < slow:
        signal = "sell"
        confidence = 0.4

    return IndicatorOutput(
        signal=signal,
        confidence=confidence,
        values={
            "ema_fast": round_to(fast, 2),
            "ema_slow": round_to(slow, 2),
            "spread_pct": round_to((fast - slow) / slow * 100, 2) if slow else 0.0,
        },
    )


@indicator("atr", "Average True Range, volatility for grid spacing and stops",
           {"period": 14, "high_vol_threshold": 2.0}, min_candles=15)
def atr(candles: Sequence[Candle], params: Dict[str, float]) -> IndicatorOutput:
    threshold = params["high_vol_threshold"]
    value = calculate_atr(candles, int(params["period"]))
    price = candles[-1].close
    atr_pct = value / price * 100 if price else 0.0

    # Volatility gauge only; never directional.
    confidence = 0.3 if atr_pct >= threshold else 0.5
    if atr_pct >= threshold:
        level = "high"
    elif atr_pct >= 1.0:
        level = "medium"
    else:
        level = "low"

    return IndicatorOutput(
        signal="neutral",
        confidence=confidence,
        values={"atr": r4(value), "atr_pct": round_to(atr_pct, 2)},
        metadata={
            "suggested_grid_spacing": max(atr_pct * 1.5, 1.0),
            "volatility_level": level,
        },
    )


@indicator("macd", "MACD, trend-following momentum",
           {"fast_period": 12, "slow_period": 26, "signal_period": 9}, min_candles=35)
def macd(candles: Sequence[Candle], params: Dict[str, float]) -> IndicatorOutput:
    fast_period = int(params["fast_period"])
    slow_period = int(params["slow_period"])
    data = closes(candles)

    ema_fast = calculate_ema(data, fast_period)
    ema_slow = calculate_ema(data, slow_period)
    offset = slow_period - fast_period
    macd_line = [ema_fast[i + offset] - ema_slow[i] for i in range(len(ema_slow))]
    signal_line = calculate_ema(macd_line, int(params["signal_period"]))

    current, prev = macd_line[-1], macd_line[-2]
    current_signal, prev_signal = signal_line[-1], signal_line[-2]
    hist = current - current_signal
    prev_hist = prev - prev_signal

    signal = "neutral"
    confidence = 0.5
    if prev <= prev_signal and current > current_signal:
        signal, confidence = "buy", 0.7
    elif prev >= prev_signal and current < current_signal:
        signal, confidence = "sell", 0.7
    elif hist > 0 and hist > prev_hist:
        signal, confidence = "buy", 0.55
    elif hist < 0 and hist < prev_hist:
        signal, confidence = "sell", 0.55

    return IndicatorOutput(
        signal=signal,
        confidence=confidence,
        values={"macd": r4(current), "signal_line": r4(current_signal), "histogram": r4(hist)},
    )


@indicator("bollinger", "Bollinger Bands, volatility-based support/resistance",
           {"period": 20, "std_dev": 2}, min_candles=21)
def bollinger(candles: Sequence[Candle], params: Dict[str, float]) -> IndicatorOutput:
    data = closes(candles)
    upper, middle, lower, bandwidth = calculate_bollinger(data, int(params["period"]), params["std_dev"])
    price = data[-1]
    # 0 = lower band, 1 = upper band; flat bands sit in the middle
    percent_b = (price - lower) / (upper - lower) if upper > lower else 0.5

    signal = "neutral"
    confidence = 0.5
    if percent_b <= 0.1:
        signal, confidence = "buy", 0.7 + (0.1 - percent_b) * 3
    elif percent_b <= 0.25:
        signal, confidence = "buy", 0.55
    elif percent_b >= 0.9:
        signal, confidence = "sell", 0.7 + (percent_b - 0.9) * 3
    elif percent_b >= 0.75:
        signal, confidence = "sell", 0.55

    if bandwidth < 0.03:
        potential = "high"
    elif bandwidth < 0.06:
        potential = "medium"
    else:
        potential = "low"

    return IndicatorOutput(
        signal=signal,
        confidence=min(confidence, 1.0),
        values={
            "upper": r4(upper),
            "middle": r4(middle),
            "lower": r4(lower),
            "percent_b": r4(percent_b),
            "bandwidth": r4(bandwidth),
        },
        metadata={"squeeze": bandwidth < 0.04, "breakout_potential": potential},
    )


def calculate_supertrend(candles: Sequence[Candle], atr_period: int,
                         multiplier: float) -> Tuple[float, int]:
    """
    Returns (supertrend value, direction) with direction 1 = up, -1 = down.
    Uses the latest ATR for every bar.
    """
    value = calculate_atr(candles, atr_period)
    upper_band: List[float] = []
    lower_band: List[float] = []
    trend: List[float] = []
    direction: List[int] = []

    for i, candle in enumerate(candles):
        hl2 = (candle.high + candle.low) / 2
        basic_upper = hl2 + multiplier * value
        basic_lower = hl2 - multiplier * value

        if i == 0:
            upper_band.append(basic_upper)
            lower_band.append(basic_lower)
            trend.append(basic_upper)
            direction.append(1)
            continue

        prev_close = candles[i - 1].close
        if basic_upper < upper_band[-1] or prev_close > upper_band[-1]:
            final_upper = basic_upper
        else:
            final_upper = upper_band[-1]
        if basic_lower > lower_band[-1] or prev_close < lower_band[-1]:
            final_lower = basic_lower
        else:
            final_lower = lower_band[-1]

        on_upper = trend[-1] == upper_band[-1]
        upper_band.append(final_upper)
        lower_band.append(final_lower)

        if on_upper:
            if candle.close <= final_upper:
                trend.append(final_upper)
                direction.append(-1)
            else:
                trend.append(final_lower)
                direction.append(1)
        else:
            if candle.close >= final_lower:
                trend.append(final_lower)
                direction.append(1)
            else:
                trend.append(final_upper)
                direction.append(-1)

    return trend[-1], direction[-1]


@indicator("supertrend", "SuperTrend, trailing trend filter for directional bias",
           {"atr_period": 10, "multiplier": 3}, min_candles=15)
def supertrend(candles: Sequence[Candle], params: Dict[str, float]) -> IndicatorOutput:
    value, direction = calculate_supertrend(candles, int(params["atr_period"]), params["multiplier"])
    price = candles[-1].close
    distance = (price - value) / price * 100 if price else 0.0

    if direction == 1:
        signal = "buy"
        confidence = min(0.6 + distance * 0.05, 0.9)
    else:
        signal = "sell"
        confidence = min(0.6 - distance * 0.05, 0.9)

    return IndicatorOutput(
        signal=signal,
        confidence=max(confidence, 0.0),
        values={"supertrend": r4(value), "direction_num": float(direction)},
        metadata={
            "direction": "up" if direction == 1 else "down",
            "trend_strength": abs(distance),
        },
    )


BUILTIN_INDICATORS = [rsi, ema, atr, macd, bollinger, supertrend]
