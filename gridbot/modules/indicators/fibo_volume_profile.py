"""
Fibonacci pivot levels with a volume profile.

A synthetic higher-timeframe pivot (H/L/C of the previous period) yields a
classic pivot point plus six Fibonacci extensions. Closes from the current
period are binned across the fib range, split into bull and bear volume, and
the dominant side picks the target level.
"""
from typing import Dict, Sequence
from gridbot.core.models import Candle, IndicatorOutput
from gridbot.core.mathutils import clamp
from gridbot.modules.indicators.base import indicator, neutral, r4, simple_atr


def reward_confidence(price: float, entry: float, target: float,
                      volume_ratio: float, side: str) -> float:
    volume_strength = (volume_ratio - 0.5) * 2
    total = abs(target - entry)
    remaining = target - price if side == "buy" else price - target
    reward = clamp(remaining / total, 0.0, 1.0) if total > 0 else 0.0
    return clamp(0.45 + volume_strength * 0.25 + reward * 0.2, 0.3, 0.95)


@indicator(
    "fibo-volume-profile",
    "Fibonacci pivot levels with volume profile and directional targets",
    {"htf_period": 96, "volume_levels": 12, "atr_length": 30, "atr_mult": 0.3},
    min_candles=100,
)
def fibo_volume_profile(candles: Sequence[Candle], params: Dict[str, float]) -> IndicatorOutput:
    htf_period = int(params["htf_period"])
    volume_levels = int(params["volume_levels"])
    n = len(candles)

    if n < htf_period + 10 or volume_levels <= 0:
        return neutral()

    last = n - 1
    prev_start = max(0, last - htf_period)
    current_start = max(0, last - htf_period // 2)
    previous = candles[prev_start:current_start]
    if len(previous) < 10:
        return neutral()

    price = candles[-1].close
    atr = simple_atr(candles, int(params["atr_length"]))
    band = min(atr * params["atr_mult"], price * 0.003) / 2

    fh = max(c.high for c in previous) + band
    fl = min(c.low for c in previous) - band
    fc = previous[-1].close + band

    pp = (fh + fl + fc) / 3
    span = fh - fl
    fibs = {
        "r382": pp + 0.382 * span,
        "s382": pp - 0.382 * span,
        "r618": pp + 0.618 * span,
        "s618": pp - 0.618 * span,
        "r100": pp + 1.0 * span,
        "s100": pp - 1.0 * span,
    }
    top, bottom = fibs["r100"], fibs["s100"]
    mid = (top + bottom) / 2

    step = (top - bottom) / volume_levels
    level_volumes = [0.0] * volume_levels
    total_volume = bull_volume = bear_volume = 0.0

    analysis = candles[current_start:]
    for c in analysis:
        bull = c.close > c.open
        total_volume += c.volume
        if bull:
            bull_volume += c.volume
        else:
            bear_volume += c.volume
        for x in range(volume_levels):
            if bottom + step * x <= c.close < bottom + step * (x + 1):
                level_volumes[x] += c.volume
                break

    poc_idx = 0
    poc_volume = 0.0
    for i, volume in enumerate(level_volumes):
        if volume > poc_volume:
            poc_idx, poc_volume = i, volume
    poc_price = bottom + step * poc_idx + step / 2

    bull_ratio = bull_volume / total_volume if total_volume > 0 else 0.5
    bear_ratio = bear_volume / total_volume if total_volume > 0 else 0.5
    bullish = bull_ratio > bear_ratio

    signal = "neutral"
    confidence = 0.5
    target = 0.0
    in_range = bottom < price < top

    if in_range:
        above_mid = price > mid
        if bullish:
            signal = "buy"
            if above_mid:
                target = fibs["r618"]
                confidence = reward_confidence(price, fibs["s382"], target, bull_ratio, "buy")
            else:
                target = fibs["r382"]
                confidence = reward_confidence(price, fibs["s618"], target, bull_ratio, "buy")
        else:
            signal = "sell"
            if above_mid:
                target = fibs["s382"]
                confidence = reward_confidence(price, fibs["r382"], target, bear_ratio, "sell")
            else:
                target = fibs["s618"]
                confidence = reward_confidence(price, fibs["r618"], target, bear_ratio, "sell")

    nearest = min(abs(price - level) for level in fibs.values())
    if signal != "neutral" and nearest < band * 2:
        confidence = clamp(confidence + 0.1 * (1 - nearest / (band * 2)), 0.0, 1.0)

    return IndicatorOutput(
        signal=signal,
        confidence=clamp(confidence, 0.0, 1.0),
        values={
            "pp": r4(pp),
            **{name: r4(level) for name, level in fibs.items()},
            "mid": r4(mid),
            "poc": r4(poc_price),
            "poc_volume": r4(poc_volume),
            "bull_ratio": r4(bull_ratio),
            "bear_ratio": r4(bear_ratio),
            "target": r4(target),
            "near_poc": 1.0 if abs(price - poc_price) < step else 0.0,
        },
        metadata={
            "fibo_range": r4(span),
            "price_in_range": in_range,
            "is_bullish_volume": bullish,
            "volume_level_count": volume_levels,
            "analysis_candles": len(analysis),
        },
    )
