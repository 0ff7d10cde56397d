"""
Smart Money Range: pivot-bounded support/resistance zones ranked by how
often each price level was tested and held.

BUY when price sits in the strongest support zone and a rejection candle or a
bounce confirms it; SELL symmetrically at resistance. Confidence scales with
the zone's touch count and proximity to the zone center.
"""
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
from gridbot.core.models import Candle, IndicatorOutput
from gridbot.core.mathutils import clamp
from gridbot.modules.indicators.base import indicator, neutral, r4
from gridbot.modules.indicators.builtin import calculate_atr


@dataclass
class LevelScore:
    price: float
    support_score: int
    resistance_score: int

    @property
    def net_score(self) -> int:
        return self.support_score - self.resistance_score


def find_pivots(candles: Sequence[Candle], period: int) -> Tuple[Optional[float], int, Optional[float], int]:
    """
    Most recent strict pivot high and pivot low.
    Bar i is a pivot high when its high beats every high in [i-period, i+period].
    """
    pivot_high: Optional[float] = None
    pivot_low: Optional[float] = None
    high_idx = 0
    low_idx = 0

    for i in range(len(candles) - 1 - period, period - 1, -1):
        window = range(i - period, i + period + 1)
        if pivot_high is None:
            if all(candles[j].high < candles[i].high for j in window if j != i):
                pivot_high, high_idx = candles[i].high, i
        if pivot_low is None:
            if all(candles[j].low > candles[i].low for j in window if j != i):
                pivot_low, low_idx = candles[i].low, i
        if pivot_high is not None and pivot_low is not None:
            break

    return pivot_high, high_idx, pivot_low, low_idx


def count_touches(candles: Sequence[Candle], level: float, lookback: int, support: bool) -> int:
    """
    Support test: previous low dipped below the level and this bar closed above it.
    Resistance test is the mirror image.
    """
    count = 0
    for i in range(max(1, len(candles) - lookback), len(candles)):
        prev, cur = candles[i - 1], candles[i]
        if support:
            if prev.low < level < cur.close:
                count += 1
        elif prev.high > level > cur.close:
            count += 1
    return count


def find_strongest_zone(levels: List[LevelScore], kind: str) -> Optional[LevelScore]:
    if not levels:
        return None

    if kind == "support":
        candidates = levels[:math.ceil(len(levels) / 3)]
    else:
        candidates = levels[(len(levels) * 2) // 3:]

    best: Optional[LevelScore] = None
    best_score = -1
    for level in candidates:
        score = level.support_score if kind == "support" else level.resistance_score
        if score > best_score:
            best, best_score = level, score
    return best


@indicator(
    "smart-money-range",
    "Smart Money Range, pivot-based S/R zones with touch-count scoring",
    {
        "pivot_period": 30,
        "volume_levels": 24,
        "atr_length": 30,
        "atr_mult": 0.3,
        "percent_fallback": 10,
        "lookback": 500,
    },
    min_candles=80,
)
def smart_money_range(candles: Sequence[Candle], params: Dict[str, float]) -> IndicatorOutput:
    pivot_period = int(params["pivot_period"])
    volume_levels = int(params["volume_levels"])
    n = len(candles)

    if n < pivot_period * 2 + 1 or volume_levels <= 0:
        return neutral()

    pivot_high, high_idx, pivot_low, _ = find_pivots(candles, pivot_period)
    if pivot_high is None or pivot_low is None:
        return neutral()

    range_candles = candles[high_idx:]
    if len(range_candles) < 5:
        return neutral()

    highest = max(c.high for c in range_candles)
    lowest = min(c.low for c in range_candles)
    if highest <= lowest:
        return neutral()

    current = candles[-1]
    prev = candles[-2]
    atr = calculate_atr(candles, int(params["atr_length"]))
    band = min(atr * params["atr_mult"], current.close * params["percent_fallback"] / 100) / 2

    step = (highest - lowest) / volume_levels
    lookback = min(int(params["lookback"]), n - 1)
    levels: List[LevelScore] = []
    for i in range(volume_levels):
        price = lowest + step * i + step / 2
        levels.append(LevelScore(
            price=price,
            support_score=count_touches(candles, price, lookback, True),
            resistance_score=count_touches(candles, price, lookback, False),
        ))

    support = find_strongest_zone(levels, "support")
    resistance = find_strongest_zone(levels, "resistance")
    max_touches = max([max(l.support_score, l.resistance_score) for l in levels] + [1])

    in_support = support is not None and support.price - band <= current.close <= support.price + band
    in_resistance = (resistance is not None
                     and resistance.price - band <= current.close <= resistance.price + band)

    total_range = current.high - current.low
    lower_wick = min(current.open, current.close) - current.low
    upper_wick = current.high - max(current.open, current.close)
    bullish_rejection = total_range > 0 and lower_wick / total_range > 0.5 and current.close > current.open
    bearish_rejection = total_range > 0 and upper_wick / total_range > 0.5 and current.close < current.open

    support_bounce = support is not None and prev.low < support.price and current.close > support.price
    resistance_bounce = (resistance is not None
                         and prev.high > resistance.price and current.close < resistance.price)

    def proximity(zone: LevelScore) -> float:
        if band <= 0:
            return 0.5
        return 1 - abs(current.close - zone.price) / band

    signal = "neutral"
    confidence = 0.5
    if in_support and (bullish_rejection or support_bounce):
        signal = "buy"
        confidence = 0.55 + support.support_score / max_touches * 0.25 + proximity(support) * 0.15
    elif in_resistance and (bearish_rejection or resistance_bounce):
        signal = "sell"
        confidence = 0.55 + resistance.resistance_score / max_touches * 0.25 + proximity(resistance) * 0.15
    elif in_support:
        # in zone without confirmation: weak bias
        signal = "buy"
        confidence = 0.45 + support.support_score / max_touches * 0.15
    elif in_resistance:
        signal = "sell"
        confidence = 0.45 + resistance.resistance_score / max_touches * 0.15

    return IndicatorOutput(
        signal=signal,
        confidence=clamp(confidence, 0.0, 1.0),
        values={
            "pivot_high": r4(pivot_high),
            "pivot_low": r4(pivot_low),
            "highest_high": r4(highest),
            "lowest_low": r4(lowest),
            "support_price": r4(support.price) if support else 0.0,
            "support_score": float(support.support_score) if support else 0.0,
            "resistance_price": r4(resistance.price) if resistance else 0.0,
            "resistance_score": float(resistance.resistance_score) if resistance else 0.0,
            "band": r4(band),
            "in_support_zone": 1.0 if in_support else 0.0,
            "in_resistance_zone": 1.0 if in_resistance else 0.0,
        },
        metadata={
            "levels": len(levels),
            "max_touches": max_touches,
            "zone_thickness": r4(band * 2),
            "has_rejection": bullish_rejection or bearish_rejection,
        },
    )
