"""
Trend channels with liquidity breaks.

Descending channels hang from two consecutive lower pivot highs, ascending
channels sit on two consecutive higher pivot lows; both are ATR*mult wide and
projected to the current bar. A bar that clears the channel entirely is a
liquidity break.
"""
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence
from gridbot.core.models import Candle, IndicatorOutput
from gridbot.core.mathutils import clamp
from gridbot.modules.indicators.base import indicator, neutral, r4, simple_atr

MAX_PIVOTS = 4


@dataclass
class Pivot:
    price: float
    idx: int


@dataclass
class Channel:
    kind: str
    top: float
    bottom: float
    slope: float
    width: float
    start_idx: int
    last_pivot_idx: int

    @property
    def center(self) -> float:
        return (self.top + self.bottom) / 2


def find_pivots(candles: Sequence[Candle], length: int, kind: str) -> List[Pivot]:
    """Most recent pivots first. Ties with neighbours still count."""
    pivots: List[Pivot] = []
    n = len(candles)
    for i in range(n - 1 - length, length - 1, -1):
        if len(pivots) >= MAX_PIVOTS:
            break
        value = candles[i].high if kind == "high" else candles[i].low
        is_pivot = True
        for j in range(i - length, i + length + 1):
            if j == i or j < 0 or j >= n:
                continue
            other = candles[j].high if kind == "high" else candles[j].low
            if (other > value) if kind == "high" else (other < value):
                is_pivot = False
                break
        if is_pivot:
            pivots.append(Pivot(price=value, idx=i))
    return pivots


def volume_normalized(candles: Sequence[Candle], wma_period: int, norm_period: int) -> float:
    """WMA of volume, min-max scaled to 0..100 over the last `norm_period` values."""
    n = len(candles)
    if n < wma_period + norm_period:
        return 50.0

    weight_sum = wma_period * (wma_period + 1) / 2
    wma_values = []
    for i in range(wma_period - 1, n):
        total = sum(candles[i - j].volume * (wma_period - j) for j in range(wma_period))
        wma_values.append(total / weight_sum)

    if len(wma_values) < norm_period:
        return 50.0
    recent = wma_values[-norm_period:]
    low, high = min(recent), max(recent)
    if high == low:
        return 50.0
    return clamp((wma_values[-1] - low) / (high - low) * 100, 0.0, 100.0)


def simple_volume_avg(candles: Sequence[Candle], period: int) -> float:
    window = candles[-period:] if period > 0 else []
    return sum(c.volume for c in window) / len(window) if window else 0.0


def channel_position(price: float, top: float, bottom: float) -> float:
    if top == bottom:
        return 0.5
    return clamp((price - bottom) / (top - bottom), 0.0, 1.0)


def _channel(pivots: List[Pivot], kind: str, width: float, n: int) -> Optional[Channel]:
    if len(pivots) < 2:
        return None
    prev, last = pivots[1], pivots[0]
    if prev.idx == last.idx:
        return None
    angle = math.atan2(last.price - prev.price, last.idx - prev.idx)
    if (kind == "descending" and angle > 0) or (kind == "ascending" and angle < 0):
        return None

    slope = (last.price - prev.price) / (last.idx - prev.idx)
    anchor = last.price + slope * (n - 1 - last.idx)
    if kind == "descending":
        top, bottom = anchor, anchor - width
    else:
        top, bottom = anchor + width, anchor
    return Channel(kind=kind, top=top, bottom=bottom, slope=slope, width=width,
                   start_idx=prev.idx, last_pivot_idx=last.idx)


@indicator(
    "trend-channels",
    "Trend Channels with Liquidity Breaks, pivot channels with volume-confirmed breakouts",
    {"length": 8, "atr_period": 10, "atr_mult": 6, "volume_wma_period": 21, "volume_norm_period": 100},
    min_candles=40,
)
def trend_channels(candles: Sequence[Candle], params: Dict[str, float]) -> IndicatorOutput:
    length = int(params["length"])
    atr_period = int(params["atr_period"])
    norm_period = int(params["volume_norm_period"])
    n = len(candles)

    if n < length * 2 + atr_period + 5:
        return neutral()

    pivot_highs = find_pivots(candles, length, "high")
    pivot_lows = find_pivots(candles, length, "low")
    width = simple_atr(candles, atr_period) * params["atr_mult"]

    vol_score = volume_normalized(candles, int(params["volume_wma_period"]), norm_period)
    vol_avg = simple_volume_avg(candles, norm_period)
    if vol_score < vol_avg:
        vol_category = "LV"
    elif vol_score < vol_avg * 1.5:
        vol_category = "MV"
    else:
        vol_category = "HV"

    current = candles[-1]
    price = current.close
    down = _channel(pivot_highs, "descending", width, n)
    up = _channel(pivot_lows, "ascending", width, n)

    # later checks win
    break_type = "none"
    for channel in (down, up):
        if channel is None:
            continue
        if current.low > channel.top:
            break_type = "bullish_break"
        if current.high < channel.bottom:
            break_type = "bearish_break"

    if down and up:
        active = down if down.last_pivot_idx > up.last_pivot_idx else up
    else:
        active = down or up

    signal = "neutral"
    confidence = 0.5
    if break_type != "none":
        signal = "buy" if break_type == "bullish_break" else "sell"
        boost = {"HV": 0.15, "MV": 0.08}.get(vol_category, 0.0)
        confidence = 0.65 + boost
    elif active is not None:
        position = channel_position(price, active.top, active.bottom)
        if active.kind == "ascending":
            if position <= 0.2:
                signal, confidence = "buy", 0.55 + (0.2 - position) * 0.5
            elif position >= 0.85:
                signal, confidence = "sell", 0.5 + (position - 0.85) * 0.3
        else:
            if position >= 0.8:
                signal, confidence = "sell", 0.55 + (position - 0.8) * 0.5
            elif position <= 0.15:
                signal, confidence = "buy", 0.5 + (0.15 - position) * 0.3
        if signal != "neutral" and vol_category == "HV":
            confidence += 0.05

    break_num = {"bullish_break": 1.0, "bearish_break": -1.0}.get(break_type, 0.0)
    return IndicatorOutput(
        signal=signal,
        confidence=clamp(confidence, 0.0, 1.0),
        values={
            "channel_top": r4(active.top) if active else 0.0,
            "channel_bottom": r4(active.bottom) if active else 0.0,
            "channel_center": r4(active.center) if active else 0.0,
            "channel_slope": r4(active.slope) if active else 0.0,
            "channel_width": r4(width),
            "volume_score": r4(vol_score),
            "has_down_channel": 1.0 if down else 0.0,
            "has_up_channel": 1.0 if up else 0.0,
            "break_type": break_num,
            "position_in_channel": r4(channel_position(price, active.top, active.bottom)) if active else 0.5,
        },
        metadata={
            "channel_type": active.kind if active else "none",
            "break_type": break_type,
            "vol_category": vol_category,
            "pivot_high_count": len(pivot_highs),
            "pivot_low_count": len(pivot_lows),
        },
    )
