"""
Filtered Volume Profile: kernel-smoothed volume distribution with peak
detection and a Student's t "mean score" for the point of control.
"""
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
from gridbot.core.models import Candle, IndicatorOutput
from gridbot.core.mathutils import clamp
from gridbot.modules.indicators.base import indicator, neutral, r4
from gridbot.modules.indicators.stats import sinc_kernel_smooth, t_dist_pdf, t_inv

NUM_BINS = 100


@dataclass
class VolumePeak:
    price: float
    volume: float
    bin_idx: int


def volume_proportion(a: float, b: float, low: float, high: float, volume: float) -> float:
    """Share of a candle's volume falling inside the price bin [a, b]."""
    if high < a or low > b:
        return 0.0
    span = high - low
    if low >= a and high <= b:
        return span / (b - a) * volume if b - a > 0 else 0.0
    if low <= a and high >= b:
        return (b - a) / span * volume if span > 0 else volume
    if low < a and high <= b:
        return (high - a) / span * volume if span > 0 else 0.0
    if low >= a and high > b:
        return (b - low) / span * volume if span > 0 else 0.0
    return volume


def find_peaks(volumes: Sequence[float], levels: Sequence[float], sensitivity: int,
               threshold: float, merge_range: float) -> List[VolumePeak]:
    peaks: List[VolumePeak] = []
    n = len(volumes)
    for i, value in enumerate(volumes):
        if value < threshold:
            continue
        is_peak = True
        for j in range(1, sensitivity + 1):
            left = volumes[i - j] if i - j >= 0 else 0.0
            right = volumes[i + j] if i + j < n else 0.0
            if value < left or value < right:
                is_peak = False
                break
        if not is_peak:
            continue

        price = (levels[i] + levels[min(i + 1, len(levels) - 1)]) / 2
        if any(abs(price - p.price) < merge_range * 2 for p in peaks):
            continue
        peaks.append(VolumePeak(price=price, volume=value, bin_idx=i))

    return sorted(peaks, key=lambda p: p.volume, reverse=True)


def find_nearest_peak(peaks: Sequence[VolumePeak], price: float, poc_price: float) -> Optional[VolumePeak]:
    nearest = None
    min_dist = math.inf
    for peak in peaks:
        if abs(peak.price - poc_price) < 0.001:
            continue
        dist = abs(price - peak.price)
        if dist < min_dist:
            min_dist, nearest = dist, peak
    return nearest


def compute_mean_score(candles: Sequence[Candle], length: int) -> Tuple[float, float]:
    """
    SMA of closes plus a 99% prediction-interval half width.
    Squared deviations are taken from opens.
    """
    if length < 2 or len(candles) < length + 1:
        return 0.0, 0.0

    window = candles[-length:]
    mean = sum(c.close for c in window) / length
    squared = [(c.open - mean) ** 2 for c in window]
    sum_squares = sum(squared)
    rmse = math.sqrt(sum_squares / (length - 1))

    t_value = abs(t_inv((1 - 0.99) / 2, length - 1))
    root_std_err = math.sqrt(1 + 1 / length + (squared[-1] / sum_squares if sum_squares > 0 else 0.0))
    return mean, t_value * rmse * root_std_err


@indicator(
    "filtered-volume-profile",
    "Filtered Volume Profile, kernel-smoothed volume with peak detection and mean scoring",
    {
        "lookback": 200,
        "smoothing": 3,
        "peak_sensitivity": 3,
        "peak_threshold": 80,
        "mean_score_length": 20,
    },
    min_candles=50,
)
def filtered_volume_profile(candles: Sequence[Candle], params: Dict[str, float]) -> IndicatorOutput:
    sensitivity = int(params["peak_sensitivity"])
    mean_length = int(params["mean_score_length"])
    lookback = min(int(params["lookback"]), len(candles))

    if lookback < 20:
        return neutral()

    recent = candles[-lookback:]
    price = candles[-1].close
    top = max(c.high for c in recent)
    bot = min(c.low for c in recent)
    if top <= bot:
        return neutral()

    step = (top - bot) / NUM_BINS
    merge_range = step * sensitivity
    levels = [bot + step * i for i in range(NUM_BINS + 1)]

    raw = [0.0] * NUM_BINS
    bullish = [0.0] * NUM_BINS
    for c in recent:
        bull = c.close > c.open
        for x in range(NUM_BINS):
            vol = volume_proportion(levels[x], levels[x + 1], c.low, c.high, c.volume)
            raw[x] += vol
            if bull:
                bullish[x] += vol

    smoothed = sinc_kernel_smooth(raw, params["smoothing"])
    max_smoothed = max(smoothed)
    poc_idx = smoothed.index(max_smoothed)
    poc_price = (levels[poc_idx] + levels[min(poc_idx + 1, NUM_BINS)]) / 2

    ranked = sorted(smoothed)
    threshold = ranked[int(math.floor(params["peak_threshold"] / 100 * (len(ranked) - 1)))]
    peaks = find_peaks(smoothed, levels, sensitivity, threshold, merge_range)

    mean, offset = compute_mean_score(candles, mean_length)
    poc_z = (poc_price - mean) / (offset * 1.5) if offset > 0 else 0.0
    poc_mean_score = t_dist_pdf(poc_z, mean_length - 1)

    total_vol = sum(raw)
    bull_ratio = sum(bullish) / total_vol if total_vol > 0 else 0.5
    is_bullish = bull_ratio > 0.5
    bin_ratio = [bullish[i] / raw[i] if raw[i] > 0 else 0.5 for i in range(NUM_BINS)]

    nearest = find_nearest_peak(peaks, price, poc_price)
    dist_poc = abs(price - poc_price)
    dist_nearest = abs(price - nearest.price) if nearest else math.inf
    near_poc = dist_poc < merge_range * 2
    near_peak = dist_nearest < merge_range * 2

    current_bin = min(int(math.floor((price - bot) / step)), NUM_BINS - 1)
    local_bull_ratio = bin_ratio[current_bin] if current_bin >= 0 else 0.5

    signal = "neutral"
    confidence = 0.5
    if near_poc or near_peak:
        level = poc_price if near_poc else nearest.price
        dist = dist_poc if near_poc else dist_nearest
        volume = max_smoothed if near_poc else nearest.volume
        strength = volume / max_smoothed if max_smoothed > 0 else 0.0
        proximity = 1 - min(dist / (merge_range * 2), 1.0)
        relative = price - level

        if relative <= 0 and (is_bullish or local_bull_ratio > 0.5):
            # at or below a volume node with buyers in control
            signal = "buy"
            confidence = 0.5 + strength * 0.15 + proximity * 0.15 + (bull_ratio - 0.5) * 0.3
        elif relative >= 0 and (not is_bullish or local_bull_ratio < 0.5):
            signal = "sell"
            confidence = 0.5 + strength * 0.15 + proximity * 0.15 + (0.5 - bull_ratio) * 0.3

        if signal != "neutral" and poc_mean_score > 0:
            confidence += min(poc_mean_score * 0.1, 0.05)

    return IndicatorOutput(
        signal=signal,
        confidence=clamp(confidence, 0.0, 1.0),
        values={
            "poc": r4(poc_price),
            "poc_volume": r4(max_smoothed),
            "poc_mean_score": r4(poc_mean_score * 100),
            "bull_ratio": r4(bull_ratio),
            "peak_count": float(len(peaks)),
            "nearest_peak_price": r4(nearest.price) if nearest else 0.0,
            "nearest_peak_dist": r4(dist_nearest if near_peak else 0.0),
            "dist_to_poc": r4(dist_poc),
            "range_high": r4(top),
            "range_low": r4(bot),
            "local_bull_ratio": r4(local_bull_ratio),
        },
        metadata={
            "peaks": [{"price": r4(p.price), "volume": r4(p.volume)} for p in peaks],
            "near_poc": near_poc,
            "effective_lookback": lookback,
        },
    )
