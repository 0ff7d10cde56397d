"""
Momentum Ghost: sinc-filtered momentum oscillator.

A Blackman-windowed sinc low-pass gives a noise-free baseline; momentum is
the close's distance from it. The delta is post-smoothed, compared against a
double-EMA signal line, and the convergence/divergence (CD) value is
projected two bars forward.
"""
from typing import Dict, Sequence
from gridbot.core.models import Candle, IndicatorOutput
from gridbot.core.mathutils import clamp, round_to
from gridbot.modules.indicators.base import indicator, neutral
from gridbot.modules.indicators.stats import ema_smooth, sinc_coefficients, wma_smooth


def cd_state(value: float, reference: float) -> str:
    if value > 0:
        return "bullish_rising" if value > reference else "bullish_falling"
    return "bearish_falling" if value < reference else "bearish_rising"


def _r5(value: float) -> float:
    return round_to(value, 5)


@indicator(
    "momentum-ghost",
    "Momentum Ghost, sinc-kernel momentum with CD histogram and projection",
    {"momentum_length": 50, "momentum_smoothing": 50, "post_smoothing": 4, "ma_length": 24},
    min_candles=120,
)
def momentum_ghost(candles: Sequence[Candle], params: Dict[str, float]) -> IndicatorOutput:
    length = int(params["momentum_length"]) * 2
    post_smoothing = int(params["post_smoothing"])
    ma_length = int(params["ma_length"])
    offset = (length - 1) // 2
    n = len(candles)

    if n < length + ma_length + 10:
        return neutral()

    taps = sinc_coefficients(length, params["momentum_smoothing"])
    taps_sum = sum(taps)

    history = ma_length + post_smoothing + 10
    deltas = []
    for t in range(n - history, n):
        if t < length:
            deltas.append(0.0)
            continue
        # newest first
        baseline = sum(candles[t - i].close * taps[i] for i in range(length))
        baseline = baseline / taps_sum if taps_sum != 0 else 0.0
        deltas.append((candles[t].close - baseline) / offset if offset > 0 else 0.0)

    smoothed = wma_smooth(deltas, post_smoothing)
    ma_values = ema_smooth(ema_smooth(smoothed, 2), ma_length)
    cd_values = [d - m for d, m in zip(smoothed, ma_values)]

    delta, delta_prev1, delta_prev2 = smoothed[-1], smoothed[-2], smoothed[-3]
    ma, ma_prev1, ma_prev2 = ma_values[-1], ma_values[-2], ma_values[-3]
    momo, momo_prev = cd_values[-1], cd_values[-2]

    delta_velocity = (delta - delta_prev1 + (delta - delta_prev2) / 2) / 2
    ma_velocity = (ma - ma_prev1 + (ma - ma_prev2) / 2) / 2
    proj_delta1 = delta + delta_velocity
    proj_delta2 = delta + delta_velocity * 2
    proj_ma1 = ma + ma_velocity
    proj_ma2 = ma + ma_velocity * 2
    proj_cd1 = proj_delta1 - proj_ma1
    proj_cd2 = proj_delta2 - proj_ma2

    state = cd_state(momo, momo_prev)
    projected_state = cd_state(proj_cd1, momo)

    max_delta = max([abs(v) for v in smoothed[-30:]] + [0.0001])
    max_momo = max([abs(v) for v in cd_values[-30:]] + [0.0001])
    delta_norm = abs(delta) / max_delta
    momo_norm = abs(momo) / max_momo

    momentum_bullish = delta > 0
    cd_bullish = momo > 0
    cd_rising = momo > momo_prev
    projection_bullish = proj_cd1 > momo and proj_cd2 > proj_cd1
    projection_bearish = proj_cd1 < momo and proj_cd2 < proj_cd1
    cross_above = delta > ma and delta_prev1 <= ma_prev1
    cross_below = delta < ma and delta_prev1 >= ma_prev1

    signal = "neutral"
    confidence = 0.5
    if momentum_bullish and cd_bullish and cd_rising:
        signal = "buy"
        confidence = 0.55 + delta_norm * 0.15 + momo_norm * 0.1
        if projection_bullish:
            confidence += 0.1
        if cross_above:
            confidence += 0.05
    elif momentum_bullish and cd_rising:
        signal = "buy"
        confidence = 0.5 + delta_norm * 0.1 + momo_norm * 0.05
        if projection_bullish:
            confidence += 0.05
    elif cross_above:
        signal = "buy"
        confidence = 0.55 + delta_norm * 0.1
        if projection_bullish:
            confidence += 0.1
    elif not momentum_bullish and not cd_bullish and not cd_rising:
        signal = "sell"
        confidence = 0.55 + delta_norm * 0.15 + momo_norm * 0.1
        if projection_bearish:
            confidence += 0.1
        if cross_below:
            confidence += 0.05
    elif not momentum_bullish and not cd_rising:
        signal = "sell"
        confidence = 0.5 + delta_norm * 0.1 + momo_norm * 0.05
        if projection_bearish:
            confidence += 0.05
    elif cross_below:
        signal = "sell"
        confidence = 0.55 + delta_norm * 0.1
        if projection_bearish:
            confidence += 0.1

    return IndicatorOutput(
        signal=signal,
        confidence=clamp(confidence, 0.0, 1.0),
        values={
            "delta": _r5(delta),
            "ma": _r5(ma),
            "momo": _r5(momo),
            "momo_prev": _r5(momo_prev),
            "proj_delta1": _r5(proj_delta1),
            "proj_delta2": _r5(proj_delta2),
            "proj_ma1": _r5(proj_ma1),
            "proj_ma2": _r5(proj_ma2),
            "proj_cd1": _r5(proj_cd1),
            "proj_cd2": _r5(proj_cd2),
            "delta_norm": _r5(delta_norm),
            "momo_norm": _r5(momo_norm),
        },
        metadata={
            "cd_state": state,
            "projected_state": projected_state,
            "momentum_bullish": momentum_bullish,
            "cd_bullish": cd_bullish,
            "cross_above": cross_above,
            "cross_below": cross_below,
            "projection_bullish": projection_bullish,
            "projection_bearish": projection_bearish,
        },
    )
