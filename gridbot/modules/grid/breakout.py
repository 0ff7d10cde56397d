from typing import Optional, Sequence
from gridbot.core.models import BreakoutSignal, Candle
from gridbot.core.logger import logging
from gridbot.modules.indicators.builtin import calculate_atr, calculate_bollinger

logger = logging.getLogger(__name__)

SQUEEZE_BANDWIDTH = 0.04
ATR_PERIOD = 14


def detect_breakout(candles: Sequence[Candle], lookback: int, volume_multiplier: float,
                    atr_stop_multiplier: float) -> Optional[BreakoutSignal]:
    """
    Bollinger squeeze + volume spike + close outside the bands.
    Stop is ATR(14) * multiplier away from entry; target is fixed at 1:2.
    """
    if len(candles) < lookback + 1:
        logger.debug(f"Insufficient candles for breakout detection: {len(candles)} < {lookback + 1}")
        return None

    recent = candles[-lookback:]
    latest = candles[-1]
    upper, middle, lower, bandwidth = calculate_bollinger([c.close for c in recent], lookback, 2)

    if bandwidth >= SQUEEZE_BANDWIDTH:
        logger.debug(f"No squeeze: bandwidth {bandwidth:.4f}")
        return None

    avg_volume = sum(c.volume for c in recent) / len(recent)
    if avg_volume <= 0 or latest.volume < avg_volume * volume_multiplier:
        logger.debug(f"Insufficient volume: {latest.volume} vs avg {avg_volume}")
        return None

    if latest.close > upper and upper > middle:
        direction = "long"
        strength = (latest.close - upper) / (upper - middle)
    elif latest.close < lower and middle > lower:
        direction = "short"
        strength = (lower - latest.close) / (middle - lower)
    else:
        logger.debug(f"No band break: close {latest.close}, bands {lower:.4f}-{upper:.4f}")
        return None

    confidence = min(0.6 + strength * 0.3, 0.95)
    atr = calculate_atr(candles, ATR_PERIOD)
    entry = latest.close
    if direction == "long":
        stop = entry - atr * atr_stop_multiplier
    else:
        stop = entry + atr * atr_stop_multiplier
    risk = abs(entry - stop)
    target = entry + risk * 2 if direction == "long" else entry - risk * 2

    volume_ratio = latest.volume / avg_volume
    reason = (f"Bollinger squeeze (BW={bandwidth:.4f}) + volume spike "
              f"({volume_ratio:.2f}x avg) + {direction} breakout")
    logger.info(f"Breakout detected: {direction} entry={entry} stop={stop:.4f} target={target:.4f} conf={confidence:.2f}")

    return BreakoutSignal(
        direction=direction,
        entry_price=entry,
        stop_loss=stop,
        take_profit=target,
        confidence=confidence,
        reason=reason,
    )
