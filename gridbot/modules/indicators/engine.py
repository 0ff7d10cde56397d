from typing import Dict, Iterable, List, Optional, Sequence
from gridbot.core.models import Candle, Consensus, ConsensusResult, IndicatorOutput
from gridbot.core.mathutils import round_to
from gridbot.core.logger import logging
from gridbot.modules.indicators.base import Indicator
from gridbot.modules.indicators.builtin import BUILTIN_INDICATORS
from gridbot.modules.indicators.smart_money_range import smart_money_range
from gridbot.modules.indicators.fibo_volume_profile import fibo_volume_profile
from gridbot.modules.indicators.filtered_volume_profile import filtered_volume_profile
from gridbot.modules.indicators.trend_channels import trend_channels
from gridbot.modules.indicators.momentum_ghost import momentum_ghost

logger = logging.getLogger(__name__)

CUSTOM_INDICATORS = [
    smart_money_range,
    fibo_volume_profile,
    filtered_volume_profile,
    trend_channels,
    momentum_ghost,
]

STRONG_CONFIDENCE = 0.75


class IndicatorEngine:
    """
    Name -> indicator registry plus the plurality-vote consensus.
    """
    def __init__(self, indicators: Optional[Iterable[Indicator]] = None):
        self._registry: Dict[str, Indicator] = {}
        for ind in indicators or []:
            self.register(ind)

    def register(self, ind: Indicator):
        self._registry[ind.name] = ind
        logger.debug(f"Registered indicator: {ind.name}")

    def unregister(self, name: str):
        self._registry.pop(name, None)

    def list_indicators(self) -> List[str]:
        return list(self._registry.keys())

    def get(self, name: str) -> Optional[Indicator]:
        return self._registry.get(name)

    def compute(self, name: str, candles: Sequence[Candle],
                overrides: Optional[Dict[str, float]] = None) -> Optional[IndicatorOutput]:
        ind = self._registry.get(name)
        if ind is None:
            logger.warning(f"Indicator not found: {name}")
            return None

        if len(candles) < ind.config.min_candles:
            logger.debug(f"Not enough candles for {name}: have {len(candles)}, need {ind.config.min_candles}")
            return None

        try:
            return ind.compute(candles, overrides)
        except Exception as e:
            logger.error(f"Indicator {name} computation failed: {e}", exc_info=True)
            return None

    def compute_all(self, candles: Sequence[Candle],
                    active: Optional[Sequence[str]] = None) -> ConsensusResult:
        names = list(active) if active is not None else self.list_indicators()
        outputs: Dict[str, IndicatorOutput] = {}
        for name in names:
            result = self.compute(name, candles)
            if result is not None:
                outputs[name] = result
        return ConsensusResult(indicators=outputs, consensus=build_consensus(outputs.values()))


def build_consensus(outputs: Iterable[IndicatorOutput]) -> Consensus:
    """
    Strict plurality picks the side. The winning side is "strong" when its own
    average confidence exceeds 0.75, and that average is the reported confidence.
    Without a plurality the result is neutral at the overall average confidence.
    """
    confidences: Dict[str, List[float]] = {"buy": [], "sell": [], "neutral": []}
    for out in outputs:
        confidences[out.signal].append(out.confidence)

    buys, sells, neutrals = (len(confidences[k]) for k in ("buy", "sell", "neutral"))
    total = buys + sells + neutrals

    def average(values: List[float]) -> float:
        return sum(values) / len(values) if values else 0.0

    signal = "neutral"
    confidence = average([c for values in confidences.values() for c in values]) if total else 0.0
    if buys > sells and buys > neutrals:
        confidence = average(confidences["buy"])
        signal = "strong_buy" if confidence > STRONG_CONFIDENCE else "buy"
    elif sells > buys and sells > neutrals:
        confidence = average(confidences["sell"])
        signal = "strong_sell" if confidence > STRONG_CONFIDENCE else "sell"

    return Consensus(
        signal=signal,
        confidence=round_to(confidence, 2),
        buy_count=buys,
        sell_count=sells,
        neutral_count=neutrals,
    )


def default_engine() -> IndicatorEngine:
    """A fresh engine with all built-in and custom indicators registered."""
    return IndicatorEngine(BUILTIN_INDICATORS + CUSTOM_INDICATORS)
