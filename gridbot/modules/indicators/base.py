from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence
from gridbot.core.models import Candle, IndicatorConfig, IndicatorOutput
from gridbot.core.mathutils import round_to

ComputeFn = Callable[[Sequence[Candle], Dict[str, float]], IndicatorOutput]


@dataclass(frozen=True)
class Indicator:
    """
    A named indicator: static config plus a pure compute function.
    """
    config: IndicatorConfig
    fn: ComputeFn

    @property
    def name(self) -> str:
        return self.config.name

    def params(self, overrides: Optional[Dict[str, float]] = None) -> Dict[str, float]:
        return {**self.config.default_params, **(overrides or {})}

    def compute(self, candles: Sequence[Candle],
                overrides: Optional[Dict[str, float]] = None) -> IndicatorOutput:
        if len(candles) < self.config.min_candles:
            return neutral()
        return self.fn(candles, self.params(overrides))


def indicator(name: str, description: str, default_params: Dict[str, float],
              min_candles: int, timeframe: str = "15m") -> Callable[[ComputeFn], Indicator]:
    def wrap(fn: ComputeFn) -> Indicator:
        config = IndicatorConfig(
            name=name,
            description=description,
            default_params=default_params,
            min_candles=min_candles,
            timeframe=timeframe,
        )
        return Indicator(config=config, fn=fn)
    return wrap


def neutral(confidence: float = 0.0, values: Optional[Dict[str, float]] = None,
            metadata: Optional[Dict[str, Any]] = None) -> IndicatorOutput:
    return IndicatorOutput(signal="neutral", confidence=confidence,
                           values=values or {}, metadata=metadata or {})


def r4(value: float) -> float:
    return round_to(value, 4)


def closes(candles: Sequence[Candle]) -> List[float]:
    return [c.close for c in candles]


def true_range(candle: Candle, prev_close: float) -> float:
    return max(candle.high - candle.low,
               abs(candle.high - prev_close),
               abs(candle.low - prev_close))


def simple_atr(candles: Sequence[Candle], period: int) -> float:
    """Plain mean of the last `period` true ranges."""
    if len(candles) < period + 1:
        return 0.0
    total = 0.0
    for i in range(len(candles) - period, len(candles)):
        total += true_range(candles[i], candles[i - 1].close)
    return total / period
