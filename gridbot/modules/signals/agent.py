import time
from typing import Dict, Optional
from gridbot.core.audit import AuditLogger
from gridbot.core.config import BotConfig
from gridbot.core.health import HealthMonitor
from gridbot.core.interfaces import PriceFeed
from gridbot.core.logger import logging
from gridbot.core.models import IndicatorOutput
from gridbot.modules.bus.bus import MessageBus, consume
from gridbot.modules.bus.messages import Channel, CommandMessage, RiskAlertMessage, SignalMessage
from gridbot.modules.indicators.engine import IndicatorEngine

logger = logging.getLogger(__name__)

CONFIDENCE_DELTA = 0.15
PRICE_DELTA = 0.01


def should_publish(current: SignalMessage, previous: Optional[SignalMessage]) -> bool:
    """
    Publish the first signal, then only on a new recommendation, a confidence
    move above 0.15 or a price move above 1%.
    """
    if previous is None:
        return True

    if current.recommendation != previous.recommendation:
        logger.debug(f"Recommendation changed: {previous.recommendation} -> {current.recommendation}")
        return True

    if abs(current.confidence - previous.confidence) > CONFIDENCE_DELTA:
        logger.debug(f"Confidence moved: {previous.confidence:.2f} -> {current.confidence:.2f}")
        return True

    if previous.price and abs(current.price - previous.price) / previous.price > PRICE_DELTA:
        logger.debug(f"Price moved: {previous.price:.4f} -> {current.price:.4f}")
        return True

    return False


def flatten_indicators(outputs: Dict[str, IndicatorOutput]) -> Dict[str, float]:
    """{name: {key: v}} -> {"name_key": v}"""
    return {f"{name}_{key}": value
            for name, out in outputs.items()
            for key, value in out.values.items()}


class SignalAgent:
    """
    Polls the price feed, runs the indicator engine over the latest candle
    window and publishes the consensus to grid:signals when it changed enough.
    """
    def __init__(self, bus: MessageBus, feed: PriceFeed, engine: IndicatorEngine,
                 config: BotConfig, audit: Optional[AuditLogger] = None):
        self.bus = bus
        self.feed = feed
        self.engine = engine
        self.config = config
        self.profile = config.profile
        self.asset_id = config.token_pair.base.mint
        self.health = HealthMonitor("signal", audit)
        self.last_published: Optional[SignalMessage] = None
        self.api_failures = 0
        self.paused = False
        self.commands = bus.subscribe(Channel.COMMANDS)

    async def run_cycle(self) -> Optional[SignalMessage]:
        """One fetch/compute/publish pass. Feed errors end in an error heartbeat, never a raise."""
        if self.paused:
            logger.debug("Signal cycle skipped (paused)")
            return None

        signal = None
        started = time.monotonic()
        try:
            price = await self.feed.get_current_price(self.asset_id)
            candles = await self.feed.get_historical_ohlcv(self.asset_id, self.config.history_days)
            window = candles[-self.config.candle_window:]
            latency_ms = int((time.monotonic() - started) * 1000)

            if not window:
                logger.warning("No OHLCV data available, skipping cycle")
                self.health.log_data_health("feed", "WARNING", "", 0, latency_ms, "No candles returned")
                self.health.record("No OHLCV data")
            else:
                self.health.log_data_health("feed", "OK", window[-1].timestamp.isoformat(),
                                            len(window), latency_ms)
                signal = await self._evaluate(price, window)
            self.api_failures = 0
        except Exception as e:
            logger.error(f"Signal cycle failed: {e}", exc_info=True)
            self.health.record(str(e) or type(e).__name__, status="error")
            await self._on_failure()

        await self.bus.publish(Channel.HEARTBEAT, self.health.heartbeat())
        return signal

    async def _evaluate(self, price: float, window) -> SignalMessage:
        logger.info(f"{self.config.grid.pair}: ${price:.2f} ({len(window)} candles)")
        result = self.engine.compute_all(window, self.config.strategy.active_indicators)
        consensus = result.consensus

        signal = SignalMessage(
            pair=self.config.grid.pair,
            price=price,
            indicators=flatten_indicators(result.indicators),
            recommendation=consensus.signal,
            confidence=consensus.confidence,
            metadata={
                "buy_count": consensus.buy_count,
                "sell_count": consensus.sell_count,
                "neutral_count": consensus.neutral_count,
                "candle_count": len(window),
                "candle": window[-1].model_dump(mode="json"),
            },
        )

        if should_publish(signal, self.last_published):
            await self.bus.publish(Channel.SIGNALS, signal)
            self.last_published = signal
            logger.info(f"Published signal: {signal.recommendation} "
                        f"(confidence: {signal.confidence:.2f}) @ {signal.price:.4f}")
        else:
            logger.debug(f"No significant change ({signal.recommendation}, {signal.confidence:.2f})")

        self.health.record(f"Processed signal: {signal.recommendation}")
        return signal

    async def _on_failure(self):
        self.api_failures += 1
        limit = self.profile.max_api_failures
        if self.api_failures != limit:
            return
        alert = RiskAlertMessage(
            severity="warning",
            alert_type="api_failure",
            message=f"{self.api_failures} consecutive price feed failures",
            threshold=limit,
            action="pause",
        )
        await self.bus.publish(Channel.RISK_ALERTS, alert)
        logger.error(f"Risk alert published: {alert.message}")

    async def send_heartbeat(self):
        await self.bus.publish(Channel.HEARTBEAT, self.health.heartbeat())

    async def on_command(self, message):
        if not isinstance(message, CommandMessage):
            return
        if message.command == "pause":
            self.paused = True
            logger.warning("Signal agent PAUSED by command")
        elif message.command == "resume":
            self.paused = False
            logger.info("Signal agent RESUMED by command")

    async def run(self):
        logger.info(f"Signal agent listening for commands "
                    f"(pair={self.config.grid.pair}, indicators={len(self.config.strategy.active_indicators)})")
        await consume(self.commands, self.on_command)
