import asyncio
import random
import signal
import sys
from typing import List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from gridbot.core.audit import AuditLogger
from gridbot.core.config import BotConfig, Config, ConfigError
from gridbot.core.logger import setup_logging, logging
from gridbot.core.state import StateStore
from gridbot.modules.bus.bus import MessageBus
from gridbot.modules.decision.optimizer import OptimizerAgent
from gridbot.modules.execution.executor import ExecutorAgent
from gridbot.modules.indicators.engine import default_engine
from gridbot.modules.market.feed import RetryingFeed
from gridbot.modules.market.mock_provider import MockPriceFeed
from gridbot.modules.signals.agent import SignalAgent

logger = logging.getLogger("main")


class GridBot:
    """
    Wires the three agents onto one bus and one scheduler. Each agent runs its
    own consume loop; the scheduler drives signal cycles, heartbeats and the
    UTC-midnight daily P&L reset.
    """
    def __init__(self, config: BotConfig, feed, store: Optional[StateStore] = None,
                 audit: Optional[AuditLogger] = None, rng: Optional[random.Random] = None):
        self.config = config
        self.bus = MessageBus(store)
        self.audit = audit
        self.executor = ExecutorAgent(self.bus, config, rng=rng, audit=audit)
        self.optimizer = OptimizerAgent(self.bus, config, audit=audit)
        self.signal = SignalAgent(self.bus, feed, default_engine(), config, audit=audit)
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self._tasks: List[asyncio.Task] = []

    def schedule(self):
        self.scheduler.add_job(self.signal.run_cycle, IntervalTrigger(seconds=self.config.signal_poll_interval_s),
                               id="signal_cycle", max_instances=1, coalesce=True)
        for agent in (self.signal, self.optimizer, self.executor):
            self.scheduler.add_job(agent.send_heartbeat, IntervalTrigger(seconds=self.config.heartbeat_interval_s),
                                   id=f"heartbeat_{agent.health.agent}")
        self.scheduler.add_job(self.executor.daily_reset, CronTrigger(hour=0, minute=0, timezone="UTC"),
                               id="daily_reset")

    async def start(self):
        logger.info(f"Starting grid bot: {self.config.grid.pair} "
                    f"({'paper' if self.config.paper_trade_mode else 'live'}, profile {self.config.profile.name})")
        if self.audit:
            self.audit.log_event("SYSTEM_STARTUP", self.config.model_dump())

        self._tasks = [asyncio.create_task(agent.run())
                       for agent in (self.executor, self.optimizer, self.signal)]
        self.schedule()
        self.scheduler.start()
        # first cycle right away instead of waiting a full interval
        await self.signal.run_cycle()

    async def stop(self):
        logger.info("Grid bot stopping...")
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        if self.audit:
            self.audit.log_event("SYSTEM_SHUTDOWN", {})


def build_feed(config: Config, bot: BotConfig):
    source = config.data.get("source", "mock")
    if source != "mock":
        raise ConfigError(f"Unknown data source: {source}. Available: mock")
    mock = config.data.get("mock", {})
    return RetryingFeed(MockPriceFeed(start_price=mock.get("start_price", 150.0),
                                      seed=mock.get("seed", 42),
                                      history_days=bot.history_days))


async def run(config: Config):
    bot_config = config.bot_config()
    system = config.system
    audit = AuditLogger(system.get("audit_file", "logs/audit_live.jsonl"),
                        mode="PAPER" if bot_config.paper_trade_mode else "LIVE")
    bot = GridBot(bot_config, build_feed(config, bot_config),
                  store=StateStore(system.get("state_file")), audit=audit)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # not supported on Windows event loops
            pass

    await bot.start()
    try:
        await stop_event.wait()
    finally:
        await bot.stop()


def main():
    try:
        config = Config()
    except FileNotFoundError as e:
        print(f"Fatal: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.system.get("log_level", "INFO"), config.system.get("log_dir", "logs"))
    try:
        asyncio.run(run(config))
    except ConfigError as e:
        logger.critical(f"Configuration error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Grid bot stopped.")


if __name__ == "__main__":
    main()
