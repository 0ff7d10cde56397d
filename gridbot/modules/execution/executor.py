import asyncio
import random
from datetime import datetime
from typing import Optional
from gridbot.core.audit import AuditLogger
from gridbot.core.config import BotConfig
from gridbot.core.health import HealthMonitor
from gridbot.core.logger import logging, log_event
from gridbot.modules.bus.bus import MessageBus, consume
from gridbot.modules.bus.messages import Channel, CommandMessage, ExecutionMessage, OrderMessage
from gridbot.modules.execution.paper import PaperPortfolio, simulate_fill

logger = logging.getLogger(__name__)

PORTFOLIO_KEY = "gridbot:portfolio"


class ExecutorAgent:
    """
    Fills orders from grid:orders against the paper portfolio and publishes
    the outcome on grid:executions. Sole writer of the portfolio snapshot.
    """
    def __init__(self, bus: MessageBus, config: BotConfig, rng: Optional[random.Random] = None,
                 audit: Optional[AuditLogger] = None, now: Optional[datetime] = None):
        self.bus = bus
        self.config = config
        self.rng = rng or random.Random()
        self.audit = audit
        self.portfolio = PaperPortfolio(config.grid.capital_usd, now=now)
        self.health = HealthMonitor("executor", audit)
        self.paused = False

        self.orders = bus.subscribe(Channel.ORDERS)
        self.commands = bus.subscribe(Channel.COMMANDS)

        logger.info(f"Executor mode: {'PAPER TRADE' if config.paper_trade_mode else 'LIVE'}, "
                    f"capital ${config.grid.capital_usd}")
        self.persist()

    def persist(self):
        summary = self.portfolio.get_summary()
        self.bus.set_state(PORTFOLIO_KEY, "portfolio", self.portfolio.get_state().model_dump(mode="json"))
        self.bus.set_state(PORTFOLIO_KEY, "summary", summary.model_dump(mode="json"))
        self.health.record(f"Capital: ${summary.current_capital:.2f} | Open: {summary.open_positions}")

    async def on_order(self, order: OrderMessage) -> Optional[ExecutionMessage]:
        if not isinstance(order, OrderMessage):
            return None
        if self.paused:
            logger.warning(f"Order skipped (paused): {order.action.upper()} {order.quantity:.4f}")
            return None

        logger.info(f"Received order: {order.action.upper()} {order.quantity:.4f} @ ${order.price:.2f} "
                    f"(grid L{order.grid_level if order.grid_level is not None else '?'}, {order.strategy})")

        if not self.config.paper_trade_mode:
            # TODO: route to the on-chain swap client once it exists
            logger.warning("Live execution not implemented, skipping order")
            return None

        if order.metadata.get("requires_confirmation"):
            logger.info(f"Order {order.order_id} above confirmation threshold, auto-confirmed in paper mode")

        fill = simulate_fill(order, rng=self.rng, fee_bps=self.config.fee_bps)
        logger.info(f"Paper fill: {order.action.upper()} {fill.fill_quantity:.4f} @ ${fill.fill_price:.2f} "
                    f"(slippage: {fill.slippage_bps:.1f}bps, fee: ${fill.fees:.4f})")

        closed_trades = self.portfolio.process_execution(order, fill)
        # snapshot first so readers woken by the execution see the new state
        self.persist()

        execution = ExecutionMessage(
            order_id=order.order_id,
            tx_ref=f"paper-{order.order_id}-{int(fill.timestamp.timestamp() * 1000)}",
            status="confirmed",
            fill_price=fill.fill_price,
            fill_quantity=fill.fill_quantity,
            fees=fill.fees,
            metadata={
                "paper": True,
                "action": order.action,
                "slippage_bps": fill.slippage_bps,
                "grid_level": order.grid_level,
                "strategy": order.strategy,
                "closed_trades": [t.model_dump(mode="json") for t in closed_trades],
            },
        )
        await self.bus.publish(Channel.EXECUTIONS, execution)

        log_event("FILL", {"order_id": order.order_id, "action": order.action,
                           "price": fill.fill_price, "quantity": fill.fill_quantity})
        if self.audit:
            self.audit.log_event("PAPER_FILL", execution.model_dump(mode="json"))

        summary = self.portfolio.get_summary()
        sign = "+" if summary.total_pnl >= 0 else ""
        logger.info(f"Portfolio: ${summary.current_capital:.2f} | P&L: {sign}${summary.total_pnl:.2f} "
                    f"({sign}{summary.total_pnl_pct:.2f}%) | Win rate: {summary.win_rate:.0f}% | "
                    f"Trades: {summary.total_trades} | Open: {summary.open_positions}")
        return execution

    async def on_command(self, command: CommandMessage):
        if not isinstance(command, CommandMessage):
            return
        if command.command == "pause":
            self.paused = True
            logger.warning("Executor PAUSED by command")
        elif command.command == "resume":
            self.paused = False
            logger.info("Executor RESUMED by command")

    def daily_reset(self, now: Optional[datetime] = None) -> bool:
        """Resets daily P&L once the UTC date has rolled over; scheduled at 00:00 UTC."""
        if not self.portfolio.roll_day(now):
            return False
        self.persist()
        return True

    async def send_heartbeat(self):
        await self.bus.publish(Channel.HEARTBEAT, self.health.heartbeat())

    async def run(self):
        logger.info("Executor agent listening for orders")
        await asyncio.gather(
            consume(self.orders, self.on_order),
            consume(self.commands, self.on_command),
        )
