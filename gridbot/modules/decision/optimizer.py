import asyncio
from typing import List, Optional
from gridbot.core.audit import AuditLogger
from gridbot.core.config import BotConfig
from gridbot.core.health import HealthMonitor
from gridbot.core.logger import logging, log_event
from gridbot.core.models import (
    BreakoutSignal, Candle, GridLevel, KillSwitchDecision, PortfolioState, ProposedOrder
)
from gridbot.modules.bus.bus import MessageBus, consume
from gridbot.modules.bus.messages import (
    Channel, CommandMessage, ExecutionMessage, OrderMessage, RiskAlertMessage, SignalMessage
)
from gridbot.modules.grid.breakout import detect_breakout
from gridbot.modules.grid.calculator import adjust_grid_for_volatility, calculate_grid
from gridbot.modules.risk.manager import KILL_SWITCH_SEVERITY, RiskManager

logger = logging.getLogger(__name__)

PORTFOLIO_KEY = "gridbot:portfolio"
BREAKOUT_CAPITAL_SHARE = 0.3
ATR_PCT_KEY = "atr_atr_pct"


class OptimizerAgent:
    """
    Turns signals into orders.

    Keeps the grid and a candle window, widens the grid when ATR outgrows its
    spacing, layers breakout entries over it and sends every proposed order
    through the risk manager. The portfolio snapshot is read back from the
    store after each confirmed execution; the executor owns it.
    """
    def __init__(self, bus: MessageBus, config: BotConfig, risk: Optional[RiskManager] = None,
                 audit: Optional[AuditLogger] = None):
        self.bus = bus
        self.config = config
        self.profile = config.profile
        self.risk = risk or RiskManager(self.profile)
        self.audit = audit
        self.health = HealthMonitor("optimizer", audit)
        self.health.record("Waiting for first signal")

        self.candles: List[Candle] = []
        self.grid: List[GridLevel] = []
        self.portfolio = PortfolioState(total_capital=config.grid.capital_usd)
        self.paused = False
        self.last_kill_action = "none"

        self.signals = bus.subscribe(Channel.SIGNALS)
        self.executions = bus.subscribe(Channel.EXECUTIONS)
        self.commands = bus.subscribe(Channel.COMMANDS)

    @property
    def grid_enabled(self) -> bool:
        return self.config.strategy.mode in ("grid", "hybrid")

    @property
    def breakout_enabled(self) -> bool:
        return self.config.strategy.mode in ("breakout", "hybrid") and self.config.grid.breakout_overlay

    def _track_candle(self, signal: SignalMessage):
        raw = signal.metadata.get("candle")
        if raw:
            candle = Candle(**raw)
        else:
            p = signal.price
            candle = Candle(timestamp=signal.timestamp, open=p, high=p, low=p, close=p, volume=0.0)

        if self.candles and self.candles[-1].timestamp == candle.timestamp:
            self.candles[-1] = candle
        else:
            self.candles.append(candle)
        del self.candles[:-self.config.candle_window]

    async def on_signal(self, signal: SignalMessage) -> List[OrderMessage]:
        self.health.record(f"Last signal: {signal.timestamp.isoformat()}")
        await self._check_kill_switch()
        if self.paused:
            logger.debug("Signal received but trading is paused, skipping")
            return []

        logger.info(f"Received signal {signal.recommendation} ({signal.confidence:.2f}) @ {signal.price}")
        self._track_candle(signal)
        grid_cfg = self.config.grid

        if self.grid_enabled:
            if not self.grid:
                self.grid = calculate_grid(signal.price, grid_cfg.grid_spacing_pct,
                                           grid_cfg.grid_levels, grid_cfg.capital_usd)
            atr_pct = signal.indicators.get(ATR_PCT_KEY)
            if atr_pct and atr_pct > grid_cfg.grid_spacing_pct:
                self.grid = adjust_grid_for_volatility(self.grid, atr_pct, self.profile.min_grid_spacing_pct)

        orders: List[OrderMessage] = []
        breakout = self._detect_breakout()
        if breakout is not None:
            order = await self._place_breakout(breakout)
            if order:
                orders.append(order)
        elif self.grid_enabled:
            orders.extend(await self._place_grid_orders(signal.price))
        return orders

    def _detect_breakout(self) -> Optional[BreakoutSignal]:
        strategy = self.config.strategy
        if not self.breakout_enabled or len(self.candles) < strategy.breakout_lookback:
            return None
        breakout = detect_breakout(self.candles, strategy.breakout_lookback,
                                   strategy.breakout_volume_multiplier,
                                   strategy.breakout_atr_stop_multiplier)
        if breakout is None:
            return None
        if breakout.confidence < strategy.min_confidence:
            logger.info(f"Breakout {breakout.direction} below min confidence "
                        f"({breakout.confidence:.2f} < {strategy.min_confidence})")
            return None
        return breakout

    async def _place_breakout(self, breakout: BreakoutSignal) -> Optional[OrderMessage]:
        proposed = ProposedOrder(
            action="buy" if breakout.direction == "long" else "sell",
            price=breakout.entry_price,
            quantity=self.config.grid.capital_usd * BREAKOUT_CAPITAL_SHARE / breakout.entry_price,
            pair=self.config.grid.pair,
        )
        return await self._submit(proposed, strategy="breakout",
                                  stop_loss=breakout.stop_loss,
                                  take_profit=breakout.take_profit,
                                  metadata={"breakout_reason": breakout.reason,
                                            "confidence": breakout.confidence})

    async def _place_grid_orders(self, price: float) -> List[OrderMessage]:
        orders = []
        for level in self.grid:
            if level.filled:
                continue
            triggered = ((level.side == "buy" and price <= level.price) or
                         (level.side == "sell" and price >= level.price))
            if not triggered:
                continue
            proposed = ProposedOrder(action=level.side, price=level.price,
                                     quantity=level.quantity, pair=self.config.grid.pair)
            order = await self._submit(proposed, strategy="grid", grid_level=level.index)
            if order:
                level.filled = True
                orders.append(order)
        return orders

    async def _submit(self, proposed: ProposedOrder, strategy: str, **extra) -> Optional[OrderMessage]:
        check = self.risk.check_trade_allowed(proposed, self.portfolio)
        if not check.allowed:
            logger.warning(f"{strategy.capitalize()} order blocked by risk manager: {check.reason}")
            if self.audit:
                self.audit.log_event("RISK_REJECTED", {"strategy": strategy, "reason": check.reason,
                                                       **proposed.model_dump()})
            return None

        quantity = check.adjusted_quantity if check.adjusted_quantity is not None else proposed.quantity
        metadata = dict(extra.pop("metadata", {}))
        if proposed.price * quantity > self.profile.confirmation_threshold_usd:
            metadata["requires_confirmation"] = True

        order = OrderMessage(
            pair=proposed.pair,
            action=proposed.action,
            price=proposed.price,
            quantity=quantity,
            slippage_bps=self.profile.max_slippage_bps,
            strategy=strategy,
            metadata=metadata,
            **extra,
        )
        await self.bus.publish(Channel.ORDERS, order)
        # optimistic until the executor's snapshot arrives
        self.portfolio.open_position_count += 1

        logger.info(f"{strategy.capitalize()} order published: {order.action} {order.quantity:.6f} "
                    f"@ {order.price} (level {order.grid_level}, id {order.order_id})")
        if self.audit:
            self.audit.log_event("ORDER_PUBLISHED", order.model_dump(mode="json"))
        return order

    async def _check_kill_switch(self) -> KillSwitchDecision:
        """Alerts once per escalation; the level only drops on resume."""
        decision = self.risk.check_kill_switch(self.portfolio)
        if KILL_SWITCH_SEVERITY[decision.action] > KILL_SWITCH_SEVERITY[self.last_kill_action]:
            await self.bus.publish(Channel.RISK_ALERTS, self._alert_for(decision))
            logger.error(f"Risk alert published: {decision.action} ({decision.reason})")
            log_event("KILL_SWITCH", {"action": decision.action, "reason": decision.reason})
            if self.audit:
                self.audit.log_event("KILL_SWITCH", decision.model_dump())
            self.last_kill_action = decision.action

        if decision.action != "none" and not self.paused:
            self.paused = True
            logger.warning(f"Optimizer halted new orders: {decision.reason}")
        return decision

    def _alert_for(self, decision: KillSwitchDecision) -> RiskAlertMessage:
        if decision.action == "shutdown":
            severity, alert_type, threshold = "critical", "kill_switch", self.profile.max_drawdown_pct
        elif decision.action == "exit_all":
            severity, alert_type, threshold = "critical", "daily_loss_limit", self.profile.daily_loss_limit_pct
        else:
            severity, alert_type, threshold = "warning", "drawdown_warning", self.profile.max_drawdown_pct
        return RiskAlertMessage(
            severity=severity,
            alert_type=alert_type,
            message=decision.reason,
            current_drawdown=self.portfolio.current_drawdown_pct,
            threshold=threshold,
            action=decision.action,
        )

    async def on_execution(self, execution: ExecutionMessage):
        if execution.status != "confirmed":
            return
        snapshot = self.bus.get_state(PORTFOLIO_KEY, "portfolio")
        if snapshot:
            self.portfolio = PortfolioState(**snapshot)
            logger.info(f"Portfolio state updated from executor: capital={self.portfolio.total_capital} "
                        f"drawdown={self.portfolio.current_drawdown_pct}% "
                        f"daily={self.portfolio.daily_pnl_pct}% open={self.portfolio.open_position_count}")
            await self._check_kill_switch()

    async def on_command(self, command: CommandMessage):
        if command.command == "pause":
            self.paused = True
            logger.warning("Trading PAUSED by command")
        elif command.command == "resume":
            self.paused = False
            self.last_kill_action = "none"
            logger.info("Trading RESUMED by command")
        elif command.command == "status":
            logger.info(f"Optimizer status: paused={self.paused} grid_levels={len(self.grid)} "
                        f"filled={sum(l.filled for l in self.grid)} portfolio={self.portfolio.model_dump()}")

    async def _dispatch(self, message):
        if isinstance(message, SignalMessage):
            await self.on_signal(message)
        elif isinstance(message, ExecutionMessage):
            await self.on_execution(message)
        elif isinstance(message, CommandMessage):
            await self.on_command(message)

    async def send_heartbeat(self):
        await self.bus.publish(Channel.HEARTBEAT, self.health.heartbeat())

    async def run(self):
        logger.info(f"Optimizer ready: pair={self.config.grid.pair} capital={self.config.grid.capital_usd} "
                    f"levels={self.config.grid.grid_levels} profile={self.profile.name} "
                    f"mode={self.config.strategy.mode}")
        await asyncio.gather(
            consume(self.signals, self._dispatch),
            consume(self.executions, self._dispatch),
            consume(self.commands, self._dispatch),
        )
