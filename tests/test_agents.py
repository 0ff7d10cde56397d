import asyncio
import random
from datetime import datetime, timedelta, timezone

import pytest

from gridbot.core.config import BotConfig, GridConfig, StrategyConfig
from gridbot.core.interfaces import FeedError, PriceFeed
from gridbot.core.models import IndicatorOutput, PortfolioState
from gridbot.main import GridBot
from gridbot.modules.bus.bus import MessageBus
from gridbot.modules.bus.messages import Channel, CommandMessage, ExecutionMessage, OrderMessage, SignalMessage
from gridbot.modules.decision.optimizer import PORTFOLIO_KEY, OptimizerAgent
from gridbot.modules.execution.executor import ExecutorAgent
from gridbot.modules.indicators.engine import default_engine
from gridbot.modules.market.mock_provider import MockPriceFeed
from gridbot.modules.signals.agent import SignalAgent, flatten_indicators, should_publish
from tests.conftest import T0, candles_from_closes

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def grid_config(**overrides):
    settings = dict(
        grid=GridConfig(capital_usd=100.0, grid_levels=5, grid_spacing_pct=1.0, breakout_overlay=False),
        strategy=StrategyConfig(mode="grid"),
        risk_profile="high",
    )
    settings.update(overrides)
    return BotConfig(**settings)


def signal_at(price, recommendation="neutral", confidence=0.5, **metadata):
    return SignalMessage(pair="SOL/USDC", price=price, recommendation=recommendation,
                         confidence=confidence, metadata=metadata)


class DeadFeed(PriceFeed):
    async def get_current_price(self, asset_id):
        raise FeedError("feed down")

    async def get_historical_ohlcv(self, asset_id, days):
        raise FeedError("feed down")


# signal agent

def test_should_publish_thresholds():
    base = signal_at(100.0, "buy", 0.6)
    assert should_publish(base, None)
    assert not should_publish(signal_at(100.5, "buy", 0.7), base)
    assert should_publish(signal_at(100.0, "sell", 0.6), base)
    assert should_publish(signal_at(100.0, "buy", 0.8), base)
    assert should_publish(signal_at(101.5, "buy", 0.6), base)


def test_flatten_indicators():
    outputs = {"rsi": IndicatorOutput(signal="neutral", confidence=0.5, values={"rsi": 48.2}),
               "atr": IndicatorOutput(signal="neutral", confidence=0.5, values={"atr": 1.1, "atr_pct": 0.7})}
    assert flatten_indicators(outputs) == {"rsi_rsi": 48.2, "atr_atr": 1.1, "atr_atr_pct": 0.7}


def test_signal_cycle_publishes_once_for_unchanged_data():
    async def scenario():
        bus = MessageBus()
        signals = bus.subscribe(Channel.SIGNALS)
        heartbeats = bus.subscribe(Channel.HEARTBEAT)
        agent = SignalAgent(bus, MockPriceFeed(now=NOW), default_engine(), BotConfig())
        first = await agent.run_cycle()
        second = await agent.run_cycle()
        return first, second, signals.drain(), heartbeats.drain()

    first, second, published, heartbeats = asyncio.run(scenario())
    assert first is not None and second is not None
    assert len(published) == 1
    assert published[0].pair == "SOL/USDC"
    assert published[0].metadata["candle_count"] == 100
    assert published[0].metadata["candle"]["close"] == published[0].price
    assert "atr_atr_pct" in published[0].indicators
    assert len(heartbeats) == 2
    assert all(h.agent == "signal" and h.status == "alive" for h in heartbeats)


def test_signal_feed_failures_raise_one_alert():
    async def scenario():
        bus = MessageBus()
        alerts = bus.subscribe(Channel.RISK_ALERTS)
        heartbeats = bus.subscribe(Channel.HEARTBEAT)
        agent = SignalAgent(bus, DeadFeed(), default_engine(), BotConfig(risk_profile="low"))
        results = [await agent.run_cycle() for _ in range(4)]
        return results, alerts.drain(), heartbeats.drain(), agent.api_failures

    results, alerts, heartbeats, failures = asyncio.run(scenario())
    assert results == [None] * 4
    assert failures == 4
    assert len(alerts) == 1
    assert alerts[0].alert_type == "api_failure"
    assert alerts[0].action == "pause"
    assert len(heartbeats) == 4
    assert heartbeats[-1].status == "error"


def test_signal_agent_pause_and_resume():
    async def scenario():
        bus = MessageBus()
        agent = SignalAgent(bus, MockPriceFeed(now=NOW), default_engine(), BotConfig())
        await agent.on_command(CommandMessage(command="pause"))
        paused = await agent.run_cycle()
        await agent.on_command(CommandMessage(command="resume"))
        resumed = await agent.run_cycle()
        return paused, resumed

    paused, resumed = asyncio.run(scenario())
    assert paused is None
    assert resumed is not None


# optimizer

def test_grid_order_on_level_cross():
    async def scenario():
        bus = MessageBus()
        orders_sub = bus.subscribe(Channel.ORDERS)
        optimizer = OptimizerAgent(bus, grid_config())
        at_center = await optimizer.on_signal(signal_at(100.0))
        crossed = await optimizer.on_signal(signal_at(98.5))
        again = await optimizer.on_signal(signal_at(98.5))
        return optimizer, at_center, crossed, again, orders_sub.drain()

    optimizer, at_center, crossed, again, published = asyncio.run(scenario())
    assert len(optimizer.grid) == 10
    assert at_center == []
    [order] = crossed
    assert (order.action, order.price, order.grid_level, order.strategy) == ("buy", 99.0, -1, "grid")
    assert order.quantity == pytest.approx(20.0 / 99.0, rel=1e-6)
    assert order.slippage_bps == 100
    assert "requires_confirmation" not in order.metadata
    assert again == []
    assert [o.order_id for o in published] == [order.order_id]
    assert optimizer.portfolio.open_position_count == 1


def test_large_orders_need_confirmation():
    async def scenario():
        bus = MessageBus()
        config = grid_config(grid=GridConfig(capital_usd=1000.0, grid_levels=5, grid_spacing_pct=1.0,
                                             breakout_overlay=False))
        optimizer = OptimizerAgent(bus, config)
        await optimizer.on_signal(signal_at(100.0))
        return await optimizer.on_signal(signal_at(98.9))

    [order] = asyncio.run(scenario())
    assert order.metadata["requires_confirmation"] is True


def test_wide_atr_regrids():
    async def scenario():
        optimizer = OptimizerAgent(MessageBus(), grid_config())
        await optimizer.on_signal(SignalMessage(pair="SOL/USDC", price=100.0, recommendation="neutral",
                                                confidence=0.5, indicators={"atr_atr_pct": 3.0}))
        return optimizer.grid

    grid = asyncio.run(scenario())
    assert min(l.price for l in grid) == pytest.approx(100.0 * (1 - 0.036 * 5))


def test_kill_switch_alerts_once_and_pauses():
    async def scenario():
        bus = MessageBus()
        alerts = bus.subscribe(Channel.RISK_ALERTS)
        optimizer = OptimizerAgent(bus, grid_config())
        optimizer.portfolio = PortfolioState(total_capital=80.0, current_drawdown_pct=20.0)
        await optimizer.on_signal(signal_at(100.0))
        paused_orders = await optimizer.on_signal(signal_at(90.0))
        first = alerts.drain()
        await optimizer.on_command(CommandMessage(command="resume"))
        await optimizer.on_signal(signal_at(100.0))
        return optimizer, first, paused_orders, alerts.drain()

    optimizer, first, paused_orders, after_resume = asyncio.run(scenario())
    [alert] = first
    assert alert.severity == "critical"
    assert alert.alert_type == "kill_switch"
    assert alert.action == "shutdown"
    assert alert.threshold == 15
    assert paused_orders == []
    assert len(after_resume) == 1
    assert optimizer.paused


def test_kill_switch_escalates_while_paused():
    async def scenario():
        bus = MessageBus()
        alerts = bus.subscribe(Channel.RISK_ALERTS)
        optimizer = OptimizerAgent(bus, grid_config(risk_profile="low"))
        optimizer.portfolio = PortfolioState(total_capital=958.0, current_drawdown_pct=4.2)
        await optimizer.on_signal(signal_at(100.0))
        optimizer.portfolio = PortfolioState(total_capital=910.0, current_drawdown_pct=9.0)
        orders = await optimizer.on_signal(signal_at(100.0))
        await optimizer.on_signal(signal_at(100.0))
        return optimizer, orders, alerts.drain()

    optimizer, orders, published = asyncio.run(scenario())
    assert [a.action for a in published] == ["pause", "shutdown"]
    assert published[0].severity == "warning"
    assert published[1].severity == "critical"
    assert orders == []
    assert optimizer.last_kill_action == "shutdown"


def test_kill_switch_checked_on_execution_snapshot():
    async def scenario():
        bus = MessageBus()
        alerts = bus.subscribe(Channel.RISK_ALERTS)
        optimizer = OptimizerAgent(bus, grid_config(risk_profile="low"))
        optimizer.portfolio = PortfolioState(total_capital=958.0, current_drawdown_pct=4.2)
        await optimizer.on_signal(signal_at(100.0))
        bus.set_state(PORTFOLIO_KEY, "portfolio",
                      PortfolioState(total_capital=970.0, current_drawdown_pct=3.0,
                                     daily_pnl_pct=-3.5).model_dump())
        await optimizer.on_execution(ExecutionMessage(order_id="o-1", tx_ref="paper-o-1-0", status="confirmed"))
        return alerts.drain()

    published = asyncio.run(scenario())
    assert [a.action for a in published] == ["pause", "exit_all"]
    assert published[1].alert_type == "daily_loss_limit"


def test_breakout_overlay_places_breakout_order():
    candles = candles_from_closes([100.0] * 21 + [101.0])
    candles[-1] = candles[-1].model_copy(update={"volume": 5000.0})
    config = grid_config(grid=GridConfig(capital_usd=100.0, grid_levels=5, grid_spacing_pct=1.0,
                                         breakout_overlay=True),
                         strategy=StrategyConfig(mode="breakout"))

    async def scenario():
        optimizer = OptimizerAgent(MessageBus(), config)
        placed = []
        for c in candles:
            placed.extend(await optimizer.on_signal(signal_at(c.close, candle=c.model_dump(mode="json"))))
        return optimizer, placed

    optimizer, placed = asyncio.run(scenario())
    assert optimizer.grid == []
    [order] = placed
    assert order.strategy == "breakout"
    assert order.action == "buy"
    assert order.price == 101.0
    assert order.stop_loss < 101.0 < order.take_profit
    assert order.grid_level is None


def test_candle_with_same_timestamp_replaces_last():
    candle = candles_from_closes([100.0])[0]

    async def scenario():
        optimizer = OptimizerAgent(MessageBus(), grid_config())
        await optimizer.on_signal(signal_at(100.0, candle=candle.model_dump(mode="json")))
        updated = candle.model_copy(update={"close": 100.4})
        await optimizer.on_signal(signal_at(100.4, candle=updated.model_dump(mode="json")))
        return optimizer.candles

    [kept] = asyncio.run(scenario())
    assert kept.close == 100.4


# executor

def order(action, price, qty, **extra):
    return OrderMessage(pair="SOL/USDC", action=action, price=price, quantity=qty,
                        slippage_bps=50, strategy="grid", **extra)


def test_executor_fills_and_persists_before_publishing():
    async def scenario():
        bus = MessageBus()
        executions = bus.subscribe(Channel.EXECUTIONS)
        executor = ExecutorAgent(bus, grid_config(), rng=random.Random(3))
        optimizer = OptimizerAgent(bus, grid_config())
        buy = order("buy", 99.0, 0.2, grid_level=-1)
        first = await executor.on_order(buy)
        await optimizer.on_execution(first)
        sell = order("sell", 101.0, 0.2, grid_level=1)
        second = await executor.on_order(sell)
        return buy, first, second, executions.drain(), bus, optimizer

    buy, first, second, published, bus, optimizer = asyncio.run(scenario())
    assert first.status == "confirmed"
    assert first.order_id == buy.order_id
    assert first.tx_ref.startswith(f"paper-{buy.order_id}-")
    assert first.fill_price >= 99.0
    assert first.metadata["closed_trades"] == []
    assert optimizer.portfolio.open_position_count == 1

    [trade] = second.metadata["closed_trades"]
    assert trade["entry_order_id"] == buy.order_id
    assert [e.order_id for e in published] == [first.order_id, second.order_id]

    summary = bus.get_state(PORTFOLIO_KEY, "summary")
    assert summary["total_trades"] == 1
    assert bus.get_state(PORTFOLIO_KEY, "portfolio")["open_position_count"] == 0


def test_executor_skips_live_and_paused():
    async def scenario():
        bus = MessageBus()
        live = ExecutorAgent(bus, grid_config(paper_trade_mode=False))
        paper = ExecutorAgent(bus, grid_config())
        await paper.on_command(CommandMessage(command="pause"))
        return await live.on_order(order("buy", 99.0, 0.1)), await paper.on_order(order("buy", 99.0, 0.1))

    assert asyncio.run(scenario()) == (None, None)


def test_executor_daily_reset_on_new_utc_date():
    async def scenario():
        executor = ExecutorAgent(MessageBus(), grid_config(), now=T0)
        return executor.daily_reset(T0 + timedelta(hours=23)), executor.daily_reset(T0 + timedelta(days=1))

    assert asyncio.run(scenario()) == (False, True)


# wiring

def test_grid_bot_schedules_jobs_and_runs_first_cycle():
    async def scenario():
        bot = GridBot(BotConfig(), MockPriceFeed(now=NOW), rng=random.Random(1))
        await bot.start()
        job_ids = {job.id for job in bot.scheduler.get_jobs()}
        published = bot.signal.last_published
        snapshot = bot.bus.get_state(PORTFOLIO_KEY, "portfolio")
        await bot.stop()
        return job_ids, published, snapshot

    job_ids, published, snapshot = asyncio.run(scenario())
    assert job_ids == {"signal_cycle", "heartbeat_signal", "heartbeat_optimizer",
                       "heartbeat_executor", "daily_reset"}
    assert published is not None
    assert snapshot["total_capital"] == 50.0
