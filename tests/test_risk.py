import pytest

from gridbot.core.config import get_risk_profile
from gridbot.core.models import PortfolioState, ProposedOrder
from gridbot.modules.risk.manager import RiskManager


@pytest.fixture
def manager():
    return RiskManager(get_risk_profile("low"))


def order(qty=0.1, price=50.0):
    return ProposedOrder(action="buy", price=price, quantity=qty, pair="SOL/USDC")


def test_small_order_passes(manager):
    check = manager.check_trade_allowed(order(), PortfolioState(total_capital=1000))
    assert check.allowed
    assert check.reason == "All risk checks passed"
    assert check.adjusted_quantity is None


def test_oversized_order_is_scaled_down(manager):
    check = manager.check_trade_allowed(order(qty=4), PortfolioState(total_capital=1000))
    assert check.allowed
    assert check.reason == "Position size adjusted to fit max position limit"
    assert check.adjusted_quantity == pytest.approx(2.0)


@pytest.mark.parametrize("state, reason", [
    (PortfolioState(total_capital=1000, current_drawdown_pct=5), "Kill switch: max drawdown exceeded"),
    (PortfolioState(total_capital=1000, daily_pnl_pct=-3), "Daily loss limit hit"),
    (PortfolioState(total_capital=1000, open_position_count=5), "Max open positions reached"),
])
def test_rejections(manager, state, reason):
    check = manager.check_trade_allowed(order(), state)
    assert not check.allowed
    assert check.reason == reason


def test_drawdown_checked_before_daily_loss(manager):
    state = PortfolioState(total_capital=1000, current_drawdown_pct=6, daily_pnl_pct=-4)
    assert manager.check_trade_allowed(order(), state).reason == "Kill switch: max drawdown exceeded"


def test_kill_switch_quiet(manager):
    decision = manager.check_kill_switch(PortfolioState(total_capital=1000, current_drawdown_pct=1))
    assert not decision.triggered
    assert decision.action == "none"


def test_kill_switch_shutdown(manager):
    decision = manager.check_kill_switch(PortfolioState(total_capital=1000, current_drawdown_pct=5.5))
    assert decision.triggered
    assert decision.action == "shutdown"
    assert decision.reason == "Max drawdown 5.50% exceeded limit 5%"


def test_kill_switch_pause_near_limit(manager):
    decision = manager.check_kill_switch(PortfolioState(total_capital=1000, current_drawdown_pct=4.2))
    assert decision.action == "pause"


def test_kill_switch_daily_loss(manager):
    decision = manager.check_kill_switch(PortfolioState(total_capital=1000, daily_pnl_pct=-3.5))
    assert decision.action == "exit_all"


def test_pause_outranks_daily_loss(manager):
    state = PortfolioState(total_capital=1000, current_drawdown_pct=4.5, daily_pnl_pct=-10)
    assert manager.check_kill_switch(state).action == "pause"


def test_shutdown_outranks_daily_loss(manager):
    state = PortfolioState(total_capital=1000, current_drawdown_pct=7, daily_pnl_pct=-6)
    assert manager.check_kill_switch(state).action == "shutdown"
