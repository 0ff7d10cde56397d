from gridbot.core.models import KillSwitchDecision, PortfolioState, ProposedOrder, RiskCheck, RiskProfile
from gridbot.core.logger import logging

logger = logging.getLogger(__name__)

DRAWDOWN_WARNING_RATIO = 0.8
# kill-switch actions, least to most severe
KILL_SWITCH_SEVERITY = {"none": 0, "pause": 1, "exit_all": 2, "shutdown": 3}


class RiskManager:
    """
    Stateless gate over one immutable risk profile.
    Rejections are returned as decisions, never raised.
    """
    def __init__(self, profile: RiskProfile):
        self.profile = profile
        logger.info(
            f"Risk manager initialized: profile={profile.name} "
            f"max_dd={profile.max_drawdown_pct:g}% max_pos={profile.max_position_pct:g}% "
            f"daily_loss={profile.daily_loss_limit_pct:g}%"
        )

    def check_trade_allowed(self, order: ProposedOrder, state: PortfolioState) -> RiskCheck:
        profile = self.profile

        if state.current_drawdown_pct >= profile.max_drawdown_pct:
            return self._reject(order, "Kill switch: max drawdown exceeded")

        if state.daily_pnl_pct <= -profile.daily_loss_limit_pct:
            return self._reject(order, "Daily loss limit hit")

        if state.open_position_count >= profile.max_open_positions:
            return self._reject(order, "Max open positions reached")

        max_value = state.total_capital * (profile.max_position_pct / 100)
        if order.notional > max_value and order.price > 0:
            adjusted = max_value / order.price
            logger.warning(f"Position size exceeds limit: qty {order.quantity} -> {adjusted} "
                           f"({profile.max_position_pct:g}% of {state.total_capital})")
            return RiskCheck(
                allowed=True,
                reason="Position size adjusted to fit max position limit",
                adjusted_quantity=adjusted,
            )

        logger.debug(f"Trade allowed: {order.action} {order.pair} value={order.notional}")
        return RiskCheck(allowed=True, reason="All risk checks passed")

    def check_kill_switch(self, state: PortfolioState) -> KillSwitchDecision:
        """
        Severity order: shutdown, pause, exit_all. Only the first match is reported.
        """
        profile = self.profile
        drawdown = state.current_drawdown_pct

        if drawdown >= profile.max_drawdown_pct:
            logger.error(f"KILL SWITCH: drawdown {drawdown:.2f}% >= {profile.max_drawdown_pct:g}%")
            return KillSwitchDecision(
                triggered=True,
                action="shutdown",
                reason=f"Max drawdown {drawdown:.2f}% exceeded limit {profile.max_drawdown_pct:g}%",
            )

        if drawdown >= profile.max_drawdown_pct * DRAWDOWN_WARNING_RATIO:
            logger.warning(f"Drawdown warning: {drawdown:.2f}% approaching {profile.max_drawdown_pct:g}%")
            return KillSwitchDecision(
                triggered=True,
                action="pause",
                reason=f"Drawdown {drawdown:.2f}% approaching limit {profile.max_drawdown_pct:g}%",
            )

        if state.daily_pnl_pct <= -profile.daily_loss_limit_pct:
            logger.error(f"Daily loss {state.daily_pnl_pct:.2f}% beyond -{profile.daily_loss_limit_pct:g}%")
            return KillSwitchDecision(
                triggered=True,
                action="exit_all",
                reason=f"Daily loss {state.daily_pnl_pct:.2f}% exceeded limit -{profile.daily_loss_limit_pct:g}%",
            )

        return KillSwitchDecision(triggered=False, action="none", reason="All risk thresholds within limits")

    def _reject(self, order: ProposedOrder, reason: str) -> RiskCheck:
        logger.warning(f"Risk Rejected: {order.action} {order.pair} | Reason: {reason}")
        return RiskCheck(allowed=False, reason=reason)
