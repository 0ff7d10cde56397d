import random
from datetime import datetime
from typing import List, Optional
from gridbot.core.logger import logging
from gridbot.core.mathutils import bps_to_decimal, calculate_pnl, round_to
from gridbot.core.models import (
    ClosedTrade, OpenPosition, PaperFill, PortfolioState, PortfolioSummary, utc_now
)
from gridbot.modules.bus.messages import OrderMessage

logger = logging.getLogger(__name__)

# Jupiter-like flat maker/taker fee
FEE_BPS = 25
RECENT_TRADES = 10
# below this a residual quantity is float noise, not a position
QTY_EPSILON = 1e-12


def simulate_fill(order: OrderMessage, rng: Optional[random.Random] = None,
                  fee_bps: float = FEE_BPS, now: Optional[datetime] = None) -> PaperFill:
    """
    Fill at the order price moved against us by a random slippage drawn from
    [-max/2, +max/2] of the order's slippage budget, then charge the flat fee.
    Stochastic unless a seeded `rng` is passed.
    """
    rng = rng or random.Random()
    max_slippage = bps_to_decimal(order.slippage_bps)
    slippage = (rng.random() - 0.5) * max_slippage

    direction = 1 if order.action == "buy" else -1
    fill_price = round_to(order.price * (1 + abs(slippage) * direction), 6)
    fee = round_to(fill_price * order.quantity * bps_to_decimal(fee_bps), 6)
    actual_bps = round_to(abs((fill_price - order.price) / order.price * 10_000), 1) if order.price else 0.0

    return PaperFill(
        order_id=order.order_id,
        fill_price=fill_price,
        fill_quantity=order.quantity,
        fees=fee,
        slippage_bps=actual_bps,
        timestamp=now or utc_now(),
    )


class PaperPortfolio:
    """
    Position book and P&L for paper trading.

    A fill works through the open positions on the opposite side oldest first
    (FIFO), closing each in turn until its quantity is used up. Whatever is
    left once no opposite-side inventory remains opens a new position. The
    book therefore never holds a long and a short together. A partly closed
    entry keeps its remainder open with the unused share of its fees.
    """
    def __init__(self, initial_capital: float, now: Optional[datetime] = None):
        self.initial_capital = initial_capital
        self.current_capital = initial_capital
        self.peak_capital = initial_capital
        self.daily_pnl = 0.0
        self.daily_start_capital = initial_capital
        self.day = (now or utc_now()).strftime("%Y-%m-%d")
        self.open_positions: List[OpenPosition] = []
        self.closed_trades: List[ClosedTrade] = []
        self.trade_count = 0
        self.win_count = 0
        logger.info(f"Paper portfolio initialized: ${initial_capital:.2f}")

    def process_execution(self, order: OrderMessage, fill: PaperFill) -> List[ClosedTrade]:
        """Returns the trades the fill closed, oldest entry first; empty when it only opened a position."""
        closed: List[ClosedTrade] = []
        remaining = fill.fill_quantity
        while remaining > QTY_EPSILON:
            idx = next((i for i, p in enumerate(self.open_positions) if p.side != order.action), None)
            if idx is None:
                break
            trade = self._close_position(idx, order, fill, remaining)
            closed.append(trade)
            remaining -= trade.quantity

        if remaining > QTY_EPSILON:
            fees = fill.fees * remaining / fill.fill_quantity if fill.fill_quantity else fill.fees
            self._open_position(order, remaining, fees, fill)
        return closed

    def _open_position(self, order: OrderMessage, quantity: float, fees: float, fill: PaperFill):
        pos = OpenPosition(
            order_id=fill.order_id or order.order_id,
            side=order.action,
            entry_price=fill.fill_price,
            quantity=quantity,
            entry_time=fill.timestamp,
            fees=fees,
            grid_level=order.grid_level,
            strategy=order.strategy,
        )
        self.open_positions.append(pos)
        logger.info(f"Opened {order.action.upper()} position: {quantity:.4f} @ ${fill.fill_price:.2f} "
                    f"(grid L{order.grid_level if order.grid_level is not None else '?'})")

    def _close_position(self, idx: int, order: OrderMessage, fill: PaperFill, available: float) -> ClosedTrade:
        entry = self.open_positions[idx]
        qty = min(entry.quantity, available)

        entry_fee = entry.fees * qty / entry.quantity if entry.quantity else entry.fees
        exit_fee = fill.fees * qty / fill.fill_quantity if fill.fill_quantity else fill.fees
        total_fees = entry_fee + exit_fee

        pnl, pnl_pct = calculate_pnl(entry.side, entry.entry_price, fill.fill_price, qty, total_fees)

        self.current_capital += pnl
        self.daily_pnl += pnl
        if self.current_capital > self.peak_capital:
            self.peak_capital = self.current_capital

        self.trade_count += 1
        if pnl > 0:
            self.win_count += 1

        trade = ClosedTrade(
            id=entry.id,
            entry_order_id=entry.order_id,
            exit_order_id=fill.order_id or order.order_id,
            side=entry.side,
            entry_price=entry.entry_price,
            exit_price=fill.fill_price,
            quantity=qty,
            pnl=round_to(pnl, 4),
            pnl_pct=round_to(pnl_pct, 2),
            fees=round_to(total_fees, 4),
            entry_time=entry.entry_time,
            exit_time=fill.timestamp,
            strategy=entry.strategy,
        )
        self.closed_trades.append(trade)

        residual_entry = entry.quantity - qty
        if residual_entry > QTY_EPSILON:
            self.open_positions[idx] = entry.model_copy(update={
                "quantity": residual_entry,
                "fees": entry.fees - entry_fee,
            })
        else:
            del self.open_positions[idx]

        sign = "+" if pnl >= 0 else ""
        logger.info(f"Closed {entry.side.upper()} trade: ${entry.entry_price:.2f} -> ${fill.fill_price:.2f} | "
                    f"P&L: {sign}${pnl:.4f} ({sign}{pnl_pct:.2f}%) | Fees: ${total_fees:.4f}")
        return trade

    def get_state(self) -> PortfolioState:
        """Snapshot the risk manager reads before approving new orders."""
        open_value = sum(p.entry_price * p.quantity for p in self.open_positions)
        drawdown = ((self.peak_capital - self.current_capital) / self.peak_capital * 100
                    if self.peak_capital > 0 else 0.0)
        daily_pct = (self.daily_pnl / self.daily_start_capital * 100
                     if self.daily_start_capital > 0 else 0.0)
        return PortfolioState(
            total_capital=round_to(self.current_capital, 2),
            current_drawdown_pct=round_to(max(0.0, drawdown), 2),
            daily_pnl_pct=round_to(daily_pct, 2),
            open_position_count=len(self.open_positions),
            open_position_value=round_to(open_value, 2),
        )

    def get_summary(self) -> PortfolioSummary:
        state = self.get_state()
        total_pnl = self.current_capital - self.initial_capital
        total_pct = total_pnl / self.initial_capital * 100 if self.initial_capital > 0 else 0.0
        win_rate = self.win_count / self.trade_count * 100 if self.trade_count else 0.0
        return PortfolioSummary(
            initial_capital=self.initial_capital,
            current_capital=round_to(self.current_capital, 2),
            total_pnl=round_to(total_pnl, 2),
            total_pnl_pct=round_to(total_pct, 2),
            daily_pnl=round_to(self.daily_pnl, 2),
            daily_pnl_pct=state.daily_pnl_pct,
            total_trades=self.trade_count,
            winning_trades=self.win_count,
            win_rate=round_to(win_rate, 1),
            open_positions=state.open_position_count,
            open_position_value=state.open_position_value,
            recent_trades=self.closed_trades[-RECENT_TRADES:],
        )

    def reset_daily_pnl(self):
        logger.info(f"Daily P&L reset. Previous: ${self.daily_pnl:.2f} | Capital: ${self.current_capital:.2f}")
        self.daily_pnl = 0.0
        self.daily_start_capital = self.current_capital

    def roll_day(self, now: Optional[datetime] = None) -> bool:
        """Reset the daily component when the UTC date string changes."""
        today = (now or utc_now()).strftime("%Y-%m-%d")
        if today == self.day:
            return False
        self.day = today
        self.reset_daily_pnl()
        return True
