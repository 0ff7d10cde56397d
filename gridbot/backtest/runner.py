import pandas as pd
from typing import Dict, List, Optional, Sequence
from gridbot.core.config import GridConfig
from gridbot.core.logger import logging
from gridbot.core.mathutils import calculate_pnl
from gridbot.core.models import BacktestResult, Candle, GridFill, PortfolioState, ProposedOrder, RiskProfile
from gridbot.backtest.metrics import DEFAULT_ANNUALIZATION, MetricsEngine
from gridbot.modules.grid.calculator import calculate_grid_levels
from gridbot.modules.risk.manager import RiskManager

logger = logging.getLogger(__name__)


class GridReplay:
    """
    Deterministic replay of one grid over historical candles.

    The grid is built from the first candle's close and never re-centered.
    Buy levels fill when a later candle's low reaches them and sell levels
    when its high does; each sell closes the open buy nearest the center.
    Buys go through the risk manager against the replay's own portfolio.
    """
    def __init__(self, config: GridConfig, profile: RiskProfile,
                 annualization_factor: float = DEFAULT_ANNUALIZATION):
        self.config = config
        self.risk = RiskManager(profile)
        self.annualization_factor = annualization_factor

        self.equity = config.capital_usd
        self.peak_equity = self.equity
        self.day: Optional[str] = None
        self.day_start_equity = self.equity

        self.open_buys: Dict[int, Dict[str, float]] = {}
        self.trades: List[Dict[str, float]] = []
        self.fills: List[GridFill] = []
        self.equity_curve: List[Dict] = []

    def portfolio_state(self) -> PortfolioState:
        drawdown = (self.peak_equity - self.equity) / self.peak_equity * 100 if self.peak_equity > 0 else 0.0
        daily = (self.equity - self.day_start_equity) / self.day_start_equity * 100 if self.day_start_equity > 0 else 0.0
        return PortfolioState(
            total_capital=self.equity,
            current_drawdown_pct=max(0.0, drawdown),
            daily_pnl_pct=daily,
            open_position_count=len(self.open_buys),
            open_position_value=sum(b["price"] * b["quantity"] for b in self.open_buys.values()),
        )

    def _roll_day(self, candle: Candle):
        day = candle.timestamp.strftime("%Y-%m-%d")
        if day != self.day:
            self.day = day
            self.day_start_equity = self.equity

    def _fill_buy(self, level, candle: Candle) -> bool:
        proposed = ProposedOrder(action="buy", price=level.price, quantity=level.quantity, pair=self.config.pair)
        check = self.risk.check_trade_allowed(proposed, self.portfolio_state())
        if not check.allowed:
            return False
        quantity = check.adjusted_quantity if check.adjusted_quantity is not None else level.quantity
        self.open_buys[level.index] = {"price": level.price, "quantity": quantity}
        self.fills.append(GridFill(timestamp=candle.timestamp, level_index=level.index,
                                   side="buy", price=level.price, quantity=quantity))
        return True

    def _fill_sell(self, level, candle: Candle):
        quantity = 0.0
        if self.open_buys:
            # closest to center: buy indices are negative
            nearest = max(self.open_buys)
            buy = self.open_buys.pop(nearest)
            pnl, _ = calculate_pnl("buy", buy["price"], level.price, buy["quantity"])
            self.equity += pnl
            quantity = buy["quantity"]
            self.trades.append({"buy_price": buy["price"], "sell_price": level.price,
                                "quantity": quantity, "pnl": pnl})
        self.fills.append(GridFill(timestamp=candle.timestamp, level_index=level.index,
                                   side="sell", price=level.price, quantity=quantity or level.quantity))

    def run(self, candles: Sequence[Candle]) -> BacktestResult:
        if not candles:
            raise ValueError("Cannot backtest with zero candles")

        logger.info(f"Starting backtest: {len(candles)} candles, pair={self.config.pair}, "
                    f"capital={self.config.capital_usd}, levels={self.config.grid_levels}")

        grid = calculate_grid_levels(candles[0].close, self.config.grid_spacing_pct,
                                     self.config.grid_levels, self.config.capital_usd)
        self._roll_day(candles[0])
        self.equity_curve.append({"timestamp": candles[0].timestamp, "equity": self.equity})

        for candle in candles[1:]:
            self._roll_day(candle)
            for level in grid:
                if level.filled:
                    continue
                if level.side == "buy" and candle.low <= level.price:
                    level.filled = self._fill_buy(level, candle)
                elif level.side == "sell" and candle.high >= level.price:
                    self._fill_sell(level, candle)
                    level.filled = True

            self.peak_equity = max(self.peak_equity, self.equity)
            self.equity_curve.append({"timestamp": candle.timestamp, "equity": self.equity})

        metrics = MetricsEngine(pd.DataFrame(self.trades, columns=["buy_price", "sell_price", "quantity", "pnl"]),
                                pd.DataFrame(self.equity_curve),
                                self.annualization_factor).calculate_all()

        result = BacktestResult(
            total_trades=metrics["total_trades"],
            winning_trades=metrics["winning_trades"],
            losing_trades=metrics["losing_trades"],
            win_rate=metrics["win_rate"],
            total_pnl=metrics["total_pnl"],
            total_pnl_pct=metrics["total_pnl_pct"],
            max_drawdown=metrics["max_drawdown"],
            sharpe_ratio=metrics["sharpe_ratio"],
            grid_fills=self.fills,
        )
        logger.info(f"Backtest complete: trades={result.total_trades} win_rate={result.win_rate:.2f}% "
                    f"pnl=${result.total_pnl:.2f} ({result.total_pnl_pct:.2f}%) "
                    f"max_dd={result.max_drawdown:.2f}% sharpe={result.sharpe_ratio:.2f}")
        return result


def run_backtest(candles: Sequence[Candle], config: GridConfig, profile: RiskProfile,
                 annualization_factor: float = DEFAULT_ANNUALIZATION) -> BacktestResult:
    return GridReplay(config, profile, annualization_factor).run(candles)
