import json
import math
import pandas as pd
import numpy as np
from pathlib import Path
from typing import Dict, Any

DEFAULT_ANNUALIZATION = 365


class MetricsEngine:
    """
    Performance statistics over a backtest's closed trades and per-candle equity.

    Sharpe treats every candle as one period and annualizes by
    sqrt(annualization_factor). With the default of 365 a 15m series is
    annualized as if each bar were a day; pass 365 * 96 for a per-bar
    annualization of 15m data.
    """
    def __init__(self, trades_df: pd.DataFrame, equity_df: pd.DataFrame,
                 annualization_factor: float = DEFAULT_ANNUALIZATION):
        self.trades = trades_df
        self.equity = equity_df
        self.annualization_factor = annualization_factor

    def calculate_all(self) -> Dict[str, Any]:
        total = int(len(self.trades))
        wins = int((self.trades['pnl'] > 0).sum()) if total else 0
        start = float(self.equity['equity'].iloc[0]) if not self.equity.empty else 0.0
        final = float(self.equity['equity'].iloc[-1]) if not self.equity.empty else 0.0
        total_pnl = final - start

        return {
            "total_trades": total,
            "winning_trades": wins,
            "losing_trades": total - wins,
            "win_rate": wins / total * 100 if total else 0.0,
            "total_pnl": total_pnl,
            "total_pnl_pct": total_pnl / start * 100 if start else 0.0,
            "max_drawdown": float(self._calculate_max_drawdown_pct()),
            "sharpe_ratio": float(self._calculate_sharpe()),
            "equity_final": final,
        }

    def _returns_pct(self) -> pd.Series:
        return self.equity['equity'].pct_change().dropna() * 100

    def _calculate_max_drawdown_pct(self) -> float:
        if self.equity.empty:
            return 0.0
        equity = self.equity['equity']
        rolling_max = equity.cummax()
        drawdown_pct = (rolling_max - equity) / rolling_max * 100
        return drawdown_pct.max()

    def _calculate_sharpe(self) -> float:
        returns = self._returns_pct()
        if len(returns) < 2:
            return 0.0
        std = returns.std(ddof=0)
        if np.isnan(std) or std < 1e-12:
            return 0.0
        return returns.mean() / std * math.sqrt(self.annualization_factor)


class MetricsEncoder(json.JSONEncoder):
    def default(self, obj):
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, pd.Timestamp):
            return obj.isoformat()
        return super(MetricsEncoder, self).default(obj)


def save_metrics(metrics: Dict[str, Any], output_path: Path):
    with open(output_path, 'w') as f:
        json.dump(metrics, f, indent=2, cls=MetricsEncoder)
