import math
from typing import Tuple


def round_to(value: float, decimals: int) -> float:
    """
    Rounds halves toward +inf (0.5 -> 1, -0.5 -> 0).
    Python's round() rounds half to even, which shifts published values.
    """
    factor = 10 ** decimals
    return math.floor(value * factor + 0.5) / factor


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def bps_to_decimal(bps: float) -> float:
    return bps / 10_000


def calculate_pnl(side: str, entry_price: float, exit_price: float,
                  quantity: float, fees: float = 0.0) -> Tuple[float, float]:
    """
    Realized P&L of a round trip, net of fees.
    `side` is the entry side. Returns (pnl, pnl_pct) with pnl_pct
    normalized by entry notional.
    """
    if side == "buy":
        raw = (exit_price - entry_price) * quantity
    else:
        raw = (entry_price - exit_price) * quantity
    pnl = raw - fees
    notional = entry_price * quantity
    pnl_pct = pnl / notional * 100 if notional else 0.0
    return round_to(pnl, 6), round_to(pnl_pct, 2)
