from typing import List
from gridbot.core.models import GridLevel
from gridbot.core.mathutils import round_to
from gridbot.core.logger import logging

logger = logging.getLogger(__name__)


def calculate_grid_levels(center_price: float, spacing_pct: float, levels: int,
                          total_capital: float, quote_decimals: int = 6) -> List[GridLevel]:
    """
    Symmetric ladder: `levels` buys below and `levels` sells above center,
    each offset by spacing_pct * i (not compounded). Capital is split evenly
    per level on each side. Sorted ascending by price.
    """
    if levels <= 0:
        return []

    step = spacing_pct / 100
    per_level = total_capital / levels
    grid: List[GridLevel] = []

    for i in range(1, levels + 1):
        price = round_to(center_price * (1 - step * i), quote_decimals)
        grid.append(GridLevel(index=-i, price=price, side="buy",
                              quantity=round_to(per_level / price, 9) if price > 0 else 0.0))

    for i in range(1, levels + 1):
        price = round_to(center_price * (1 + step * i), quote_decimals)
        grid.append(GridLevel(index=i, price=price, side="sell",
                              quantity=round_to(per_level / price, 9)))

    return sorted(grid, key=lambda level: level.price)


def calculate_grid(current_price: float, spacing_pct: float, levels: int, capital: float) -> List[GridLevel]:
    grid = calculate_grid_levels(current_price, spacing_pct, levels, capital)
    logger.info(f"Generated {len(grid)} grid levels ({levels} buy + {levels} sell) around {current_price}")
    return grid


def measured_spacing_pct(grid: List[GridLevel]) -> float:
    """Spacing between the two lowest-priced levels, in percent."""
    ordered = sorted(grid, key=lambda level: level.price)
    if len(ordered) < 2 or ordered[0].price <= 0:
        return 0.0
    return (ordered[1].price - ordered[0].price) / ordered[0].price * 100


def adjust_grid_for_volatility(grid: List[GridLevel], atr_pct: float,
                               min_spacing_pct: float) -> List[GridLevel]:
    """
    Widens the grid when volatility outgrows its spacing.

    The ladder is rebuilt from scratch around the midpoint of the innermost
    buy and sell, so every fill flag is reset to False.
    """
    if not grid:
        return grid

    current = measured_spacing_pct(grid)
    target = max(atr_pct * 1.2, min_spacing_pct)
    if target <= current:
        logger.debug(f"Grid spacing {current:.2f}% adequate for ATR {atr_pct:.2f}%")
        return grid

    buys = [level for level in grid if level.side == "buy"]
    sells = [level for level in grid if level.side == "sell"]
    if not buys or not sells:
        return grid

    center = (max(l.price for l in buys) + min(l.price for l in sells)) / 2
    capital = sum(l.price * l.quantity for l in buys)
    adjusted = calculate_grid_levels(center, target, len(grid) // 2, capital)

    logger.warning(f"Grid widened for volatility: ATR {atr_pct:.2f}%, spacing {current:.2f}% -> {target:.2f}%")
    return adjusted
