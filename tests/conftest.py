# tests/conftest.py
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure project root is importable for all tests (CI runners may omit it).
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from gridbot.core.models import Candle, RiskProfile  # noqa: E402

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def candles_from_closes(closes, volume=1000.0, wick=0.5, start=T0):
    """One 15m candle per close; open is the previous close."""
    out = []
    for i, close in enumerate(closes):
        open_p = closes[i - 1] if i > 0 else close
        out.append(Candle(
            timestamp=start + timedelta(minutes=15 * i),
            open=open_p,
            high=max(open_p, close) + wick,
            low=min(open_p, close) - wick,
            close=close,
            volume=volume,
        ))
    return out


@pytest.fixture
def make_candles():
    return candles_from_closes


@pytest.fixture
def loose_profile():
    """Wide limits so risk checks never interfere unless a test wants them to."""
    return RiskProfile(
        name="Test",
        max_drawdown_pct=50,
        max_position_pct=100,
        max_open_positions=50,
        daily_loss_limit_pct=50,
        min_grid_spacing_pct=0.1,
        max_slippage_bps=50,
        confirmation_threshold_usd=1000,
        max_api_failures=2,
    )
