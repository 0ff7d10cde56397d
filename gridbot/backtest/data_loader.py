import pandas as pd
from pathlib import Path
from typing import List
from gridbot.core.models import Candle
from gridbot.core.logger import logging
from gridbot.modules.market.feed import normalize_candles

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ["timestamp", "open", "high", "low", "close"]


def load_candles_csv(path: Path) -> List[Candle]:
    """
    Reads OHLCV rows from CSV. `timestamp` may be ISO text or unix seconds;
    volume defaults to 0 when the column is absent.
    """
    df = pd.read_csv(path)
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"{path} is missing columns: {', '.join(missing)}")

    if pd.api.types.is_numeric_dtype(df["timestamp"]):
        df["timestamp"] = pd.to_datetime(df["timestamp"], unit="s", utc=True)
    else:
        df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
    if "volume" not in df.columns:
        df["volume"] = 0.0

    candles = [
        Candle(timestamp=row.timestamp.to_pydatetime(), open=float(row.open), high=float(row.high),
               low=float(row.low), close=float(row.close), volume=float(row.volume))
        for row in df.itertuples(index=False)
    ]
    candles = normalize_candles(candles)
    logger.info(f"Loaded {len(candles)} candles from {path}")
    return candles
