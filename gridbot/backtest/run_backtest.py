import asyncio
import sys
import pandas as pd
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional

from gridbot.core.config import Config, ConfigError
from gridbot.core.logger import setup_logging, logging
from gridbot.backtest.data_loader import load_candles_csv
from gridbot.backtest.metrics import save_metrics
from gridbot.backtest.runner import GridReplay
from gridbot.modules.market.mock_provider import MockPriceFeed

logger = logging.getLogger("backtest")


def run_main(config_path: Optional[Path] = None, output_parent_dir: Optional[Path] = None) -> Path:
    config = Config(config_path)
    bot = config.bot_config()
    bt_cfg = config.get("backtest", {})
    setup_logging(config.system.get("log_level", "INFO"), config.system.get("log_dir", "logs"))

    csv_path = bt_cfg.get("candles_csv")
    if csv_path:
        candles = load_candles_csv(Path(csv_path))
    else:
        mock = config.data.get("mock", {})
        feed = MockPriceFeed(start_price=mock.get("start_price", 150.0), seed=mock.get("seed", 42))
        candles = asyncio.run(feed.get_historical_ohlcv(bot.token_pair.base.mint, bt_cfg.get("days", 7)))

    if not candles:
        raise ValueError("No candles available for backtest")

    run_id = f"run_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}"
    output_dir = (output_parent_dir or Path(bt_cfg.get("output_dir", "logs/backtests"))) / run_id
    output_dir.mkdir(parents=True, exist_ok=True)

    replay = GridReplay(bot.grid, bot.profile, bot.annualization_factor)
    result = replay.run(candles)

    pd.DataFrame(replay.equity_curve).to_csv(output_dir / "equity.csv", index=False)
    pd.DataFrame([f.model_dump() for f in result.grid_fills]).to_csv(output_dir / "fills.csv", index=False)
    save_metrics(result.model_dump(exclude={"grid_fills"}), output_dir / "metrics.json")

    logger.info(f"Backtest results in {output_dir}")
    return output_dir


if __name__ == "__main__":
    try:
        run_main()
    except (ConfigError, ValueError) as e:
        logging.getLogger("backtest").error(f"Backtest aborted: {e}")
        sys.exit(1)
