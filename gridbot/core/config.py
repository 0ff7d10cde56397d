import os
import yaml
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field
from gridbot.core.models import RiskProfile, TokenInfo, TokenPair

PROJECT_ROOT = Path(__file__).parent.parent.parent


class ConfigError(Exception):
    """Unknown pair, unknown risk profile or a malformed config file. Fatal at startup."""


RISK_PROFILES: Dict[str, RiskProfile] = {
    "low": RiskProfile(
        name="Conservative",
        max_drawdown_pct=5,
        max_position_pct=10,
        max_open_positions=5,
        daily_loss_limit_pct=3,
        min_grid_spacing_pct=0.5,
        max_slippage_bps=50,
        confirmation_threshold_usd=20,
        max_api_failures=3,
    ),
    "medium": RiskProfile(
        name="Balanced",
        max_drawdown_pct=10,
        max_position_pct=20,
        max_open_positions=8,
        daily_loss_limit_pct=5,
        min_grid_spacing_pct=0.3,
        max_slippage_bps=75,
        confirmation_threshold_usd=50,
        max_api_failures=3,
    ),
    "high": RiskProfile(
        name="Aggressive",
        max_drawdown_pct=15,
        max_position_pct=30,
        max_open_positions=12,
        daily_loss_limit_pct=8,
        min_grid_spacing_pct=0.2,
        max_slippage_bps=100,
        confirmation_threshold_usd=100,
        max_api_failures=5,
    ),
}

TOKENS: Dict[str, TokenInfo] = {
    "SOL": TokenInfo(symbol="SOL", mint="So11111111111111111111111111111111111111112", decimals=9),
    "USDC": TokenInfo(symbol="USDC", mint="EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", decimals=6),
    "USDT": TokenInfo(symbol="USDT", mint="Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB", decimals=6),
}

PAIRS: Dict[str, TokenPair] = {
    "SOL/USDC": TokenPair(
        name="SOL/USDC",
        base=TOKENS["SOL"],
        quote=TOKENS["USDC"],
        birdeye_address="So11111111111111111111111111111111111111112",
    ),
}

ALL_INDICATORS = [
    "rsi", "ema", "atr", "macd", "bollinger", "supertrend",
    "smart-money-range", "fibo-volume-profile", "filtered-volume-profile",
    "trend-channels", "momentum-ghost",
]


def get_risk_profile(key: str) -> RiskProfile:
    profile = RISK_PROFILES.get(key)
    if profile is None:
        raise ConfigError(f"Unknown risk profile: {key}. Available: {', '.join(RISK_PROFILES)}")
    return profile


def get_pair(name: str) -> TokenPair:
    pair = PAIRS.get(name)
    if pair is None:
        raise ConfigError(f"Unknown pair: {name}. Available: {', '.join(PAIRS)}")
    return pair


class GridConfig(BaseModel):
    pair: str = "SOL/USDC"
    grid_levels: int = Field(7, ge=1)
    grid_spacing_pct: float = Field(1.0, gt=0)
    capital_usd: float = Field(50.0, gt=0)
    breakout_overlay: bool = True


class StrategyConfig(BaseModel):
    mode: Literal["grid", "breakout", "hybrid"] = "hybrid"
    min_confidence: float = Field(0.6, ge=0.0, le=1.0)
    active_indicators: List[str] = Field(default_factory=lambda: list(ALL_INDICATORS))
    breakout_lookback: int = Field(20, ge=2)
    breakout_volume_multiplier: float = 1.5
    breakout_atr_stop_multiplier: float = 1.5


class BotConfig(BaseModel):
    grid: GridConfig = Field(default_factory=GridConfig)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    risk_profile: str = "low"
    paper_trade_mode: bool = True
    signal_poll_interval_s: float = 30
    heartbeat_interval_s: float = 60
    candle_window: int = 100
    history_days: int = 2
    fee_bps: float = 25
    annualization_factor: float = 365

    @property
    def profile(self) -> RiskProfile:
        return get_risk_profile(self.risk_profile)

    @property
    def token_pair(self) -> TokenPair:
        return get_pair(self.grid.pair)

    def validate_keys(self) -> "BotConfig":
        """Raises ConfigError on an unknown pair or risk profile."""
        get_risk_profile(self.risk_profile)
        get_pair(self.grid.pair)
        return self


class Config:
    """
    Raw settings from config.yaml, with .env loaded into the environment first.
    """
    def __init__(self, config_path: Optional[Path] = None):
        self._config: Dict[str, Any] = {}
        self.config_path = Path(config_path) if config_path else PROJECT_ROOT / "config.yaml"
        self._load_config()

    def _load_config(self):
        env_path = PROJECT_ROOT / ".env"
        if env_path.exists():
            from dotenv import load_dotenv
            load_dotenv(env_path)

        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found at {self.config_path}")

        with open(self.config_path, "r") as f:
            self._config = yaml.safe_load(f) or {}

    @property
    def system(self) -> Dict[str, Any]:
        return self._config.get("system", {})

    @property
    def grid(self) -> Dict[str, Any]:
        return self._config.get("grid", {})

    @property
    def strategy(self) -> Dict[str, Any]:
        return self._config.get("strategy", {})

    @property
    def execution(self) -> Dict[str, Any]:
        return self._config.get("execution", {})

    @property
    def data(self) -> Dict[str, Any]:
        return self._config.get("data", {})

    def get(self, key: str, default=None) -> Any:
        return self._config.get(key, default)

    def bot_config(self) -> BotConfig:
        """Typed settings; environment variables win over the yaml file."""
        system = self.system
        paper = os.getenv("PAPER_TRADE_MODE")
        try:
            bot = BotConfig(
                grid=GridConfig(**self.grid),
                strategy=StrategyConfig(**self.strategy),
                risk_profile=os.getenv("DEFAULT_RISK_PROFILE", system.get("risk_profile", "low")),
                paper_trade_mode=(paper.lower() != "false") if paper is not None
                else system.get("paper_trade_mode", True),
                signal_poll_interval_s=system.get("signal_poll_interval_s", 30),
                heartbeat_interval_s=system.get("heartbeat_interval_s", 60),
                candle_window=self.data.get("candle_window", 100),
                history_days=self.data.get("history_days", 2),
                fee_bps=self.execution.get("fee_bps", 25),
                annualization_factor=self.get("backtest", {}).get("annualization_factor", 365),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid configuration in {self.config_path}: {e}") from e
        return bot.validate_keys()
