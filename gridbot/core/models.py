from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional, Literal
from datetime import datetime, timezone
from uuid import uuid4

Side = Literal["buy", "sell"]
SignalDirection = Literal["buy", "sell", "neutral"]
Recommendation = Literal["strong_buy", "buy", "neutral", "sell", "strong_sell"]
KillSwitchAction = Literal["none", "pause", "exit_all", "shutdown"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Candle(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


class IndicatorConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    default_params: Dict[str, float]
    min_candles: int
    timeframe: str = "15m"


class IndicatorOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    signal: SignalDirection
    confidence: float = Field(ge=0.0, le=1.0)
    values: Dict[str, float] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Consensus(BaseModel):
    signal: Recommendation
    confidence: float
    buy_count: int
    sell_count: int
    neutral_count: int


class ConsensusResult(BaseModel):
    indicators: Dict[str, IndicatorOutput]
    consensus: Consensus


class GridLevel(BaseModel):
    # Mutable: `filled` flips in place when the level triggers.
    index: int
    price: float
    side: Side
    quantity: float
    filled: bool = False


class RiskProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    max_drawdown_pct: float
    max_position_pct: float
    max_open_positions: int
    daily_loss_limit_pct: float
    min_grid_spacing_pct: float
    max_slippage_bps: float
    confirmation_threshold_usd: float
    max_api_failures: int


class TokenInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str
    mint: str
    decimals: int


class TokenPair(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    base: TokenInfo
    quote: TokenInfo
    birdeye_address: Optional[str] = None


class PortfolioState(BaseModel):
    total_capital: float
    current_drawdown_pct: float = 0.0
    daily_pnl_pct: float = 0.0
    open_position_count: int = 0
    open_position_value: float = 0.0


class ProposedOrder(BaseModel):
    action: Side
    price: float
    quantity: float
    pair: str

    @property
    def notional(self) -> float:
        return self.price * self.quantity


class RiskCheck(BaseModel):
    allowed: bool
    reason: str
    adjusted_quantity: Optional[float] = None


class KillSwitchDecision(BaseModel):
    triggered: bool
    action: KillSwitchAction
    reason: str


class BreakoutSignal(BaseModel):
    direction: Literal["long", "short"]
    entry_price: float
    stop_loss: float
    take_profit: float
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str


class PaperFill(BaseModel):
    order_id: str = ""
    fill_price: float
    fill_quantity: float
    fees: float
    slippage_bps: float
    timestamp: datetime = Field(default_factory=utc_now)


class OpenPosition(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    order_id: Optional[str] = None
    side: Side
    entry_price: float
    quantity: float
    entry_time: datetime
    fees: float = 0.0
    grid_level: Optional[int] = None
    strategy: str = "grid"


class ClosedTrade(BaseModel):
    id: str
    entry_order_id: Optional[str] = None
    exit_order_id: Optional[str] = None
    side: Side
    entry_price: float
    exit_price: float
    quantity: float
    pnl: float
    pnl_pct: float
    fees: float
    entry_time: datetime
    exit_time: datetime
    strategy: str = "grid"

    @property
    def duration_s(self) -> float:
        return (self.exit_time - self.entry_time).total_seconds()


class PortfolioSummary(BaseModel):
    initial_capital: float
    current_capital: float
    total_pnl: float
    total_pnl_pct: float
    daily_pnl: float
    daily_pnl_pct: float
    total_trades: int
    winning_trades: int
    win_rate: float
    open_positions: int
    open_position_value: float
    recent_trades: List[ClosedTrade] = Field(default_factory=list)


class GridFill(BaseModel):
    timestamp: datetime
    level_index: int
    side: Side
    price: float
    quantity: float


class BacktestResult(BaseModel):
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    total_pnl: float
    total_pnl_pct: float
    max_drawdown: float
    sharpe_ratio: float
    grid_fills: List[GridFill] = Field(default_factory=list)
