from enum import Enum
from typing import Any, Dict, Literal, Optional, Union
from datetime import datetime
from uuid import uuid4
from pydantic import BaseModel, Field, TypeAdapter
from typing_extensions import Annotated
from gridbot.core.models import Recommendation, Side, utc_now


class Channel(str, Enum):
    SIGNALS = "grid:signals"          # signal loop -> optimizer
    ORDERS = "grid:orders"            # optimizer -> executor
    EXECUTIONS = "grid:executions"    # executor -> all
    RISK_ALERTS = "grid:risk-alerts"  # optimizer -> all
    HEARTBEAT = "grid:heartbeat"
    COMMANDS = "grid:commands"        # operator -> agents


class SignalMessage(BaseModel):
    type: Literal["signal"] = "signal"
    timestamp: datetime = Field(default_factory=utc_now)
    pair: str
    price: float
    indicators: Dict[str, float] = Field(default_factory=dict)
    recommendation: Recommendation
    confidence: float
    metadata: Dict[str, Any] = Field(default_factory=dict)


class OrderMessage(BaseModel):
    type: Literal["order"] = "order"
    timestamp: datetime = Field(default_factory=utc_now)
    order_id: str = Field(default_factory=lambda: str(uuid4()))
    pair: str
    action: Side
    price: float
    quantity: float
    slippage_bps: float
    strategy: Literal["grid", "breakout", "momentum"]
    grid_level: Optional[int] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ExecutionMessage(BaseModel):
    type: Literal["execution"] = "execution"
    timestamp: datetime = Field(default_factory=utc_now)
    order_id: str
    tx_ref: str
    status: Literal["submitted", "confirmed", "failed", "rolled_back"]
    fill_price: Optional[float] = None
    fill_quantity: Optional[float] = None
    fees: Optional[float] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RiskAlertMessage(BaseModel):
    type: Literal["risk_alert"] = "risk_alert"
    timestamp: datetime = Field(default_factory=utc_now)
    severity: Literal["info", "warning", "critical"]
    alert_type: Literal["drawdown_warning", "drawdown_limit", "daily_loss_limit",
                        "kill_switch", "api_failure", "liquidity_drop"]
    message: str
    current_drawdown: Optional[float] = None
    threshold: Optional[float] = None
    action: Literal["notify", "pause", "exit_all", "shutdown"]


class HeartbeatMessage(BaseModel):
    type: Literal["heartbeat"] = "heartbeat"
    timestamp: datetime = Field(default_factory=utc_now)
    agent: Literal["signal", "optimizer", "executor", "telegram"]
    status: Literal["alive", "busy", "error"]
    uptime: float
    last_action: Optional[str] = None


class CommandMessage(BaseModel):
    type: Literal["command"] = "command"
    timestamp: datetime = Field(default_factory=utc_now)
    command: Literal["start", "stop", "pause", "resume", "status", "config"]
    args: Dict[str, Any] = Field(default_factory=dict)
    source: Literal["telegram", "terminal"] = "terminal"


BusMessage = Annotated[
    Union[SignalMessage, OrderMessage, ExecutionMessage,
          RiskAlertMessage, HeartbeatMessage, CommandMessage],
    Field(discriminator="type"),
]

bus_message_adapter: TypeAdapter = TypeAdapter(BusMessage)


def parse_message(data: str) -> BusMessage:
    """Raises pydantic.ValidationError on malformed or unknown payloads."""
    return bus_message_adapter.validate_json(data)
