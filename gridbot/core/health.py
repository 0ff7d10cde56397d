import time
from typing import Optional
from gridbot.core.audit import AuditLogger
from gridbot.core.logger import logging
from gridbot.modules.bus.messages import HeartbeatMessage

logger = logging.getLogger(__name__)


class HealthMonitor:
    """
    Liveness for one agent loop: uptime, last action and status for heartbeats,
    plus DATA_HEALTH audit records for the feed.
    """
    def __init__(self, agent: str, audit: Optional[AuditLogger] = None):
        self.agent = agent
        self.audit = audit
        self.started = time.monotonic()
        self.last_action: Optional[str] = None
        self.status = "alive"

    @property
    def uptime(self) -> float:
        return time.monotonic() - self.started

    def record(self, action: str, status: str = "alive"):
        self.last_action = action
        self.status = status

    def heartbeat(self) -> HeartbeatMessage:
        return HeartbeatMessage(
            agent=self.agent,
            status=self.status,
            uptime=round(self.uptime, 3),
            last_action=self.last_action,
        )

    def log_data_health(self, provider: str, status: str, last_candle_time: str,
                        candle_count: int, latency_ms: int, notes: str = ""):
        """
        Logs a DATA_HEALTH event to the audit log.
        """
        if status != "OK":
            logger.warning(f"Data health {status} from {provider}: {notes}")
        if self.audit is None:
            return
        self.audit.log_event("DATA_HEALTH", {
            "provider": provider,
            "status": status,  # OK | WARNING | ERROR
            "last_candle_time": last_candle_time,
            "candle_count": candle_count,
            "latency_ms": latency_ms,
            "notes": notes,
        })
