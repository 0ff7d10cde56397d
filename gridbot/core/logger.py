import logging
import json
import logging.config
from pathlib import Path
from datetime import datetime, timezone


class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_obj = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.module,
            "message": record.getMessage(),
        }
        if hasattr(record, "props"):
            log_obj.update(record.props)
        return json.dumps(log_obj)


def setup_logging(log_level: str = "INFO", log_dir: str = "logs"):
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
            },
            "json": {
                "()": JsonFormatter
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": "standard",
            },
            "file": {
                "class": "logging.FileHandler",
                "filename": str(directory / "gridbot.log"),
                "level": log_level,
                "formatter": "standard",
            },
            "events_file": {
                "class": "logging.FileHandler",
                "filename": str(directory / "events.json"),
                "level": "INFO",
                "formatter": "json",
            }
        },
        "root": {
            "handlers": ["console", "file"],
            "level": log_level,
        },
        "loggers": {
            # structured trading events: fills, alerts, kill switch
            "events": {
                "handlers": ["console", "events_file"],
                "level": "INFO",
                "propagate": False
            }
        }
    }

    logging.config.dictConfig(logging_config)
    logging.info("Logging initialized.")


def log_event(event_type: str, data: dict):
    """
    Emit a structured event on the `events` logger (JSON lines when configured).
    """
    logging.getLogger("events").info(event_type, extra={"props": {"event_type": event_type, **data}})
