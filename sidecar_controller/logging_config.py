"""
Logging configuration for the controller process.

Records can carry context through ``extra=`` (pod key, phase, container
counts, container name). The json format emits those fields next to the
message; the text format keeps the plain one-line layout.
"""

import json
import logging
import logging.config
from datetime import UTC, datetime
from typing import Any

# Attributes every LogRecord has; anything else came in through ``extra=``
_RESERVED = set(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, including any extra context fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for name, value in vars(record).items():
            if name not in _RESERVED and not name.startswith("_"):
                payload[name] = value
        if record.exc_info:
            payload["error"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class HealthCheckFilter(logging.Filter):
    """Filter to suppress probe requests from uvicorn access logs."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name == "uvicorn.access":
            message = record.getMessage()
            if "GET" in message and ("/healthz" in message or "/readyz" in message):
                return False
        return True


def get_logging_config(level: str = "INFO", fmt: str = "json") -> dict[str, Any]:
    """Get the dictConfig for the given level and format ("json" or "text")."""
    formatter = "json" if fmt == "json" else "default"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"health_check_filter": {"()": HealthCheckFilter}},
        "formatters": {
            "default": {"format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"},
            "json": {"()": JSONFormatter},
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": formatter,
                "stream": "ext://sys.stderr",
                "filters": ["health_check_filter"],
            },
        },
        "loggers": {
            "uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.access": {"handlers": ["default"], "level": "INFO", "propagate": False},
            # urllib3 debug output would include every watch chunk
            "urllib3": {"level": "WARNING"},
            "kubernetes": {"level": "WARNING"},
        },
        "root": {"level": level, "handlers": ["default"]},
    }


def setup_logging(level: str = "INFO", fmt: str = "json") -> None:
    logging.config.dictConfig(get_logging_config(level, fmt))
