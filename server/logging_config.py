"""Structured logging configuration for the SurroundSync relay.

Provides key=value formatted logs carrying room, device and session context.
"""

import logging
import sys
from typing import Any

from server.config import get_config

# Contextual fields accepted through the ``extra=`` logging parameter
CONTEXT_FIELDS = ("room_id", "device_id", "session_id", "message_type", "latency_ms")


class StructuredFormatter(logging.Formatter):
    """Key=value structured log formatter with relay context."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as key=value pairs.

        Args:
            record: Log record to format

        Returns:
            Formatted log string
        """
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        pairs = [f"{k}={v}" for k, v in log_data.items()]
        return " ".join(pairs)


def setup_logging(level: str | None = None) -> None:
    """Configure structured logging for the application.

    Args:
        level: Optional level override; defaults to the configured log level
    """
    log_level = level or get_config().log_level

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, log_level))
    console_handler.setFormatter(StructuredFormatter(datefmt="%Y-%m-%dT%H:%M:%S"))
    root_logger.addHandler(console_handler)

    # Set library log levels
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("fastapi").setLevel(logging.INFO)
    logging.getLogger("websockets").setLevel(logging.WARNING)

    logging.getLogger("server").setLevel(getattr(logging, log_level))
    logging.getLogger("playback").setLevel(getattr(logging, log_level))


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given module name.

    Args:
        name: Module name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)
