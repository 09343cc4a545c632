"""
Network Partition - Logging.

Timestamped log stream with the levels INFO, WARN, ERROR and SUCCESS.
SUCCESS sits between INFO and WARNING so it survives an INFO threshold.
"""

import json
import logging
import sys
from typing import Optional


SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")
logging.addLevelName(logging.WARNING, "WARN")


def log_success(logger: logging.Logger, message: str, *args, **kwargs) -> None:
    """Log a completed destructive or restorative step."""
    if logger.isEnabledFor(SUCCESS):
        logger.log(SUCCESS, message, *args, **kwargs)


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        pod = getattr(record, "pod", None)
        if pod is not None:
            payload["pod"] = pod
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True)


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    stream: Optional[object] = None,
) -> logging.Logger:
    """
    Set up the log stream.

    Args:
        level: Log level
        log_format: Output format (text or json)
        stream: Output stream (default: stdout)

    Returns:
        The package logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)-7s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("network_partition")
