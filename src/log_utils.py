"""
Logging utilities for the fleet rollout coordinator.
"""

import json
import logging
import sys
from typing import Optional


class JsonFormatter(logging.Formatter):
    """Format each record as one JSON object per line (for Cloud Functions)."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "timestamp": self.formatTime(record),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(
    verbose: bool = False,
    log_file: Optional[str] = "rollout-events.log",
    structured: bool = False,
) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        verbose: Enable verbose (DEBUG) logging
        log_file: Path to log file, or None to log to stdout only
        structured: Emit one JSON object per record (for Cloud Functions)

    Returns:
        Logger instance
    """
    level = logging.DEBUG if verbose else logging.INFO

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    if structured:
        for handler in handlers:
            handler.setFormatter(JsonFormatter())

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )

    return logging.getLogger(__name__)
