"""Local diagnostic logging.

Telemetry failures must never be written to the sink they are about, so the
pipeline logs to the process itself:

- Console (stderr): every message at or above the configured level.
- File (JSONL, optional): only WARNING and above, with ISO 8601 UTC timestamps.
"""

from __future__ import annotations

__all__ = ["ConsoleFormatter", "ISO8601Formatter", "configure_diagnostics"]

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

LOGGER_NAME = "telemetry"


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for stderr."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        line = f"{record.levelname}: [{record.name}] {message}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class ISO8601Formatter(logging.Formatter):
    """JSONL formatter with ISO 8601 timestamps (UTC).

    Format: YYYY-MM-DDTHH:MM:SS.sssZ
    Example: 2025-12-04T10:48:37.123Z
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = (
            datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z")
        )
        entry = {
            "time": timestamp,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_diagnostics(level: str = "INFO", log_file: str | Path | None = None) -> logging.Logger:
    """Set up the `telemetry` logger hierarchy.

    Safe to call more than once: existing handlers are closed and replaced.

    Args:
        level: Logging level name for the console handler.
        log_file: Optional JSONL file receiving WARNING and above.

    Returns:
        logging.Logger: The configured `telemetry` logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level.upper())
    console.setFormatter(ConsoleFormatter())
    logger.addHandler(console)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.WARNING)
        file_handler.setFormatter(ISO8601Formatter())
        logger.addHandler(file_handler)

    return logger
