"""Logging configuration utilities."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

ANSI_RESET = "\x1b[0m"
ANSI_COLORS = {
    logging.DEBUG: "\x1b[36m",
    logging.INFO: "\x1b[32m",
    logging.WARNING: "\x1b[33m",
    logging.ERROR: "\x1b[31m",
    logging.CRITICAL: "\x1b[35m",
}

FORMAT_STRING = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class ColorFormatter(logging.Formatter):
    """Colors the level name of console records."""

    def __init__(self, fmt: str = FORMAT_STRING, use_color: bool = True) -> None:
        super().__init__(fmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        color = ANSI_COLORS.get(record.levelno) if self.use_color else None
        if color is None:
            return super().format(record)
        # Format a copy so the file handler sees the plain level name
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{record.levelname}{ANSI_RESET}"
        return super().format(colored)


def configure_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    max_bytes: int = 1_000_000,
) -> Optional[Path]:
    """Configure logging to stderr and, optionally, a rotating file.

    Args:
        level: Root log level name.
        log_file: Optional path of a log file.
        max_bytes: Maximum size of the log file before rotation.

    Returns:
        The path to the active log file, if any.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    stream_handler = logging.StreamHandler()
    stream_supports_color = False
    if hasattr(stream_handler.stream, "isatty"):
        stream_supports_color = stream_handler.stream.isatty()
    stream_handler.setFormatter(ColorFormatter(FORMAT_STRING, use_color=stream_supports_color))
    stream_handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(stream_handler)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(FORMAT_STRING))
        file_handler.setLevel(log_level)
        root_logger.addHandler(file_handler)

    # Request lines from httpx are only useful when debugging polling
    http_level = logging.DEBUG if log_level <= logging.DEBUG else logging.WARNING
    for logger_name in ("httpx", "httpcore"):
        logging.getLogger(logger_name).setLevel(http_level)

    return log_file
