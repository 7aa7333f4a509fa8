"""
Simple logging module for the workflow engine.

All services log to console (stdout) with colored, structured output.

Usage:
    from shared.logger import get_logger, RequestLogger

    logger = get_logger(__name__)  # Use module name
    logger.info("Message here")

    # Per-request logs carry a short id prefix
    log = RequestLogger(logger, request_id)
    log.info("Processing webhook")
"""

import logging
import sys
import uuid
from typing import Any, MutableMapping, Optional, Tuple

# Global cache of loggers
_loggers = {}


class ColoredFormatter(logging.Formatter):
    """Formatter that adds colors to console output"""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset
    }

    def format(self, record):
        # Add color to levelname; restore it so other handlers see the plain name
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def get_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """
    Get a logger that outputs colored, structured logs to console.

    Args:
        name: Logger name (typically __name__ or component name)
        level: Logging level (default: INFO)

    Returns:
        Configured logger instance
    """
    # Return cached logger if it exists
    if name in _loggers:
        return _loggers[name]

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False

    # Clear any existing handlers
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    formatter = ColoredFormatter(
        fmt='%(asctime)s | %(name)s | %(levelname)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(formatter)

    logger.addHandler(console_handler)

    _loggers[name] = logger
    return logger


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


class RequestLogger(logging.LoggerAdapter):
    """Prefixes every message with `[request_id]` and adds it to `extra`."""

    def __init__(self, logger: logging.Logger, request_id: Optional[str] = None) -> None:
        self.request_id = request_id or new_request_id()
        super().__init__(logger, {"request_id": self.request_id})

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("request_id", self.request_id)
        kwargs["extra"] = extra
        return f"[{self.request_id}] {msg}", kwargs
