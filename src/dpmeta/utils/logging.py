"""Structured logging configuration.

Records go to stderr so that tables and progress bars on stdout stay
readable.  Chain progress is attached as ``extra={"chain": {...}}`` and
appears as its own object in JSON output.
"""

import logging
import json
import sys
from typing import Any, Dict

from ..config.settings import settings

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class JSONFormatter(logging.Formatter):
    """Format logs as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        chain = getattr(record, "chain", None)
        if chain:
            log_data["chain"] = chain
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        # numpy scalars are not JSON serialisable
        return json.dumps(log_data, default=str)


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        if settings.log_format == "json":
            handler.setFormatter(JSONFormatter())
        else:
            handler.setFormatter(logging.Formatter(TEXT_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
        logger.propagate = False
    return logger
