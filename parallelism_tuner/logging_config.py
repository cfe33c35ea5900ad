"""
Structured logging for the parallelism tuner.

Search and partitioning messages are written as ``key=value`` tokens
(``lop=32 dop=16 penalty=0.83``). The formatter lifts those tokens into a
``fields`` mapping so log aggregators can index LoP/DoP decisions. Use
configure_parallelism_tuner_logging() at application startup if desired.
"""

import json
import logging
import re
import sys
from typing import Any

_FIELD = re.compile(r"\b(\w+)=([^\s,;]+)")


class StructuredFormatter(logging.Formatter):
    """
    Format log records as JSON or key=value for structured log aggregation.
    """

    def __init__(self, use_json: bool = True):
        super().__init__()
        self._use_json = use_json

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if self._use_json:
            base: dict[str, Any] = {
                "message": message,
                "level": record.levelname,
                "logger": record.name,
            }
            fields = dict(_FIELD.findall(message))
            if fields:
                base["fields"] = fields
            if record.exc_info:
                base["exception"] = self.formatException(record.exc_info)
            return json.dumps(base, default=str)
        line = f"level={record.levelname} logger={record.name} msg={message}"
        if record.exc_info:
            line += " exception=" + json.dumps(self.formatException(record.exc_info))
        return line


def configure_parallelism_tuner_logging(
    level: int = logging.INFO,
    use_json: bool = False,
    stream: Any = None,
) -> logging.Logger:
    """
    Attach a structured handler to the parallelism_tuner logger (once).

    Args:
        level: Logging level (default INFO).
        use_json: If True, emit JSON lines with extracted fields; if False, key=value style.
        stream: Output stream (default sys.stderr).

    Returns:
        The configured logger.
    """
    logger = logging.getLogger("parallelism_tuner")
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(StructuredFormatter(use_json=use_json))
        logger.addHandler(handler)
    return logger
