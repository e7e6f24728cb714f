"""Structured logging for the support bot.

Every component logs through setup_logging(). Loggers are usually created
at import time, before the config is read, so configure() re-applies the
level and format to the loggers that already exist and to later ones.
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional

# Context attached with logger.x(..., extra={...}) and emitted as JSON fields
EXTRA_FIELDS = ("sender", "message_id", "reason", "attempt", "duration_ms")

_settings = {"level": logging.INFO, "json_output": False}
_loggers = {}


class JSONFormatter(logging.Formatter):
    """Format log records as one JSON object per line."""

    def format(self, record):
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "component": getattr(record, "component", record.name),
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0]:
            log_data["exception"] = self.formatException(record.exc_info)
        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)
        return json.dumps(log_data, ensure_ascii=False, default=str)


def _formatter(component: str, json_output: bool) -> logging.Formatter:
    if json_output:
        return JSONFormatter()
    return logging.Formatter(
        f"%(asctime)s [{component}] %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )


def _parse_level(level) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(component: str, level: Optional[int] = None, json_output: Optional[bool] = None) -> logging.Logger:
    """Set up logging for a component.

    Args:
        component: Name of the component (e.g., "admission", "supervisor")
        level: Logging level, defaults to the configured one
        json_output: JSON lines instead of human-readable text, defaults to the configured format

    Returns:
        Configured logger
    """
    level = _settings["level"] if level is None else level
    json_output = _settings["json_output"] if json_output is None else json_output

    logger = logging.getLogger(f"supportbot.{component}")
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(_formatter(component, json_output))
        logger.addHandler(handler)
        _loggers[component] = logger

    return logger


def configure(level=None, json_output: Optional[bool] = None):
    """Apply level ("INFO", logging.DEBUG, ...) and format to every component logger."""
    if level is not None:
        _settings["level"] = _parse_level(level)
    if json_output is not None:
        _settings["json_output"] = json_output

    for component, logger in _loggers.items():
        logger.setLevel(_settings["level"])
        for handler in logger.handlers:
            handler.setLevel(_settings["level"])
            handler.setFormatter(_formatter(component, _settings["json_output"]))
