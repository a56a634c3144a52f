"""Logging Setup.

``configure_logging()`` installs exactly one service handler on the root
logger. Calling it again swaps that handler; handlers installed by anything
else (a test runner, uvicorn) are left alone.
"""

import dataclasses
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Optional

from src.logging_config.config import (
    DEFAULT_LOGGING_CONFIG,
    RECORD_FIELDS,
    LogFormat,
    LoggingConfig,
    LogLevel,
)
from src.logging_config.context import get_context_dict

_HANDLER_NAME = "staff-notify"


class StructuredFormatter(logging.Formatter):
    """One JSON object per line.

    Session context (``connection_id``, ``user_id``) and any delivery fields
    passed via ``extra`` are merged into the object.
    """

    def __init__(self, service_name: str = "staff-notify", include_caller: bool = True):
        super().__init__()
        self.service_name = service_name
        self.include_caller = include_caller

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "message": record.getMessage(),
            **get_context_dict(),
        }
        if self.include_caller:
            entry["caller"] = f"{record.module}.{record.funcName}:{record.lineno}"

        entry.update(
            (key, getattr(record, key)) for key in RECORD_FIELDS if hasattr(record, key)
        )

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc),
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Short colored lines for a developer terminal."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        line = f"{clock} {color}{record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}"

        ctx = get_context_dict()
        if ctx:
            line += " [" + " ".join(f"{k}={v}" for k, v in ctx.items()) + "]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _with_env_overrides(config: LoggingConfig) -> LoggingConfig:
    """NOTIFY_LOG_LEVEL / NOTIFY_LOG_FORMAT win over the passed config."""
    level = os.environ.get("NOTIFY_LOG_LEVEL")
    fmt = os.environ.get("NOTIFY_LOG_FORMAT")
    return dataclasses.replace(
        config,
        level=LogLevel.parse(level, config.level) if level else config.level,
        format=LogFormat.parse(fmt, config.format) if fmt else config.format,
    )


def configure_logging(config: Optional[LoggingConfig] = None) -> logging.Handler:
    """Install the service handler on the root logger and return it."""
    config = _with_env_overrides(config or DEFAULT_LOGGING_CONFIG)

    if config.format == LogFormat.JSON:
        formatter: logging.Formatter = StructuredFormatter(
            service_name=config.service_name,
            include_caller=config.include_caller,
        )
    else:
        formatter = ConsoleFormatter()

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    for existing in [h for h in root.handlers if h.get_name() == _HANDLER_NAME]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(config.level.value)

    for name in config.quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
