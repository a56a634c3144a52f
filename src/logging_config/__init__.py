"""Structured Logging & Connection Context.

Provides structured JSON logging and per-connection log context
for the notification service.
"""

from src.logging_config.config import LogFormat, LoggingConfig, LogLevel
from src.logging_config.context import ConnectionContext, get_context_dict
from src.logging_config.setup import configure_logging, get_logger

__all__ = [
    "ConnectionContext",
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "configure_logging",
    "get_context_dict",
    "get_logger",
]
