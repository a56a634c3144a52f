"""Logging Configuration.

Level, output format and service tag for the notification service's logs.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from src.settings import Settings


class LogLevel(str, Enum):
    """Log level options."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @classmethod
    def parse(cls, value: str, default: "LogLevel") -> "LogLevel":
        return cls.__members__.get(value.strip().upper(), default)


class LogFormat(str, Enum):
    """``json`` for shipping to a collector, ``console`` for a terminal."""
    JSON = "json"
    CONSOLE = "console"

    @classmethod
    def parse(cls, value: str, default: "LogFormat") -> "LogFormat":
        value = value.strip().lower()
        return next((f for f in cls if f.value == value), default)


# Delivery fields a log call may attach with ``extra={...}``.
RECORD_FIELDS = ("message_id", "retry_count", "close_code", "delivered")


@dataclass
class LoggingConfig:
    """How the root logger is set up at startup."""

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.JSON
    include_caller: bool = True
    service_name: str = "staff-notify"
    # Third-party loggers held at WARNING regardless of ``level``
    quiet_loggers: tuple[str, ...] = field(
        default=("asyncio", "websockets", "uvicorn.access", "httpx")
    )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "LoggingConfig":
        if settings is None:
            from src.settings import get_settings
            settings = get_settings()
        return cls(
            level=LogLevel.parse(settings.log_level, LogLevel.INFO),
            format=LogFormat.parse(settings.log_format, LogFormat.JSON),
        )


DEFAULT_LOGGING_CONFIG = LoggingConfig()
