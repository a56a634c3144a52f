"""Configuration for the real-time notification hub."""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional

from src.settings import Settings


class ConnectionState(str, Enum):
    """Lifecycle states for a server-side connection."""
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class CloseCode(IntEnum):
    """WebSocket close codes used by the hub (RFC 6455)."""
    NORMAL = 1000
    GOING_AWAY = 1001
    UNSUPPORTED_DATA = 1003
    INVALID_PAYLOAD = 1007
    POLICY_VIOLATION = 1008
    MESSAGE_TOO_BIG = 1009


class FrameType(str, Enum):
    """Frame ``type`` values on the wire."""
    AUTHENTICATED = "authenticated"
    NOTIFICATION = "notification"
    NOTIFICATION_COUNT = "notification_count"
    PING = "ping"
    PONG = "pong"
    ECHO = "ECHO"
    SUBSCRIBE = "subscribe"
    SUBSCRIBED = "subscribed"
    ACK = "ack"
    ERROR = "error"


# Frame types a client may send.
INBOUND_FRAME_TYPES = frozenset({
    FrameType.PING.value,
    FrameType.PONG.value,
    FrameType.ECHO.value,
    FrameType.SUBSCRIBE.value,
    FrameType.ACK.value,
})


@dataclass
class RealtimeConfig:
    """Master configuration for the connection hub."""

    heartbeat_interval_seconds: float = 30.0
    max_connections_per_user: int = 5
    max_message_bytes: int = 64 * 1024
    rate_limit_per_minute: int = 60
    rate_limit_window_seconds: float = 60.0

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RealtimeConfig":
        """Build hub configuration from environment-backed settings."""
        if settings is None:
            from src.settings import get_settings
            settings = get_settings()
        return cls(
            heartbeat_interval_seconds=settings.heartbeat_interval_seconds,
            max_connections_per_user=settings.max_connections_per_user,
            max_message_bytes=settings.max_message_bytes,
            rate_limit_per_minute=settings.rate_limit_per_minute,
        )
