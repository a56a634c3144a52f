"""Real-time notification hub: authenticated WebSocket sessions, heartbeat
liveness, and best-effort broadcast to users and (role, scope) groups."""

from .config import (
    CloseCode,
    ConnectionState,
    FrameType,
    RealtimeConfig,
)
from .exceptions import (
    AuthRejected,
    ConnectionLimitExceeded,
    MalformedFrame,
    RealtimeError,
    TransientSendFailure,
)
from .auth import Claims, TokenVerifier, extract_token
from .frames import DeliveryScope, OutboundNotification, notification_count_frame
from .registry import Connection, ConnectionRegistry
from .liveness import LivenessMonitor, SweepResult
from .router import BroadcastRouter
from .protocol import FrameHandler, FrameRateLimiter, decode_frame
from .hub import NotificationHub

__all__ = [
    # Config
    "CloseCode",
    "ConnectionState",
    "FrameType",
    "RealtimeConfig",
    # Errors
    "AuthRejected",
    "ConnectionLimitExceeded",
    "MalformedFrame",
    "RealtimeError",
    "TransientSendFailure",
    # Auth
    "Claims",
    "TokenVerifier",
    "extract_token",
    # Frames
    "DeliveryScope",
    "OutboundNotification",
    "notification_count_frame",
    # Registry
    "Connection",
    "ConnectionRegistry",
    # Liveness
    "LivenessMonitor",
    "SweepResult",
    # Routing
    "BroadcastRouter",
    # Protocol
    "FrameHandler",
    "FrameRateLimiter",
    "decode_frame",
    # Hub
    "NotificationHub",
]
