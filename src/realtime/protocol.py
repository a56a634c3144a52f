"""Inbound frame validation and handling for an open session."""

import json
import logging
import time
from collections import defaultdict
from typing import Any, Callable, Optional

from src.realtime.config import INBOUND_FRAME_TYPES, CloseCode, FrameType, RealtimeConfig
from src.realtime.exceptions import MalformedFrame
from src.realtime.frames import echo_frame, error_frame, pong_frame
from src.realtime.registry import Connection, ConnectionRegistry

logger = logging.getLogger(__name__)


def decode_frame(raw: str, max_bytes: int) -> dict[str, Any]:
    """Parse one inbound text frame.

    Raises:
        MalformedFrame: oversize, not JSON, not an object, or no ``type``.
    """
    if len(raw.encode("utf-8")) > max_bytes:
        raise MalformedFrame("Message too large", CloseCode.MESSAGE_TOO_BIG)

    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        raise MalformedFrame("Invalid JSON")

    if not isinstance(frame, dict):
        raise MalformedFrame("Invalid message format")
    if not isinstance(frame.get("type"), str) or not frame["type"]:
        raise MalformedFrame("Missing message type")
    return frame


class FrameRateLimiter:
    """Sliding-window limit on inbound frames per connection."""

    def __init__(
        self,
        max_frames: int,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.max_frames = max_frames
        self.window_seconds = window_seconds
        self._clock = clock
        # connection_id -> timestamps of accepted frames
        self._windows: dict[str, list[float]] = defaultdict(list)

    def allow(self, connection_id: str) -> bool:
        now = self._clock()
        cutoff = now - self.window_seconds
        window = [t for t in self._windows[connection_id] if t > cutoff]
        self._windows[connection_id] = window

        if len(window) >= self.max_frames:
            return False
        window.append(now)
        return True

    def forget(self, connection_id: str) -> None:
        self._windows.pop(connection_id, None)


class FrameHandler:
    """Answers the control frames a client may send.

    * ``ping`` / ``pong`` prove liveness; ``ping`` is answered with ``pong``.
    * ``ECHO`` is a diagnostic loopback.
    * ``subscribe`` is acknowledged; routing is claim-based, not topic-based.
    * ``ack`` is logged; read state lives in the business layer.

    ``ping`` and ``pong`` mark the connection alive before the rate limit is
    checked, and ``pong`` is never counted against it.

    Unknown types and rate-limited frames get an ``error`` frame; malformed
    frames raise :class:`MalformedFrame` so the session can close.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        config: Optional[RealtimeConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._registry = registry
        self._config = config or RealtimeConfig()
        self.rate_limiter = FrameRateLimiter(
            self._config.rate_limit_per_minute,
            self._config.rate_limit_window_seconds,
            clock=clock,
        )

    async def handle(self, conn: Connection, raw: str) -> None:
        frame = decode_frame(raw, self._config.max_message_bytes)
        self._registry.touch(conn.connection_id)

        frame_type = frame["type"]
        if frame_type in (FrameType.PING.value, FrameType.PONG.value):
            # liveness counts even when the rate limit is spent
            self._registry.mark_alive(conn.connection_id)
            if frame_type == FrameType.PONG.value:
                return

        if not self.rate_limiter.allow(conn.connection_id):
            logger.warning("Rate limit exceeded on %s", conn.connection_id)
            await conn.send(error_frame("Rate limit exceeded. Please slow down."))
            return

        if frame_type not in INBOUND_FRAME_TYPES:
            logger.debug("Unknown frame type %r on %s", frame_type, conn.connection_id)
            await conn.send(error_frame("Unknown message type"))
            return

        if frame_type == FrameType.PING.value:
            await conn.send(pong_frame())
        elif frame_type == FrameType.ECHO.value:
            await conn.send(echo_frame(frame.get("data")))
        elif frame_type == FrameType.SUBSCRIBE.value:
            await conn.send({
                "type": FrameType.SUBSCRIBED.value,
                "message": "Subscribed to notifications",
            })
        elif frame_type == FrameType.ACK.value:
            data = frame.get("data") or {}
            notification_id = data.get("notification_id") if isinstance(data, dict) else None
            logger.debug("Client acknowledged notification %s", notification_id)

    def forget(self, connection_id: str) -> None:
        self.rate_limiter.forget(connection_id)
