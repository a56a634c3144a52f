"""Notification hub: owns the registry, liveness monitor and router.

The hub is an explicitly constructed instance (one per application) rather
than a module-level singleton, so each test can build a fresh one. It keeps
no state outside this process; running several server instances requires
an external fan-out layer that is not part of this package.
"""

import logging
import time
from typing import Any, Callable, Optional

from src.logging_config import ConnectionContext
from src.realtime.auth import TokenVerifier, extract_token
from src.realtime.config import CloseCode, FrameType, RealtimeConfig
from src.realtime.exceptions import AuthRejected, MalformedFrame, TransientSendFailure
from src.realtime.frames import OutboundNotification, notification_count_frame
from src.realtime.liveness import LivenessMonitor
from src.realtime.protocol import FrameHandler
from src.realtime.registry import Connection, ConnectionRegistry
from src.realtime.router import BroadcastRouter
from src.settings import Settings

logger = logging.getLogger(__name__)


class NotificationHub:
    """Server-side core: authenticated sessions plus best-effort fan-out."""

    def __init__(
        self,
        verifier: TokenVerifier,
        config: Optional[RealtimeConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or RealtimeConfig()
        self._verifier = verifier
        self.registry = ConnectionRegistry(self.config, clock=clock)
        self.monitor = LivenessMonitor(self.registry, self.config)
        self.router = BroadcastRouter(self.registry)
        self.frames = FrameHandler(self.registry, self.config, clock=clock)

    @classmethod
    def from_settings(cls, settings: Settings) -> "NotificationHub":
        return cls(
            TokenVerifier.from_settings(settings),
            RealtimeConfig.from_settings(settings),
        )

    # ── Lifecycle ────────────────────────────────────────────────────

    def start(self) -> None:
        self.monitor.start()

    async def shutdown(self) -> None:
        """Stop the heartbeat and close every session."""
        await self.monitor.stop()
        for conn in self.registry.all_connections():
            self.registry.unregister(conn.connection_id)
            await conn.terminate(CloseCode.GOING_AWAY, "Server shutting down")
        logger.info("Notification hub shut down")

    # ── Sessions ─────────────────────────────────────────────────────

    async def handshake(self, websocket: Any) -> Optional[Connection]:
        """Authenticate an upgrade request and register the connection.

        Returns None after closing the socket with 1008 when the credential
        is missing or invalid, or the user is over the connection limit.
        """
        token = extract_token(websocket.query_params, websocket.headers)
        await websocket.accept()

        try:
            claims = self._verifier.verify(token)
            conn = self.registry.register(websocket, claims)
        except AuthRejected as e:
            logger.warning("WebSocket authentication failed: %s", e.message)
            await websocket.close(code=int(e.close_code), reason=e.message)
            return None

        try:
            await conn.send({
                "type": FrameType.AUTHENTICATED.value,
                "message": "Connection authenticated successfully",
                "connection_id": conn.connection_id,
                "user_id": conn.user_id,
                "role": conn.role,
                "scope_key": conn.scope_key,
            })
        except TransientSendFailure:
            self.registry.unregister(conn.connection_id)
            return None

        logger.info("WebSocket authenticated: %s %s (%s)", conn.role, conn.user_id, conn.connection_id)
        return conn

    async def serve(self, websocket: Any) -> None:
        """Run one session from handshake to close."""
        conn = await self.handshake(websocket)
        if conn is None:
            return

        with ConnectionContext(connection_id=conn.connection_id, user_id=conn.user_id):
            try:
                await self._receive_loop(websocket, conn)
            except MalformedFrame as e:
                logger.warning("Closing on malformed frame: %s", e.message)
                await conn.terminate(e.close_code, e.message)
            except TransientSendFailure as e:
                logger.warning("Reply failed, closing: %s", e.cause)
                await conn.terminate(CloseCode.GOING_AWAY, "Send failed")
            finally:
                self.registry.unregister(conn.connection_id)
                self.frames.forget(conn.connection_id)

    async def _receive_loop(self, websocket: Any, conn: Connection) -> None:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info("Client closed connection (code=%s)", message.get("code"))
                return

            raw = message.get("text")
            if raw is None:
                data = message.get("bytes") or b""
                try:
                    raw = data.decode("utf-8")
                except UnicodeDecodeError:
                    raise MalformedFrame("Binary frames are not supported", CloseCode.UNSUPPORTED_DATA)

            await self.frames.handle(conn, raw)

    # ── Publishing (business-layer contract) ─────────────────────────

    async def publish(self, notification: OutboundNotification) -> int:
        """Route a freshly persisted notification by its delivery scope."""
        frame = notification.to_frame()
        scope = notification.scope
        if scope.is_user:
            return await self.router.broadcast_to_user(scope.user_id, frame)
        return await self.router.broadcast_to_group(scope.scope_key, scope.role, frame)

    async def broadcast_to_user(self, user_id: str, message: dict) -> int:
        return await self.router.broadcast_to_user(user_id, message)

    async def broadcast_to_group(self, scope_key: str, role: str, message: dict) -> int:
        return await self.router.broadcast_to_group(scope_key, role, message)

    async def broadcast_count(self, user_id: str, total: int, unread: int) -> int:
        return await self.router.broadcast_to_user(
            user_id, notification_count_frame(total, unread)
        )

    def get_stats(self) -> dict:
        stats = self.registry.get_stats()
        stats["heartbeat_interval_seconds"] = self.config.heartbeat_interval_seconds
        stats["liveness_running"] = self.monitor.running
        return stats
