"""Connection registry for authenticated WebSocket sessions."""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Set, Tuple

from src.realtime.auth import Claims
from src.realtime.config import CloseCode, ConnectionState, RealtimeConfig
from src.realtime.exceptions import ConnectionLimitExceeded, TransientSendFailure
from src.realtime.frames import encode_frame

logger = logging.getLogger(__name__)

GroupKey = Tuple[str, str]


class Socket(Protocol):
    """The two socket operations the hub needs (Starlette's WebSocket fits)."""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None: ...


def generate_connection_id() -> str:
    return f"conn_{uuid.uuid4().hex[:16]}"


@dataclass(eq=False)
class Connection:
    """One authenticated duplex socket session."""

    socket: Any
    user_id: str
    role: str
    scope_key: Optional[str] = None
    connection_id: str = field(default_factory=generate_connection_id)
    state: ConnectionState = ConnectionState.CONNECTING
    is_alive: bool = True
    last_activity: float = field(default_factory=time.time)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.OPEN

    @property
    def group_key(self) -> Optional[GroupKey]:
        if self.scope_key is None:
            return None
        return (self.role, self.scope_key)

    async def send(self, frame: dict) -> None:
        """Write one frame.

        Raises:
            TransientSendFailure: the underlying write raised.
        """
        try:
            await self.socket.send_text(encode_frame(frame))
        except Exception as e:
            raise TransientSendFailure(self.connection_id, e) from e

    async def terminate(self, code: int = CloseCode.GOING_AWAY, reason: str = "") -> None:
        """Close the socket; a socket that is already gone is not an error."""
        self.state = ConnectionState.CLOSED
        try:
            await self.socket.close(code=int(code), reason=reason or None)
        except Exception as e:
            logger.debug("Close on %s raised: %s", self.connection_id, e)


class ConnectionRegistry:
    """Tracks open connections, indexed by owner and by (role, scope key) group.

    All mutations are plain dict/set operations executed between awaits on
    one event loop, so no locking is needed. The registry holds no state
    shared across processes: a multi-instance deployment needs an external
    fan-out layer in front of it.
    """

    def __init__(
        self,
        config: Optional[RealtimeConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._config = config or RealtimeConfig()
        self._clock = clock
        self._connections: Dict[str, Connection] = {}
        self._user_connections: Dict[str, Set[str]] = {}
        self._group_connections: Dict[GroupKey, Set[str]] = {}

    def can_connect(self, user_id: str) -> bool:
        """Check whether the per-user connection limit allows one more."""
        user_conns = self._user_connections.get(user_id, set())
        return len(user_conns) < self._config.max_connections_per_user

    def register(self, socket: Any, claims: Claims) -> Connection:
        """Create and index a connection for a verified credential.

        Raises:
            ConnectionLimitExceeded: the user is at ``max_connections_per_user``.
        """
        if not self.can_connect(claims.user_id):
            raise ConnectionLimitExceeded(
                claims.user_id, self._config.max_connections_per_user
            )

        conn = Connection(
            socket=socket,
            user_id=claims.user_id,
            role=claims.role,
            scope_key=claims.scope_key,
            last_activity=self._clock(),
        )
        if conn.connection_id in self._connections:
            raise ValueError(f"Duplicate connection id {conn.connection_id}")

        conn.state = ConnectionState.OPEN
        self._connections[conn.connection_id] = conn
        self._user_connections.setdefault(conn.user_id, set()).add(conn.connection_id)
        if conn.group_key is not None:
            self._group_connections.setdefault(conn.group_key, set()).add(conn.connection_id)

        logger.info(
            "Registered connection %s for user=%s role=%s scope=%s (total=%d)",
            conn.connection_id,
            conn.user_id,
            conn.role,
            conn.scope_key,
            len(self._connections),
        )
        return conn

    def unregister(self, connection_id: str) -> bool:
        """Remove a connection from every index. Returns True if it was present.

        Safe to call twice: eviction and natural close can race.
        """
        conn = self._connections.pop(connection_id, None)
        if conn is None:
            return False

        conn.state = ConnectionState.CLOSED

        user_set = self._user_connections.get(conn.user_id)
        if user_set is not None:
            user_set.discard(connection_id)
            if not user_set:
                del self._user_connections[conn.user_id]

        if conn.group_key is not None:
            group_set = self._group_connections.get(conn.group_key)
            if group_set is not None:
                group_set.discard(connection_id)
                if not group_set:
                    del self._group_connections[conn.group_key]

        logger.info(
            "Unregistered connection %s (user=%s, remaining=%d)",
            connection_id,
            conn.user_id,
            len(self._connections),
        )
        return True

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def user_connection_ids(self, user_id: str) -> Set[str]:
        """Snapshot of the ids a user currently owns."""
        return set(self._user_connections.get(user_id, set()))

    def connections_for_user(self, user_id: str) -> List[Connection]:
        conn_ids = self._user_connections.get(user_id, set())
        return [self._connections[cid] for cid in conn_ids if cid in self._connections]

    def connections_for_group(self, role: str, scope_key: str) -> List[Connection]:
        conn_ids = self._group_connections.get((role, scope_key), set())
        return [self._connections[cid] for cid in conn_ids if cid in self._connections]

    def all_connections(self) -> List[Connection]:
        return list(self._connections.values())

    def touch(self, connection_id: str) -> None:
        """Refresh ``last_activity`` after any inbound frame."""
        conn = self._connections.get(connection_id)
        if conn:
            conn.last_activity = self._clock()

    def mark_alive(self, connection_id: str) -> None:
        """Record a pong: clear the awaiting-pong flag and refresh activity."""
        conn = self._connections.get(connection_id)
        if conn:
            conn.is_alive = True
            conn.last_activity = self._clock()

    def get_connection_count(self) -> int:
        return len(self._connections)

    def get_user_count(self) -> int:
        return len(self._user_connections)

    def get_stats(self) -> dict:
        """Return a summary of registry statistics."""
        return {
            "total_connections": self.get_connection_count(),
            "unique_users": self.get_user_count(),
            "groups": len(self._group_connections),
            "connections_by_user": {
                user_id: len(conn_ids)
                for user_id, conn_ids in self._user_connections.items()
            },
            "max_connections_per_user": self._config.max_connections_per_user,
        }

    def clear(self) -> None:
        """Drop every connection without closing sockets (teardown/tests)."""
        for conn in self._connections.values():
            conn.state = ConnectionState.CLOSED
        self._connections.clear()
        self._user_connections.clear()
        self._group_connections.clear()
