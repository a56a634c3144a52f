"""Connection Context Management.

Binds the WebSocket connection id and owning user id to every log entry
emitted while a session is being served, using contextvars so concurrent
sessions on the same event loop never see each other's values.
"""

from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


_connection_id_var: ContextVar[str] = ContextVar("connection_id", default="")
_user_id_var: ContextVar[str] = ContextVar("user_id", default="")
_extra_context_var: ContextVar[Optional[dict]] = ContextVar("extra_context", default=None)


def get_connection_id() -> str:
    """Get the current connection ID from context."""
    return _connection_id_var.get()


def get_user_id() -> str:
    """Get the current user ID from context."""
    return _user_id_var.get()


def get_context_dict() -> dict[str, Any]:
    """Get all context variables as a dictionary for log binding."""
    ctx = {}
    conn_id = _connection_id_var.get()
    if conn_id:
        ctx["connection_id"] = conn_id
    user_id = _user_id_var.get()
    if user_id:
        ctx["user_id"] = user_id
    extra = _extra_context_var.get()
    if extra:
        ctx.update(extra)
    return ctx


@dataclass
class ConnectionContext:
    """Context manager for session-scoped logging context.

    Example:
        with ConnectionContext(connection_id="conn_1", user_id="u-42"):
            logger.info("frame received")  # includes connection_id, user_id
    """

    connection_id: str = ""
    user_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    _tokens: list[Token] = field(default_factory=list, repr=False)

    def __enter__(self) -> "ConnectionContext":
        self._tokens = [
            _connection_id_var.set(self.connection_id),
            _user_id_var.set(self.user_id),
            _extra_context_var.set(self.extra.copy()),
        ]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        conn_token, user_token, extra_token = self._tokens
        _extra_context_var.reset(extra_token)
        _user_id_var.reset(user_token)
        _connection_id_var.reset(conn_token)
        self._tokens.clear()

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since the context was created."""
        delta = datetime.now(timezone.utc) - self.started_at
        return delta.total_seconds() * 1000

    def bind(self, **kwargs: Any) -> None:
        """Add extra key-value pairs to the context."""
        current = _extra_context_var.get() or {}
        _extra_context_var.set({**current, **kwargs})
        self.extra.update(kwargs)
