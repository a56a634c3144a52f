"""API Request/Response Models.

Pydantic schemas for the internal publish API.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


# ─── Common ──────────────────────────────────────────────────────────────


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str
    connections: int = 0


# ─── Publishing ──────────────────────────────────────────────────────────


class PublishRequest(BaseModel):
    """A freshly persisted notification plus its delivery scope.

    Exactly one of ``user_id`` or the ``role``/``scope_key`` pair is set.
    """

    user_id: Optional[str] = None
    role: Optional[str] = None
    scope_key: Optional[str] = None

    notification_id: Optional[str] = None
    type: str = Field(min_length=1)
    category: str = "general"
    title: str
    message: str
    priority: str = "normal"
    data: Optional[dict[str, Any]] = None
    scope_name: Optional[str] = None

    @model_validator(mode="after")
    def _check_scope(self) -> "PublishRequest":
        is_user = self.user_id is not None
        is_group = self.role is not None and self.scope_key is not None
        if is_user == is_group:
            raise ValueError("Provide either user_id, or both role and scope_key")
        return self


class CountRequest(BaseModel):
    """Unread/total counters to push to one user."""

    user_id: str
    total: int = Field(ge=0)
    unread: int = Field(ge=0)


class DeliveryResponse(BaseModel):
    """How many live sockets the frame reached."""

    delivered: int


# ─── Stats ───────────────────────────────────────────────────────────────


class RealtimeStatsResponse(BaseModel):
    """Connection registry statistics."""

    total_connections: int
    unique_users: int
    groups: int
    connections_by_user: dict[str, int]
    max_connections_per_user: int
    heartbeat_interval_seconds: float
    liveness_running: bool
