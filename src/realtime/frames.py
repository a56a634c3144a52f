"""Wire frames and the outbound notification event.

All frames are JSON text frames of the shape ``{"type": ..., "data": ...}``.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel

from src.realtime.config import FrameType


class NotificationData(BaseModel):
    """Body of a ``notification`` frame."""

    notification_id: str
    type: str
    category: str
    title: str
    message: str
    data: Optional[dict[str, Any]] = None
    is_read: bool = False
    priority: str = "normal"
    created_at: str
    read_at: Optional[str] = None
    scope_name: Optional[str] = None


class NotificationCount(BaseModel):
    """Body of a ``notification_count`` frame."""

    total: int
    unread: int


@dataclass(frozen=True)
class DeliveryScope:
    """Who a notification goes to: one user, or a (role, scope key) group."""

    user_id: Optional[str] = None
    role: Optional[str] = None
    scope_key: Optional[str] = None

    def __post_init__(self):
        is_user = self.user_id is not None
        is_group = self.role is not None and self.scope_key is not None
        if is_user == is_group:
            raise ValueError(
                "DeliveryScope needs either user_id, or both role and scope_key"
            )

    @classmethod
    def for_user(cls, user_id: str) -> "DeliveryScope":
        return cls(user_id=user_id)

    @classmethod
    def for_group(cls, role: str, scope_key: str) -> "DeliveryScope":
        return cls(role=role, scope_key=scope_key)

    @property
    def is_user(self) -> bool:
        return self.user_id is not None


@dataclass(frozen=True)
class OutboundNotification:
    """A notification the business layer has just persisted.

    Broadcast once and never retained; the collaborator's store stays the
    system of record.
    """

    scope: DeliveryScope
    type: str
    category: str
    title: str
    body: str
    priority: str = "normal"
    data: Optional[dict[str, Any]] = None
    notification_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    scope_name: Optional[str] = None

    def to_frame(self) -> dict:
        payload = NotificationData(
            notification_id=self.notification_id,
            type=self.type,
            category=self.category,
            title=self.title,
            message=self.body,
            data=self.data,
            priority=self.priority,
            created_at=self.created_at.isoformat(),
            scope_name=self.scope_name,
        )
        return {
            "type": FrameType.NOTIFICATION.value,
            "data": payload.model_dump(exclude_none=True),
        }


def notification_count_frame(total: int, unread: int) -> dict:
    return {
        "type": FrameType.NOTIFICATION_COUNT.value,
        "data": NotificationCount(total=total, unread=unread).model_dump(),
    }


def ping_frame() -> dict:
    return {"type": FrameType.PING.value}


def pong_frame() -> dict:
    return {"type": FrameType.PONG.value}


def echo_frame(data: Any) -> dict:
    return {"type": FrameType.ECHO.value, "data": data}


def error_frame(message: str) -> dict:
    return {"type": FrameType.ERROR.value, "message": message}


def encode_frame(frame: dict) -> str:
    """Serialize a frame to the JSON text sent on the wire."""
    return json.dumps(frame, default=str)
