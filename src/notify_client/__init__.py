"""Notification client: priority outbox with dedup, retry and expiry, plus a
dispatcher that sends over a live channel or queues until one opens."""

from .config import (
    ConnectionState,
    DispatcherConfig,
    MessagePriority,
    PRIORITY_RANK,
    QueueConfig,
    backoff_delay,
)
from .exceptions import ChannelClosed, InvalidTransition, NotifyClientError
from .clock import Clock, ManualClock, SystemClock
from .message_id import canonical_json, message_id
from .queue import PriorityMessageQueue, QueuedMessage, QueueStatus
from .channel import Channel, WebSocketChannel, WebSocketConnector, with_token
from .dispatcher import MessageDispatcher

__all__ = [
    # Config
    "ConnectionState",
    "DispatcherConfig",
    "MessagePriority",
    "PRIORITY_RANK",
    "QueueConfig",
    "backoff_delay",
    # Errors
    "ChannelClosed",
    "InvalidTransition",
    "NotifyClientError",
    # Time
    "Clock",
    "ManualClock",
    "SystemClock",
    # Ids
    "canonical_json",
    "message_id",
    # Queue
    "PriorityMessageQueue",
    "QueuedMessage",
    "QueueStatus",
    # Channels
    "Channel",
    "WebSocketChannel",
    "WebSocketConnector",
    "with_token",
    # Dispatcher
    "MessageDispatcher",
]
