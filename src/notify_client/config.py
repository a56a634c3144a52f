"""Configuration for the notification client."""

from dataclasses import dataclass
from enum import Enum


class MessagePriority(str, Enum):
    """Priority levels for queued outbound messages."""
    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


# Higher rank drains first.
PRIORITY_RANK = {
    MessagePriority.CRITICAL: 4,
    MessagePriority.HIGH: 3,
    MessagePriority.NORMAL: 2,
    MessagePriority.LOW: 1,
}


class ConnectionState(str, Enum):
    """Client channel lifecycle.

    DISCONNECTED is terminal until the caller connects again: the reconnect
    budget ran out.
    """
    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"
    DISCONNECTED = "disconnected"


@dataclass
class QueueConfig:
    """Outbound queue settings. Times are in seconds."""

    max_queue_size: int = 1000
    max_retries: int = 3
    retry_delay: float = 1.0
    max_retry_delay: float = 30.0
    cleanup_interval: float = 60.0
    deduplication_window: float = 300.0


@dataclass
class DispatcherConfig:
    """Reconnect settings for the dispatcher. Times are in seconds."""

    auto_reconnect: bool = True
    reconnect_delay: float = 1.0
    max_reconnect_delay: float = 30.0
    max_reconnect_attempts: int = 5


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Capped exponential delay for the *attempt*-th retry (1-based)."""
    return min(base * (2 ** (attempt - 1)), cap)
