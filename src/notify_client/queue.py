"""Priority message queue with deduplication, retry backoff and expiry."""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from src.notify_client.clock import Clock, SystemClock, TimerHandle
from src.notify_client.config import PRIORITY_RANK, MessagePriority, QueueConfig, backoff_delay
from src.notify_client.message_id import message_id

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class QueuedMessage:
    """An outbound message waiting for a channel."""

    id: str
    type: str
    payload: Any
    enqueued_at: float
    priority: MessagePriority = MessagePriority.NORMAL
    retry_count: int = 0
    max_retries: int = 3
    expires_at: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    sequence: int = 0
    next_attempt_at: float = 0.0

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at < now

    @property
    def sort_key(self) -> tuple:
        return (-PRIORITY_RANK[self.priority], self.sequence)


# Returns True when the message was handed to the channel.
Sender = Callable[[QueuedMessage], Awaitable[bool]]


@dataclass
class QueueStatus:
    """Snapshot of queue depth and lifetime counters."""

    size: int = 0
    processing: bool = False
    oldest_message: Optional[float] = None
    newest_message: Optional[float] = None
    priority_counts: Dict[str, int] = field(default_factory=dict)
    delivered: int = 0
    dropped: int = 0
    expired: int = 0
    evicted: int = 0


class PriorityMessageQueue:
    """Holds outbound messages while no channel can take them.

    Ordering is strict priority (critical > high > normal > low), FIFO within
    a priority. Identical ``(type, payload)`` submissions inside the
    deduplication window collapse into one entry. At capacity the oldest LOW
    entry is evicted to make room; with no LOW entry the new message is
    rejected. Failed deliveries are retried with capped exponential backoff
    and dropped after ``max_retries``. Expired messages are never delivered.

    The queue never polls on its own: it only drains while a sender supplied
    through :meth:`drain` is attached, and :meth:`detach` stops it.
    """

    def __init__(self, config: Optional[QueueConfig] = None, clock: Optional[Clock] = None):
        self._config = config or QueueConfig()
        self._clock = clock or SystemClock()
        self._queue: List[QueuedMessage] = []
        # message id -> time it was last accepted
        self._seen: Dict[str, float] = {}
        self._seq = itertools.count()
        self._processing = False
        self._sender: Optional[Sender] = None
        self._retry_timer: Optional[TimerHandle] = None
        self._cleanup_timer: Optional[TimerHandle] = None
        self._delivered = 0
        self._dropped = 0
        self._expired = 0
        self._evicted = 0

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def processing(self) -> bool:
        return self._processing

    @property
    def attached(self) -> bool:
        return self._sender is not None

    # ── Enqueue ──────────────────────────────────────────────────────

    def enqueue(
        self,
        message_type: str,
        payload: Any,
        priority: MessagePriority = MessagePriority.NORMAL,
        max_retries: Optional[int] = None,
        expires_at: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Queue a message and return its content-derived id.

        A duplicate inside the deduplication window returns the original id
        without inserting anything.
        """
        priority = MessagePriority(priority)
        msg_id = message_id(message_type, payload)
        now = self._clock.now()

        seen_at = self._seen.get(msg_id)
        if seen_at is not None and now - seen_at < self._config.deduplication_window:
            logger.debug("Duplicate message ignored: %s", msg_id)
            return msg_id

        if expires_at is not None and expires_at < now:
            self._expired += 1
            logger.info("Message already expired, not queued: %s", msg_id)
            return msg_id

        if len(self._queue) >= self._config.max_queue_size and not self._evict_oldest_low():
            self._dropped += 1
            logger.warning("Queue full, message dropped: %s", msg_id)
            return msg_id

        message = QueuedMessage(
            id=msg_id,
            type=message_type,
            payload=payload,
            enqueued_at=now,
            priority=priority,
            max_retries=self._config.max_retries if max_retries is None else max_retries,
            expires_at=expires_at,
            metadata=metadata or {},
            sequence=next(self._seq),
            next_attempt_at=now,
        )
        self._queue.append(message)
        self._queue.sort(key=lambda m: m.sort_key)
        self._seen[msg_id] = now

        logger.info("Message queued: %s (priority: %s)", msg_id, priority.value)

        if self._sender is not None and not self._processing:
            self._schedule_wakeup(0.0)
        return msg_id

    def _evict_oldest_low(self) -> bool:
        low = [m for m in self._queue if m.priority == MessagePriority.LOW]
        if not low:
            return False
        oldest = min(low, key=lambda m: (m.enqueued_at, m.sequence))
        self._queue.remove(oldest)
        self._evicted += 1
        logger.warning("Removed oldest low priority message %s to make room", oldest.id)
        return True

    # ── Drain ────────────────────────────────────────────────────────

    async def drain(self, sender: Sender) -> int:
        """Deliver ready messages through *sender* until none are ready.

        Concurrent calls collapse: while a drain is running, another call
        only swaps in its sender and returns 0. Returns the number of
        messages delivered by this call.
        """
        self._sender = sender
        if self._processing:
            return 0

        self._processing = True
        delivered = 0
        try:
            while self._sender is not None:
                now = self._clock.now()
                self._purge_expired(now)
                message = self._next_ready(now)
                if message is None:
                    break
                if await self._attempt(message, self._sender):
                    delivered += 1
        finally:
            self._processing = False

        self._schedule_retry_wakeup()
        return delivered

    def detach(self) -> None:
        """Forget the sender and cancel any pending redelivery."""
        self._sender = None
        self._cancel_retry_timer()

    def _next_ready(self, now: float) -> Optional[QueuedMessage]:
        for message in self._queue:
            if message.next_attempt_at <= now:
                return message
        return None

    async def _attempt(self, message: QueuedMessage, sender: Sender) -> bool:
        try:
            ok = bool(await sender(message))
        except Exception as e:
            logger.error("Error delivering message %s: %s", message.id, e)
            ok = False

        if message not in self._queue:
            # removed or cleared while the send was in flight
            return ok
        if not ok and self._sender is None:
            # detached mid-send: no channel, so not a delivery attempt
            return False

        if ok:
            self._queue.remove(message)
            self._delivered += 1
            logger.info("Message delivered: %s", message.id)
            return True

        self._handle_failure(message)
        return False

    def _handle_failure(self, message: QueuedMessage) -> None:
        message.retry_count += 1
        if message.retry_count > message.max_retries:
            self._queue.remove(message)
            self._dropped += 1
            logger.error(
                "Message failed after %d retries, dropped: %s",
                message.max_retries,
                message.id,
            )
            return

        delay = backoff_delay(
            message.retry_count, self._config.retry_delay, self._config.max_retry_delay
        )
        message.next_attempt_at = self._clock.now() + delay
        message.sequence = next(self._seq)
        self._queue.sort(key=lambda m: m.sort_key)
        logger.warning(
            "Retrying message %s in %.1fs (attempt %d/%d)",
            message.id,
            delay,
            message.retry_count,
            message.max_retries,
        )

    # ── Timers ───────────────────────────────────────────────────────

    def _schedule_retry_wakeup(self) -> None:
        if self._sender is None or not self._queue:
            self._cancel_retry_timer()
            return
        earliest = min(m.next_attempt_at for m in self._queue)
        self._schedule_wakeup(earliest - self._clock.now())

    def _schedule_wakeup(self, delay: float) -> None:
        self._cancel_retry_timer()
        self._retry_timer = self._clock.call_later(max(delay, 0.0), self._on_wakeup)

    def _cancel_retry_timer(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

    def _on_wakeup(self) -> Optional[Awaitable[int]]:
        self._retry_timer = None
        if self._sender is None:
            return None
        return self.drain(self._sender)

    def start(self) -> None:
        """Begin the periodic expiry sweep."""
        if self._cleanup_timer is None:
            self._cleanup_timer = self._clock.call_later(
                self._config.cleanup_interval, self._on_cleanup
            )

    def stop(self) -> None:
        if self._cleanup_timer is not None:
            self._cleanup_timer.cancel()
            self._cleanup_timer = None

    def _on_cleanup(self) -> None:
        self.purge_expired()
        self._cleanup_timer = self._clock.call_later(
            self._config.cleanup_interval, self._on_cleanup
        )

    # ── Expiry ───────────────────────────────────────────────────────

    def purge_expired(self) -> int:
        """Remove expired messages and age out the dedup window."""
        now = self._clock.now()
        removed = self._purge_expired(now)

        window = self._config.deduplication_window
        for msg_id in [k for k, t in self._seen.items() if now - t >= window]:
            del self._seen[msg_id]
        return removed

    def _purge_expired(self, now: float) -> int:
        expired = [m for m in self._queue if m.is_expired(now)]
        for message in expired:
            self._queue.remove(message)
            logger.info("Message expired: %s", message.id)
        self._expired += len(expired)
        return len(expired)

    # ── Introspection ────────────────────────────────────────────────

    def get_status(self) -> QueueStatus:
        priority_counts: Dict[str, int] = {}
        for message in self._queue:
            key = message.priority.value
            priority_counts[key] = priority_counts.get(key, 0) + 1

        enqueue_times = [m.enqueued_at for m in self._queue]
        return QueueStatus(
            size=len(self._queue),
            processing=self._processing,
            oldest_message=min(enqueue_times) if enqueue_times else None,
            newest_message=max(enqueue_times) if enqueue_times else None,
            priority_counts=priority_counts,
            delivered=self._delivered,
            dropped=self._dropped,
            expired=self._expired,
            evicted=self._evicted,
        )

    def messages(self) -> List[QueuedMessage]:
        """Queued messages in delivery order."""
        return list(self._queue)

    def get(self, msg_id: str) -> Optional[QueuedMessage]:
        for message in self._queue:
            if message.id == msg_id:
                return message
        return None

    def remove(self, msg_id: str) -> bool:
        message = self.get(msg_id)
        if message is None:
            return False
        self._queue.remove(message)
        logger.info("Message removed: %s", msg_id)
        return True

    def clear(self) -> None:
        self._queue.clear()
        self._seen.clear()
        logger.info("Message queue cleared")

    def close(self) -> None:
        """Stop timers, detach the sender and drop everything queued."""
        self.stop()
        self.detach()
        self.clear()
