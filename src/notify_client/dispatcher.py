"""Client dispatcher: immediate send when open, queue otherwise.

Owns the channel state machine::

    CLOSED --connect--> CONNECTING --open--> OPEN --close/error--> CLOSED

From CLOSED a reconnect is scheduled with capped exponential backoff unless
the close was a deliberate :meth:`MessageDispatcher.disconnect` or the
attempt budget is spent, in which case the state becomes DISCONNECTED.
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from src.notify_client.channel import Channel
from src.notify_client.clock import Clock, SystemClock, TimerHandle
from src.notify_client.config import ConnectionState, DispatcherConfig, MessagePriority, backoff_delay
from src.notify_client.exceptions import ChannelClosed, InvalidTransition
from src.notify_client.message_id import message_id
from src.notify_client.queue import PriorityMessageQueue, QueuedMessage

logger = logging.getLogger(__name__)

Connector = Callable[[], Awaitable[Channel]]
ConnectionHandler = Callable[[ConnectionState], Any]

ALLOWED_TRANSITIONS: Dict[ConnectionState, Set[ConnectionState]] = {
    ConnectionState.CLOSED: {ConnectionState.CONNECTING, ConnectionState.DISCONNECTED},
    ConnectionState.CONNECTING: {ConnectionState.OPEN, ConnectionState.CLOSED},
    ConnectionState.OPEN: {ConnectionState.CLOSED},
    ConnectionState.DISCONNECTED: {ConnectionState.CONNECTING, ConnectionState.CLOSED},
}


class MessageDispatcher:
    """Single entry point for outbound client messages."""

    def __init__(
        self,
        connector: Connector,
        queue: Optional[PriorityMessageQueue] = None,
        config: Optional[DispatcherConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self._connector = connector
        self._clock = clock or SystemClock()
        self._queue = queue or PriorityMessageQueue(clock=self._clock)
        self._config = config or DispatcherConfig()

        self._state = ConnectionState.CLOSED
        self._channel: Optional[Channel] = None
        self._listen_task: Optional[asyncio.Task] = None
        self._reconnect_timer: Optional[TimerHandle] = None
        self._reconnect_attempts = 0
        self._next_reconnect_delay: Optional[float] = None
        self._manual_close = False

        self._handlers: Dict[str, Callable[[Any], Any]] = {}
        self._default_handler: Optional[Callable[[dict], Any]] = None
        self._connection_handlers: Set[ConnectionHandler] = set()

    # ── State ────────────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return (
            self._state == ConnectionState.OPEN
            and self._channel is not None
            and self._channel.is_open
        )

    @property
    def queue(self) -> PriorityMessageQueue:
        return self._queue

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def next_reconnect_delay(self) -> Optional[float]:
        """Delay of the currently scheduled reconnect, if any."""
        return self._next_reconnect_delay if self._reconnect_timer is not None else None

    def _transition(self, new_state: ConnectionState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self._state]:
            raise InvalidTransition(self._state.value, new_state.value)
        old_state, self._state = self._state, new_state
        logger.debug("Connection state %s -> %s", old_state.value, new_state.value)
        for handler in list(self._connection_handlers):
            try:
                handler(new_state)
            except Exception:
                logger.exception("Connection handler failed")

    def on_connection_change(self, handler: ConnectionHandler) -> None:
        self._connection_handlers.add(handler)

    def remove_connection_handler(self, handler: ConnectionHandler) -> None:
        self._connection_handlers.discard(handler)

    # ── Connect / close ──────────────────────────────────────────────

    async def connect(self) -> bool:
        """Open a channel, resetting the reconnect budget.

        Returns True once the channel is open and the queue has drained.
        """
        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            return self._state == ConnectionState.OPEN
        self._manual_close = False
        self._reconnect_attempts = 0
        self._cancel_reconnect()
        return await self._open_channel()

    async def _open_channel(self) -> bool:
        self._transition(ConnectionState.CONNECTING)
        try:
            channel = await self._connector()
        except Exception as e:
            logger.warning("Connection attempt failed: %s", e)
            if self._state != ConnectionState.CONNECTING:
                return False  # disconnect() already closed us
            self._transition(ConnectionState.CLOSED)
            self._schedule_reconnect()
            return False

        if self._manual_close:
            # disconnect() arrived while we were connecting
            await channel.close()
            if self._state == ConnectionState.CONNECTING:
                self._transition(ConnectionState.CLOSED)
            return False

        self._channel = channel
        self._reconnect_attempts = 0
        self._transition(ConnectionState.OPEN)
        logger.info("Channel open, draining %d queued messages", len(self._queue))
        self._listen_task = asyncio.create_task(self._listen(channel))
        await self._queue.drain(self._send_queued)
        return True

    async def disconnect(self) -> None:
        """Deliberate close: no reconnect follows."""
        self._manual_close = True
        self._cancel_reconnect()
        self._queue.detach()

        channel, self._channel = self._channel, None
        task, self._listen_task = self._listen_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if channel is not None:
            try:
                await channel.close()
            except Exception as e:
                logger.debug("Channel close raised: %s", e)

        if self._state != ConnectionState.CLOSED:
            self._transition(ConnectionState.CLOSED)
        logger.info("Disconnected by client")

    async def handle_close(self, channel: Optional[Channel] = None) -> None:
        """React to the channel closing or erroring underneath us."""
        if channel is not None and channel is not self._channel:
            return  # stale channel from an earlier session
        if self._state != ConnectionState.OPEN:
            return

        dropped, self._channel = self._channel, None
        self._listen_task = None
        self._queue.detach()
        if dropped is not None and dropped.is_open:
            # the listener died on its own; release the socket before reconnecting
            try:
                await dropped.close()
            except Exception as e:
                logger.debug("Channel close raised: %s", e)
            if self._state != ConnectionState.OPEN:
                return  # disconnect() ran while we were closing
        self._transition(ConnectionState.CLOSED)
        logger.info("Channel closed")
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._manual_close or not self._config.auto_reconnect:
            return
        if self._reconnect_attempts >= self._config.max_reconnect_attempts:
            logger.error(
                "Max reconnection attempts reached (%d)", self._config.max_reconnect_attempts
            )
            self._transition(ConnectionState.DISCONNECTED)
            return

        self._reconnect_attempts += 1
        delay = backoff_delay(
            self._reconnect_attempts,
            self._config.reconnect_delay,
            self._config.max_reconnect_delay,
        )
        self._next_reconnect_delay = delay
        logger.info(
            "Reconnecting in %.1fs (attempt %d/%d)",
            delay,
            self._reconnect_attempts,
            self._config.max_reconnect_attempts,
        )
        self._reconnect_timer = self._clock.call_later(delay, self._on_reconnect_timer)

    def _cancel_reconnect(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    async def _on_reconnect_timer(self) -> None:
        self._reconnect_timer = None
        if self._manual_close or self._state != ConnectionState.CLOSED:
            return
        await self._open_channel()

    async def _listen(self, channel: Channel) -> None:
        try:
            while True:
                raw = await channel.recv()
                await self.handle_incoming(raw)
        except ChannelClosed as e:
            logger.info("Channel closed by peer (code=%s)", e.code)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Channel listener failed")
        await self.handle_close(channel)

    # ── Outbound ─────────────────────────────────────────────────────

    async def send_message(
        self,
        message_type: str,
        payload: Any = None,
        priority: MessagePriority = MessagePriority.NORMAL,
        max_retries: Optional[int] = None,
        expires_at: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Send now if the channel is open, otherwise queue. Returns the message id."""
        msg_id = message_id(message_type, payload)
        now = self._clock.now()

        if expires_at is not None and expires_at < now:
            logger.info("Message already expired, not sent: %s", msg_id)
            return msg_id

        if self.is_open:
            try:
                await self._channel.send(self._encode(message_type, payload, msg_id, now))
                logger.debug("Message sent immediately: %s", msg_id)
                return msg_id
            except Exception as e:
                logger.warning("Immediate send failed, queuing %s: %s", msg_id, e)

        return self._queue.enqueue(
            message_type,
            payload,
            priority=priority,
            max_retries=max_retries,
            expires_at=expires_at,
            metadata=metadata,
        )

    async def ping(self) -> str:
        return await self.send_message("ping", priority=MessagePriority.LOW)

    async def echo(self, data: Any) -> str:
        return await self.send_message("ECHO", data)

    async def acknowledge(self, notification_id: str) -> str:
        return await self.send_message(
            "ack", {"notification_id": notification_id}, priority=MessagePriority.HIGH
        )

    async def _send_queued(self, message: QueuedMessage) -> bool:
        channel = self._channel
        if channel is None or not channel.is_open:
            # going away; stop draining without spending a retry
            self._queue.detach()
            return False
        await channel.send(
            self._encode(message.type, message.payload, message.id, message.enqueued_at)
        )
        return True

    @staticmethod
    def _encode(message_type: str, payload: Any, msg_id: str, timestamp: float) -> str:
        return json.dumps(
            {"type": message_type, "data": payload, "id": msg_id, "timestamp": timestamp},
            default=str,
        )

    # ── Inbound ──────────────────────────────────────────────────────

    def on_message(self, handler: Callable[[dict], Any]) -> None:
        """Handle every frame type without a specific handler."""
        self._default_handler = handler

    def on_message_type(self, message_type: str, handler: Callable[[Any], Any]) -> None:
        """Handle frames of one type; the handler receives the frame's ``data``."""
        self._handlers[message_type] = handler

    async def handle_incoming(self, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error("Failed to parse incoming message: %s", e)
            return
        if not isinstance(frame, dict):
            logger.warning("Ignoring non-object frame")
            return

        frame_type = frame.get("type")
        if frame_type == "ping" and self.is_open:
            await self._channel.send(json.dumps({"type": "pong"}))

        handler = self._handlers.get(frame_type)
        if handler is not None:
            argument: Any = frame.get("data")
        elif self._default_handler is not None:
            handler, argument = self._default_handler, frame
        else:
            if frame_type not in ("ping", "pong"):
                logger.debug("No handler for message type: %s", frame_type)
            return

        try:
            result = handler(argument)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Message handler failed for type: %s", frame_type)

    # ── Teardown ─────────────────────────────────────────────────────

    async def close(self) -> None:
        """Disconnect and release the queue's timers and contents."""
        await self.disconnect()
        self._queue.close()
        self._handlers.clear()
        self._default_handler = None
        self._connection_handlers.clear()
