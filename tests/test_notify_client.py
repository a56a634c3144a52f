"""Tests for the notification client: message ids, the priority queue and
the dispatcher's connection state machine."""

import asyncio
import json

import pytest

from src.notify_client.clock import ManualClock
from src.notify_client.config import (
    ConnectionState,
    DispatcherConfig,
    MessagePriority,
    QueueConfig,
    backoff_delay,
)
from src.notify_client.channel import with_token
from src.notify_client.dispatcher import MessageDispatcher
from src.notify_client.exceptions import ChannelClosed, InvalidTransition
from src.notify_client.message_id import canonical_json, message_id
from src.notify_client.queue import PriorityMessageQueue

from tests.conftest import FakeChannel


class RecordingSender:
    """Sender that records (time, message id) and fails on demand."""

    def __init__(self, clock, fail: bool = False):
        self.clock = clock
        self.fail = fail
        self.calls = []

    async def __call__(self, message):
        self.calls.append((self.clock.now(), message.id))
        return not self.fail

    @property
    def ids(self):
        return [msg_id for _, msg_id in self.calls]


# ── Message Id Tests ─────────────────────────────────────────────────


class TestMessageId:
    def test_pure_function_of_content(self):
        assert message_id("chat", {"a": 1, "b": 2}) == message_id("chat", {"b": 2, "a": 1})

    def test_shape(self):
        msg_id = message_id("ack", {"notification_id": "n1"})
        prefix, digest = msg_id.split("_", 1)
        assert prefix == "ack"
        assert len(digest) == 16

    def test_type_and_payload_distinguish(self):
        assert message_id("a", {"x": 1}) != message_id("b", {"x": 1})
        assert message_id("a", {"x": 1}) != message_id("a", {"x": 2})

    def test_canonical_json(self):
        assert canonical_json({"b": [1, 2], "a": None}) == '{"a":null,"b":[1,2]}'


class TestBackoff:
    def test_doubles_then_caps(self):
        delays = [backoff_delay(n, 1.0, 30.0) for n in range(1, 8)]
        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]


# ── Clock Tests ──────────────────────────────────────────────────────


class TestManualClock:
    @pytest.mark.asyncio
    async def test_timers_fire_in_order(self):
        clock = ManualClock()
        fired = []
        clock.call_later(2, lambda: fired.append(("b", clock.now())))
        clock.call_later(1, lambda: fired.append(("a", clock.now())))
        cancelled = clock.call_later(1.5, lambda: fired.append(("x", clock.now())))
        cancelled.cancel()
        await clock.advance(5)
        assert fired == [("a", 1), ("b", 2)]
        assert clock.now() == 5

    @pytest.mark.asyncio
    async def test_coroutine_callbacks_awaited(self):
        clock = ManualClock()
        fired = []

        async def cb():
            fired.append(clock.now())

        clock.call_later(3, cb)
        await clock.advance(2)
        assert fired == []
        assert clock.next_due() == 3
        await clock.advance(1)
        assert fired == [3]


# ── Queue Tests ──────────────────────────────────────────────────────


class TestPriorityMessageQueue:
    """Tests for PriorityMessageQueue."""

    def setup_method(self):
        self.clock = ManualClock(start=100.0)
        self.queue = PriorityMessageQueue(QueueConfig(), clock=self.clock)

    def test_enqueue_returns_content_id(self):
        msg_id = self.queue.enqueue("chat", {"text": "hi"})
        assert msg_id == message_id("chat", {"text": "hi"})
        assert len(self.queue) == 1

    def test_duplicate_inside_window_collapses(self):
        first = self.queue.enqueue("chat", {"text": "hi"})
        second = self.queue.enqueue("chat", {"text": "hi"})
        assert first == second
        assert len(self.queue) == 1

    @pytest.mark.asyncio
    async def test_dedup_window_outlives_delivery(self):
        msg_id = self.queue.enqueue("chat", {"text": "hi"})
        self.queue.remove(msg_id)
        self.queue.enqueue("chat", {"text": "hi"})
        assert len(self.queue) == 0

        await self.clock.advance(301)
        self.queue.enqueue("chat", {"text": "hi"})
        assert len(self.queue) == 1

    @pytest.mark.asyncio
    async def test_priority_order_then_fifo(self):
        low = self.queue.enqueue("m", {"n": "low"}, priority=MessagePriority.LOW)
        n1 = self.queue.enqueue("m", {"n": 1})
        crit = self.queue.enqueue("m", {"n": "crit"}, priority=MessagePriority.CRITICAL)
        n2 = self.queue.enqueue("m", {"n": 2})
        high = self.queue.enqueue("m", {"n": "high"}, priority=MessagePriority.HIGH)

        sender = RecordingSender(self.clock)
        delivered = await self.queue.drain(sender)
        assert delivered == 5
        assert sender.ids == [crit, high, n1, n2, low]
        assert len(self.queue) == 0

    @pytest.mark.asyncio
    async def test_retry_exactly_max_retries_with_growing_delays(self):
        self.queue.enqueue("m", {"n": 1}, max_retries=3)
        sender = RecordingSender(self.clock, fail=True)

        await self.queue.drain(sender)
        await self.clock.advance(60)

        times = [t for t, _ in sender.calls]
        assert times == [100.0, 101.0, 103.0, 107.0]
        assert len(self.queue) == 0
        assert self.queue.get_status().dropped == 1

    @pytest.mark.asyncio
    async def test_retry_then_success(self):
        msg_id = self.queue.enqueue("m", {"n": 1})
        sender = RecordingSender(self.clock, fail=True)
        await self.queue.drain(sender)
        assert self.queue.get(msg_id).retry_count == 1

        sender.fail = False
        await self.clock.advance(1)
        assert sender.ids == [msg_id, msg_id]
        assert len(self.queue) == 0
        assert self.queue.get_status().delivered == 1

    @pytest.mark.asyncio
    async def test_retry_wait_does_not_block_other_messages(self):
        first = self.queue.enqueue("m", {"n": 1}, max_retries=1)
        calls = []

        async def sender(message):
            calls.append(message.id)
            return message.id != first or len(calls) > 2

        await self.queue.drain(sender)
        second = self.queue.enqueue("m", {"n": 2})
        await self.clock.advance(1)
        assert calls == [first, second, first]

    @pytest.mark.asyncio
    async def test_expired_never_delivered(self):
        self.queue.enqueue("m", {"n": 1}, expires_at=105.0)
        keep = self.queue.enqueue("m", {"n": 2})
        await self.clock.advance(10)

        sender = RecordingSender(self.clock)
        await self.queue.drain(sender)
        assert sender.ids == [keep]
        assert self.queue.get_status().expired == 1

    def test_already_expired_not_queued(self):
        self.queue.enqueue("m", {"n": 1}, expires_at=99.0)
        assert len(self.queue) == 0
        assert self.queue.get_status().expired == 1

    @pytest.mark.asyncio
    async def test_periodic_purge(self):
        self.queue.enqueue("m", {"n": 1}, expires_at=130.0)
        self.queue.start()
        await self.clock.advance(60)
        assert len(self.queue) == 0
        self.queue.stop()
        assert self.clock.pending() == []

    def test_capacity_evicts_oldest_low(self):
        for i in range(999):
            self.queue.enqueue("m", {"n": i})
        low = self.queue.enqueue("m", {"n": "low"}, priority=MessagePriority.LOW)
        assert len(self.queue) == 1000

        newcomer = self.queue.enqueue("m", {"n": "new"})
        assert len(self.queue) == 1000
        assert self.queue.get(low) is None
        assert self.queue.get(newcomer) is not None
        assert self.queue.get_status().evicted == 1

    def test_full_without_low_rejects_new(self):
        queue = PriorityMessageQueue(QueueConfig(max_queue_size=2), clock=self.clock)
        queue.enqueue("m", {"n": 1})
        queue.enqueue("m", {"n": 2})
        rejected = queue.enqueue("m", {"n": 3})
        assert len(queue) == 2
        assert queue.get(rejected) is None
        assert queue.get_status().dropped == 1

    @pytest.mark.asyncio
    async def test_concurrent_drain_collapses(self):
        for i in range(3):
            self.queue.enqueue("m", {"n": i})

        gate = asyncio.Event()
        calls = []

        async def slow_sender(message):
            calls.append(message.id)
            await gate.wait()
            return True

        first = asyncio.create_task(self.queue.drain(slow_sender))
        await asyncio.sleep(0)
        assert self.queue.processing

        second = await self.queue.drain(slow_sender)
        assert second == 0

        gate.set()
        assert await first == 3
        assert len(calls) == 3
        assert not self.queue.processing

    @pytest.mark.asyncio
    async def test_enqueue_while_attached_wakes_drain(self):
        sender = RecordingSender(self.clock)
        await self.queue.drain(sender)
        msg_id = self.queue.enqueue("m", {"n": 1})
        await self.clock.advance(0)
        assert sender.ids == [msg_id]

    @pytest.mark.asyncio
    async def test_detach_stops_redelivery(self):
        self.queue.enqueue("m", {"n": 1})
        sender = RecordingSender(self.clock, fail=True)
        await self.queue.drain(sender)
        self.queue.detach()
        await self.clock.advance(60)
        assert len(sender.calls) == 1
        assert len(self.queue) == 1

    @pytest.mark.asyncio
    async def test_sender_exception_counts_as_failure(self):
        msg_id = self.queue.enqueue("m", {"n": 1})

        async def broken(message):
            raise ChannelClosed()

        await self.queue.drain(broken)
        assert self.queue.get(msg_id).retry_count == 1

    @pytest.mark.asyncio
    async def test_sender_detaching_mid_send_keeps_retry_budget(self):
        msg_id = self.queue.enqueue("m", {"n": 1})

        async def going_away(message):
            self.queue.detach()
            return False

        await self.queue.drain(going_away)
        assert self.queue.get(msg_id).retry_count == 0
        assert not self.queue.attached
        assert self.clock.pending() == []

    @pytest.mark.asyncio
    async def test_expiry_boundary_is_exclusive(self):
        msg_id = self.queue.enqueue("m", {"n": 1}, expires_at=100.0)
        assert self.queue.get(msg_id) is not None

        sender = RecordingSender(self.clock)
        await self.queue.drain(sender)
        assert sender.ids == [msg_id]
        assert self.queue.get_status().expired == 0

    def test_status(self):
        self.queue.enqueue("m", {"n": 1}, priority=MessagePriority.HIGH)
        self.queue.enqueue("m", {"n": 2})
        status = self.queue.get_status()
        assert status.size == 2
        assert status.priority_counts == {"high": 1, "normal": 1}
        assert status.oldest_message == 100.0

    def test_close(self):
        self.queue.enqueue("m", {"n": 1})
        self.queue.start()
        self.queue.close()
        assert len(self.queue) == 0
        assert not self.queue.attached


# ── Dispatcher Tests ─────────────────────────────────────────────────


class FakeConnector:
    """Hands out FakeChannels, or fails while ``fail`` is set."""

    def __init__(self):
        self.fail = False
        self.calls = 0
        self.channels = []

    async def __call__(self):
        self.calls += 1
        if self.fail:
            raise ConnectionRefusedError("hub unreachable")
        channel = FakeChannel()
        self.channels.append(channel)
        return channel


class TestMessageDispatcher:
    """Tests for MessageDispatcher."""

    def setup_method(self):
        self.clock = ManualClock(start=0.0)
        self.connector = FakeConnector()
        self.dispatcher = MessageDispatcher(
            self.connector,
            config=DispatcherConfig(max_reconnect_attempts=3),
            clock=self.clock,
        )
        self.states = []
        self.dispatcher.on_connection_change(self.states.append)

    async def _close(self):
        await self.dispatcher.close()

    @pytest.mark.asyncio
    async def test_send_while_closed_queues(self):
        msg_id = await self.dispatcher.send_message("chat", {"text": "hi"})
        assert self.dispatcher.state == ConnectionState.CLOSED
        assert self.dispatcher.queue.get(msg_id) is not None

    @pytest.mark.asyncio
    async def test_connect_drains_queue_in_priority_order(self):
        low = await self.dispatcher.send_message("m", {"n": 1}, priority=MessagePriority.LOW)
        crit = await self.dispatcher.send_message("m", {"n": 2}, priority=MessagePriority.CRITICAL)

        assert await self.dispatcher.connect() is True
        assert self.dispatcher.state == ConnectionState.OPEN
        sent = self.connector.channels[0].messages()
        assert [m["id"] for m in sent] == [crit, low]
        assert len(self.dispatcher.queue) == 0
        assert self.states == [ConnectionState.CONNECTING, ConnectionState.OPEN]
        await self._close()

    @pytest.mark.asyncio
    async def test_send_while_open_is_immediate(self):
        await self.dispatcher.connect()
        msg_id = await self.dispatcher.send_message("chat", {"text": "hi"})
        frame = self.connector.channels[0].messages()[0]
        assert frame["type"] == "chat"
        assert frame["data"] == {"text": "hi"}
        assert frame["id"] == msg_id
        assert len(self.dispatcher.queue) == 0
        await self._close()

    @pytest.mark.asyncio
    async def test_failed_immediate_send_falls_back_to_queue(self):
        await self.dispatcher.connect()
        self.connector.channels[0].fail_sends = True
        msg_id = await self.dispatcher.send_message("chat", {"text": "hi"})
        assert self.dispatcher.queue.get(msg_id) is not None
        await self._close()

    @pytest.mark.asyncio
    async def test_expired_message_not_sent(self):
        await self.dispatcher.connect()
        await self.dispatcher.send_message("chat", {"text": "late"}, expires_at=-1.0)
        assert self.connector.channels[0].sent == []
        assert len(self.dispatcher.queue) == 0
        await self._close()

    @pytest.mark.asyncio
    async def test_reconnect_backoff_then_disconnected(self):
        self.connector.fail = True
        assert await self.dispatcher.connect() is False
        assert self.dispatcher.state == ConnectionState.CLOSED
        assert self.dispatcher.next_reconnect_delay == 1.0

        await self.clock.advance(1)
        assert self.dispatcher.next_reconnect_delay == 2.0
        await self.clock.advance(2)
        assert self.dispatcher.next_reconnect_delay == 4.0
        await self.clock.advance(4)

        assert self.connector.calls == 4
        assert self.dispatcher.state == ConnectionState.DISCONNECTED
        assert self.clock.pending() == []

    @pytest.mark.asyncio
    async def test_reconnect_succeeds_and_resets_attempts(self):
        self.connector.fail = True
        await self.dispatcher.connect()
        self.connector.fail = False
        await self.clock.advance(1)
        assert self.dispatcher.state == ConnectionState.OPEN
        assert self.dispatcher.reconnect_attempts == 0
        await self._close()

    @pytest.mark.asyncio
    async def test_connect_after_disconnected_restarts(self):
        self.dispatcher = MessageDispatcher(
            self.connector,
            config=DispatcherConfig(max_reconnect_attempts=0),
            clock=self.clock,
        )
        self.connector.fail = True
        await self.dispatcher.connect()
        assert self.dispatcher.state == ConnectionState.DISCONNECTED

        self.connector.fail = False
        assert await self.dispatcher.connect() is True
        await self._close()

    @pytest.mark.asyncio
    async def test_peer_close_schedules_reconnect(self):
        await self.dispatcher.connect()
        channel = self.connector.channels[0]
        channel.drop()
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert self.dispatcher.state == ConnectionState.CLOSED
        assert self.dispatcher.next_reconnect_delay == 1.0
        await self.clock.advance(1)
        assert self.dispatcher.state == ConnectionState.OPEN
        assert len(self.connector.channels) == 2
        await self._close()

    @pytest.mark.asyncio
    async def test_stale_channel_close_ignored(self):
        await self.dispatcher.connect()
        await self.dispatcher.handle_close(FakeChannel())
        assert self.dispatcher.state == ConnectionState.OPEN
        await self._close()

    @pytest.mark.asyncio
    async def test_deliberate_disconnect_does_not_reconnect(self):
        await self.dispatcher.connect()
        await self.dispatcher.disconnect()
        assert self.dispatcher.state == ConnectionState.CLOSED
        assert self.connector.channels[0].closed_by_client
        await self.clock.advance(60)
        assert self.connector.calls == 1

    @pytest.mark.asyncio
    async def test_disconnect_stops_queue_draining(self):
        await self.dispatcher.connect()
        await self.dispatcher.disconnect()
        await self.dispatcher.send_message("m", {"n": 1})
        await self.clock.advance(60)
        assert len(self.dispatcher.queue) == 1

    def test_invalid_transition(self):
        with pytest.raises(InvalidTransition):
            self.dispatcher._transition(ConnectionState.OPEN)

    @pytest.mark.asyncio
    async def test_incoming_ping_answered_with_pong(self):
        await self.dispatcher.connect()
        await self.dispatcher.handle_incoming('{"type": "ping"}')
        assert self.connector.channels[0].messages() == [{"type": "pong"}]
        await self._close()

    @pytest.mark.asyncio
    async def test_incoming_dispatch_by_type(self):
        received = []
        fallback = []

        async def on_notification(data):
            received.append(data)

        self.dispatcher.on_message_type("notification", on_notification)
        self.dispatcher.on_message(fallback.append)

        await self.dispatcher.handle_incoming(json.dumps({"type": "notification", "data": {"id": 1}}))
        await self.dispatcher.handle_incoming(json.dumps({"type": "notification_count", "data": {}}))
        await self.dispatcher.handle_incoming("not json")

        assert received == [{"id": 1}]
        assert [f["type"] for f in fallback] == ["notification_count"]

    @pytest.mark.asyncio
    async def test_handler_error_keeps_session_open(self):
        received = []
        self.dispatcher.on_message_type("notification", lambda data: 1 / 0)
        self.dispatcher.on_message(received.append)
        await self.dispatcher.connect()
        channel = self.connector.channels[0]

        channel.feed(json.dumps({"type": "notification", "data": {"id": 1}}))
        channel.feed(json.dumps({"type": "notification_count", "data": {}}))
        for _ in range(3):
            await asyncio.sleep(0)

        assert self.dispatcher.state == ConnectionState.OPEN
        assert channel.is_open
        assert not channel.closed_by_client
        assert [f["type"] for f in received] == ["notification_count"]
        await self._close()

    @pytest.mark.asyncio
    async def test_listener_failure_closes_socket_before_reconnect(self):
        await self.dispatcher.connect()
        channel = self.connector.channels[0]
        channel.fail_sends = True
        channel.feed('{"type": "ping"}')
        for _ in range(3):
            await asyncio.sleep(0)

        assert self.dispatcher.state == ConnectionState.CLOSED
        assert channel.closed_by_client
        assert self.dispatcher.next_reconnect_delay == 1.0
        await self._close()

    @pytest.mark.asyncio
    async def test_closing_channel_does_not_spend_retries(self):
        await self.dispatcher.connect()
        self.connector.channels[0].open = False
        msg_id = await self.dispatcher.send_message("m", {"n": 1})
        await self.clock.advance(0)

        assert self.dispatcher.queue.get(msg_id).retry_count == 0
        assert not self.dispatcher.queue.attached
        await self._close()

    @pytest.mark.asyncio
    async def test_wrappers(self):
        await self.dispatcher.connect()
        await self.dispatcher.ping()
        await self.dispatcher.echo({"hello": "world"})
        await self.dispatcher.acknowledge("n-1")
        types = [m["type"] for m in self.connector.channels[0].messages()]
        assert types == ["ping", "ECHO", "ack"]
        assert self.connector.channels[0].messages()[2]["data"] == {"notification_id": "n-1"}
        await self._close()

    @pytest.mark.asyncio
    async def test_acknowledge_queues_at_high_priority(self):
        msg_id = await self.dispatcher.acknowledge("n-1")
        assert self.dispatcher.queue.get(msg_id).priority == MessagePriority.HIGH


class TestWithToken:
    def test_adds_token(self):
        assert with_token("ws://hub/ws/notifications", "abc") == "ws://hub/ws/notifications?token=abc"

    def test_replaces_existing_token(self):
        url = with_token("ws://hub/ws?a=1&token=old", "new")
        assert url == "ws://hub/ws?a=1&token=new"
