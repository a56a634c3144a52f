"""Best-effort fan-out of frames to registered connections."""

import logging
from typing import Iterable, List

from src.realtime.config import CloseCode
from src.realtime.exceptions import TransientSendFailure
from src.realtime.registry import Connection, ConnectionRegistry

logger = logging.getLogger(__name__)


class BroadcastRouter:
    """Routes frames to a user's connections, a group, or everyone.

    Delivery is at-most-once per currently open connection. A failed write
    evicts that connection instead of retrying it; end-to-end reliability
    comes from the client queue plus the business layer's durable list.
    """

    def __init__(self, registry: ConnectionRegistry):
        self._registry = registry

    async def broadcast_to_user(self, user_id: str, message: dict) -> int:
        """Send *message* to every open connection owned by *user_id*."""
        targets = self._registry.connections_for_user(user_id)
        if not targets:
            logger.debug("No connections for user %s", user_id)
            return 0

        sent = await self._fan_out(targets, message)
        logger.info(
            "Broadcast %s to user %s (%d/%d connections)",
            message.get("type"),
            user_id,
            sent,
            len(targets),
        )
        return sent

    async def broadcast_to_group(self, scope_key: str, role: str, message: dict) -> int:
        """Send *message* to every open connection with this role and scope key."""
        targets = self._registry.connections_for_group(role, scope_key)
        sent = await self._fan_out(targets, message)
        logger.info(
            "Broadcast %s to %s group %s (%d connections)",
            message.get("type"),
            role,
            scope_key,
            sent,
        )
        return sent

    async def broadcast_to_all(self, message: dict) -> int:
        sent = await self._fan_out(self._registry.all_connections(), message)
        logger.info("Broadcast %s to all clients (%d connections)", message.get("type"), sent)
        return sent

    async def _fan_out(self, targets: Iterable[Connection], message: dict) -> int:
        # *targets* is a snapshot list, so evictions during the awaits below
        # cannot mutate what we iterate.
        sent = 0
        failed: List[Connection] = []
        for conn in targets:
            if not conn.is_open or self._registry.get(conn.connection_id) is None:
                continue
            try:
                await conn.send(message)
                sent += 1
            except TransientSendFailure as e:
                logger.error("Send to %s failed, evicting: %s", conn.connection_id, e.cause)
                self._registry.unregister(conn.connection_id)
                failed.append(conn)

        for conn in failed:
            await conn.terminate(CloseCode.GOING_AWAY, "Send failed")
        return sent
