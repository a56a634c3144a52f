"""Heartbeat sweep that evicts half-open connections."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from src.realtime.config import CloseCode, RealtimeConfig
from src.realtime.exceptions import TransientSendFailure
from src.realtime.frames import ping_frame
from src.realtime.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Outcome of one heartbeat sweep."""

    pinged: int = 0
    evicted: int = 0


class LivenessMonitor:
    """Pings every connection each interval and evicts the silent ones.

    A connection marked awaiting-pong by one sweep that has still not
    answered by the next is closed and unregistered, so an unresponsive
    socket survives at most two intervals.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        config: Optional[RealtimeConfig] = None,
    ):
        self._registry = registry
        self._config = config or RealtimeConfig()
        self._task: Optional[asyncio.Task] = None

    @property
    def interval(self) -> float:
        return self._config.heartbeat_interval_seconds

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self) -> SweepResult:
        result = SweepResult()

        for conn in self._registry.all_connections():
            if self._registry.get(conn.connection_id) is None:
                continue  # evicted by a concurrent send failure

            if not conn.is_alive:
                logger.info(
                    "Terminating unresponsive connection %s (user=%s)",
                    conn.connection_id,
                    conn.user_id,
                )
                self._registry.unregister(conn.connection_id)
                await conn.terminate(CloseCode.GOING_AWAY, "Heartbeat timeout")
                result.evicted += 1
                continue

            conn.is_alive = False
            try:
                await conn.send(ping_frame())
                result.pinged += 1
            except TransientSendFailure as e:
                logger.warning("Ping failed, evicting %s: %s", conn.connection_id, e.cause)
                self._registry.unregister(conn.connection_id)
                await conn.terminate(CloseCode.GOING_AWAY, "Ping failed")
                result.evicted += 1

        if result.evicted:
            logger.info(
                "Heartbeat sweep: pinged=%d evicted=%d", result.pinged, result.evicted
            )
        return result

    async def run(self) -> None:
        """Sweep forever at the configured interval."""
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Heartbeat sweep failed")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self.run())
        logger.info("Liveness monitor started (interval=%ss)", self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Liveness monitor stopped")
