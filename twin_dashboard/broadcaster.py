"""Fans full agent snapshots out to every open realtime connection."""

import asyncio
from typing import Set

from loguru import logger

from .protocol import snapshot_message
from .storage import AgentStore


class UpdateBroadcaster:
    """Pushes the full agent list to every registered connection queue.

    Each connection owns an asyncio.Queue drained by its own sender task, so
    one slow socket never delays the others. Reads from the store and the
    enqueueing that follows are serialized by a lock: every queue sees
    snapshots in the order they were read.
    """

    def __init__(self, store: AgentStore):
        self.store = store
        self._connections: Set[asyncio.Queue] = set()
        self._lock = asyncio.Lock()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def register(self) -> asyncio.Queue:
        """Register a connection. Its queue starts with the current snapshot."""
        connection_queue: asyncio.Queue = asyncio.Queue()
        async with self._lock:
            agents = await self.store.get_agents()
            connection_queue.put_nowait(snapshot_message(agents))
            self._connections.add(connection_queue)
        logger.info(f"Realtime connection registered. Total connections: {len(self._connections)}")
        return connection_queue

    def unregister(self, connection_queue: asyncio.Queue) -> None:
        self._connections.discard(connection_queue)
        logger.info(f"Realtime connection unregistered. Total connections: {len(self._connections)}")

    async def broadcast(self) -> int:
        """Send the recomputed agent list to every connection.

        Returns the number of connections the snapshot was queued for.
        """
        async with self._lock:
            agents = await self.store.get_agents()
            message = snapshot_message(agents)
            targets = list(self._connections)
            for connection_queue in targets:
                connection_queue.put_nowait(message)
        logger.debug(f"Broadcast {len(message['data'])} agents to {len(targets)} connections")
        return len(targets)
