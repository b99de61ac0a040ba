"""Tenant-scoped live channel over WebSocket."""

import asyncio
import itertools
import logging
from typing import Any, Optional

from fastapi import WebSocket, WebSocketDisconnect

from .cache import CacheChange, ServerCache

logger = logging.getLogger(__name__)

# Close code sent to a client that fell too far behind
CLOSE_TOO_SLOW = 1013


class LiveConnection:
    """One connected client and its outbound queue."""

    _ids = itertools.count(1)

    def __init__(self, websocket: WebSocket, tenant_id: str, queue_size: int):
        self.id = next(self._ids)
        self.websocket = websocket
        self.tenant_id = tenant_id
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=queue_size)
        self.loop = asyncio.get_running_loop()
        self.dropped = False

    def __repr__(self):
        return f"<LiveConnection(id={self.id}, tenant={self.tenant_id})>"


class LiveChannel:
    """
    Pushes cache changes to the connected clients of the affected tenant.

    Each connection gets ``{"type": "initial", "servers": [...]}`` on
    connect, then ``{"type": "update", "event": ..., "servers": [...]}``
    for every change of its own tenant. A client whose queue overflows is
    disconnected.
    """

    def __init__(self, cache: ServerCache, queue_size: int = 100):
        """
        Initialize live channel.

        Args:
            cache: Cache to read snapshots from
            queue_size: Messages buffered per connection
        """
        self.cache = cache
        self.queue_size = queue_size
        self._connections: dict[int, LiveConnection] = {}

    def connections_for(self, tenant_id: str) -> list[LiveConnection]:
        return [c for c in self._connections.values() if c.tenant_id == tenant_id]

    def __len__(self) -> int:
        return len(self._connections)

    def notify(self, change: CacheChange) -> None:
        """
        Cache callback: queue an update for the change's tenant.

        May be called from any thread; delivery happens on each
        connection's event loop.
        """
        message = {
            "type": "update",
            "event": change.type.value,
            "servers": [change.entry.to_dict()],
        }
        for connection in self.connections_for(change.tenant_id):
            connection.loop.call_soon_threadsafe(self._push, connection, message)

    def _push(self, connection: LiveConnection, message: dict[str, Any]) -> None:
        if connection.dropped:
            return
        try:
            connection.queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(f"{connection} is too slow, disconnecting")
            connection.dropped = True
            self._connections.pop(connection.id, None)

    async def serve(self, websocket: WebSocket, tenant_id: str) -> None:
        """
        Run an accepted connection until the client disconnects.

        Args:
            websocket: Accepted WebSocket
            tenant_id: Tenant the client authenticated as
        """
        connection = LiveConnection(websocket, tenant_id, self.queue_size)
        self._connections[connection.id] = connection
        logger.info(f"Live connection opened: {connection} (total: {len(self)})")

        sender: Optional[asyncio.Task] = None
        try:
            await websocket.send_json(
                {
                    "type": "initial",
                    "servers": [entry.to_dict() for entry in self.cache.for_tenant(tenant_id)],
                }
            )
            sender = asyncio.create_task(self._send_loop(connection))

            # Clients do not send anything; this only notices disconnects
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            self._connections.pop(connection.id, None)
            if sender is not None:
                sender.cancel()
                await asyncio.gather(sender, return_exceptions=True)
            logger.info(f"Live connection closed: {connection} (remaining: {len(self)})")

    async def _send_loop(self, connection: LiveConnection) -> None:
        while not connection.dropped or not connection.queue.empty():
            message = await connection.queue.get()
            await connection.websocket.send_json(message)

        await connection.websocket.close(code=CLOSE_TOO_SLOW)
