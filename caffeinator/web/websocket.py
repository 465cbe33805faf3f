"""WebSocket connection manager pushing session events to out-of-process UIs."""
import asyncio
import logging
from typing import List, Optional

from fastapi import WebSocket

from ..core.events import Event


logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manage WebSocket connections and broadcast messages."""

    def __init__(self):
        self.active_connections: List[WebSocket] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def attach(self, loop: asyncio.AbstractEventLoop):
        """Remember the server loop so events from other threads can be forwarded."""
        self._loop = loop

    async def connect(self, websocket: WebSocket):
        """Accept a new WebSocket connection."""
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: WebSocket):
        """Remove a WebSocket connection."""
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

    async def broadcast(self, message: dict):
        """Broadcast message to all connected clients."""
        disconnected = []
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except Exception:
                disconnected.append(connection)

        # Clean up disconnected clients
        for conn in disconnected:
            self.disconnect(conn)

    def forward_event(self, event: Event):
        """Event bus handler: schedule a broadcast on the server loop.

        Called on whichever thread published the event (ticker, child-exit
        watcher, request handler). Never waits for delivery, since the
        publisher may be holding the session lock.
        """
        if not self.active_connections:
            return
        if self._loop is None or self._loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(self.broadcast(event.to_dict()), self._loop)

    @property
    def client_count(self) -> int:
        """Return number of connected clients."""
        return len(self.active_connections)
