"""WebSocket connection manager for real-time partner pushes."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Coroutine
from typing import Any
from uuid import UUID

from starlette.websockets import WebSocket, WebSocketState

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks active WebSocket connections per partner."""

    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = {}
        self._loop: asyncio.AbstractEventLoop | None = None

    async def connect(
        self,
        partner_id: UUID,
        websocket: WebSocket,
        subprotocol: str | None = None,
    ) -> None:
        """Accept and register a WebSocket connection."""
        if subprotocol:
            await websocket.accept(subprotocol=subprotocol)
        else:
            await websocket.accept()
        self._loop = asyncio.get_running_loop()
        key = str(partner_id)
        if key not in self._connections:
            self._connections[key] = set()
        self._connections[key].add(websocket)
        logger.debug("WebSocket connected: partner=%s", partner_id)

    def disconnect(self, partner_id: UUID, websocket: WebSocket) -> None:
        """Remove a WebSocket connection."""
        key = str(partner_id)
        connections = self._connections.get(key)
        if connections:
            connections.discard(websocket)
            if not connections:
                del self._connections[key]
        logger.debug("WebSocket disconnected: partner=%s", partner_id)

    async def send_to_partner(self, partner_id: UUID, data: dict) -> None:
        """Send a JSON message to all connections for a partner."""
        key = str(partner_id)
        connections = self._connections.get(key, set())
        logger.debug(
            "WebSocket outbound push: partner=%s connections=%d",
            partner_id,
            len(connections),
        )
        dead: list[WebSocket] = []
        for ws in list(connections):
            try:
                if ws.client_state == WebSocketState.CONNECTED:
                    await ws.send_text(json.dumps(data))
            except Exception:
                dead.append(ws)
        for ws in dead:
            connections.discard(ws)
        if key in self._connections and not self._connections[key]:
            del self._connections[key]

    def submit(self, coro: Coroutine[Any, Any, Any]) -> bool:
        """Schedule ``coro`` on the serving event loop from any thread.

        Returns False (and closes the coroutine) when no loop is serving
        sockets yet.
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            coro.close()
            return False
        asyncio.run_coroutine_threadsafe(coro, loop)
        return True

    def get_connection_count(self, partner_id: UUID | None = None) -> int:
        """Get the number of active connections."""
        if partner_id is not None:
            return len(self._connections.get(str(partner_id), set()))
        return sum(len(conns) for conns in self._connections.values())


# Singleton instance
ws_manager = ConnectionManager()
