"""
WebSocket Manager - Handles real-time connections and broadcasts.

Connected clients receive a project_updated event whenever a project or
the field configuration changes, and re-fetch what they display.
"""
import asyncio
import json
import logging
from typing import Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class WebSocketManager:
    """Tracks open WebSocket connections and fans messages out to them."""

    def __init__(self):
        self._connections: Set[WebSocket] = set()
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket):
        """Accept and register a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self._connections.add(websocket)
        logger.info("WebSocket connected. Total connections: %d", len(self._connections))

    async def disconnect(self, websocket: WebSocket):
        async with self._lock:
            self._connections.discard(websocket)
        logger.info("WebSocket disconnected. Total connections: %d", len(self._connections))

    async def broadcast(self, message: dict):
        """
        Broadcast a message to all connected clients.

        Clients whose send fails are dropped.
        """
        if not self._connections:
            return

        message_text = json.dumps(message)
        failed: Set[WebSocket] = set()

        async with self._lock:
            for websocket in self._connections:
                try:
                    await websocket.send_text(message_text)
                except Exception:
                    logger.debug("Dropping WebSocket after failed send", exc_info=True)
                    failed.add(websocket)

            self._connections -= failed

    async def notify_project_updated(self, project_id: Optional[str] = None):
        """Tell clients a project changed (None: the gallery or field config changed)."""
        await self.broadcast({
            "type": "project_updated",
            "project_id": project_id
        })

    @property
    def connection_count(self) -> int:
        return len(self._connections)


# Global instance
ws_manager = WebSocketManager()
