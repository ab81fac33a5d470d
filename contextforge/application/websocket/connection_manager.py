from typing import Dict, Optional
from fastapi import WebSocket
import asyncio
from datetime import datetime, timezone
import structlog

from .schema.events import BaseEvent, ConnectionEvent, ErrorEvent

logger = structlog.get_logger(__name__)


class ConnectionManager:
    """Tracks WebSocket subscribers; several connections may follow one generation"""

    def __init__(self):
        self.active_connections: Dict[str, WebSocket] = {}
        self.connection_metadata: Dict[str, Dict] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, connection_id: str, generation_id: str):
        """Accept a new WebSocket connection"""
        await websocket.accept()

        async with self._lock:
            self.active_connections[connection_id] = websocket
            self.connection_metadata[connection_id] = {
                "generation_id": generation_id,
                "connected_at": datetime.now(timezone.utc),
            }

        await self.send_event(
            connection_id,
            ConnectionEvent(status="connected", generation_id=generation_id)
        )

        logger.info("WebSocket connected", connection_id=connection_id, generation_id=generation_id)

    async def disconnect(self, connection_id: str, code: int = 1000):
        """Close and forget a connection. Safe to call twice."""
        async with self._lock:
            websocket = self.active_connections.pop(connection_id, None)
            self.connection_metadata.pop(connection_id, None)

        if websocket is None:
            return

        try:
            await websocket.close(code=code)
        except RuntimeError as e:
            # Already closed by the client
            logger.debug("WebSocket already closed", connection_id=connection_id, error=str(e))

        logger.info("WebSocket disconnected", connection_id=connection_id)

    async def send_event(self, connection_id: str, event: BaseEvent) -> bool:
        """Send an event to one connection; a failed send drops the connection"""
        websocket = self.active_connections.get(connection_id)
        if websocket is None:
            logger.warning("Attempted to send to disconnected client", connection_id=connection_id)
            return False

        try:
            await websocket.send_json(event.model_dump(mode="json"))
            return True
        except Exception as e:
            logger.error("Failed to send event", connection_id=connection_id, error=str(e))
            await self.disconnect(connection_id)
            return False

    async def send_error(self, connection_id: str, error_message: str, error_code: Optional[str] = None):
        """Send an error event to a connection"""
        await self.send_event(
            connection_id,
            ErrorEvent(payload={"message": error_message}, error_code=error_code)
        )

    async def disconnect_all(self):
        for connection_id in list(self.active_connections.keys()):
            await self.disconnect(connection_id, code=1001)
