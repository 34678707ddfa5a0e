import json
import logging
from typing import Any, Dict, List

from fastapi import WebSocket


logger = logging.getLogger(__name__)


class ConnectionManager:

    def __init__(self) -> None:
        self.active_connections: Dict[str, List[WebSocket]] = {}

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.setdefault(user_id, []).append(websocket)

    def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        connections = self.active_connections.get(user_id)
        if not connections:
            return
        if websocket in connections:
            connections.remove(websocket)
        if not connections:
            del self.active_connections[user_id]

    def is_connected(self, user_id: str) -> bool:
        return bool(self.active_connections.get(user_id))

    async def send_frame(self, user_id: str, frame: Dict[str, Any]) -> int:
        """Send a JSON frame to every socket of a user; returns sockets reached."""
        text = json.dumps(frame)
        sent = 0
        for conn in list(self.active_connections.get(user_id, [])):
            try:
                await conn.send_text(text)
                sent += 1
            except RuntimeError as exc:
                logger.debug("Dropping closed socket for %s: %s", user_id, exc)
                self.disconnect(user_id, conn)
        return sent
