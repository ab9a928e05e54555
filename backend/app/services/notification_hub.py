from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class NotificationHub:
    """Per-user registry of open notification websockets."""

    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections[user_id].add(websocket)
        logger.debug("Notification websocket connected for user %s", user_id)

    async def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            self._discard(user_id, [websocket])

    def connected_users(self) -> int:
        return sum(1 for sockets in self._connections.values() if sockets)

    def _discard(self, user_id: str, sockets: list[WebSocket]) -> None:
        active = self._connections.get(user_id)
        if not active:
            return
        for socket in sockets:
            active.discard(socket)
        if not active:
            self._connections.pop(user_id, None)

    async def publish(self, user_id: str, payload: dict) -> int:
        async with self._lock:
            sockets = list(self._connections.get(user_id, set()))

        delivered = 0
        stale: list[WebSocket] = []
        for websocket in sockets:
            try:
                await websocket.send_json(payload)
                delivered += 1
            except Exception:  # pragma: no cover - network/runtime dependent
                stale.append(websocket)

        if stale:
            async with self._lock:
                self._discard(user_id, stale)
            logger.debug("Removed %d stale notification websocket(s) for user %s", len(stale), user_id)
        return delivered


notification_hub = NotificationHub()
