from __future__ import annotations

import asyncio
import logging

from fastapi import WebSocket

from .metrics import ACTIVE_LOBBY_SOCKETS

logger = logging.getLogger("movienight.ws")


class ConnectionManager:
    """Tracks open sockets per lobby and player."""

    def __init__(self) -> None:
        self._active_lobbies: dict[str, dict[str, set[WebSocket]]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, lobby_code: str, player_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            lobby = self._active_lobbies.setdefault(lobby_code, {})
            lobby.setdefault(player_id, set()).add(websocket)
            ACTIVE_LOBBY_SOCKETS.set(len(self._active_lobbies))
        logger.info(
            "WebSocket connected",
            extra={
                "event": "ws_connected",
                "lobby_code": lobby_code,
                "player_id": player_id,
                "connections": self.lobby_connection_count(lobby_code),
            },
        )

    async def disconnect(self, lobby_code: str, player_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            lobby = self._active_lobbies.get(lobby_code)
            if not lobby:
                return

            sockets = lobby.get(player_id)
            if sockets and websocket in sockets:
                sockets.remove(websocket)
            if not sockets:
                lobby.pop(player_id, None)
            if not lobby:
                self._active_lobbies.pop(lobby_code, None)
            ACTIVE_LOBBY_SOCKETS.set(len(self._active_lobbies))
        logger.info(
            "WebSocket disconnected",
            extra={
                "event": "ws_disconnected",
                "lobby_code": lobby_code,
                "player_id": player_id,
                "connections": self.lobby_connection_count(lobby_code),
            },
        )

    def lobby_connection_count(self, lobby_code: str) -> int:
        lobby = self._active_lobbies.get(lobby_code, {})
        return sum(len(sockets) for sockets in lobby.values())
