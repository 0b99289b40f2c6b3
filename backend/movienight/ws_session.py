"""One websocket connection driving a lobby coordinator and then a game controller."""

from __future__ import annotations

import asyncio
from dataclasses import asdict
from datetime import datetime, timezone
import logging
from typing import Any, Awaitable, Callable, Optional

from fastapi import WebSocket

from .config import settings
from .dispatcher import Dispatcher
from .errors import AppError, ValidationError
from .game_controller import GameStageController
from .gateway import PersistenceGateway
from .lobby_coordinator import LobbyCoordinator
from .notifications import Toast, Toaster
from .rows import LobbyRow
from .session_store import MemoryStorage, SessionContext

logger = logging.getLogger("movienight.ws")

Handler = Callable[[dict], Awaitable[None]]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class PlayerSocketSession:
    def __init__(
        self,
        websocket: WebSocket,
        gateway: PersistenceGateway,
        dispatcher: Dispatcher,
        *,
        lobby_code: str,
        player_id: str,
    ) -> None:
        self.websocket = websocket
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.lobby_code = lobby_code
        self.player_id = player_id

        self.loop = asyncio.get_running_loop()
        self.outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.toaster = Toaster(sink=self._on_toast)
        self.coordinator = LobbyCoordinator(
            gateway,
            session=SessionContext(MemoryStorage()),
            toaster=self.toaster,
            on_redirect=self._on_redirect,
            on_change=self._push_lobby_state,
        )
        self.controller: Optional[GameStageController] = None
        self._streaming = False
        self._handlers: dict[str, Handler] = {
            "ping": self._handle_ping,
            "start_game": self._handle_start_game,
            "submit_data": self._handle_submit_data,
            "generate_content": self._handle_generate_content,
            "answer": self._handle_answer,
            "next": self._handle_next,
            "chat": self._handle_chat,
            "lock_category": self._handle_lock_category,
            "set_winner": self._handle_set_winner,
            "end_game": self._handle_end_game,
        }

    # ---------- outbound ----------
    def send(self, message: dict[str, Any]) -> None:
        if not self._streaming:
            return
        # Change-feed callbacks may fire outside the loop that owns the socket.
        self.loop.call_soon_threadsafe(self.outbox.put_nowait, message)

    def _on_toast(self, toast: Toast) -> None:
        self.send({"type": "toast", "data": asdict(toast)})

    def _push_lobby_state(self) -> None:
        self.send({"type": "lobby_state", "data": self.coordinator.snapshot()})

    def _push_game_state(self) -> None:
        if self.controller is not None:
            self.send({"type": "game_state", "data": self.controller.snapshot()})

    def _on_redirect(self, lobby: LobbyRow) -> None:
        if self.controller is not None or self.coordinator.player is None:
            return
        self.controller = GameStageController(
            self.gateway,
            self.dispatcher,
            toaster=self.toaster,
            on_change=self._push_game_state,
        )
        self.controller.initialize(lobby.id, self.coordinator.player.id)
        self.coordinator.close()

    async def _send_loop(self) -> None:
        while True:
            message = await self.outbox.get()
            await self.websocket.send_json(message)

    # ---------- lifecycle ----------
    def open(self) -> None:
        """Load the lobby for this player; raises ``NotFoundError`` for unknown codes or players."""
        self.coordinator.load(self.lobby_code, self.player_id)
        if not self.coordinator.redirected:
            self.coordinator.subscribe()

    async def run(self) -> None:
        self._streaming = True
        lobby = self.coordinator.lobby
        self.send({"type": "connected", "lobby_code": lobby.code if lobby else self.lobby_code})
        if self.controller is not None:
            self._push_game_state()
        else:
            self._push_lobby_state()

        sender = asyncio.create_task(self._send_loop())
        try:
            while True:
                try:
                    message = await asyncio.wait_for(
                        self.websocket.receive_json(),
                        timeout=settings.ws_idle_timeout_seconds,
                    )
                except asyncio.TimeoutError:
                    self.send({"type": "ping", "ts": _now()})
                    continue
                if sender.done():
                    break
                await self.handle(message if isinstance(message, dict) else {})
        finally:
            sender.cancel()

    def close(self) -> None:
        self.coordinator.close()
        if self.controller is not None:
            self.controller.close()

    # ---------- inbound ----------
    async def handle(self, message: dict) -> None:
        msg_type = str(message.get("type") or "").lower()
        handler = self._handlers.get(msg_type)
        if handler is None:
            self.send({"type": "error", "detail": "Unsupported message type"})
            return
        try:
            await handler(message)
        except AppError as exc:
            logger.info(
                "WebSocket action rejected",
                extra={
                    "event": "ws_action_rejected",
                    "lobby_code": self.lobby_code,
                    "player_id": self.player_id,
                    "reason": msg_type,
                    "status": exc.status_code,
                },
            )
            self.send({"type": "error", "detail": exc.message, "status": exc.status_code})

    def _game(self) -> GameStageController:
        if self.controller is None:
            raise ValidationError("The game has not started yet")
        return self.controller

    async def _handle_ping(self, message: dict) -> None:
        self.send({"type": "pong", "ts": _now()})

    async def _handle_start_game(self, message: dict) -> None:
        self.coordinator.start_game()

    async def _handle_submit_data(self, message: dict) -> None:
        game = self._game()
        payload = message.get("predictions") if game.mode == "predictions" else message.get("favorites")
        await game.submit_data(payload if payload is not None else [])

    async def _handle_generate_content(self, message: dict) -> None:
        await self._game().generate_content()

    async def _handle_answer(self, message: dict) -> None:
        raw_time = message.get("answer_time_ms")
        try:
            answer_time_ms = int(raw_time) if raw_time is not None else None
        except (TypeError, ValueError):
            raise ValidationError("answer_time_ms must be a number")
        outcome = await self._game().answer_question(
            str(message.get("question_id") or ""),
            str(message.get("answer") or ""),
            answer_time_ms,
        )
        self.send(
            {
                "type": "answer_result",
                "data": {
                    "question_id": outcome.answer.question_id,
                    "is_correct": outcome.is_correct,
                    "points": outcome.delta,
                    "streak": outcome.streak,
                    "duplicate": outcome.duplicate,
                },
            }
        )

    async def _handle_next(self, message: dict) -> None:
        self._game().advance_question()

    async def _handle_chat(self, message: dict) -> None:
        self._game().send_chat(str(message.get("emoji") or ""), message.get("reaction"))

    async def _handle_lock_category(self, message: dict) -> None:
        self._game().lock_category(str(message.get("category_id") or ""))

    async def _handle_set_winner(self, message: dict) -> None:
        await self._game().set_winner(
            str(message.get("category_id") or ""),
            str(message.get("nominee_id") or ""),
        )

    async def _handle_end_game(self, message: dict) -> None:
        await self._game().end_game()
