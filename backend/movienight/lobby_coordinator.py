from __future__ import annotations

import logging
from typing import Callable, Optional
import uuid

from .change_feed import ChangeFeed, SubscriptionHandle
from .codes import normalize_lobby_code
from .errors import HostOnlyError, NotFoundError, SessionMissingError
from .gateway import PersistenceGateway
from .notifications import Toaster
from .rows import LobbyChange, LobbyRow, PlayerChange, PlayerRow
from .session_store import SessionContext, SessionIdentity
from .stages import LobbyStage

logger = logging.getLogger("movienight.lobby")


class LobbyCoordinator:
    """Pre-game view of one player: roster, host flag and the start transition."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        *,
        session: Optional[SessionContext] = None,
        toaster: Optional[Toaster] = None,
        on_redirect: Optional[Callable[[LobbyRow], None]] = None,
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self.gateway = gateway
        self.feed: ChangeFeed = gateway.feed
        self.session = session or SessionContext()
        self.toaster = toaster or Toaster()
        self.on_redirect = on_redirect
        self.on_change = on_change

        self.state = LobbyStage.LOADING
        self.lobby: Optional[LobbyRow] = None
        self.player: Optional[PlayerRow] = None
        self.players: dict[str, PlayerRow] = {}
        self._handles: list[SubscriptionHandle] = []
        self._redirected = False
        self._instance = uuid.uuid4().hex

    def __enter__(self) -> "LobbyCoordinator":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def is_host(self) -> bool:
        return bool(self.player and self.player.is_host)

    @property
    def redirected(self) -> bool:
        return self._redirected

    @property
    def player_list(self) -> list[PlayerRow]:
        return sorted(self.players.values(), key=lambda player: (player.created_at, player.id))

    def snapshot(self) -> dict:
        return {
            "state": self.state.value,
            "lobby": self.lobby.model_dump(mode="json") if self.lobby else None,
            "player_id": self.player.id if self.player else None,
            "is_host": self.is_host,
            "players": [player.model_dump(mode="json") for player in self.player_list],
        }

    # ---------- loading ----------
    def load(self, lobby_code: str, player_id: str) -> LobbyRow:
        code = normalize_lobby_code(lobby_code)
        lobby = self.gateway.lobby_by_code(code).unwrap()
        if lobby is None:
            raise NotFoundError(f"No lobby found with code {code}")

        player = self.gateway.player_by_id(player_id).unwrap()
        if player is None or player.lobby_id != lobby.id:
            raise NotFoundError("Player not found in this lobby")

        players = self.gateway.players_by_lobby(lobby.id).unwrap()

        self.lobby = lobby
        self.player = player
        self.players = {row.id: row for row in players}
        self.state = LobbyStage.WAITING_FOR_PLAYERS
        self.session.save(SessionIdentity(player_id=player.id, lobby_id=lobby.id, lobby_code=lobby.code))

        logger.info(
            "Lobby loaded",
            extra={"event": "lobby_loaded", "lobby_code": lobby.code, "player_id": player.id},
        )
        if lobby.started_at is not None:
            self._redirect()
        else:
            self._changed()
        return lobby

    def resume(self) -> LobbyRow:
        identity = self.session.load()
        if identity is None:
            raise SessionMissingError("No saved session; join a lobby first")
        return self.load(identity.lobby_code, identity.player_id)

    # ---------- subscriptions ----------
    def _require_loaded(self) -> tuple[LobbyRow, PlayerRow]:
        if self.lobby is None or self.player is None:
            raise NotFoundError("Lobby is not loaded")
        return self.lobby, self.player

    def subscribe_to_players(self) -> SubscriptionHandle:
        lobby, player = self._require_loaded()
        handle = self.feed.subscribe(
            f"lobby:{lobby.id}:players:{player.id}:{self._instance}",
            "players",
            {"lobby_id": lobby.id},
            self._on_player_change,
        )
        self._handles.append(handle)
        return handle

    def subscribe_to_lobby_status(self) -> SubscriptionHandle:
        lobby, player = self._require_loaded()
        handle = self.feed.subscribe(
            f"lobby:{lobby.id}:status:{player.id}:{self._instance}",
            "lobbies",
            {"id": lobby.id},
            self._on_lobby_change,
        )
        self._handles.append(handle)
        return handle

    def subscribe(self) -> None:
        self.subscribe_to_players()
        self.subscribe_to_lobby_status()

    def _on_player_change(self, event: PlayerChange) -> None:
        if event.type == "delete":
            if event.row_id is not None:
                self.players.pop(event.row_id, None)
        elif event.new is not None:
            self.players[event.new.id] = event.new
            if self.player is not None and event.new.id == self.player.id:
                self.player = event.new
        self._changed()

    def _on_lobby_change(self, event: LobbyChange) -> None:
        if event.new is None:
            return
        self.lobby = event.new
        if event.new.started_at is not None:
            self._redirect()
        else:
            self._changed()

    # ---------- actions ----------
    def start_game(self) -> LobbyRow:
        lobby, player = self._require_loaded()
        if not self.is_host:
            raise HostOnlyError("Only the host can start the game")
        if self._redirected and self.lobby is not None:
            return self.lobby

        self.state = LobbyStage.STARTING
        result = self.gateway.mark_lobby_started(lobby.id)
        if result.error is not None:
            self.state = LobbyStage.WAITING_FOR_PLAYERS
            self.toaster.notify("error", "Could not start the game. Try again.", key="start-game-failed")
            raise result.error
        if result.data is None:
            self.state = LobbyStage.WAITING_FOR_PLAYERS
            raise NotFoundError("Lobby no longer exists")

        self.lobby = result.data
        logger.info(
            "Game started",
            extra={"event": "game_started", "lobby_code": lobby.code, "player_id": player.id},
        )
        self._redirect()
        return self.lobby

    def _redirect(self) -> None:
        if self._redirected:
            return
        self._redirected = True
        self.state = LobbyStage.REDIRECT_TO_GAME
        self._changed()
        if self.on_redirect is not None and self.lobby is not None:
            self.on_redirect(self.lobby)

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change()

    def close(self) -> None:
        while self._handles:
            self.feed.unsubscribe(self._handles.pop())
