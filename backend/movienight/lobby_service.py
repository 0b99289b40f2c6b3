from __future__ import annotations

import logging
from typing import Optional
import uuid

from .codes import generate_lobby_code, normalize_lobby_code
from .config import settings
from .errors import ConflictError, NotFoundError, ValidationError
from .gateway import PersistenceGateway
from .nominees import category_seeds
from .rows import LobbyRow, PlayerRow
from .session_store import SessionIdentity

logger = logging.getLogger("movienight.lobbies")

MAX_PLAYER_NAME_LENGTH = 30
GAME_MODES = ("trivia", "predictions")


def clean_player_name(raw: Optional[str], field: str = "Name") -> str:
    candidate = " ".join((raw or "").split())
    if not candidate:
        raise ValidationError(f"{field} is required")
    if len(candidate) > MAX_PLAYER_NAME_LENGTH:
        raise ValidationError(f"{field} must be at most {MAX_PLAYER_NAME_LENGTH} characters")
    return candidate


class LobbyService:
    def __init__(self, gateway: PersistenceGateway) -> None:
        self.gateway = gateway

    def _lobby_config(self, mode: Optional[str]) -> dict:
        selected = (mode or settings.default_mode).strip().lower()
        if selected not in GAME_MODES:
            raise ValidationError(f"Unknown game mode: {mode}")
        return {
            "mode": selected,
            "question_count": settings.default_question_count,
            "time_limit": settings.default_time_limit_seconds,
        }

    def _insert_lobby_with_fresh_code(self, host_id: str, config: dict) -> LobbyRow:
        lobby_id = str(uuid.uuid4())
        attempts = 0
        while True:
            attempts += 1
            code = generate_lobby_code()
            if self.gateway.lobby_code_exists(code).unwrap():
                continue
            result = self.gateway.insert_lobby(lobby_id, code, host_id, config)
            if isinstance(result.error, ConflictError):
                # Another host took the code between the check and the insert.
                logger.info(
                    "Lobby code collision",
                    extra={"event": "lobby_code_collision", "lobby_code": code, "status": attempts},
                )
                continue
            return result.unwrap()

    def create_game(self, host_name: Optional[str], mode: Optional[str] = None) -> SessionIdentity:
        name = clean_player_name(host_name, "Host name")
        config = self._lobby_config(mode)
        host_id = str(uuid.uuid4())

        lobby = self._insert_lobby_with_fresh_code(host_id, config)
        host = self.gateway.insert_player(host_id, lobby.id, name, True)
        if host.error is not None:
            logger.error(
                "Host insert failed, removing lobby",
                extra={"event": "create_game_compensated", "lobby_code": lobby.code},
            )
            self.gateway.delete_lobby(lobby.id)
            raise host.error

        if config["mode"] == "predictions":
            seeded = self.gateway.seed_categories(lobby.id, category_seeds())
            if seeded.error is not None:
                self.gateway.delete_lobby(lobby.id)
                raise seeded.error

        logger.info(
            "Game created",
            extra={"event": "game_created", "lobby_code": lobby.code, "player_id": host_id},
        )
        return SessionIdentity(player_id=host_id, lobby_id=lobby.id, lobby_code=lobby.code)

    def join_game(self, game_code: Optional[str], player_name: Optional[str]) -> SessionIdentity:
        code = normalize_lobby_code(game_code or "")
        if not code:
            raise ValidationError("Game code is required")
        name = clean_player_name(player_name, "Player name")

        lobby = self.gateway.lobby_by_code(code).unwrap()
        if lobby is None:
            raise NotFoundError(f"No lobby found with code {code}")

        player_id = str(uuid.uuid4())
        player = self.gateway.insert_player(player_id, lobby.id, name, False).unwrap()
        logger.info(
            "Player joined",
            extra={"event": "player_joined", "lobby_code": lobby.code, "player_id": player.id},
        )
        return SessionIdentity(player_id=player.id, lobby_id=lobby.id, lobby_code=lobby.code)

    def lobby_overview(self, game_code: str) -> tuple[LobbyRow, list[PlayerRow]]:
        code = normalize_lobby_code(game_code)
        lobby = self.gateway.lobby_by_code(code).unwrap()
        if lobby is None:
            raise NotFoundError(f"No lobby found with code {code}")
        return lobby, self.gateway.players_by_lobby(lobby.id).unwrap()
