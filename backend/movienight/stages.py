from __future__ import annotations

from enum import Enum
from typing import Optional

from .rows import LobbyRow


class GameStage(str, Enum):
    SUBMITTING_DATA = "submitting_data"
    WAITING_FOR_CONTENT = "waiting_for_content"
    PLAYING = "playing"
    FINISHED = "finished"
    ENDED = "ended"


class LobbyStage(str, Enum):
    LOADING = "loading"
    WAITING_FOR_PLAYERS = "waiting_for_players"
    STARTING = "starting"
    REDIRECT_TO_GAME = "redirect_to_game"


def derive_stage(
    lobby: LobbyRow,
    *,
    has_submitted: bool,
    has_content: bool,
    has_answered: bool = False,
    previous: Optional[GameStage] = None,
) -> GameStage:
    """Compute a player's stage from lobby flags and what the player has stored.

    Pure: the same inputs always give the same stage, so a reload reproduces it.
    """
    if lobby.ended_at is not None:
        played = has_answered or previous in (GameStage.PLAYING, GameStage.FINISHED)
        return GameStage.FINISHED if played else GameStage.ENDED

    if not has_submitted:
        return GameStage.SUBMITTING_DATA

    if lobby.mode == "predictions":
        # Categories are seeded with the lobby, so there is nothing to wait for.
        return GameStage.PLAYING

    if lobby.trivia_started and has_content:
        return GameStage.PLAYING
    return GameStage.WAITING_FOR_CONTENT
