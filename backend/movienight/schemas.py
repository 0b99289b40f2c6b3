from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class CreateGameRequest(_CamelModel):
    host_name: Optional[str] = Field(default=None, alias="hostName", max_length=60)
    mode: Optional[Literal["trivia", "predictions"]] = None


class JoinGameRequest(_CamelModel):
    game_code: Optional[str] = Field(default=None, alias="gameCode", max_length=16)
    player_name: Optional[str] = Field(default=None, alias="playerName", max_length=60)


class GameSessionResponse(_CamelModel):
    lobby_id: str = Field(alias="lobbyId")
    player_id: str = Field(alias="playerId")
    lobby_code: str = Field(alias="lobbyCode")


class LobbyIdRequest(_CamelModel):
    lobby_id: str = Field(alias="lobbyId", min_length=1)


class RoastRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    player_id: str = Field(min_length=1)
    question_id: Optional[str] = None
    player_name: str = Field(min_length=1, max_length=60)
    question: str
    wrong_answer: str
    correct_answer: str


class UpdateScoresRequest(_CamelModel):
    category_id: str = Field(alias="categoryId", min_length=1)
    nominee_id: str = Field(alias="nomineeId", min_length=1)


class QuestionsResponse(BaseModel):
    questions: list[dict[str, Any]]


class RoastResponse(BaseModel):
    roast: dict[str, Any]


class FinalBurnResponse(_CamelModel):
    final_burn: dict[str, Any] = Field(alias="finalBurn")


class UpdateScoresResponse(_CamelModel):
    players_updated: int = Field(alias="playersUpdated")


class PlayerSummary(BaseModel):
    id: str
    name: str
    is_host: bool
    score: int


class LobbyOverviewResponse(BaseModel):
    id: str
    code: str
    mode: str
    started: bool
    ended: bool
    game_stage: str
    players: list[PlayerSummary]
