"""Typed rows and change events.

Every row read from the store and every change-feed payload is validated into
one of these models before it reaches coordinator or controller code.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, TypeAdapter


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]

GameMode = Literal["trivia", "predictions"]


class RowModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")


class LobbyConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    mode: GameMode = "trivia"
    question_count: int = 10
    time_limit: int = 20


class LobbyRow(RowModel):
    id: str
    code: str
    host_id: str
    created_at: UtcDatetime
    started_at: Optional[UtcDatetime] = None
    ended_at: Optional[UtcDatetime] = None
    game_stage: str = "lobby"
    config: LobbyConfig = Field(default_factory=LobbyConfig)

    @property
    def mode(self) -> str:
        return self.config.mode

    @property
    def trivia_started(self) -> bool:
        return self.game_stage == "trivia_started"


class PlayerRow(RowModel):
    id: str
    lobby_id: str
    name: str
    is_host: bool = False
    score: int = 0
    streak: int = 0
    correct_answers: int = 0
    incorrect_answers: int = 0
    created_at: UtcDatetime


class CategoryRow(RowModel):
    id: str
    lobby_id: str
    name: str
    description: Optional[str] = None
    sort_order: int = 100
    locked: bool = False


class NomineeRow(RowModel):
    id: str
    lobby_id: str
    category_id: str
    name: str
    movie: Optional[str] = None
    is_winner: bool = False


class CategoryWithNominees(CategoryRow):
    nominees: list[NomineeRow] = Field(default_factory=list)

    @property
    def winner(self) -> Optional[NomineeRow]:
        for nominee in self.nominees:
            if nominee.is_winner:
                return nominee
        return None


class PredictionRow(RowModel):
    id: str
    player_id: str
    category_id: str
    nominee_id: str
    points_awarded: int = 0
    created_at: UtcDatetime
    updated_at: UtcDatetime


class FavoriteMovieRow(RowModel):
    id: str
    player_id: str
    movie_title: str


class QuestionRow(RowModel):
    id: str
    lobby_id: str
    position: int = 0
    question: str
    options: list[str]
    correct_answer: str
    explanation: Optional[str] = None
    difficulty: str = "medium"
    points: int = 100
    movie_title: Optional[str] = None
    created_at: UtcDatetime


class AnswerRow(RowModel):
    id: str
    player_id: str
    question_id: str
    answer: str
    is_correct: bool
    answer_time: Optional[int] = None
    points_awarded: int = 0
    created_at: UtcDatetime


class RoastRow(RowModel):
    id: str
    player_id: str
    question_id: Optional[str] = None
    content: str
    source: str = "fallback"
    created_at: UtcDatetime


class FinalBurnRow(RowModel):
    id: str
    lobby_id: str
    player_id: Optional[str] = None
    content: str
    shame_list: list[str] = Field(default_factory=list)
    source: str = "fallback"
    created_at: UtcDatetime


class ShameMovieRow(RowModel):
    id: str
    lobby_id: str
    player_id: str
    movie_title: str
    reason: str
    created_at: UtcDatetime


class ChatMessageRow(RowModel):
    id: str
    lobby_id: str
    player_id: str
    emoji: str
    reaction: Optional[str] = None
    created_at: UtcDatetime


class HostSequenceRow(RowModel):
    id: str
    lobby_id: str
    kind: str
    params: dict[str, Any] = Field(default_factory=dict)
    snapshot: dict[str, Any] = Field(default_factory=dict)
    status: str
    completed_steps: int = 0
    error: Optional[str] = None
    created_at: UtcDatetime
    updated_at: UtcDatetime


ChangeType = Literal["insert", "update", "delete"]


class _Change(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: ChangeType

    @property
    def row(self):
        """The row the event is about: ``new`` for inserts/updates, ``old`` for deletes."""
        return self.old if self.type == "delete" else self.new

    @property
    def row_id(self) -> Optional[str]:
        row = self.row
        return row.id if row is not None else None


class LobbyChange(_Change):
    table: Literal["lobbies"]
    new: Optional[LobbyRow] = None
    old: Optional[LobbyRow] = None


class PlayerChange(_Change):
    table: Literal["players"]
    new: Optional[PlayerRow] = None
    old: Optional[PlayerRow] = None


class CategoryChange(_Change):
    table: Literal["categories"]
    new: Optional[CategoryRow] = None
    old: Optional[CategoryRow] = None


class NomineeChange(_Change):
    table: Literal["nominees"]
    new: Optional[NomineeRow] = None
    old: Optional[NomineeRow] = None


class PredictionChange(_Change):
    table: Literal["predictions"]
    new: Optional[PredictionRow] = None
    old: Optional[PredictionRow] = None


class FavoriteMovieChange(_Change):
    table: Literal["favorite_movies"]
    new: Optional[FavoriteMovieRow] = None
    old: Optional[FavoriteMovieRow] = None


class QuestionChange(_Change):
    table: Literal["questions"]
    new: Optional[QuestionRow] = None
    old: Optional[QuestionRow] = None


class AnswerChange(_Change):
    table: Literal["answers"]
    new: Optional[AnswerRow] = None
    old: Optional[AnswerRow] = None


class RoastChange(_Change):
    table: Literal["roasts"]
    new: Optional[RoastRow] = None
    old: Optional[RoastRow] = None


class FinalBurnChange(_Change):
    table: Literal["final_burns"]
    new: Optional[FinalBurnRow] = None
    old: Optional[FinalBurnRow] = None


class ShameMovieChange(_Change):
    table: Literal["shame_movies"]
    new: Optional[ShameMovieRow] = None
    old: Optional[ShameMovieRow] = None


class ChatMessageChange(_Change):
    table: Literal["chat_messages"]
    new: Optional[ChatMessageRow] = None
    old: Optional[ChatMessageRow] = None


class HostSequenceChange(_Change):
    table: Literal["host_sequences"]
    new: Optional[HostSequenceRow] = None
    old: Optional[HostSequenceRow] = None


ChangeEvent = Annotated[
    Union[
        LobbyChange,
        PlayerChange,
        CategoryChange,
        NomineeChange,
        PredictionChange,
        FavoriteMovieChange,
        QuestionChange,
        AnswerChange,
        RoastChange,
        FinalBurnChange,
        ShameMovieChange,
        ChatMessageChange,
        HostSequenceChange,
    ],
    Field(discriminator="table"),
]

_CHANGE_ADAPTER: TypeAdapter[ChangeEvent] = TypeAdapter(ChangeEvent)


def decode_change(raw: dict[str, Any]) -> ChangeEvent:
    """Validate a raw ``{table, type, new, old}`` payload into its typed event."""
    return _CHANGE_ADAPTER.validate_python(raw)
