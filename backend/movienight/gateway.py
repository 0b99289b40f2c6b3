from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
import functools
import logging
from typing import Any, Callable, Iterable, Iterator, Mapping, NamedTuple, Optional
import uuid

from sqlalchemy import Select, delete, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .change_feed import ChangeFeed, change_feed
from .db import get_db
from .errors import ConflictError, PersistenceError
from .models import (
    Answer,
    Category,
    ChatMessage,
    FavoriteMovie,
    FinalBurn,
    HostSequence,
    Lobby,
    Nominee,
    Player,
    Prediction,
    Question,
    Roast,
    ShameMovie,
)
from .rows import (
    AnswerRow,
    CategoryRow,
    CategoryWithNominees,
    ChatMessageRow,
    FavoriteMovieRow,
    FinalBurnRow,
    HostSequenceRow,
    LobbyRow,
    NomineeRow,
    PlayerRow,
    PredictionRow,
    QuestionRow,
    RoastRow,
    RowModel,
    ShameMovieRow,
)

logger = logging.getLogger("movienight.gateway")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class GatewayResult(NamedTuple):
    """``(data, error)`` pair returned by every gateway call.

    ``data=None, error=None`` means the row does not exist. A non-null error is
    a failed read or write; the gateway never raises it on its own.
    """

    data: Any = None
    error: Optional[PersistenceError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        if self.error is not None:
            raise self.error
        return self.data


def _column_values(instance: Any) -> dict[str, Any]:
    return {column.key: getattr(instance, column.key) for column in instance.__table__.columns}


class _ChangeBuffer:
    """Collects change payloads inside a transaction; published after commit."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    def inserted(self, instance: Any) -> None:
        self.events.append(
            {"table": instance.__tablename__, "type": "insert", "new": _column_values(instance), "old": None}
        )

    def updated(self, instance: Any, old: dict[str, Any]) -> None:
        self.events.append(
            {"table": instance.__tablename__, "type": "update", "new": _column_values(instance), "old": old}
        )

    def deleted(self, table: str, old: dict[str, Any]) -> None:
        self.events.append({"table": table, "type": "delete", "new": None, "old": old})


def _gateway_call(method: Callable[..., Any]) -> Callable[..., GatewayResult]:
    operation = method.__name__

    @functools.wraps(method)
    def wrapper(self: "PersistenceGateway", *args: Any, **kwargs: Any) -> GatewayResult:
        try:
            return GatewayResult(method(self, *args, **kwargs))
        except IntegrityError:
            logger.warning(
                "Write conflicted with an existing row",
                extra={"event": "persistence_conflict", "reason": operation},
            )
            return GatewayResult(None, ConflictError(f"Could not complete {operation}: row already exists"))
        except SQLAlchemyError:
            logger.error(
                "Persistence call failed",
                extra={"event": "persistence_error", "reason": operation},
                exc_info=True,
            )
            return GatewayResult(None, PersistenceError(f"Could not complete {operation}"))

    return wrapper


class PersistenceGateway:
    """Typed access to the relational store, one method per query shape."""

    def __init__(self, feed: ChangeFeed | None = None) -> None:
        self.feed = feed or change_feed

    # ---------- helpers ----------
    @contextmanager
    def _transaction(self) -> Iterator[tuple[Session, _ChangeBuffer]]:
        changes = _ChangeBuffer()
        with get_db() as session:
            yield session, changes
        for payload in changes.events:
            self.feed.publish(payload)

    def _first(self, statement: Select, row_type: type[RowModel]) -> Any:
        with get_db() as session:
            instance = session.scalars(statement).first()
            return row_type.model_validate(instance) if instance is not None else None

    def _list(self, statement: Select, row_type: type[RowModel]) -> list[Any]:
        with get_db() as session:
            return [row_type.model_validate(instance) for instance in session.scalars(statement).all()]

    def _one(self, session: Session, query: str, params: Optional[dict[str, Any]] = None) -> Optional[Mapping[str, Any]]:
        return session.execute(text(query), params or {}).mappings().first()

    def _scalar(self, session: Session, query: str, params: Optional[dict[str, Any]] = None) -> Any:
        return session.execute(text(query), params or {}).scalar_one()

    def _insert(self, session: Session, changes: _ChangeBuffer, instance: Any) -> Any:
        session.add(instance)
        session.flush()
        changes.inserted(instance)
        return instance

    def _apply(self, session: Session, changes: _ChangeBuffer, instance: Any, **values: Any) -> bool:
        old = _column_values(instance)
        changed = False
        for key, value in values.items():
            if getattr(instance, key) != value:
                setattr(instance, key, value)
                changed = True
        if changed:
            session.flush()
            changes.updated(instance, old)
        return changed

    # ---------- lobbies ----------
    @_gateway_call
    def lobby_by_code(self, code: str) -> Optional[LobbyRow]:
        return self._first(select(Lobby).where(Lobby.code == code), LobbyRow)

    @_gateway_call
    def lobby_by_id(self, lobby_id: str) -> Optional[LobbyRow]:
        return self._first(select(Lobby).where(Lobby.id == lobby_id), LobbyRow)

    @_gateway_call
    def lobby_code_exists(self, code: str) -> bool:
        with get_db() as session:
            return self._one(session, "SELECT 1 AS found FROM lobbies WHERE code = :code", {"code": code}) is not None

    @_gateway_call
    def insert_lobby(self, lobby_id: str, code: str, host_id: str, config: dict[str, Any]) -> LobbyRow:
        with self._transaction() as (session, changes):
            lobby = self._insert(
                session,
                changes,
                Lobby(id=lobby_id, code=code, host_id=host_id, config=dict(config), game_stage="lobby"),
            )
            return LobbyRow.model_validate(lobby)

    @_gateway_call
    def delete_lobby(self, lobby_id: str) -> bool:
        with self._transaction() as (session, changes):
            lobby = session.get(Lobby, lobby_id)
            if lobby is None:
                return False
            old = _column_values(lobby)
            session.execute(delete(Lobby).where(Lobby.id == lobby_id))
            changes.deleted(Lobby.__tablename__, old)
            return True

    @_gateway_call
    def mark_lobby_started(self, lobby_id: str) -> Optional[LobbyRow]:
        """Set ``started_at`` unless it is already set; the first start wins."""
        with self._transaction() as (session, changes):
            lobby = session.get(Lobby, lobby_id)
            if lobby is None:
                return None
            if lobby.started_at is None:
                self._apply(session, changes, lobby, started_at=_utc_now())
            return LobbyRow.model_validate(lobby)

    @_gateway_call
    def mark_trivia_started(self, lobby_id: str) -> Optional[LobbyRow]:
        with self._transaction() as (session, changes):
            lobby = session.get(Lobby, lobby_id)
            if lobby is None:
                return None
            values: dict[str, Any] = {"game_stage": "trivia_started"}
            if lobby.started_at is None:
                values["started_at"] = _utc_now()
            self._apply(session, changes, lobby, **values)
            return LobbyRow.model_validate(lobby)

    @_gateway_call
    def mark_lobby_ended(self, lobby_id: str) -> Optional[LobbyRow]:
        with self._transaction() as (session, changes):
            lobby = session.get(Lobby, lobby_id)
            if lobby is None:
                return None
            if lobby.ended_at is None:
                now = _utc_now()
                # ended_at never precedes started_at
                values: dict[str, Any] = {"ended_at": now}
                if lobby.started_at is None:
                    values["started_at"] = now
                self._apply(session, changes, lobby, **values)
            return LobbyRow.model_validate(lobby)

    # ---------- players ----------
    @_gateway_call
    def player_by_id(self, player_id: str) -> Optional[PlayerRow]:
        return self._first(select(Player).where(Player.id == player_id), PlayerRow)

    @_gateway_call
    def players_by_lobby(self, lobby_id: str, order_by: str = "joined") -> list[PlayerRow]:
        statement = select(Player).where(Player.lobby_id == lobby_id)
        if order_by == "score":
            statement = statement.order_by(Player.score.desc(), Player.created_at.asc())
        else:
            statement = statement.order_by(Player.created_at.asc(), Player.id.asc())
        return self._list(statement, PlayerRow)

    @_gateway_call
    def insert_player(self, player_id: str, lobby_id: str, name: str, is_host: bool = False) -> PlayerRow:
        with self._transaction() as (session, changes):
            player = self._insert(
                session,
                changes,
                Player(id=player_id, lobby_id=lobby_id, name=name, is_host=is_host),
            )
            return PlayerRow.model_validate(player)

    @_gateway_call
    def update_player_stats(
        self,
        player_id: str,
        *,
        score_delta: int,
        streak: int,
        correct_delta: int = 0,
        incorrect_delta: int = 0,
    ) -> Optional[PlayerRow]:
        with self._transaction() as (session, changes):
            player = session.get(Player, player_id)
            if player is None:
                return None
            self._apply(
                session,
                changes,
                player,
                score=player.score + max(0, score_delta),
                streak=streak,
                correct_answers=player.correct_answers + correct_delta,
                incorrect_answers=player.incorrect_answers + incorrect_delta,
            )
            return PlayerRow.model_validate(player)

    # ---------- favorite movies ----------
    @_gateway_call
    def favorites_by_player(self, player_id: str) -> list[FavoriteMovieRow]:
        statement = (
            select(FavoriteMovie)
            .where(FavoriteMovie.player_id == player_id)
            .order_by(FavoriteMovie.created_at.asc(), FavoriteMovie.id.asc())
        )
        return self._list(statement, FavoriteMovieRow)

    @_gateway_call
    def favorites_by_lobby(self, lobby_id: str) -> list[FavoriteMovieRow]:
        statement = (
            select(FavoriteMovie)
            .join(Player, Player.id == FavoriteMovie.player_id)
            .where(Player.lobby_id == lobby_id)
            .order_by(Player.created_at.asc(), FavoriteMovie.created_at.asc(), FavoriteMovie.id.asc())
        )
        return self._list(statement, FavoriteMovieRow)

    @_gateway_call
    def insert_favorites(self, player_id: str, titles: Iterable[str]) -> list[FavoriteMovieRow]:
        with self._transaction() as (session, changes):
            rows = [
                self._insert(session, changes, FavoriteMovie(id=_new_id(), player_id=player_id, movie_title=title))
                for title in titles
            ]
            return [FavoriteMovieRow.model_validate(row) for row in rows]

    @_gateway_call
    def distinct_submitter_count(self, lobby_id: str, mode: str = "trivia") -> int:
        query = {
            "trivia": """
                SELECT COUNT(DISTINCT f.player_id)
                FROM favorite_movies f
                JOIN players p ON p.id = f.player_id
                WHERE p.lobby_id = :lobby_id
            """,
            "predictions": """
                SELECT COUNT(DISTINCT pr.player_id)
                FROM predictions pr
                JOIN players p ON p.id = pr.player_id
                WHERE p.lobby_id = :lobby_id
            """,
        }[mode]
        with get_db() as session:
            return int(self._scalar(session, query, {"lobby_id": lobby_id}))

    # ---------- questions & answers ----------
    @_gateway_call
    def questions_by_lobby(self, lobby_id: str) -> list[QuestionRow]:
        statement = (
            select(Question)
            .where(Question.lobby_id == lobby_id)
            .order_by(Question.position.asc(), Question.created_at.asc())
        )
        return self._list(statement, QuestionRow)

    @_gateway_call
    def question_by_id(self, question_id: str) -> Optional[QuestionRow]:
        return self._first(select(Question).where(Question.id == question_id), QuestionRow)

    @_gateway_call
    def insert_questions(self, lobby_id: str, questions: list[dict[str, Any]]) -> list[QuestionRow]:
        with self._transaction() as (session, changes):
            rows = []
            for position, item in enumerate(questions):
                rows.append(
                    self._insert(
                        session,
                        changes,
                        Question(
                            id=_new_id(),
                            lobby_id=lobby_id,
                            position=position,
                            question=item["question"],
                            options=list(item["options"]),
                            correct_answer=item["correct_answer"],
                            explanation=item.get("explanation"),
                            difficulty=item.get("difficulty", "medium"),
                            points=int(item.get("points", 100)),
                            movie_title=item.get("movie_title"),
                        ),
                    )
                )
            return [QuestionRow.model_validate(row) for row in rows]

    @_gateway_call
    def answers_by_player(self, player_id: str) -> list[AnswerRow]:
        statement = select(Answer).where(Answer.player_id == player_id).order_by(Answer.created_at.asc())
        return self._list(statement, AnswerRow)

    @_gateway_call
    def answers_by_lobby(self, lobby_id: str) -> list[AnswerRow]:
        statement = (
            select(Answer)
            .join(Question, Question.id == Answer.question_id)
            .where(Question.lobby_id == lobby_id)
            .order_by(Answer.created_at.asc())
        )
        return self._list(statement, AnswerRow)

    @_gateway_call
    def answer_for(self, player_id: str, question_id: str) -> Optional[AnswerRow]:
        statement = select(Answer).where(Answer.player_id == player_id, Answer.question_id == question_id)
        return self._first(statement, AnswerRow)

    @_gateway_call
    def insert_answer(
        self,
        player_id: str,
        question_id: str,
        answer: str,
        is_correct: bool,
        answer_time: Optional[int],
        points_awarded: int,
    ) -> AnswerRow:
        with self._transaction() as (session, changes):
            row = self._insert(
                session,
                changes,
                Answer(
                    id=_new_id(),
                    player_id=player_id,
                    question_id=question_id,
                    answer=answer,
                    is_correct=is_correct,
                    answer_time=answer_time,
                    points_awarded=points_awarded,
                ),
            )
            return AnswerRow.model_validate(row)

    # ---------- categories, nominees & predictions ----------
    def _category_with_nominees(self, session: Session, category: Category) -> CategoryWithNominees:
        nominees = session.scalars(
            select(Nominee).where(Nominee.category_id == category.id).order_by(Nominee.name.asc())
        ).all()
        payload = CategoryRow.model_validate(category).model_dump()
        payload["nominees"] = [NomineeRow.model_validate(nominee) for nominee in nominees]
        return CategoryWithNominees.model_validate(payload)

    @_gateway_call
    def categories_with_nominees(self, lobby_id: str) -> list[CategoryWithNominees]:
        with get_db() as session:
            categories = session.scalars(
                select(Category)
                .where(Category.lobby_id == lobby_id)
                .order_by(Category.sort_order.asc(), Category.name.asc())
            ).all()
            return [self._category_with_nominees(session, category) for category in categories]

    @_gateway_call
    def category_by_id(self, category_id: str) -> Optional[CategoryWithNominees]:
        with get_db() as session:
            category = session.get(Category, category_id)
            if category is None:
                return None
            return self._category_with_nominees(session, category)

    @_gateway_call
    def nominee_by_id(self, nominee_id: str) -> Optional[NomineeRow]:
        return self._first(select(Nominee).where(Nominee.id == nominee_id), NomineeRow)

    @_gateway_call
    def seed_categories(self, lobby_id: str, seeds: Iterable[Mapping[str, Any]]) -> int:
        with self._transaction() as (session, changes):
            created = 0
            for seed in seeds:
                category = self._insert(
                    session,
                    changes,
                    Category(
                        id=_new_id(),
                        lobby_id=lobby_id,
                        name=seed["name"],
                        description=seed.get("description"),
                        sort_order=int(seed.get("sort_order", 100)),
                    ),
                )
                for nominee in seed.get("nominees", []):
                    self._insert(
                        session,
                        changes,
                        Nominee(
                            id=_new_id(),
                            lobby_id=lobby_id,
                            category_id=category.id,
                            name=nominee["name"],
                            movie=nominee.get("movie"),
                        ),
                    )
                created += 1
            return created

    @_gateway_call
    def set_category_locked(self, category_id: str, locked: bool = True) -> Optional[CategoryRow]:
        with self._transaction() as (session, changes):
            category = session.get(Category, category_id)
            if category is None:
                return None
            self._apply(session, changes, category, locked=locked)
            return CategoryRow.model_validate(category)

    @_gateway_call
    def reset_category_winners(self, category_id: str) -> int:
        with self._transaction() as (session, changes):
            winners = session.scalars(
                select(Nominee).where(Nominee.category_id == category_id, Nominee.is_winner.is_(True))
            ).all()
            for nominee in winners:
                self._apply(session, changes, nominee, is_winner=False)
            return len(winners)

    @_gateway_call
    def set_nominee_winner(self, nominee_id: str, is_winner: bool = True) -> Optional[NomineeRow]:
        with self._transaction() as (session, changes):
            nominee = session.get(Nominee, nominee_id)
            if nominee is None:
                return None
            self._apply(session, changes, nominee, is_winner=is_winner)
            return NomineeRow.model_validate(nominee)

    @_gateway_call
    def upsert_prediction(self, player_id: str, category_id: str, nominee_id: str) -> PredictionRow:
        with self._transaction() as (session, changes):
            prediction = session.scalars(
                select(Prediction).where(Prediction.player_id == player_id, Prediction.category_id == category_id)
            ).first()
            if prediction is None:
                prediction = self._insert(
                    session,
                    changes,
                    Prediction(id=_new_id(), player_id=player_id, category_id=category_id, nominee_id=nominee_id),
                )
            else:
                self._apply(session, changes, prediction, nominee_id=nominee_id, updated_at=_utc_now())
            return PredictionRow.model_validate(prediction)

    @_gateway_call
    def predictions_by_player(self, player_id: str) -> list[PredictionRow]:
        statement = select(Prediction).where(Prediction.player_id == player_id).order_by(Prediction.created_at.asc())
        return self._list(statement, PredictionRow)

    @_gateway_call
    def award_prediction_points(self, category_id: str, nominee_id: str, points: int) -> int:
        """Credit every unawarded correct prediction in one transaction.

        Returns the number of players whose score changed.
        """
        with self._transaction() as (session, changes):
            predictions = session.scalars(
                select(Prediction).where(
                    Prediction.category_id == category_id,
                    Prediction.nominee_id == nominee_id,
                    Prediction.points_awarded == 0,
                )
            ).all()
            updated: set[str] = set()
            for prediction in predictions:
                player = session.get(Player, prediction.player_id)
                if player is None:
                    continue
                self._apply(session, changes, prediction, points_awarded=points, updated_at=_utc_now())
                self._apply(session, changes, player, score=player.score + points)
                updated.add(player.id)
            return len(updated)

    # ---------- roasts, burns, shame list, chat ----------
    @_gateway_call
    def roasts_by_player(self, player_id: str) -> list[RoastRow]:
        statement = select(Roast).where(Roast.player_id == player_id).order_by(Roast.created_at.asc())
        return self._list(statement, RoastRow)

    @_gateway_call
    def insert_roast(self, player_id: str, question_id: Optional[str], content: str, source: str) -> RoastRow:
        with self._transaction() as (session, changes):
            row = self._insert(
                session,
                changes,
                Roast(id=_new_id(), player_id=player_id, question_id=question_id, content=content, source=source),
            )
            return RoastRow.model_validate(row)

    @_gateway_call
    def final_burn_by_lobby(self, lobby_id: str) -> Optional[FinalBurnRow]:
        statement = select(FinalBurn).where(FinalBurn.lobby_id == lobby_id).order_by(FinalBurn.created_at.desc())
        return self._first(statement, FinalBurnRow)

    @_gateway_call
    def insert_final_burn(
        self,
        lobby_id: str,
        player_id: Optional[str],
        content: str,
        shame_list: list[str],
        source: str,
    ) -> FinalBurnRow:
        with self._transaction() as (session, changes):
            row = self._insert(
                session,
                changes,
                FinalBurn(
                    id=_new_id(),
                    lobby_id=lobby_id,
                    player_id=player_id,
                    content=content,
                    shame_list=list(shame_list),
                    source=source,
                ),
            )
            return FinalBurnRow.model_validate(row)

    @_gateway_call
    def shame_movies_by_lobby(self, lobby_id: str) -> list[ShameMovieRow]:
        statement = select(ShameMovie).where(ShameMovie.lobby_id == lobby_id).order_by(ShameMovie.created_at.asc())
        return self._list(statement, ShameMovieRow)

    @_gateway_call
    def insert_shame_movies(self, lobby_id: str, entries: Iterable[Mapping[str, str]]) -> list[ShameMovieRow]:
        with self._transaction() as (session, changes):
            rows = [
                self._insert(
                    session,
                    changes,
                    ShameMovie(
                        id=_new_id(),
                        lobby_id=lobby_id,
                        player_id=entry["player_id"],
                        movie_title=entry["movie_title"],
                        reason=entry["reason"],
                    ),
                )
                for entry in entries
            ]
            return [ShameMovieRow.model_validate(row) for row in rows]

    @_gateway_call
    def chat_messages_by_lobby(self, lobby_id: str, limit: int = 50) -> list[ChatMessageRow]:
        statement = (
            select(ChatMessage)
            .where(ChatMessage.lobby_id == lobby_id)
            .order_by(ChatMessage.created_at.desc())
            .limit(limit)
        )
        return list(reversed(self._list(statement, ChatMessageRow)))

    @_gateway_call
    def insert_chat_message(
        self,
        lobby_id: str,
        player_id: str,
        emoji: str,
        reaction: Optional[str] = None,
    ) -> ChatMessageRow:
        with self._transaction() as (session, changes):
            row = self._insert(
                session,
                changes,
                ChatMessage(id=_new_id(), lobby_id=lobby_id, player_id=player_id, emoji=emoji, reaction=reaction),
            )
            return ChatMessageRow.model_validate(row)

    # ---------- host sequences ----------
    @_gateway_call
    def insert_host_sequence(
        self,
        lobby_id: str,
        kind: str,
        params: dict[str, Any],
        snapshot: dict[str, Any],
    ) -> HostSequenceRow:
        with self._transaction() as (session, changes):
            row = self._insert(
                session,
                changes,
                HostSequence(
                    id=_new_id(),
                    lobby_id=lobby_id,
                    kind=kind,
                    params=dict(params),
                    snapshot=dict(snapshot),
                    status="running",
                    completed_steps=0,
                ),
            )
            return HostSequenceRow.model_validate(row)

    @_gateway_call
    def host_sequence_by_id(self, sequence_id: str) -> Optional[HostSequenceRow]:
        return self._first(select(HostSequence).where(HostSequence.id == sequence_id), HostSequenceRow)

    @_gateway_call
    def host_sequences_by_status(self, lobby_id: str, status: str = "running") -> list[HostSequenceRow]:
        statement = (
            select(HostSequence)
            .where(HostSequence.lobby_id == lobby_id, HostSequence.status == status)
            .order_by(HostSequence.created_at.asc())
        )
        return self._list(statement, HostSequenceRow)

    @_gateway_call
    def update_host_sequence(self, sequence_id: str, **values: Any) -> Optional[HostSequenceRow]:
        with self._transaction() as (session, changes):
            sequence = session.get(HostSequence, sequence_id)
            if sequence is None:
                return None
            values["updated_at"] = _utc_now()
            self._apply(session, changes, sequence, **values)
            return HostSequenceRow.model_validate(sequence)
