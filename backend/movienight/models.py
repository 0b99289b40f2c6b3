from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Lobby(Base):
    __tablename__ = "lobbies"
    __table_args__ = (
        CheckConstraint("game_stage IN ('lobby', 'trivia_started')", name="ck_lobbies_game_stage"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    code: Mapped[str] = mapped_column(String(8), unique=True, nullable=False)
    host_id: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    game_stage: Mapped[str] = mapped_column(String(32), nullable=False, default="lobby")
    config: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)


class Player(Base):
    __tablename__ = "players"
    __table_args__ = (Index("ix_players_lobby_id", "lobby_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    lobby_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("lobbies.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    is_host: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    correct_answers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    incorrect_answers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Category(Base):
    __tablename__ = "categories"
    __table_args__ = (Index("ix_categories_lobby_id", "lobby_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    lobby_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("lobbies.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Nominee(Base):
    __tablename__ = "nominees"
    __table_args__ = (
        Index("ix_nominees_category_id", "category_id"),
        Index("ix_nominees_lobby_id", "lobby_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    lobby_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("lobbies.id", ondelete="CASCADE"),
        nullable=False,
    )
    category_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    movie: Mapped[str | None] = mapped_column(String(128), nullable=True)
    is_winner: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class Prediction(Base):
    __tablename__ = "predictions"
    __table_args__ = (
        UniqueConstraint("player_id", "category_id", name="uq_predictions_player_category"),
        Index("ix_predictions_category_id", "category_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    player_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("players.id", ondelete="CASCADE"),
        nullable=False,
    )
    category_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=False,
    )
    nominee_id: Mapped[str] = mapped_column(String(36), ForeignKey("nominees.id"), nullable=False)
    points_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class FavoriteMovie(Base):
    __tablename__ = "favorite_movies"
    __table_args__ = (Index("ix_favorite_movies_player_id", "player_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    player_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("players.id", ondelete="CASCADE"),
        nullable=False,
    )
    movie_title: Mapped[str] = mapped_column(String(200), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (
        CheckConstraint("difficulty IN ('easy', 'medium', 'hard')", name="ck_questions_difficulty"),
        Index("ix_questions_lobby_id", "lobby_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    lobby_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("lobbies.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    options: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    correct_answer: Mapped[str] = mapped_column(Text, nullable=False)
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)
    difficulty: Mapped[str] = mapped_column(String(8), nullable=False, default="medium")
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    movie_title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Answer(Base):
    __tablename__ = "answers"
    __table_args__ = (
        UniqueConstraint("player_id", "question_id", name="uq_answers_player_question"),
        Index("ix_answers_player_id", "player_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    player_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("players.id", ondelete="CASCADE"),
        nullable=False,
    )
    question_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("questions.id", ondelete="CASCADE"),
        nullable=False,
    )
    answer: Mapped[str] = mapped_column(Text, nullable=False)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    answer_time: Mapped[int | None] = mapped_column(Integer, nullable=True)
    points_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Roast(Base):
    __tablename__ = "roasts"
    __table_args__ = (Index("ix_roasts_player_id", "player_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    player_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("players.id", ondelete="CASCADE"),
        nullable=False,
    )
    question_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("questions.id"), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str] = mapped_column(String(16), nullable=False, default="fallback")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class FinalBurn(Base):
    __tablename__ = "final_burns"
    __table_args__ = (Index("ix_final_burns_lobby_id", "lobby_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    lobby_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("lobbies.id", ondelete="CASCADE"),
        nullable=False,
    )
    player_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("players.id"), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    shame_list: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    source: Mapped[str] = mapped_column(String(16), nullable=False, default="fallback")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class ShameMovie(Base):
    __tablename__ = "shame_movies"
    __table_args__ = (Index("ix_shame_movies_lobby_id", "lobby_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    lobby_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("lobbies.id", ondelete="CASCADE"),
        nullable=False,
    )
    player_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("players.id", ondelete="CASCADE"),
        nullable=False,
    )
    movie_title: Mapped[str] = mapped_column(String(200), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class ChatMessage(Base):
    __tablename__ = "chat_messages"
    __table_args__ = (Index("ix_chat_messages_lobby_id", "lobby_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    lobby_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("lobbies.id", ondelete="CASCADE"),
        nullable=False,
    )
    player_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("players.id", ondelete="CASCADE"),
        nullable=False,
    )
    emoji: Mapped[str] = mapped_column(String(16), nullable=False)
    reaction: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class HostSequence(Base):
    __tablename__ = "host_sequences"
    __table_args__ = (
        CheckConstraint(
            "status IN ('running', 'completed', 'compensated', 'failed')",
            name="ck_host_sequences_status",
        ),
        Index("ix_host_sequences_lobby_status", "lobby_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    lobby_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("lobbies.id", ondelete="CASCADE"),
        nullable=False,
    )
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    params: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="running")
    completed_steps: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
