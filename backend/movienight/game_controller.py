from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Any, Callable, Mapping, Optional, Sequence
import uuid

from .change_feed import ChangeFeed, SubscriptionHandle
from .config import settings
from .dispatcher import Dispatcher
from .errors import AppError, ConflictError, HostOnlyError, NotFoundError, ValidationError
from .gateway import GatewayResult, PersistenceGateway
from .generation import RoastContext
from .host_sequences import HostSequenceRunner
from .notifications import Toaster
from .rows import (
    AnswerRow,
    CategoryChange,
    CategoryWithNominees,
    ChatMessageChange,
    ChatMessageRow,
    FavoriteMovieRow,
    FinalBurnChange,
    FinalBurnRow,
    HostSequenceRow,
    LobbyChange,
    LobbyRow,
    NomineeChange,
    PlayerChange,
    PlayerRow,
    PredictionRow,
    QuestionChange,
    QuestionRow,
    RoastChange,
    RoastRow,
    ShameMovieChange,
    ShameMovieRow,
)
from .scoring import AnswerScore, score_answer
from .stages import GameStage, derive_stage

logger = logging.getLogger("movienight.game")

MAX_CHAT_EMOJI_LENGTH = 16


@dataclass(frozen=True)
class AnswerOutcome:
    answer: AnswerRow
    is_correct: bool
    delta: int
    streak: int
    duplicate: bool = False
    breakdown: Optional[AnswerScore] = None


class GameStageController:
    """In-game state of one player session, kept in sync through the change feed."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        dispatcher: Dispatcher,
        *,
        toaster: Optional[Toaster] = None,
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self.gateway = gateway
        self.feed: ChangeFeed = gateway.feed
        self.dispatcher = dispatcher
        self.toaster = toaster or Toaster()
        self.on_change = on_change
        self.sequences = HostSequenceRunner(gateway, dispatcher)

        self.stage: Optional[GameStage] = None
        self.lobby: Optional[LobbyRow] = None
        self.player: Optional[PlayerRow] = None
        self.players: dict[str, PlayerRow] = {}
        self.favorites: list[FavoriteMovieRow] = []
        self.questions: dict[str, QuestionRow] = {}
        self.answers: dict[str, AnswerRow] = {}
        self.categories: dict[str, CategoryWithNominees] = {}
        self.predictions: dict[str, PredictionRow] = {}
        self.roasts: dict[str, RoastRow] = {}
        self.chat: dict[str, ChatMessageRow] = {}
        self.final_burn: Optional[FinalBurnRow] = None
        self.shame_movies: dict[str, ShameMovieRow] = {}
        self.current_index = 0
        self.waiting_for_others = False

        self._handles: list[SubscriptionHandle] = []
        self._pending: set[asyncio.Task] = set()
        self._instance = uuid.uuid4().hex

    def __enter__(self) -> "GameStageController":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ---------- derived views ----------
    @property
    def mode(self) -> str:
        return self.lobby.mode if self.lobby else settings.default_mode

    @property
    def is_host(self) -> bool:
        return bool(self.player and self.player.is_host)

    @property
    def ordered_questions(self) -> list[QuestionRow]:
        return sorted(self.questions.values(), key=lambda question: (question.position, question.created_at))

    @property
    def current_question(self) -> Optional[QuestionRow]:
        questions = self.ordered_questions
        if not questions:
            return None
        return questions[min(self.current_index, len(questions) - 1)]

    @property
    def leaderboard(self) -> list[PlayerRow]:
        return sorted(self.players.values(), key=lambda player: (-player.score, player.created_at))

    @property
    def latest_roast(self) -> Optional[RoastRow]:
        if not self.roasts:
            return None
        return max(self.roasts.values(), key=lambda roast: roast.created_at)

    def _require(self) -> tuple[LobbyRow, PlayerRow]:
        if self.lobby is None or self.player is None:
            raise NotFoundError("Game is not initialized")
        return self.lobby, self.player

    def _require_host(self, action: str) -> tuple[LobbyRow, PlayerRow]:
        lobby, player = self._require()
        if not player.is_host:
            raise HostOnlyError(f"Only the host can {action}")
        return lobby, player

    def _require_mode(self, mode: str) -> None:
        if self.mode != mode:
            raise ValidationError(f"This action is only available in {mode} mode")

    def _check(self, result: GatewayResult, message: str, key: str) -> Any:
        if result.error is not None:
            self.notify("error", message, key)
            raise result.error
        return result.data

    def notify(self, level: str, message: str, key: Optional[str] = None) -> bool:
        return self.toaster.notify(level, message, key)

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change()

    # ---------- initialization ----------
    def initialize(self, lobby_id: str, player_id: str) -> GameStage:
        lobby = self.gateway.lobby_by_id(lobby_id).unwrap()
        if lobby is None:
            raise NotFoundError("Lobby not found")
        player = self.gateway.player_by_id(player_id).unwrap()
        if player is None or player.lobby_id != lobby.id:
            raise NotFoundError("Player not found in this lobby")

        self.lobby = lobby
        self.player = player
        self._refresh()
        self.stage = self._derive()
        self._resume_index()
        self._subscribe()

        logger.info(
            "Game stage initialized",
            extra={
                "event": "game_initialized",
                "lobby_code": lobby.code,
                "player_id": player.id,
                "status": self.stage.value,
            },
        )
        self._changed()
        return self.stage

    def _refresh(self) -> None:
        lobby, player = self._require()
        self.players = {row.id: row for row in self.gateway.players_by_lobby(lobby.id).unwrap()}
        if player.id in self.players:
            self.player = self.players[player.id]
        self.chat = {row.id: row for row in self.gateway.chat_messages_by_lobby(lobby.id).unwrap()}

        if lobby.mode == "predictions":
            self.categories = {row.id: row for row in self.gateway.categories_with_nominees(lobby.id).unwrap()}
            self.predictions = {
                row.category_id: row for row in self.gateway.predictions_by_player(player.id).unwrap()
            }
        else:
            self.favorites = self.gateway.favorites_by_player(player.id).unwrap()
            self.questions = {row.id: row for row in self.gateway.questions_by_lobby(lobby.id).unwrap()}
            self.answers = {row.question_id: row for row in self.gateway.answers_by_player(player.id).unwrap()}
            self.roasts = {row.id: row for row in self.gateway.roasts_by_player(player.id).unwrap()}

        if lobby.ended_at is not None:
            self._refresh_results()

    def _refresh_results(self) -> None:
        lobby, _ = self._require()
        self.final_burn = self.gateway.final_burn_by_lobby(lobby.id).unwrap()
        self.shame_movies = {row.id: row for row in self.gateway.shame_movies_by_lobby(lobby.id).unwrap()}
        self.players = {row.id: row for row in self.gateway.players_by_lobby(lobby.id).unwrap()}

    def _has_submitted(self) -> bool:
        if self.mode == "predictions":
            return bool(self.predictions)
        return bool(self.favorites)

    def _derive(self) -> GameStage:
        lobby, _ = self._require()
        return derive_stage(
            lobby,
            has_submitted=self._has_submitted(),
            has_content=bool(self.questions),
            has_answered=bool(self.answers) or (self.mode == "predictions" and bool(self.predictions)),
            previous=self.stage,
        )

    def _recompute_stage(self) -> GameStage:
        previous = self.stage
        stage = self.stage = self._derive()
        if previous != GameStage.PLAYING and stage == GameStage.PLAYING:
            self._resume_index()
        if previous != stage:
            logger.info(
                "Game stage changed",
                extra={
                    "event": "stage_changed",
                    "lobby_id": self.lobby.id if self.lobby else None,
                    "player_id": self.player.id if self.player else None,
                    "status": stage.value,
                },
            )
        return stage

    def _resume_index(self) -> None:
        questions = self.ordered_questions
        for index, question in enumerate(questions):
            if question.id not in self.answers:
                self.current_index = index
                self.waiting_for_others = False
                return
        self.current_index = max(0, len(questions) - 1)
        self.waiting_for_others = bool(questions)

    # ---------- subscriptions ----------
    def _subscribe(self) -> None:
        lobby, player = self._require()
        self.close()

        def channel(table: str) -> str:
            return f"game:{lobby.id}:{table}:{player.id}:{self._instance}"

        wiring = [
            ("players", {"lobby_id": lobby.id}, self._on_player_change),
            ("lobbies", {"id": lobby.id}, self._on_lobby_change),
            ("chat_messages", {"lobby_id": lobby.id}, self._on_chat_change),
            ("final_burns", {"lobby_id": lobby.id}, self._on_final_burn_change),
            ("shame_movies", {"lobby_id": lobby.id}, self._on_shame_change),
        ]
        if lobby.mode == "predictions":
            wiring += [
                ("categories", {"lobby_id": lobby.id}, self._on_category_change),
                ("nominees", {"lobby_id": lobby.id}, self._on_nominee_change),
            ]
        else:
            wiring += [
                ("questions", {"lobby_id": lobby.id}, self._on_question_change),
                ("roasts", {"player_id": player.id}, self._on_roast_change),
            ]
        for table, row_filter, callback in wiring:
            self._handles.append(self.feed.subscribe(channel(table), table, row_filter, callback))

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
        previous = self.lobby
        self.lobby = event.new

        if event.new.trivia_started and not (previous and previous.trivia_started):
            # The lobby flag may arrive before the question rows.
            self._merge_questions(self.gateway.questions_by_lobby(event.new.id))
            if not self.questions:
                self._schedule(self.poll_for_content())
        if event.new.ended_at is not None and (previous is None or previous.ended_at is None):
            result = self.gateway.final_burn_by_lobby(event.new.id)
            if result.error is None and result.data is not None:
                self.final_burn = result.data

        self._recompute_stage()
        self._changed()

    def _merge_questions(self, result: GatewayResult) -> None:
        if result.error is not None:
            self.notify("error", "Could not load the trivia questions", "questions-load-failed")
            return
        for row in result.data or []:
            self.questions[row.id] = row

    def _on_question_change(self, event: QuestionChange) -> None:
        if event.type == "delete":
            if event.row_id is not None:
                self.questions.pop(event.row_id, None)
        elif event.new is not None:
            self.questions[event.new.id] = event.new
        self._recompute_stage()
        self._changed()

    def _on_roast_change(self, event: RoastChange) -> None:
        if event.new is None:
            return
        is_new = event.new.id not in self.roasts
        self.roasts[event.new.id] = event.new
        if is_new:
            self.notify("roast", event.new.content, f"roast:{event.new.id}")
        self._changed()

    def _on_chat_change(self, event: ChatMessageChange) -> None:
        if event.new is not None:
            self.chat[event.new.id] = event.new
            self._changed()

    def _on_final_burn_change(self, event: FinalBurnChange) -> None:
        if event.new is not None:
            self.final_burn = event.new
            self._changed()

    def _on_shame_change(self, event: ShameMovieChange) -> None:
        if event.new is not None:
            self.shame_movies[event.new.id] = event.new
            self._changed()

    def _on_category_change(self, event: CategoryChange) -> None:
        if event.type == "delete":
            if event.row_id is not None:
                self.categories.pop(event.row_id, None)
        elif event.new is not None:
            current = self.categories.get(event.new.id)
            nominees = current.nominees if current is not None else []
            self.categories[event.new.id] = CategoryWithNominees(**event.new.model_dump(), nominees=nominees)
        self._changed()

    def _on_nominee_change(self, event: NomineeChange) -> None:
        row = event.row
        if row is None:
            return
        category = self.categories.get(row.category_id)
        if category is None:
            return
        nominees = [nominee for nominee in category.nominees if nominee.id != row.id]
        if event.type != "delete":
            nominees.append(row)
            nominees.sort(key=lambda nominee: nominee.name)
        self.categories[category.id] = category.model_copy(update={"nominees": nominees})
        self._changed()

    # ---------- background work ----------
    def _schedule(self, coro) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for background roast requests and content polls."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def poll_for_content(self, attempts: Optional[int] = None, interval: Optional[float] = None) -> bool:
        lobby, _ = self._require()
        attempts = attempts if attempts is not None else settings.content_poll_attempts
        interval = interval if interval is not None else settings.content_poll_interval
        for attempt in range(max(1, attempts)):
            result = self.gateway.questions_by_lobby(lobby.id)
            if result.error is None and result.data:
                self._merge_questions(result)
                self._recompute_stage()
                self._changed()
                return True
            if attempt + 1 < attempts:
                await asyncio.sleep(interval)
        logger.warning(
            "Trivia content did not arrive",
            extra={"event": "content_poll_exhausted", "lobby_id": lobby.id},
        )
        return False

    # ---------- data submission ----------
    async def submit_data(self, payload: Sequence[str] | Mapping[str, str]) -> GameStage:
        lobby, _ = self._require()
        if lobby.ended_at is not None:
            raise ValidationError("The game has already ended")
        if self.mode == "predictions":
            if not isinstance(payload, Mapping):
                raise ValidationError("Predictions must map category ids to nominee ids")
            self._submit_predictions(payload)
        else:
            if isinstance(payload, (str, Mapping)):
                raise ValidationError("Favorite movies must be a list of titles")
            await self._submit_favorites(payload)
        stage = self._recompute_stage()
        self._changed()
        return stage

    def _clean_titles(self, titles: Sequence[str]) -> list[str]:
        cleaned = [" ".join(str(title).split()) for title in titles]
        cleaned = [title for title in cleaned if title]
        if not cleaned:
            raise ValidationError("Enter at least one favorite movie")
        if len(cleaned) > settings.max_favorite_movies:
            raise ValidationError(f"Enter at most {settings.max_favorite_movies} favorite movies")
        if len({title.casefold() for title in cleaned}) != len(cleaned):
            raise ValidationError("Favorite movies must be distinct")
        return cleaned

    async def _submit_favorites(self, titles: Sequence[str]) -> None:
        lobby, player = self._require()
        existing = self._check(
            self.gateway.favorites_by_player(player.id),
            "Could not load your favorite movies",
            "favorites-load-failed",
        )
        if existing:
            self.favorites = existing
            return

        cleaned = self._clean_titles(titles)
        self.favorites = self._check(
            self.gateway.insert_favorites(player.id, cleaned),
            "Could not save your favorite movies",
            "favorites-save-failed",
        )
        logger.info(
            "Favorite movies submitted",
            extra={"event": "favorites_submitted", "lobby_id": lobby.id, "player_id": player.id},
        )
        if player.is_host:
            await self._generate_when_everyone_submitted()

    async def _generate_when_everyone_submitted(self) -> bool:
        lobby, _ = self._require()
        roster = self._check(
            self.gateway.players_by_lobby(lobby.id),
            "Could not load the player list",
            "players-load-failed",
        )
        submitted = self._check(
            self.gateway.distinct_submitter_count(lobby.id, "trivia"),
            "Could not check who has submitted",
            "submitters-load-failed",
        )
        if submitted < len(roster):
            self.notify(
                "info",
                f"Waiting for {len(roster) - submitted} more player(s) to submit their favorites",
                "waiting-for-submissions",
            )
            return False
        await self.generate_content()
        return True

    def _submit_predictions(self, picks: Mapping[str, str]) -> None:
        lobby, player = self._require()
        if not picks:
            raise ValidationError("Pick at least one nominee")
        for category_id, nominee_id in picks.items():
            category = self._check(
                self.gateway.category_by_id(category_id),
                "Could not load the category",
                f"category-load-failed:{category_id}",
            )
            if category is None or category.lobby_id != lobby.id:
                raise NotFoundError("Category not found in this lobby")
            self.categories[category.id] = category
            if category.locked:
                raise ValidationError(f"{category.name} is locked")
            if all(nominee.id != nominee_id for nominee in category.nominees):
                raise ValidationError(f"Nominee does not belong to {category.name}")
            self.predictions[category_id] = self._check(
                self.gateway.upsert_prediction(player.id, category_id, nominee_id),
                "Could not save your prediction",
                f"prediction-save-failed:{category_id}",
            )

    async def generate_content(self) -> list[QuestionRow]:
        lobby, player = self._require_host("generate trivia questions")
        self._require_mode("trivia")
        try:
            await self.dispatcher.generate_questions(lobby.id)
        except AppError as exc:
            self.notify("error", "Could not generate trivia questions", "generate-content-failed")
            logger.warning(
                "Question generation failed",
                extra={"event": "generate_content_failed", "lobby_id": lobby.id, "reason": exc.message},
            )
            raise

        self._merge_questions(self.gateway.questions_by_lobby(lobby.id))
        updated = self._check(
            self.gateway.mark_trivia_started(lobby.id),
            "Could not start the trivia round",
            "trivia-start-failed",
        )
        if updated is not None:
            self.lobby = updated
        logger.info(
            "Trivia started",
            extra={"event": "trivia_started", "lobby_code": lobby.code, "player_id": player.id},
        )
        self._recompute_stage()
        self._changed()
        return self.ordered_questions

    # ---------- trivia play ----------
    async def answer_question(
        self,
        question_id: str,
        answer: str,
        answer_time_ms: Optional[int] = None,
    ) -> AnswerOutcome:
        lobby, player = self._require()
        self._require_mode("trivia")
        if lobby.ended_at is not None:
            raise ValidationError("The game has already ended")

        question = self.questions.get(question_id)
        if question is None:
            question = self.gateway.question_by_id(question_id).unwrap()
        if question is None or question.lobby_id != lobby.id:
            raise NotFoundError("Question not found in this lobby")

        recorded = self.answers.get(question.id)
        if recorded is None:
            recorded = self.gateway.answer_for(player.id, question.id).unwrap()
        if recorded is not None:
            return self._recorded_outcome(recorded)

        score = score_answer(
            answer=answer,
            correct_answer=question.correct_answer,
            points=question.points,
            previous_streak=player.streak,
            answer_time_ms=answer_time_ms,
            time_limit_seconds=lobby.config.time_limit,
            max_bonus=settings.max_time_bonus,
        )

        inserted = self.gateway.insert_answer(
            player.id,
            question.id,
            answer,
            score.is_correct,
            answer_time_ms,
            score.delta,
        )
        if isinstance(inserted.error, ConflictError):
            recorded = self.gateway.answer_for(player.id, question.id).unwrap()
            if recorded is not None:
                return self._recorded_outcome(recorded)
        row = self._check(inserted, "Could not save your answer", f"answer-save-failed:{question.id}")
        self.answers[question.id] = row

        # Second write; the answer above stays recorded if this one fails.
        updated = self._check(
            self.gateway.update_player_stats(
                player.id,
                score_delta=score.delta,
                streak=score.streak,
                correct_delta=1 if score.is_correct else 0,
                incorrect_delta=0 if score.is_correct else 1,
            ),
            "Your answer was saved but your score could not be updated",
            f"score-update-failed:{question.id}",
        )
        if updated is not None:
            self.player = updated
            self.players[updated.id] = updated

        if not score.is_correct:
            self._schedule(
                self._request_roast(
                    RoastContext(
                        player_id=player.id,
                        question_id=question.id,
                        player_name=player.name,
                        question=question.question,
                        wrong_answer=answer,
                        correct_answer=question.correct_answer,
                    )
                )
            )

        self._recompute_stage()
        self._changed()
        return AnswerOutcome(
            answer=row,
            is_correct=score.is_correct,
            delta=score.delta,
            streak=score.streak,
            breakdown=score,
        )

    def _recorded_outcome(self, recorded: AnswerRow) -> AnswerOutcome:
        self.answers[recorded.question_id] = recorded
        streak = self.player.streak if self.player else 0
        return AnswerOutcome(
            answer=recorded,
            is_correct=recorded.is_correct,
            delta=recorded.points_awarded,
            streak=streak,
            duplicate=True,
        )

    async def _request_roast(self, context: RoastContext) -> None:
        try:
            await self.dispatcher.generate_roast(context)
        except AppError as exc:
            logger.warning(
                "Roast request failed",
                extra={"event": "roast_failed", "player_id": context.player_id, "reason": exc.message},
            )

    def advance_question(self) -> int:
        questions = self.ordered_questions
        if not questions:
            return self.current_index
        if self.current_index < len(questions) - 1:
            self.current_index += 1
            self.waiting_for_others = False
        else:
            self.waiting_for_others = True
            self.notify("info", "You finished all questions! Waiting for other players...", "finished-questions")
        self._changed()
        return self.current_index

    # ---------- host actions ----------
    def lock_category(self, category_id: str) -> CategoryWithNominees:
        lobby, _ = self._require_host("lock categories")
        self._require_mode("predictions")
        category = self._check(
            self.gateway.category_by_id(category_id),
            "Could not load the category",
            f"category-load-failed:{category_id}",
        )
        if category is None or category.lobby_id != lobby.id:
            raise NotFoundError("Category not found in this lobby")
        self._check(
            self.gateway.set_category_locked(category_id, True),
            f"Could not lock {category.name}",
            f"lock-failed:{category_id}",
        )
        refreshed = self.gateway.category_by_id(category_id).unwrap()
        self.categories[category_id] = refreshed
        self._changed()
        return refreshed

    async def set_winner(self, category_id: str, nominee_id: str) -> HostSequenceRow:
        lobby, _ = self._require_host("reveal winners")
        self._require_mode("predictions")
        try:
            sequence = await self.sequences.set_winner(lobby.id, category_id, nominee_id)
        except AppError:
            self.notify("error", "Could not reveal the winner. Try again.", f"set-winner-failed:{category_id}")
            raise
        self.categories = {row.id: row for row in self.gateway.categories_with_nominees(lobby.id).unwrap()}
        self._changed()
        return sequence

    async def end_game(self) -> Optional[FinalBurnRow]:
        lobby, player = self._require_host("end the game")
        try:
            await self.dispatcher.generate_final_burn(lobby.id)
        except AppError:
            self.notify("error", "Could not end the game. Try again.", "end-game-failed")
            raise

        refreshed = self.gateway.lobby_by_id(lobby.id).unwrap()
        if refreshed is not None:
            self.lobby = refreshed
        self._refresh_results()
        logger.info(
            "Game ended",
            extra={"event": "game_ended", "lobby_code": lobby.code, "player_id": player.id},
        )
        self._recompute_stage()
        self._changed()
        return self.final_burn

    # ---------- chat ----------
    def send_chat(self, emoji: str, reaction: Optional[str] = None) -> ChatMessageRow:
        lobby, player = self._require()
        cleaned = emoji.strip()
        if not cleaned:
            raise ValidationError("Emoji is required")
        if len(cleaned) > MAX_CHAT_EMOJI_LENGTH:
            raise ValidationError("Emoji is too long")
        row = self._check(
            self.gateway.insert_chat_message(lobby.id, player.id, cleaned, reaction),
            "Could not send your reaction",
            "chat-send-failed",
        )
        self.chat[row.id] = row
        self._changed()
        return row

    # ---------- views ----------
    def snapshot(self) -> dict[str, Any]:
        question = self.current_question if self.stage == GameStage.PLAYING else None
        answered = self.answers.get(question.id) if question else None
        question_view = None
        if question is not None:
            question_view = {
                "id": question.id,
                "question": question.question,
                "options": list(question.options),
                "points": question.points,
                "difficulty": question.difficulty,
                "answered": answered is not None,
                "correct_answer": question.correct_answer if answered else None,
                "explanation": question.explanation if answered else None,
            }
        latest_roast = self.latest_roast
        return {
            "stage": self.stage.value if self.stage else None,
            "mode": self.mode,
            "is_host": self.is_host,
            "lobby": self.lobby.model_dump(mode="json") if self.lobby else None,
            "player": self.player.model_dump(mode="json") if self.player else None,
            "leaderboard": [player.model_dump(mode="json") for player in self.leaderboard],
            "question": question_view,
            "question_index": self.current_index,
            "question_count": len(self.questions),
            "waiting_for_others": self.waiting_for_others,
            "favorites": [row.movie_title for row in self.favorites],
            "categories": [
                row.model_dump(mode="json")
                for row in sorted(self.categories.values(), key=lambda category: (category.sort_order, category.name))
            ],
            "predictions": {category_id: row.nominee_id for category_id, row in self.predictions.items()},
            "roast": latest_roast.content if latest_roast else None,
            "chat": [
                row.model_dump(mode="json")
                for row in sorted(self.chat.values(), key=lambda message: message.created_at)[-20:]
            ],
            "final_burn": self.final_burn.model_dump(mode="json") if self.final_burn else None,
            "shame_movies": [row.model_dump(mode="json") for row in self.shame_movies.values()],
        }

    def close(self) -> None:
        while self._handles:
            self.feed.unsubscribe(self._handles.pop())
