from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, model_validator

from .config import settings
from .errors import ExternalServiceError, NotFoundError
from .gateway import PersistenceGateway
from .metrics import LLM_FALLBACKS_TOTAL
from .rows import AnswerRow, FavoriteMovieRow, FinalBurnRow, PlayerRow, QuestionRow, RoastRow
from .services.gemini_service import GeminiService, GeminiServiceError, get_gemini_service

logger = logging.getLogger("movienight.generation")

FAVORITES_PER_PLAYER = 2
SHAME_LIST_SIZE = 3

DIFFICULTY_POINTS = {"easy": 100, "medium": 200, "hard": 300}
_DIFFICULTY_CYCLE = ("easy", "medium", "hard")

# Decoys for favorite-movie questions when the lobby has too few other titles.
DECOY_TITLES = (
    "The Godfather",
    "Casablanca",
    "Jaws",
    "Titanic",
    "The Matrix",
    "Jurassic Park",
    "Forrest Gump",
    "Back to the Future",
    "The Lion King",
    "Gladiator",
)

GENERAL_QUESTIONS: tuple[dict[str, Any], ...] = (
    {
        "question": "Which film won the Academy Award for Best Picture in 2020?",
        "options": ["1917", "Joker", "Parasite", "Once Upon a Time in Hollywood"],
        "correct_answer": "Parasite",
        "explanation": "Parasite, directed by Bong Joon-ho, was the first non-English language film to win Best Picture.",
        "difficulty": "medium",
        "points": 200,
    },
    {
        "question": 'Who directed the 1994 film "Pulp Fiction"?',
        "options": ["Martin Scorsese", "Quentin Tarantino", "Steven Spielberg", "Francis Ford Coppola"],
        "correct_answer": "Quentin Tarantino",
        "explanation": "Pulp Fiction was directed by Quentin Tarantino and won the Palme d'Or at Cannes.",
        "difficulty": "easy",
        "points": 100,
    },
    {
        "question": "Which actor has received the most Oscar nominations in history?",
        "options": ["Jack Nicholson", "Meryl Streep", "Katharine Hepburn", "Daniel Day-Lewis"],
        "correct_answer": "Meryl Streep",
        "explanation": "Meryl Streep has received 21 Academy Award nominations, winning three times.",
        "difficulty": "hard",
        "points": 300,
    },
    {
        "question": "Which of these films was NOT directed by Christopher Nolan?",
        "options": ["Inception", "Interstellar", "The Revenant", "Dunkirk"],
        "correct_answer": "The Revenant",
        "explanation": "The Revenant was directed by Alejandro González Iñárritu, not Christopher Nolan.",
        "difficulty": "medium",
        "points": 200,
    },
    {
        "question": 'What was the highest-grossing film of all time before "Avengers: Endgame"?',
        "options": ["Titanic", "Star Wars: The Force Awakens", "Avatar", "Jurassic World"],
        "correct_answer": "Avatar",
        "explanation": "Avatar, directed by James Cameron, held the record until Avengers: Endgame surpassed it in 2019.",
        "difficulty": "easy",
        "points": 100,
    },
    {
        "question": "Which actor played Tony Stark/Iron Man in the Marvel Cinematic Universe?",
        "options": ["Chris Evans", "Chris Hemsworth", "Mark Ruffalo", "Robert Downey Jr."],
        "correct_answer": "Robert Downey Jr.",
        "explanation": "Robert Downey Jr. played Tony Stark/Iron Man from 2008's Iron Man through 2019's Avengers: Endgame.",
        "difficulty": "easy",
        "points": 100,
    },
    {
        "question": "Which film features the character Hannibal Lecter?",
        "options": ["The Shining", "Silence of the Lambs", "Seven", "Psycho"],
        "correct_answer": "Silence of the Lambs",
        "explanation": "Anthony Hopkins played Hannibal Lecter in The Silence of the Lambs (1991).",
        "difficulty": "medium",
        "points": 200,
    },
)

QUESTION_SYSTEM_PROMPT = (
    "You write multiple-choice movie trivia for a party game. "
    "Every question has exactly four options and exactly one correct answer."
)
ROAST_SYSTEM_PROMPT = (
    "You are a hilarious but slightly mean movie trivia host. Roast players when they get a "
    "question wrong. Keep it funny, movie-related, and under 120 characters."
)
BURN_SYSTEM_PROMPT = (
    "You are a sarcastic movie trivia host presenting a Final Burn at the end of the game. "
    "Roast the worst player like a Comedy Central Roast, good-natured, under 400 characters."
)


class GeneratedQuestion(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    question: str = Field(min_length=1)
    options: list[str] = Field(min_length=4, max_length=4)
    correct_answer: str = Field(min_length=1)
    explanation: Optional[str] = None
    difficulty: str = "medium"
    movie_title: Optional[str] = None

    @model_validator(mode="after")
    def _check_answer(self) -> "GeneratedQuestion":
        if len(set(self.options)) != 4:
            raise ValueError("options must be four distinct strings")
        if self.correct_answer not in self.options:
            raise ValueError("correct_answer must be one of the options")
        if self.difficulty not in DIFFICULTY_POINTS:
            self.difficulty = "medium"
        return self

    def to_insert(self) -> dict[str, Any]:
        payload = self.model_dump()
        payload["points"] = DIFFICULTY_POINTS[self.difficulty]
        return payload


@dataclass(frozen=True)
class FavoritePick:
    player: PlayerRow
    movie_title: str


@dataclass(frozen=True)
class RoastContext:
    player_id: str
    question_id: Optional[str] = None
    player_name: Optional[str] = None
    question: Optional[str] = None
    wrong_answer: Optional[str] = None
    correct_answer: Optional[str] = None


def pick_favorites(players: list[PlayerRow], favorites: list[FavoriteMovieRow]) -> list[FavoritePick]:
    """Up to two favorites per player, players in join order, favorites in entry order."""
    by_player: dict[str, list[FavoriteMovieRow]] = {}
    for favorite in favorites:
        by_player.setdefault(favorite.player_id, []).append(favorite)

    picks: list[FavoritePick] = []
    for player in players:
        for favorite in by_player.get(player.id, [])[:FAVORITES_PER_PLAYER]:
            picks.append(FavoritePick(player=player, movie_title=favorite.movie_title))
    return picks


def _decoys_for(player_titles: set[str], lobby_titles: list[str], count: int = 3) -> list[str]:
    excluded = {title.casefold() for title in player_titles}
    decoys: list[str] = []
    for title in [*lobby_titles, *DECOY_TITLES]:
        key = title.casefold()
        if key in excluded:
            continue
        excluded.add(key)
        decoys.append(title)
        if len(decoys) == count:
            break
    return decoys


def fallback_questions(
    picks: list[FavoritePick],
    favorites: list[FavoriteMovieRow],
    limit: int,
) -> list[dict[str, Any]]:
    """Deterministic question set used whenever the LLM is unavailable."""
    titles_by_player: dict[str, set[str]] = {}
    lobby_titles: list[str] = []
    for favorite in favorites:
        titles_by_player.setdefault(favorite.player_id, set()).add(favorite.movie_title)
        if favorite.movie_title not in lobby_titles:
            lobby_titles.append(favorite.movie_title)

    questions: list[dict[str, Any]] = []
    for index, pick in enumerate(picks):
        decoys = _decoys_for(titles_by_player.get(pick.player.id, {pick.movie_title}), lobby_titles)
        options = list(decoys)
        options.insert(index % 4, pick.movie_title)
        difficulty = _DIFFICULTY_CYCLE[index % len(_DIFFICULTY_CYCLE)]
        questions.append(
            {
                "question": f"Which of these movies did {pick.player.name} list as a favorite?",
                "options": options,
                "correct_answer": pick.movie_title,
                "explanation": f'{pick.player.name} named "{pick.movie_title}" as one of their favorite movies.',
                "difficulty": difficulty,
                "points": DIFFICULTY_POINTS[difficulty],
                "movie_title": pick.movie_title,
            }
        )

    questions.extend(dict(item, options=list(item["options"])) for item in GENERAL_QUESTIONS)
    return questions[: max(1, limit)]


def _ordinal(value: int) -> str:
    if 10 <= value % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(value % 10, "th")
    return f"{value}{suffix}"


def fallback_roast(
    player_name: str,
    correct_answer: str,
    wrong_answer: str,
    mistake_count: int,
    favorite_titles: list[str],
) -> str:
    """Pick a roast template by how many mistakes the player has already made."""
    favorite_line = (
        f'You listed "{favorite_titles[0]}" as a favorite but can\'t even answer this? '
        "I'm starting to think you just watched the trailer."
        if favorite_titles
        else 'I\'m beginning to think your idea of "watching movies" is scrolling through Netflix thumbnails.'
    )
    templates = [
        f'Oh {player_name}, I\'ve seen better movie knowledge from someone who thinks "The Godfather" is about '
        f'gardening. The answer was "{correct_answer}", not "{wrong_answer}".',
        f"{player_name}, you claim to love movies but just failed a softball question! "
        "Hand over your Netflix subscription immediately.",
        f'Wow {player_name}, that\'s embarrassing. Even my grandmother who thinks all movies are "too loud these '
        f'days" would have known the answer was "{correct_answer}".',
        f"{player_name}, I'd say your movie knowledge is like a Michael Bay film - all flash, no substance.",
        f"That's {mistake_count + 1} wrong answers now, {player_name}. Maybe try books instead?",
        favorite_line,
        f"{player_name}, that answer was more disappointing than the Game of Thrones finale.",
        f'Oh no {player_name}! The correct answer was "{correct_answer}". Maybe stick to coloring books?',
    ]
    return templates[mistake_count % len(templates)]


def fallback_final_burn(
    worst: PlayerRow,
    best: PlayerRow,
    player_count: int,
    wrong_answers: int,
    favorite_titles: list[str],
) -> str:
    favorite_clause = f' despite listing "{favorite_titles[0]}" as a favorite movie' if favorite_titles else ""
    return (
        f"Ladies and gentlemen, we've witnessed a historic failure tonight. {worst.name} managed to score a "
        f"pathetic {worst.score} points, placing dead last out of {player_count} players.\n\n"
        f'{worst.name} claims to be a movie fan, but their performance suggests they think "Jaws" is about '
        f"dentistry. They missed a whopping {wrong_answers} questions{favorite_clause}.\n\n"
        f"Meanwhile, {best.name} dominated with {best.score} points - that's {best.score - worst.score} more "
        f"than our cinematic catastrophe. Perhaps {worst.name} should stick to watching paint dry.\n\n"
        f"Better luck next time, {worst.name}. Maybe try reading the movie descriptions before claiming to "
        "have watched them?"
    )


def select_shame_entries(
    answers: list[AnswerRow],
    questions: dict[str, QuestionRow],
    limit: int = SHAME_LIST_SIZE,
) -> list[dict[str, str]]:
    """Missed favorite-based questions, worst players first."""
    misses = [answer for answer in answers if not answer.is_correct]
    miss_counts: dict[str, int] = {}
    for answer in misses:
        miss_counts[answer.player_id] = miss_counts.get(answer.player_id, 0) + 1

    ranked = sorted(misses, key=lambda answer: -miss_counts[answer.player_id])
    entries: list[dict[str, str]] = []
    seen: set[tuple[str, str]] = set()
    for answer in ranked:
        question = questions.get(answer.question_id)
        if question is None or not question.movie_title:
            continue
        key = (answer.player_id, question.movie_title)
        if key in seen:
            continue
        seen.add(key)
        entries.append(
            {
                "player_id": answer.player_id,
                "movie_title": question.movie_title,
                "reason": f'Failed to answer "{question.question}" correctly',
            }
        )
        if len(entries) == limit:
            break
    return entries


class GenerationService:
    """Server side of the generation endpoints: LLM first, templates on any failure."""

    def __init__(self, gateway: PersistenceGateway, gemini: Optional[GeminiService] = None) -> None:
        self.gateway = gateway
        self.gemini = gemini or get_gemini_service()

    def _llm_available(self, kind: str) -> bool:
        if self.gemini.is_configured:
            return True
        logger.info(
            "LLM not configured, using templated content",
            extra={"event": "llm_fallback", "reason": f"{kind}:not_configured"},
        )
        LLM_FALLBACKS_TOTAL.labels(kind=kind).inc()
        return False

    def _record_fallback(self, kind: str, exc: Exception) -> None:
        logger.warning(
            "LLM generation failed, using templated content",
            extra={"event": "llm_fallback", "reason": f"{kind}:{exc.__class__.__name__}"},
        )
        LLM_FALLBACKS_TOTAL.labels(kind=kind).inc()

    # ---------- questions ----------
    async def _llm_questions(self, picks: list[FavoritePick], limit: int) -> list[dict[str, Any]]:
        favorite_lines = [f'- "{pick.movie_title}" (a favorite of {pick.player.name})' for pick in picks]
        general_count = max(0, limit - len(picks))
        prompt_lines = [
            f"Write {min(limit, len(picks) + general_count)} movie trivia questions.",
            "One question about each of these movies, set movie_title to the movie:",
            *favorite_lines,
            f"Then {general_count} questions about general film knowledge with movie_title null.",
            'Return ONLY a JSON array of objects with keys "question", "options" (four strings),',
            '"correct_answer" (exactly one of the options), "explanation", "difficulty"',
            '("easy", "medium" or "hard") and "movie_title".',
        ]
        payload = await self.gemini.generate_json("\n".join(prompt_lines), system=QUESTION_SYSTEM_PROMPT)
        if isinstance(payload, dict):
            payload = payload.get("questions") or payload.get("items") or []
        if not isinstance(payload, list):
            raise GeminiServiceError("Gemini question payload must be a list")

        questions: list[dict[str, Any]] = []
        for item in payload:
            try:
                questions.append(GeneratedQuestion.model_validate(item).to_insert())
            except PydanticValidationError:
                continue
        if not questions:
            raise GeminiServiceError("Gemini returned no usable questions")
        return questions[:limit]

    async def generate_questions(self, lobby_id: str) -> list[QuestionRow]:
        lobby = self.gateway.lobby_by_id(lobby_id).unwrap()
        if lobby is None:
            raise NotFoundError("Lobby not found")

        existing = self.gateway.questions_by_lobby(lobby_id).unwrap()
        if existing:
            return existing

        players = self.gateway.players_by_lobby(lobby_id).unwrap()
        favorites = self.gateway.favorites_by_lobby(lobby_id).unwrap()
        picks = pick_favorites(players, favorites)
        limit = lobby.config.question_count or settings.default_question_count

        questions: list[dict[str, Any]] = []
        if picks and self._llm_available("questions"):
            try:
                questions = await self._llm_questions(picks, limit)
            except ExternalServiceError as exc:
                self._record_fallback("questions", exc)
        if not questions:
            questions = fallback_questions(picks, favorites, limit)

        # Another caller may have generated while the LLM was running.
        existing = self.gateway.questions_by_lobby(lobby_id).unwrap()
        if existing:
            return existing

        rows = self.gateway.insert_questions(lobby_id, questions).unwrap()
        logger.info(
            "Questions generated",
            extra={"event": "questions_generated", "lobby_id": lobby_id, "status": len(rows)},
        )
        return rows

    # ---------- roasts ----------
    async def _llm_roast(
        self,
        context: RoastContext,
        player_name: str,
        mistake_count: int,
        favorite_titles: list[str],
        about_favorite: bool,
    ) -> str:
        lines = [
            f"The player {player_name} just got a movie trivia question wrong.",
            "",
            f'Question: "{context.question or ""}"',
            f'Their wrong answer: "{context.wrong_answer or ""}"',
            f'The correct answer: "{context.correct_answer or ""}"',
            "",
            f"This is their {_ordinal(mistake_count + 1)} incorrect answer.",
        ]
        if favorite_titles:
            lines.append(f"Their favorite movies include: {', '.join(favorite_titles)}")
        if about_favorite:
            lines.append("This question was about a movie they claimed to have watched.")
        lines.append("Generate one short, witty roast (max 120 characters). Funny, not truly mean.")
        raw = await self.gemini.generate_text("\n".join(lines), system=ROAST_SYSTEM_PROMPT)
        return raw.strip().strip("\"'").strip()

    async def generate_roast(self, context: RoastContext) -> RoastRow:
        player = self.gateway.player_by_id(context.player_id).unwrap()
        if player is None:
            raise NotFoundError("Player not found")

        answers = self.gateway.answers_by_player(player.id).unwrap()
        mistake_count = sum(
            1 for answer in answers if not answer.is_correct and answer.question_id != context.question_id
        )
        favorite_titles = [row.movie_title for row in self.gateway.favorites_by_player(player.id).unwrap()]
        question = (
            self.gateway.question_by_id(context.question_id).unwrap() if context.question_id else None
        )
        player_name = context.player_name or player.name
        correct_answer = context.correct_answer or (question.correct_answer if question else "")
        wrong_answer = context.wrong_answer or ""

        content = ""
        source = "fallback"
        if self._llm_available("roast"):
            try:
                content = await self._llm_roast(
                    context,
                    player_name,
                    mistake_count,
                    favorite_titles,
                    about_favorite=bool(question and question.movie_title),
                )
                source = "llm"
            except ExternalServiceError as exc:
                self._record_fallback("roast", exc)
        if not content:
            content = fallback_roast(player_name, correct_answer, wrong_answer, mistake_count, favorite_titles)
            source = "fallback"

        return self.gateway.insert_roast(player.id, context.question_id, content, source).unwrap()

    # ---------- final burn ----------
    async def _llm_final_burn(
        self,
        worst: PlayerRow,
        best: PlayerRow,
        player_count: int,
        missed: list[tuple[QuestionRow, AnswerRow]],
        favorite_titles: list[str],
    ) -> str:
        lines = [
            'Create a hilarious "Final Burn" roast for the worst-performing player in our movie trivia game.',
            f"- {worst.name} came in last place with {worst.score} points",
            f"- They got {len(missed)} questions wrong",
        ]
        if favorite_titles:
            lines.append(f"- Their favorite movies include: {', '.join(favorite_titles)}")
        lines.append(f"- The best player ({best.name}) got {best.score} points")
        lines.append(f"- There were {player_count} players total")
        for question, answer in missed[:3]:
            lines.append(
                f'- Missed: "{question.question}" (answered "{answer.answer}", correct was "{question.correct_answer}")'
            )
        lines.append("Write a funny, movie-themed roast (max 400 characters).")
        raw = await self.gemini.generate_text("\n".join(lines), system=BURN_SYSTEM_PROMPT)
        return raw.strip()

    async def generate_final_burn(self, lobby_id: str) -> FinalBurnRow:
        lobby = self.gateway.lobby_by_id(lobby_id).unwrap()
        if lobby is None:
            raise NotFoundError("Lobby not found")

        existing = self.gateway.final_burn_by_lobby(lobby_id).unwrap()
        if existing is not None:
            self.gateway.mark_lobby_ended(lobby_id).unwrap()
            return existing

        players = self.gateway.players_by_lobby(lobby_id, order_by="score").unwrap()
        if not players:
            raise NotFoundError("Lobby has no players")
        worst = min(players, key=lambda player: (player.score, player.created_at))
        best = players[0]

        answers = self.gateway.answers_by_lobby(lobby_id).unwrap()
        questions = {question.id: question for question in self.gateway.questions_by_lobby(lobby_id).unwrap()}
        missed = [
            (questions[answer.question_id], answer)
            for answer in answers
            if answer.player_id == worst.id and not answer.is_correct and answer.question_id in questions
        ]
        favorite_titles = [row.movie_title for row in self.gateway.favorites_by_player(worst.id).unwrap()]

        content = ""
        source = "fallback"
        if self._llm_available("final_burn"):
            try:
                content = await self._llm_final_burn(worst, best, len(players), missed, favorite_titles)
                source = "llm"
            except ExternalServiceError as exc:
                self._record_fallback("final_burn", exc)
        if not content:
            content = fallback_final_burn(worst, best, len(players), len(missed), favorite_titles)
            source = "fallback"

        shame_entries = select_shame_entries(answers, questions)
        if shame_entries:
            self.gateway.insert_shame_movies(lobby_id, shame_entries).unwrap()

        burn = self.gateway.insert_final_burn(
            lobby_id,
            worst.id,
            content,
            [entry["movie_title"] for entry in shame_entries],
            source,
        ).unwrap()
        self.gateway.mark_lobby_ended(lobby_id).unwrap()
        logger.info(
            "Final burn generated",
            extra={"event": "final_burn_generated", "lobby_id": lobby_id, "player_id": worst.id},
        )
        return burn

    # ---------- prediction scores ----------
    def update_scores(self, category_id: str, nominee_id: str) -> int:
        nominee = self.gateway.nominee_by_id(nominee_id).unwrap()
        if nominee is None or nominee.category_id != category_id:
            raise NotFoundError("Nominee not found in this category")
        updated = self.gateway.award_prediction_points(category_id, nominee_id, settings.prediction_points).unwrap()
        logger.info(
            "Prediction scores updated",
            extra={"event": "scores_updated", "lobby_id": nominee.lobby_id, "status": updated},
        )
        return updated
