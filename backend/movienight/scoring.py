from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

MAX_TIME_BONUS = 50
STREAK_BONUS_STEP = 5
STREAK_BONUS_CAP = 25


def is_correct_answer(answer: str, correct_answer: str) -> bool:
    return answer == correct_answer


def streak_bonus(streak: int) -> int:
    if streak <= 1:
        return 0
    return min(streak * STREAK_BONUS_STEP, STREAK_BONUS_CAP)


def time_bonus(
    answer_time_ms: Optional[int],
    time_limit_seconds: int,
    max_bonus: int = MAX_TIME_BONUS,
) -> int:
    if answer_time_ms is None or time_limit_seconds <= 0 or answer_time_ms < 0:
        return 0
    limit_ms = time_limit_seconds * 1000
    if answer_time_ms > limit_ms:
        return 0
    return round(max_bonus * (limit_ms - answer_time_ms) / limit_ms)


@dataclass(frozen=True)
class AnswerScore:
    is_correct: bool
    streak: int
    base_points: int = 0
    time_bonus: int = 0
    streak_bonus: int = 0

    @property
    def delta(self) -> int:
        return self.base_points + self.time_bonus + self.streak_bonus


def score_answer(
    *,
    answer: str,
    correct_answer: str,
    points: int,
    previous_streak: int,
    answer_time_ms: Optional[int],
    time_limit_seconds: int,
    max_bonus: int = MAX_TIME_BONUS,
) -> AnswerScore:
    """Score one answer. A miss resets the streak and earns nothing."""
    if not is_correct_answer(answer, correct_answer):
        return AnswerScore(is_correct=False, streak=0)

    streak = previous_streak + 1
    return AnswerScore(
        is_correct=True,
        streak=streak,
        base_points=points,
        time_bonus=time_bonus(answer_time_ms, time_limit_seconds, max_bonus),
        streak_bonus=streak_bonus(streak),
    )
