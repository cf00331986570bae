"""Point calculation for answers.

Normal questions: 100 base points for a correct answer plus a tiered speed
bonus (+50 with at least 15s left, +25 with at least 5s left, nothing after).
The final question is scored by its wager alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple, Optional

BASE_POINTS = 100

# (minimum seconds remaining, bonus), checked in order
SPEED_BONUS_TIERS = ((15, 50), (5, 25))


class ScoreBreakdown(NamedTuple):
    base_points: int
    speed_bonus: int
    total_points: int


@dataclass(frozen=True)
class PenaltyPolicy:
    """Dampens rewards once a session has tripped the flag pattern threshold.

    Factors are applied to base points and speed bonus separately and rounded
    down, with at least one point kept for a correct answer.
    """

    base_factor: float = 0.8
    speed_factor: float = 0.5

    def apply(self, score: ScoreBreakdown) -> ScoreBreakdown:
        if score.total_points <= 0:
            return score
        base = int(score.base_points * self.base_factor)
        bonus = int(score.speed_bonus * self.speed_factor)
        if base + bonus <= 0:
            base = 1
        return ScoreBreakdown(base, bonus, base + bonus)


DEFAULT_PENALTY = PenaltyPolicy()


def calculate_response_time(question_duration: float, time_remaining: float) -> float:
    return max(0.0, question_duration - time_remaining)


def calculate_speed_bonus(time_remaining: float) -> int:
    for min_remaining, bonus in SPEED_BONUS_TIERS:
        if time_remaining >= min_remaining:
            return bonus
    return 0


def calculate_score(
    is_correct: bool,
    time_remaining: float,
    flagged: bool = False,
    penalty_active: bool = False,
    penalty: PenaltyPolicy = DEFAULT_PENALTY,
) -> ScoreBreakdown:
    """Score a normal (non-final) question.

    A flagged answer forfeits its speed bonus; with an active penalty the
    whole breakdown goes through ``penalty``.
    """
    base_points = BASE_POINTS if is_correct else 0
    speed_bonus = calculate_speed_bonus(time_remaining) if is_correct and not flagged else 0
    score = ScoreBreakdown(base_points, speed_bonus, base_points + speed_bonus)
    if penalty_active:
        score = penalty.apply(score)
    return score


def calculate_wager_score(is_correct: bool, wager: Optional[int]) -> ScoreBreakdown:
    # No wager means the final question is played for fun
    if wager is None:
        return ScoreBreakdown(0, 0, 0)
    return ScoreBreakdown(0, 0, wager if is_correct else -wager)


def max_wager(current_score: int) -> int:
    return max(0, current_score // 2)


def calculate_progression(correct_answers: int) -> tuple[int, int]:
    """XP and gems for a finished round: 50 XP and 10 gems, plus one of each per correct answer."""
    xp_earned = 50 + correct_answers
    gems_earned = 10 + correct_answers
    return xp_earned, gems_earned
