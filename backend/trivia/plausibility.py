"""Heuristics for implausibly fast or clock-tampered answers.

Minimum response times per difficulty reflect reading four options, deciding
and clicking. Users with an extended timer get proportionally scaled
thresholds so accessibility settings do not produce false positives.
"""

from __future__ import annotations

from typing import Mapping, NamedTuple

PLAUSIBILITY_THRESHOLDS: Mapping[str, float] = {
    "easy": 1.0,
    "medium": 0.75,
    "hard": 0.5,
}

# Unrecognised difficulties use this tier
FALLBACK_DIFFICULTY = "hard"

# Flags needed before the session penalty applies
PATTERN_THRESHOLD = 3


class PlausibilityVerdict(NamedTuple):
    too_fast: bool = False
    clock_skew: bool = False

    @property
    def flag_count(self) -> int:
        return int(self.too_fast) + int(self.clock_skew)

    def flagged(self, is_correct: bool) -> bool:
        """Per-answer flag. Never set for a correct answer."""
        return self.too_fast or (self.clock_skew and not is_correct)


CLEAN = PlausibilityVerdict()


def get_adjusted_threshold(
    difficulty: str,
    timer_multiplier: float = 1.0,
    thresholds: Mapping[str, float] = PLAUSIBILITY_THRESHOLDS,
) -> float:
    base = thresholds.get(difficulty)
    if base is None:
        base = thresholds[FALLBACK_DIFFICULTY]
    return base * timer_multiplier


def evaluate_answer(
    *,
    is_correct: bool,
    response_time: float,
    time_remaining: float,
    difficulty: str,
    max_time_remaining: float,
    timer_multiplier: float = 1.0,
    thresholds: Mapping[str, float] = PLAUSIBILITY_THRESHOLDS,
) -> PlausibilityVerdict:
    """Run both checks for one answer.

    Callers skip this entirely for the final question and for anonymous play.
    """
    too_fast = False
    if not is_correct:
        too_fast = response_time < get_adjusted_threshold(difficulty, timer_multiplier, thresholds)

    clock_skew = time_remaining > max_time_remaining
    return PlausibilityVerdict(too_fast=too_fast, clock_skew=clock_skew)


def penalty_active(flag_count: int) -> bool:
    return flag_count >= PATTERN_THRESHOLD
