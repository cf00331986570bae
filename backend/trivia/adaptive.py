from __future__ import annotations

import logging
from collections import OrderedDict, deque
from typing import Callable, Deque, Dict, Iterable, List, Optional, Set

from .errors import PoolExhausted
from .models import AdaptiveState, Question, UserId

logger = logging.getLogger(__name__)

DIFFICULTIES = ("easy", "medium", "hard")

# (correct_count, question_number, total_questions) -> eligible difficulties, in preference order
TierPolicy = Callable[[int, int, int], List[str]]


def default_tier_policy(correct_count: int, question_number: int, total_questions: int) -> List[str]:
    """Map running correctness to eligible tiers.

    0-1 correct: easy; 2-3: easy or medium; 4+: medium or hard. The final
    question is always hard.
    """
    if question_number >= total_questions:
        return ["hard"]
    if correct_count <= 1:
        return ["easy"]
    if correct_count <= 3:
        return ["easy", "medium"]
    return ["medium", "hard"]


def pick_question(
    candidate_pools: Dict[str, List[Question]],
    allowed: Iterable[str],
    used_ids: Set[str],
) -> Optional[Question]:
    """Pop the first unused candidate, trying ``allowed`` tiers before the rest.

    Consumed candidates are removed from their pool.
    """
    allowed = list(allowed)
    try_order = allowed + [d for d in DIFFICULTIES if d not in allowed]
    try_order += [d for d in candidate_pools if d not in try_order]

    for difficulty in try_order:
        pool = candidate_pools.get(difficulty)
        if not pool:
            continue
        while pool:
            candidate = pool.pop(0)
            if candidate.id not in used_ids:
                return candidate
    return None


class RecentQuestionCache:
    """Best-effort, per-user list of recently played question ids.

    Bounded in both dimensions (users are evicted least-recently-used first)
    and held in process memory only, so it is lost on restart.
    """

    def __init__(self, per_user: int = 30, max_users: int = 1000):
        self._per_user = per_user
        self._max_users = max_users
        self._entries: "OrderedDict[str, Deque[str]]" = OrderedDict()

    def get(self, user_id: UserId) -> List[str]:
        entry = self._entries.get(str(user_id))
        return list(entry) if entry else []

    def add(self, user_id: UserId, question_ids: Iterable[str]) -> None:
        key = str(user_id)
        entry = self._entries.get(key)
        if entry is None:
            entry = deque(maxlen=self._per_user)
            self._entries[key] = entry
        self._entries.move_to_end(key)
        for qid in question_ids:
            if qid in entry:
                entry.remove(qid)
            entry.append(qid)
        while len(self._entries) > self._max_users:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)


class AdaptiveSelector:
    def __init__(self, tier_policy: TierPolicy = default_tier_policy, recent: Optional[RecentQuestionCache] = None):
        self.tier_policy = tier_policy
        self.recent = recent if recent is not None else RecentQuestionCache()

    def eligible_tiers(self, correct_count: int, question_number: int, total_questions: int) -> List[str]:
        tiers = self.tier_policy(correct_count, question_number, total_questions)
        return tiers or list(DIFFICULTIES)

    def draw(
        self,
        state: AdaptiveState,
        question_number: int,
        total_questions: int,
        user_id: Optional[UserId] = None,
    ) -> Question:
        """Take the next question out of ``state``'s pools and mark it used.

        Raises PoolExhausted when every pool is empty or already used.
        """
        tiers = self.eligible_tiers(state.correct_count, question_number, total_questions)
        used = set(state.used_question_ids)
        if user_id is not None:
            used.update(self.recent.get(user_id))

        question = pick_question(state.candidate_pools, tiers, used)
        if question is None:
            raise PoolExhausted(f"No unused candidates left for question {question_number} (tiers {tiers})")

        state.used_question_ids.append(question.id)
        if user_id is not None:
            self.recent.add(user_id, [question.id])
        logger.debug("Adaptive draw q%d tiers=%s picked=%s (%s)", question_number, tiers, question.id, question.difficulty)
        return question
