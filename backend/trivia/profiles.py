from __future__ import annotations

import logging
from typing import Any, Dict

from pymongo import ReturnDocument

from .models import ANONYMOUS_USER, UserId
from .scoring import calculate_progression

logger = logging.getLogger(__name__)

DEFAULT_TIMER_MULTIPLIER = 1.0


class ProfileStore:
    """User settings and progression totals kept in the ``users`` collection."""

    def __init__(self, db: Any):
        self._db = db

    async def get_timer_multiplier(self, user_id: UserId) -> float:
        if user_id == ANONYMOUS_USER:
            return DEFAULT_TIMER_MULTIPLIER
        try:
            doc = await self._db.users.find_one({"id": user_id})
        except Exception:
            logger.exception("Timer multiplier lookup failed for user %s", user_id)
            return DEFAULT_TIMER_MULTIPLIER
        if not doc or not doc.get("timer_multiplier"):
            return DEFAULT_TIMER_MULTIPLIER
        return float(doc["timer_multiplier"])

    async def set_timer_multiplier(self, user_id: UserId, multiplier: float) -> None:
        await self._db.users.update_one({"id": user_id}, {"$set": {"timer_multiplier": multiplier}}, upsert=True)

    async def award_progression(
        self, user_id: UserId, score: int, correct_answers: int, total_questions: int
    ) -> Dict[str, int]:
        xp_earned, gems_earned = calculate_progression(correct_answers)
        await self._db.users.find_one_and_update(
            {"id": user_id},
            {
                "$inc": {
                    "xp": xp_earned,
                    "gems": gems_earned,
                    "games_played": 1,
                    "total_score": score,
                    "total_correct": correct_answers,
                    "total_questions": total_questions,
                }
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return {"xp_earned": xp_earned, "gems_earned": gems_earned}
