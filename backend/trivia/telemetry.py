from __future__ import annotations

import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


class QuestionTelemetry:
    """Per-question encounter/correct counters, used to calibrate difficulty."""

    def __init__(self, db: Any):
        self._db = db

    async def record(self, question_id: str, was_correct: bool) -> None:
        """Count one encounter. Never raises: failures are logged and dropped."""
        increments: Dict[str, int] = {"encounter_count": 1}
        if was_correct:
            increments["correct_count"] = 1
        try:
            await self._db.question_stats.update_one(
                {"question_id": question_id},
                {"$inc": increments},
                upsert=True,
            )
        except Exception:
            logger.exception("Telemetry recording failed for question %s", question_id)

    async def stats(self, question_id: str) -> Dict[str, int]:
        doc = await self._db.question_stats.find_one({"question_id": question_id}) or {}
        return {
            "encounter_count": int(doc.get("encounter_count", 0)),
            "correct_count": int(doc.get("correct_count", 0)),
        }
