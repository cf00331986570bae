"""Question bank access: collections, difficulty-balanced rounds and adaptive pools."""

from __future__ import annotations

import json
import logging
import random
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import CollectionNotFound, NoQuestionsAvailable
from .models import CollectionMeta, Question
from .utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_BANK_PATH = Path(__file__).parent / "data" / "questions.json"


def _take(pools: Iterable[List[Question]]) -> Optional[Question]:
    for pool in pools:
        if pool:
            return pool.pop(0)
    return None


def _middle_targets(slots: int) -> Tuple[int, int, int]:
    # 3 easy / 3 medium / 2 hard for a ten-question round, scaled for other lengths
    easy = round(slots * 3 / 8)
    medium = round(slots * 3 / 8)
    return easy, medium, max(0, slots - easy - medium)


def balance_by_difficulty(rows: List[Question], count: int, rng: random.Random) -> List[Question]:
    """Order a round as: one easy opener, a shuffled mixed middle, a hard closer.

    Pools that are too small are topped up from whatever is left.
    """
    if len(rows) < count or count < 2:
        if len(rows) < count:
            logger.warning("Relaxed difficulty constraints: only %d questions available for %d slots", len(rows), count)
        shuffled = list(rows)
        rng.shuffle(shuffled)
        return shuffled[:count]

    pools: Dict[str, List[Question]] = {"easy": [], "medium": [], "hard": [], "other": []}
    for q in rows:
        pools.get(q.difficulty, pools["other"]).append(q)
    for pool in pools.values():
        rng.shuffle(pool)
    easy, medium, hard, other = pools["easy"], pools["medium"], pools["hard"], pools["other"]

    first = _take([easy, medium, hard, other])
    last = _take([hard, medium, easy, other])

    middle: List[Question] = []
    needed = 0
    for pool, target in zip((easy, medium, hard), _middle_targets(count - 2)):
        taken = pool[:target]
        del pool[:target]
        middle.extend(taken)
        needed += target - len(taken)

    if needed:
        leftovers = easy + medium + hard + other
        rng.shuffle(leftovers)
        middle.extend(leftovers[:needed])
        if needed > len(leftovers):
            logger.warning("Could not fill all middle slots: needed %d more, only %d available", needed, len(leftovers))

    rng.shuffle(middle)
    return [q for q in [first, *middle, last] if q is not None]


class ContentSource:
    def __init__(self, db: Any, default_slug: str = "federal-civics", rng: Optional[random.Random] = None):
        self._db = db
        self._default_slug = default_slug
        self._rng = rng or random.Random()

    async def get_collection(self, collection_id: Optional[str] = None) -> CollectionMeta:
        if collection_id is None:
            doc = await self._db.collections.find_one({"slug": self._default_slug})
        else:
            doc = await self._db.collections.find_one({"id": collection_id})
        if not doc:
            raise CollectionNotFound(f"Collection {collection_id or self._default_slug} not found")
        return CollectionMeta(**doc)

    async def _load_candidates(self, collection_id: str, exclude_ids: Iterable[str]) -> List[Question]:
        query: Dict[str, Any] = {"collection_ids": collection_id, "status": {"$in": ["active", None]}}
        exclude = list(exclude_ids)
        if exclude:
            query["id"] = {"$nin": exclude}

        now = utcnow()
        rows: List[Question] = []
        async for doc in self._db.questions.find(query):
            expires_at = doc.get("expires_at")
            if isinstance(expires_at, datetime) and expires_at <= now:
                continue
            rows.append(Question(**doc))
        return rows

    async def select_questions(self, collection_id: str, exclude_ids: Iterable[str] = (), count: int = 10) -> List[Question]:
        rows = await self._load_candidates(collection_id, exclude_ids)
        if not rows:
            raise NoQuestionsAvailable(f"No questions available for collection {collection_id}")
        return balance_by_difficulty(rows, count, self._rng)

    async def select_adaptive(
        self, collection_id: str, exclude_ids: Iterable[str] = ()
    ) -> Tuple[Question, Dict[str, List[Question]]]:
        """First question (easiest available) plus shuffled per-difficulty candidate pools."""
        rows = await self._load_candidates(collection_id, exclude_ids)
        pools: Dict[str, List[Question]] = {}
        for q in rows:
            pools.setdefault(q.difficulty, []).append(q)
        for pool in pools.values():
            self._rng.shuffle(pool)

        order = ["easy", "medium", "hard"] + [d for d in pools if d not in ("easy", "medium", "hard")]
        first = _take(pools.get(d, []) for d in order)
        if first is None:
            raise NoQuestionsAvailable(f"No questions available for collection {collection_id}")
        return first, pools

    async def seed(self, path: Path = DEFAULT_BANK_PATH) -> int:
        """Load the bundled bank into an empty store. Returns questions inserted."""
        if await self._db.collections.count_documents({}) > 0:
            return 0

        data = json.loads(path.read_text(encoding="utf-8"))
        questions = []
        for doc in data["questions"]:
            if doc.get("expires_at"):
                doc["expires_at"] = datetime.fromisoformat(doc["expires_at"])
            questions.append(doc)

        await self._db.collections.insert_many(data["collections"])
        await self._db.questions.insert_many(questions)
        logger.info("Seeded %d collection(s) and %d question(s)", len(data["collections"]), len(questions))
        return len(questions)
