import random
from datetime import timedelta
from unittest import IsolatedAsyncioTestCase, TestCase

from . import content
from .db import InMemoryDatabase
from .errors import CollectionNotFound, NoQuestionsAvailable
from .models import Question
from .utils import utcnow


def _q(qid: str, difficulty: str) -> Question:
    return Question(id=qid, text=qid, options=["a", "b", "c", "d"], correct_answer=0, difficulty=difficulty)


class BalanceByDifficultyTests(TestCase):
    def test_easy_opener_and_hard_closer(self):
        rows = [_q(f"e{i}", "easy") for i in range(8)]
        rows += [_q(f"m{i}", "medium") for i in range(8)]
        rows += [_q(f"h{i}", "hard") for i in range(8)]

        picked = content.balance_by_difficulty(rows, 10, random.Random(3))

        self.assertEqual(len(picked), 10)
        self.assertEqual(len({q.id for q in picked}), 10)
        self.assertEqual(picked[0].difficulty, "easy")
        self.assertEqual(picked[-1].difficulty, "hard")
        middle = [q.difficulty for q in picked[1:-1]]
        self.assertEqual(middle.count("easy"), 3)
        self.assertEqual(middle.count("medium"), 3)
        self.assertEqual(middle.count("hard"), 2)

    def test_tops_up_from_other_tiers(self):
        rows = [_q(f"e{i}", "easy") for i in range(9)] + [_q("h0", "hard")]

        picked = content.balance_by_difficulty(rows, 10, random.Random(1))

        self.assertEqual(len(picked), 10)
        self.assertEqual(picked[0].difficulty, "easy")
        self.assertEqual(picked[-1].id, "h0")

    def test_short_bank_returns_everything(self):
        rows = [_q("e0", "easy"), _q("m0", "medium")]
        with self.assertLogs("backend.trivia.content", level="WARNING"):
            picked = content.balance_by_difficulty(rows, 10, random.Random(1))
        self.assertEqual({q.id for q in picked}, {"e0", "m0"})


class ContentSourceTests(IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.db = InMemoryDatabase()
        self.source = content.ContentSource(self.db, rng=random.Random(7))
        self.seeded = await self.source.seed()

    async def test_seed_loads_bundled_bank_once(self):
        self.assertEqual(self.seeded, 24)
        self.assertEqual(await self.db.questions.count_documents({}), 24)
        self.assertEqual(await self.source.seed(), 0)

    async def test_default_collection_by_slug(self):
        collection = await self.source.get_collection()
        self.assertEqual(collection.slug, "federal-civics")
        self.assertEqual((await self.source.get_collection(collection.id)).name, collection.name)

    async def test_unknown_collection(self):
        with self.assertRaises(CollectionNotFound):
            await self.source.get_collection("404")

    async def test_select_questions_builds_balanced_round(self):
        questions = await self.source.select_questions("1", count=10)

        self.assertEqual(len(questions), 10)
        self.assertEqual(len({q.id for q in questions}), 10)
        self.assertEqual(questions[0].difficulty, "easy")
        self.assertEqual(questions[-1].difficulty, "hard")

    async def test_select_questions_respects_exclusions(self):
        excluded = [f"q{i:03d}" for i in range(1, 9)]
        questions = await self.source.select_questions("1", exclude_ids=excluded, count=10)
        self.assertFalse({q.id for q in questions} & set(excluded))

    async def test_inactive_and_expired_questions_are_skipped(self):
        await self.db.questions.delete_many({"collection_ids": "1"})
        base = {"collection_ids": ["1"], "text": "t", "options": ["a", "b", "c", "d"], "correct_answer": 0}
        await self.db.questions.insert_many(
            [
                {**base, "id": "live", "status": "active"},
                {**base, "id": "draft", "status": "draft"},
                {**base, "id": "old", "status": "active", "expires_at": utcnow() - timedelta(days=1)},
                {**base, "id": "future", "status": "active", "expires_at": utcnow() + timedelta(days=1)},
            ]
        )

        questions = await self.source.select_questions("1", count=10)

        self.assertEqual({q.id for q in questions}, {"live", "future"})

    async def test_empty_collection_raises(self):
        with self.assertRaises(NoQuestionsAvailable):
            await self.source.select_questions("2")

    async def test_select_adaptive_starts_easy_with_remaining_pools(self):
        first, pools = await self.source.select_adaptive("1")

        self.assertEqual(first.difficulty, "easy")
        self.assertEqual(len(pools["easy"]), 7)
        self.assertEqual(len(pools["medium"]), 8)
        self.assertEqual(len(pools["hard"]), 8)
        self.assertNotIn(first.id, {q.id for pool in pools.values() for q in pool})

    async def test_select_adaptive_on_empty_collection_raises(self):
        with self.assertRaises(NoQuestionsAvailable):
            await self.source.select_adaptive("2")

    async def test_select_adaptive_with_everything_excluded_raises(self):
        excluded = [f"q{i:03d}" for i in range(1, 25)]
        with self.assertRaises(NoQuestionsAvailable):
            await self.source.select_adaptive("1", exclude_ids=excluded)
