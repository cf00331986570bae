from unittest import IsolatedAsyncioTestCase

from pymongo import ReturnDocument

from .db import InMemoryCollection


class InMemoryCollectionTests(IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.collection = InMemoryCollection()
        await self.collection.insert_many(
            [
                {"id": "a", "tags": ["x", "y"], "status": "active"},
                {"id": "b", "tags": ["y"], "status": "draft"},
                {"id": "c", "tags": ["z"]},
            ]
        )

    async def _ids(self, query):
        return sorted([doc["id"] async for doc in self.collection.find(query)])

    async def test_scalar_matches_array_element(self):
        self.assertEqual(await self._ids({"tags": "y"}), ["a", "b"])

    async def test_in_and_nin(self):
        self.assertEqual(await self._ids({"status": {"$in": ["active", None]}}), ["a", "c"])
        self.assertEqual(await self._ids({"id": {"$nin": ["a", "c"]}}), ["b"])
        self.assertEqual(await self._ids({"tags": {"$nin": ["z"]}}), ["a", "b"])

    async def test_cursor_snapshot_is_a_copy(self):
        docs = [doc async for doc in self.collection.find({"id": "a"})]
        docs[0]["status"] = "changed"
        self.assertEqual((await self.collection.find_one({"id": "a"}))["status"], "active")

    async def test_count_and_delete(self):
        self.assertEqual(await self.collection.count_documents({}), 3)
        await self.collection.delete_many({"tags": "y"})
        self.assertEqual(await self._ids({}), ["c"])

    async def test_update_one_upserts_from_query(self):
        await self.collection.update_one({"id": "d"}, {"$set": {"status": "active"}}, upsert=True)
        await self.collection.update_one({"id": "missing"}, {"$set": {"status": "active"}})

        self.assertEqual(await self.collection.find_one({"id": "d"}), {"id": "d", "status": "active"})
        self.assertIsNone(await self.collection.find_one({"id": "missing"}))

    async def test_find_one_and_update_increments(self):
        before = await self.collection.find_one_and_update({"id": "a"}, {"$inc": {"xp": 5}})
        after = await self.collection.find_one_and_update(
            {"id": "a"}, {"$inc": {"xp": 5}}, return_document=ReturnDocument.AFTER
        )
        created = await self.collection.find_one_and_update(
            {"id": "new"}, {"$inc": {"xp": 1}}, upsert=True, return_document=ReturnDocument.AFTER
        )

        self.assertNotIn("xp", before)
        self.assertEqual(after["xp"], 10)
        self.assertEqual(created, {"id": "new", "xp": 1})
