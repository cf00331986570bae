from __future__ import annotations

import asyncio
from unittest import IsolatedAsyncioTestCase, mock

from fakeredis.aioredis import FakeRedis
from redis.exceptions import ConnectionError as RedisConnectionError

from . import storage
from .db import Settings
from .errors import StorageUnavailable


class _Clock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _broken_redis() -> mock.AsyncMock:
    client = mock.AsyncMock()
    client.get.side_effect = RedisConnectionError("connection refused")
    client.set.side_effect = RedisConnectionError("connection refused")
    client.ping.side_effect = RedisConnectionError("connection refused")
    return client


class MemoryStorageTests(IsolatedAsyncioTestCase):
    async def test_get_returns_value_until_ttl_elapses(self):
        clock = _Clock()
        store = storage.MemoryStorage(clock=clock)

        await store.set("session:a", '{"x": 1}', 10)
        self.assertEqual(await store.get("session:a"), '{"x": 1}')

        clock.now += 11
        self.assertIsNone(await store.get("session:a"))
        self.assertEqual(await store.count(), 0)

    async def test_set_refreshes_expiry(self):
        clock = _Clock()
        store = storage.MemoryStorage(clock=clock)

        await store.set("k", "v1", 10)
        clock.now += 8
        await store.set("k", "v2", 10)
        clock.now += 8

        self.assertEqual(await store.get("k"), "v2")

    async def test_cleanup_removes_only_expired_entries(self):
        clock = _Clock()
        store = storage.MemoryStorage(clock=clock)
        await store.set("old", "1", 5)
        await store.set("new", "2", 60)

        clock.now += 10
        removed = await store.cleanup()

        self.assertEqual(removed, 1)
        self.assertEqual(await store.count(), 1)
        self.assertEqual(await store.get("new"), "2")

    async def test_delete(self):
        store = storage.MemoryStorage()
        await store.set("k", "v", 60)
        await store.delete("k")
        await store.delete("missing")
        self.assertIsNone(await store.get("k"))

    async def test_background_sweep_runs_and_stops(self):
        store = storage.MemoryStorage(sweep_interval=0.01)
        await store.set("gone", "v", 0)

        store.start()
        await asyncio.sleep(0.05)
        self.assertNotIn("gone", store._entries)

        await store.stop()
        self.assertIsNone(store._sweeper)

    def test_memory_storage_is_degraded(self):
        self.assertTrue(storage.MemoryStorage().degraded)


class RedisStorageTests(IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.client = FakeRedis(decode_responses=True)
        self.store = storage.RedisStorage(self.client, prefix="test:")

    async def asyncTearDown(self):
        await self.client.flushall()
        await self.client.aclose()

    async def test_set_writes_value_with_ttl(self):
        await self.store.set("session:1", "payload", 60)

        self.assertEqual(await self.store.get("session:1"), "payload")
        ttl = await self.client.ttl("test:session:1")
        self.assertGreater(ttl, 0)
        self.assertLessEqual(ttl, 60)

    async def test_count_and_delete(self):
        await self.store.set("session:1", "a", 60)
        await self.store.set("session:2", "b", 60)
        await self.client.set("other:key", "c")

        self.assertEqual(await self.store.count(), 2)
        await self.store.delete("session:1")
        self.assertIsNone(await self.store.get("session:1"))
        self.assertEqual(await self.store.count(), 1)

    async def test_redis_errors_become_storage_unavailable(self):
        store = storage.RedisStorage(_broken_redis())
        with self.assertRaises(StorageUnavailable):
            await store.get("session:1")
        with self.assertRaises(StorageUnavailable):
            await store.set("session:1", "x", 10)

    def test_redis_storage_is_not_degraded(self):
        self.assertFalse(self.store.degraded)


class FailoverStorageTests(IsolatedAsyncioTestCase):
    async def test_switches_to_fallback_on_first_failure(self):
        fallback = storage.MemoryStorage()
        failover = storage.FailoverStorage(storage.RedisStorage(_broken_redis()), fallback)
        self.assertFalse(failover.degraded)
        self.assertEqual(failover.name, "redis")

        with self.assertLogs("backend.trivia.storage", level="ERROR"):
            await failover.set("session:1", "v", 60)

        self.assertTrue(failover.degraded)
        self.assertEqual(failover.name, "memory")
        self.assertEqual(await failover.get("session:1"), "v")
        await failover.close()

    async def test_uses_primary_while_healthy(self):
        client = FakeRedis(decode_responses=True)
        fallback = storage.MemoryStorage()
        failover = storage.FailoverStorage(storage.RedisStorage(client), fallback)

        await failover.set("session:1", "v", 60)

        self.assertEqual(await client.get("trivia:session:1"), "v")
        self.assertIsNone(await fallback.get("session:1"))
        await client.flushall()
        await failover.close()


class StorageFactoryTests(IsolatedAsyncioTestCase):
    async def test_no_redis_url_uses_memory_in_degraded_mode(self):
        factory = storage.StorageFactory(Settings(REDIS_URL=None))
        store = await factory.initialize()

        self.assertIsInstance(store, storage.MemoryStorage)
        self.assertTrue(factory.degraded)
        await factory.shutdown()

    async def test_unreachable_redis_falls_back(self):
        with mock.patch("backend.trivia.storage.redis.from_url", return_value=_broken_redis()):
            factory = storage.StorageFactory(Settings(REDIS_URL="redis://unreachable:6379/0"))
            with self.assertLogs("backend.trivia.storage", level="WARNING"):
                store = await factory.initialize()

        self.assertIsInstance(store, storage.MemoryStorage)
        self.assertTrue(factory.degraded)
        await factory.shutdown()

    async def test_reachable_redis_is_durable(self):
        client = FakeRedis(decode_responses=True)
        with mock.patch("backend.trivia.storage.redis.from_url", return_value=client):
            factory = storage.StorageFactory(Settings(REDIS_URL="redis://localhost:6379/0"))
            store = await factory.initialize()

        self.assertIsInstance(store, storage.FailoverStorage)
        self.assertFalse(factory.degraded)
        self.assertEqual(store.name, "redis")
        await factory.shutdown()

    def test_storage_before_initialize_raises(self):
        factory = storage.StorageFactory(Settings())
        with self.assertRaises(RuntimeError):
            factory.storage
