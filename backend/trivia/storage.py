"""Session storage backends.

Sessions are stored as JSON strings under string keys with a time to live.
Two backends implement the same contract: Redis (durable, native expiry) and
an in-process dictionary that sweeps expired keys on a timer. The factory
picks one at startup; callers only ever see :class:`SessionStorage`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.retry import Retry

from .db import Settings
from .errors import StorageUnavailable

logger = logging.getLogger(__name__)


class SessionStorage(ABC):
    name = "abstract"

    @property
    def degraded(self) -> bool:
        """True when stored sessions will not survive a process restart."""
        return False

    @abstractmethod
    async def get(self, key: str) -> Optional[str]: ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def count(self) -> int: ...

    async def cleanup(self) -> int:
        return 0

    async def close(self) -> None:
        return None


class MemoryStorage(SessionStorage):
    name = "memory"

    def __init__(self, sweep_interval: float = 300, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = asyncio.Lock()
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._sweeper: Optional[asyncio.Task] = None

    @property
    def degraded(self) -> bool:
        return True

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                return None
            return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        async with self._lock:
            self._entries[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def count(self) -> int:
        async with self._lock:
            now = self._clock()
            return sum(1 for _, expires_at in self._entries.values() if expires_at > now)

    async def cleanup(self) -> int:
        async with self._lock:
            now = self._clock()
            expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.info("Cleaned up %d expired session(s) from memory", len(expired))
        return len(expired)

    def start(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever())

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None

    async def close(self) -> None:
        await self.stop()

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.cleanup()
            except Exception:
                logger.exception("In-memory session sweep failed")


class RedisStorage(SessionStorage):
    name = "redis"

    def __init__(self, client: redis.Redis, prefix: str = "trivia:"):
        self._client = client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(self._key(key))
        except RedisError as exc:
            raise StorageUnavailable(str(exc)) from exc

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            # SET with EX writes the value and its expiry atomically
            await self._client.set(self._key(key), value, ex=ttl_seconds)
        except RedisError as exc:
            raise StorageUnavailable(str(exc)) from exc

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(self._key(key))
        except RedisError as exc:
            raise StorageUnavailable(str(exc)) from exc

    async def count(self) -> int:
        try:
            total = 0
            async for _ in self._client.scan_iter(match=f"{self._prefix}*"):
                total += 1
            return total
        except RedisError as exc:
            raise StorageUnavailable(str(exc)) from exc

    async def close(self) -> None:
        await self._client.aclose()


class FailoverStorage(SessionStorage):
    """Durable storage that drops to an in-process fallback on the first failure.

    The switch is one-way for the lifetime of the process.
    """

    def __init__(self, primary: SessionStorage, fallback: MemoryStorage):
        self._primary = primary
        self._fallback = fallback
        self._failed_over = False

    @property
    def name(self) -> str:  # type: ignore[override]
        return self._fallback.name if self._failed_over else self._primary.name

    @property
    def degraded(self) -> bool:
        return self._failed_over

    async def _call(self, method: str, *args):
        if not self._failed_over:
            try:
                return await getattr(self._primary, method)(*args)
            except StorageUnavailable as exc:
                logger.error(
                    "Durable session store failed during %s (%s); switching to in-memory storage",
                    method,
                    exc,
                )
                self._failed_over = True
                self._fallback.start()
        return await getattr(self._fallback, method)(*args)

    async def get(self, key: str) -> Optional[str]:
        return await self._call("get", key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._call("set", key, value, ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._call("delete", key)

    async def count(self) -> int:
        return await self._call("count")

    async def cleanup(self) -> int:
        return await self._call("cleanup")

    async def close(self) -> None:
        await self._fallback.close()
        try:
            await self._primary.close()
        except RedisError as exc:
            logger.warning("Error closing durable session store: %s", exc)


class StorageFactory:
    """Chooses the session backend at startup and owns its lifecycle."""

    def __init__(self, config: Settings):
        self._config = config
        self._storage: Optional[SessionStorage] = None

    async def initialize(self) -> SessionStorage:
        config = self._config
        fallback = MemoryStorage(sweep_interval=config.CLEANUP_INTERVAL_SECONDS)

        if not config.REDIS_URL:
            logger.warning("REDIS_URL not set, using in-memory session storage")
            fallback.start()
            self._storage = fallback
            return fallback

        client = redis.from_url(
            config.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=config.REDIS_CONNECT_TIMEOUT,
            retry=Retry(ExponentialBackoff(cap=3, base=0.05), 10),
            retry_on_error=[RedisConnectionError, RedisTimeoutError],
        )
        try:
            if not await client.ping():
                raise RedisConnectionError("PING did not return PONG")
        except (RedisError, OSError) as exc:
            logger.warning("Redis connection failed, falling back to in-memory session storage: %s", exc)
            with contextlib.suppress(RedisError, OSError):
                await client.aclose()
            fallback.start()
            self._storage = fallback
            return fallback

        logger.info("Connected to Redis session storage")
        self._storage = FailoverStorage(RedisStorage(client, prefix=config.REDIS_KEY_PREFIX), fallback)
        return self._storage

    @property
    def storage(self) -> SessionStorage:
        if self._storage is None:
            raise RuntimeError("StorageFactory not initialized - call initialize() first")
        return self._storage

    @property
    def degraded(self) -> bool:
        return self.storage.degraded

    async def shutdown(self) -> None:
        if self._storage is None:
            return
        await self._storage.close()
        self._storage = None
