from __future__ import annotations

import asyncio
import copy
from functools import lru_cache
from typing import Any, Dict, Iterator, List, Optional, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict
from pymongo import AsyncMongoClient, ReturnDocument


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:8080"
    CORS_ORIGIN_REGEX: Optional[str] = None
    LOG_LEVEL: str = "INFO"

    # Durable session store; unset means degraded (in-process) mode.
    REDIS_URL: Optional[str] = None
    REDIS_CONNECT_TIMEOUT: float = 10.0
    REDIS_KEY_PREFIX: str = "trivia:"

    # Question bank, collections, profiles and telemetry.
    MONGO_URL: Optional[str] = None
    MONGO_DB: str = "trivia"

    SESSION_TTL_SECONDS: int = 3600
    CLEANUP_INTERVAL_SECONDS: int = 300

    ROUND_LENGTH: int = 10
    QUESTION_DURATION: int = 25
    FINAL_QUESTION_DURATION: int = 50

    RECENT_QUESTIONS_PER_USER: int = 30
    RECENT_QUESTIONS_MAX_USERS: int = 1000

    PENALTY_BASE_FACTOR: float = 0.8
    PENALTY_SPEED_FACTOR: float = 0.5

    DEFAULT_COLLECTION_SLUG: str = "federal-civics"


@lru_cache
def get_settings() -> Settings:
    return Settings()


class InMemoryCursor:
    """Async iterator over a query snapshot, taken on first use."""

    def __init__(self, collection: "InMemoryCollection", query: Dict[str, Any]):
        self._collection = collection
        self._query = query
        self._docs: Optional[Iterator[Dict[str, Any]]] = None

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._docs is None:
            self._docs = iter(await self._collection._find_all(self._query))
        try:
            return next(self._docs)
        except StopIteration as exc:
            raise StopAsyncIteration from exc


class InMemoryCollection:
    """Async stand-in for a Mongo collection, covering the operators this service uses."""

    def __init__(self):
        self._docs: List[Dict[str, Any]] = []
        self._lock = asyncio.Lock()

    async def _find_all(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        async with self._lock:
            return [copy.deepcopy(doc) for doc in self._docs if self._matches(doc, query)]

    async def find_one(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        async with self._lock:
            for doc in self._docs:
                if self._matches(doc, query):
                    return copy.deepcopy(doc)
        return None

    def find(self, query: Optional[Dict[str, Any]] = None):
        return InMemoryCursor(self, query or {})

    async def count_documents(self, query: Dict[str, Any]) -> int:
        async with self._lock:
            return sum(1 for doc in self._docs if self._matches(doc, query))

    async def update_one(self, query: Dict[str, Any], update: Dict[str, Any], upsert: bool = False):
        async with self._lock:
            for idx, doc in enumerate(self._docs):
                if self._matches(doc, query):
                    updated = self._apply_update(copy.deepcopy(doc), update)
                    self._docs[idx] = updated
                    return

            if upsert:
                new_doc = self._seed_from_query(query)
                new_doc = self._apply_update(new_doc, update)
                self._docs.append(new_doc)

    async def insert_many(self, documents: List[Dict[str, Any]]):
        async with self._lock:
            self._docs.extend(copy.deepcopy(doc) for doc in documents)

    async def delete_many(self, query: Dict[str, Any]):
        async with self._lock:
            self._docs = [doc for doc in self._docs if not self._matches(doc, query)]

    async def find_one_and_update(
        self,
        query: Dict[str, Any],
        update: Dict[str, Any],
        *,
        upsert: bool = False,
        return_document: bool = ReturnDocument.BEFORE,
    ) -> Optional[Dict[str, Any]]:
        async with self._lock:
            for idx, doc in enumerate(self._docs):
                if self._matches(doc, query):
                    original = copy.deepcopy(doc)
                    updated = self._apply_update(copy.deepcopy(doc), update)
                    self._docs[idx] = updated
                    return copy.deepcopy(updated if return_document == ReturnDocument.AFTER else original)

            if upsert:
                new_doc = self._seed_from_query(query)
                new_doc = self._apply_update(new_doc, update)
                self._docs.append(new_doc)
                if return_document == ReturnDocument.AFTER:
                    return copy.deepcopy(new_doc)
                return None

        return None

    def _seed_from_query(self, query: Dict[str, Any]) -> Dict[str, Any]:
        return {key: copy.deepcopy(value) for key, value in (query or {}).items() if not isinstance(value, dict)}

    def _apply_update(self, doc: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        for op, payload in update.items():
            if op == "$set":
                for key, value in payload.items():
                    doc[key] = copy.deepcopy(value)
            elif op == "$inc":
                for key, value in payload.items():
                    current = doc.get(key, 0)
                    doc[key] = current + value
            else:  # pragma: no cover - only the above operators are used today
                raise ValueError(f"Unsupported update operator: {op}")
        return doc

    def _matches(self, doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
        for key, expected in (query or {}).items():
            actual = doc.get(key)
            if isinstance(expected, dict):
                for op, operand in expected.items():
                    if op == "$in":
                        if not self._contains_any(actual, operand):
                            return False
                    elif op == "$nin":
                        if self._contains_any(actual, operand):
                            return False
                    else:  # pragma: no cover - extend as new operators are required
                        raise ValueError(f"Unsupported query operator(s): {expected}")
            elif isinstance(actual, list) and not isinstance(expected, list):
                # Mongo semantics: a scalar matches any element of an array field
                if expected not in actual:
                    return False
            else:
                if actual != expected:
                    return False
        return True

    @staticmethod
    def _contains_any(actual: Any, candidates: List[Any]) -> bool:
        if isinstance(actual, list):
            return any(item in candidates for item in actual)
        return actual in candidates


class InMemoryDatabase:
    def __init__(self):
        self.questions = InMemoryCollection()
        self.collections = InMemoryCollection()
        self.users = InMemoryCollection()
        self.question_stats = InMemoryCollection()


def connect_database(config: Settings) -> Tuple[Any, Optional[AsyncMongoClient]]:
    """Return the document database and, for MongoDB, the client that owns it."""
    if not config.MONGO_URL:
        return InMemoryDatabase(), None

    client: AsyncMongoClient = AsyncMongoClient(config.MONGO_URL, tz_aware=True)
    return client[config.MONGO_DB], client
