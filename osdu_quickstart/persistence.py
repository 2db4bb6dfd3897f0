from abc import ABC, abstractmethod
from collections import deque
from typing import Optional, Type, TypeVar, Generic
from pydantic import BaseModel
import redis
import time
import asyncio
from osdu_quickstart.config import Settings
from osdu_quickstart.logging_util import get_logger

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)


class PersistenceProvider(ABC, Generic[T]):
    def __init__(self, model_class: Type[T]):
        self.model_class = model_class

    @abstractmethod
    def set(self, key: str, value: T, ttl_in_sec: Optional[int] = None) -> None:
        """Store the model instance with an optional TTL."""

    @abstractmethod
    def get(self, key: str) -> Optional[T]:
        """Retrieve the model instance, or None if absent or expired."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove the key from storage."""


class InMemoryProvider(PersistenceProvider[T]):
    def __init__(self, model_class: Type[T]):
        super().__init__(model_class)
        self._data: dict[str, tuple[str, Optional[float]]] = {}
        self._expiry_queue: deque[tuple[float, str]] = deque()

    def set(self, key: str, value: T, ttl_in_sec: Optional[int] = None) -> None:
        expires_at = time.time() + ttl_in_sec if ttl_in_sec else None
        self._data[key] = (value.model_dump_json(), expires_at)
        if expires_at is not None:
            self._expiry_queue.append((expires_at, key))

    def get(self, key: str) -> Optional[T]:
        entry = self._data.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if expires_at is not None and expires_at <= time.time():
            del self._data[key]
            return None
        return self.model_class.model_validate_json(raw)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def cleanup_expired(self) -> int:
        """Removes expired items and returns the count of deleted items."""
        now = time.time()
        count = 0
        while self._expiry_queue and self._expiry_queue[0][0] <= now:
            expires_at, key = self._expiry_queue.popleft()
            entry = self._data.get(key)
            # the key may have been set again with a later expiry
            if entry is not None and entry[1] == expires_at:
                logger.debug(f"Cleaning up expired key: {key}")
                del self._data[key]
                count += 1
        return count

    def __len__(self) -> int:
        return len(self._data)


class RedisProvider(PersistenceProvider[T]):
    def __init__(self, model_class: Type[T], host: str, port: int, prefix: str,
                 client: Optional[redis.Redis] = None):
        super().__init__(model_class)
        self.client = client or redis.Redis(host=host, port=port, decode_responses=True)
        self.prefix = prefix

    def _get_key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def set(self, key: str, value: T, ttl_in_sec: Optional[int] = None) -> None:
        self.client.set(self._get_key(key), value.model_dump_json(), ex=ttl_in_sec)

    def get(self, key: str) -> Optional[T]:
        raw = self.client.get(self._get_key(key))
        return self.model_class.model_validate_json(raw) if raw else None

    def delete(self, key: str) -> None:
        self.client.delete(self._get_key(key))


class PersistenceFactory:
    @staticmethod
    def create(model_class: Type[T], scope: str) -> PersistenceProvider[T]:
        if Settings.STORAGE_BACKEND == "redis":
            logger.info(f"Using redis storage for {scope} at {Settings.REDIS_HOST}:{Settings.REDIS_PORT}")
            return RedisProvider(
                model_class=model_class,
                host=Settings.REDIS_HOST,
                port=Settings.REDIS_PORT,
                prefix=scope
            )
        return InMemoryProvider(model_class=model_class)


async def ttl_cleanup_task(provider: InMemoryProvider, interval_seconds: int = 60):
    logger.debug(f"Starting TTL cleanup task with interval {interval_seconds} seconds")
    try:
        while True:
            try:
                removed = provider.cleanup_expired()
                if removed:
                    logger.debug(f"TTL cleanup removed {removed} expired entries")
            except Exception:
                logger.error("TTL cleanup failed", exc_info=True)
            await asyncio.sleep(interval_seconds)
    except asyncio.CancelledError:
        logger.debug("TTL cleanup task cancelled")
        raise
