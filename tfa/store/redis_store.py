"""Redis-backed key-value store."""

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from tfa.store.base import BackendUnavailable

logger = logging.getLogger(__name__)


class RedisStore:
    """Maps the store contract onto Redis strings and lists."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        """Build a store from a redis:// URL with string responses."""
        logger.info("using redis store at %s", url.split("@")[-1])
        return cls(redis.from_url(url, decode_responses=True))

    async def close(self) -> None:
        """Release the underlying connection pool."""
        await self._client.aclose()

    async def get(self, key: str) -> str | None:
        """Return the value stored under key, or None if missing or expired."""
        try:
            return await self._client.get(key)
        except RedisError as exc:
            raise BackendUnavailable(f"redis get failed: {exc}") from exc

    async def put(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        """Store value under key, expiring after ttl_seconds when given."""
        try:
            await self._client.set(key, value, ex=ttl_seconds)
        except RedisError as exc:
            raise BackendUnavailable(f"redis set failed: {exc}") from exc

    async def delete(self, key: str) -> None:
        """Remove key if present."""
        try:
            await self._client.delete(key)
        except RedisError as exc:
            raise BackendUnavailable(f"redis delete failed: {exc}") from exc

    async def exists(self, key: str) -> bool:
        """Return True if key holds an unexpired value."""
        try:
            return bool(await self._client.exists(key))
        except RedisError as exc:
            raise BackendUnavailable(f"redis exists failed: {exc}") from exc

    async def list_push(self, key: str, value: str) -> None:
        """Prepend value to the list stored under key."""
        try:
            await self._client.lpush(key, value)
        except RedisError as exc:
            raise BackendUnavailable(f"redis lpush failed: {exc}") from exc

    async def list_range(self, key: str) -> list[str]:
        """Return every item of the list under key, most recently pushed first."""
        try:
            return list(await self._client.lrange(key, 0, -1))
        except RedisError as exc:
            raise BackendUnavailable(f"redis lrange failed: {exc}") from exc

    async def list_remove(self, key: str, value: str) -> None:
        """Remove every occurrence of value from the list under key."""
        try:
            await self._client.lrem(key, 0, value)
        except RedisError as exc:
            raise BackendUnavailable(f"redis lrem failed: {exc}") from exc
