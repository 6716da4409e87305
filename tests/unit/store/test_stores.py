"""Tests for the in-memory, SQL and Redis key-value store backends."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from tfa.core.settings import StoreSettings
from tfa.store.base import BackendResult, BackendUnavailable, KeyValueStore, attempt
from tfa.store.factory import build_store
from tfa.store.memory import InMemoryStore
from tfa.store.redis_store import RedisStore
from tfa.store.sql import SqlStore


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture(params=["memory", "sql"])
async def backend(
    request: pytest.FixtureRequest, sql_store: SqlStore, store: InMemoryStore
) -> KeyValueStore:
    """Each backend under the same contract."""
    return store if request.param == "memory" else sql_store


class TestStoreContract:
    """Behaviour every backend must share."""

    async def test_put_get_delete(self, backend: KeyValueStore) -> None:
        await backend.put("k", "v")
        assert await backend.get("k") == "v"
        assert await backend.exists("k") is True
        await backend.delete("k")
        assert await backend.get("k") is None
        assert await backend.exists("k") is False

    async def test_put_overwrites(self, backend: KeyValueStore) -> None:
        await backend.put("k", "one")
        await backend.put("k", "two", ttl_seconds=60)
        assert await backend.get("k") == "two"

    async def test_missing_key(self, backend: KeyValueStore) -> None:
        assert await backend.get("absent") is None
        await backend.delete("absent")

    async def test_list_is_newest_first(self, backend: KeyValueStore) -> None:
        for value in ("a", "b", "c"):
            await backend.list_push("idx", value)
        assert await backend.list_range("idx") == ["c", "b", "a"]

    async def test_list_remove_removes_every_occurrence(
        self, backend: KeyValueStore
    ) -> None:
        for value in ("a", "b", "a"):
            await backend.list_push("idx", value)
        await backend.list_remove("idx", "a")
        assert await backend.list_range("idx") == ["b"]
        await backend.list_remove("missing", "a")

    async def test_lists_are_independent(self, backend: KeyValueStore) -> None:
        await backend.list_push("one", "x")
        await backend.list_push("two", "y")
        assert await backend.list_range("one") == ["x"]
        assert await backend.list_range("empty") == []


class TestExpiry:
    """TTL handling against an injected clock."""

    async def test_memory_entry_expires(self) -> None:
        clock = FakeClock()
        mem = InMemoryStore(clock=clock)
        await mem.put("k", "v", ttl_seconds=10)
        clock.advance(9)
        assert await mem.get("k") == "v"
        clock.advance(1)
        assert await mem.get("k") is None
        assert await mem.exists("k") is False

    async def test_sql_entry_expires(self) -> None:
        clock = FakeClock()
        engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
        sql = SqlStore(engine, clock=clock)
        await sql.create_schema()
        await sql.put("k", "v", ttl_seconds=10)
        clock.advance(5)
        assert await sql.exists("k") is True
        clock.advance(5)
        assert await sql.get("k") is None
        await sql.close()

    async def test_no_ttl_never_expires(self) -> None:
        clock = FakeClock()
        mem = InMemoryStore(clock=clock)
        await mem.put("k", "v")
        clock.advance(10**8)
        assert await mem.get("k") == "v"


class TestBackendResult:
    """Tests for fail-open result wrapping."""

    async def test_attempt_captures_unavailability(self) -> None:
        async def _down() -> str:
            raise BackendUnavailable("redis is down")

        result = await attempt(_down())
        assert result.ok is False
        assert result.unwrap_or("fallback") == "fallback"

    async def test_attempt_passes_value_through(self) -> None:
        async def _up() -> list[str]:
            return ["x"]

        result = await attempt(_up())
        assert result.ok is True
        assert result.unwrap_or([]) == ["x"]

    def test_none_value_unwraps_to_default(self) -> None:
        assert BackendResult[int](value=None).unwrap_or(7) == 7

    async def test_sql_errors_become_backend_unavailable(self) -> None:
        engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
        sql = SqlStore(engine)
        # schema never created
        with pytest.raises(BackendUnavailable) as excinfo:
            await sql.get("k")
        assert isinstance(excinfo.value.__cause__, OperationalError)
        await sql.close()


class TestBuildStore:
    """Tests for backend selection."""

    async def test_none_backend(self) -> None:
        assert await build_store(StoreSettings(backend="none")) is None

    async def test_memory_backend(self) -> None:
        assert isinstance(await build_store(StoreSettings(backend="memory")), InMemoryStore)

    async def test_sql_backend(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUTH_DB_URL", "sqlite+aiosqlite://")
        built = await build_store(StoreSettings(backend="sql"))
        assert isinstance(built, SqlStore)
        await built.put("k", "v")
        await built.close()


class TestRedisStore:
    """Tests for the Redis command mapping."""

    async def test_commands(self) -> None:
        client = AsyncMock()
        client.get.return_value = "v"
        client.exists.return_value = 1
        client.lrange.return_value = ["b", "a"]
        store = RedisStore(client)

        await store.put("k", "v", 30)
        client.set.assert_awaited_once_with("k", "v", ex=30)
        assert await store.get("k") == "v"
        assert await store.exists("k") is True
        await store.list_push("l", "a")
        client.lpush.assert_awaited_once_with("l", "a")
        assert await store.list_range("l") == ["b", "a"]
        client.lrange.assert_awaited_once_with("l", 0, -1)
        await store.list_remove("l", "a")
        client.lrem.assert_awaited_once_with("l", 0, "a")
        await store.delete("k")
        client.delete.assert_awaited_once_with("k")

    async def test_errors_become_backend_unavailable(self) -> None:
        client = AsyncMock()
        client.get.side_effect = RedisConnectionError("refused")
        store = RedisStore(client)
        with pytest.raises(BackendUnavailable):
            await store.get("k")
        result = await attempt(store.get("k"))
        assert result.unwrap_or("fallback") == "fallback"
