"""SQL-backed key-value store using async SQLAlchemy."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from tfa.db.models_store import KeyValueEntity, ListItemEntity, StoreBase
from tfa.store.base import BackendUnavailable


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SqlStore:
    """Stores keys in kv_entries and list members in kv_list_items."""

    def __init__(
        self,
        engine: AsyncEngine,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._engine = engine
        self._factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )
        self._clock = clock

    async def create_schema(self) -> None:
        """Create the store tables if they do not exist."""
        async with self._engine.begin() as conn:
            await conn.run_sync(StoreBase.metadata.create_all)

    async def close(self) -> None:
        """Dispose of the engine's connection pool."""
        await self._engine.dispose()

    def _is_expired(self, entity: KeyValueEntity) -> bool:
        """Return True if the entry has passed its expiry."""
        expiry = entity.expires_at
        if expiry is None:
            return False
        now = self._clock()
        if expiry.tzinfo is None:
            now = now.replace(tzinfo=None)
        return now >= expiry

    async def _load(self, session: AsyncSession, key: str) -> KeyValueEntity | None:
        entity = await session.get(KeyValueEntity, key)
        if entity is None:
            return None
        if self._is_expired(entity):
            await session.delete(entity)
            await session.commit()
            return None
        return entity

    async def get(self, key: str) -> str | None:
        """Return the value stored under key, or None if missing or expired."""
        try:
            async with self._factory() as session:
                entity = await self._load(session, key)
                return entity.value if entity is not None else None
        except SQLAlchemyError as exc:
            raise BackendUnavailable(f"sql get failed: {exc}") from exc

    async def put(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        """Store value under key, expiring after ttl_seconds when given."""
        expires_at = None
        if ttl_seconds is not None:
            expires_at = self._clock() + timedelta(seconds=ttl_seconds)
        try:
            async with self._factory() as session:
                await session.merge(
                    KeyValueEntity(key=key, value=value, expires_at=expires_at)
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise BackendUnavailable(f"sql put failed: {exc}") from exc

    async def delete(self, key: str) -> None:
        """Remove key if present."""
        try:
            async with self._factory() as session:
                await session.execute(
                    delete(KeyValueEntity).where(KeyValueEntity.key == key)
                )
                await session.execute(
                    delete(ListItemEntity).where(ListItemEntity.list_key == key)
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise BackendUnavailable(f"sql delete failed: {exc}") from exc

    async def exists(self, key: str) -> bool:
        """Return True if key holds an unexpired value."""
        return await self.get(key) is not None

    async def list_push(self, key: str, value: str) -> None:
        """Prepend value to the list stored under key."""
        try:
            async with self._factory() as session:
                session.add(ListItemEntity(list_key=key, value=value))
                await session.commit()
        except SQLAlchemyError as exc:
            raise BackendUnavailable(f"sql list push failed: {exc}") from exc

    async def list_range(self, key: str) -> list[str]:
        """Return every item of the list under key, most recently pushed first."""
        stmt = (
            select(ListItemEntity.value)
            .where(ListItemEntity.list_key == key)
            .order_by(ListItemEntity.id.desc())
        )
        try:
            async with self._factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise BackendUnavailable(f"sql list range failed: {exc}") from exc

    async def list_remove(self, key: str, value: str) -> None:
        """Remove every occurrence of value from the list under key."""
        stmt = delete(ListItemEntity).where(
            ListItemEntity.list_key == key, ListItemEntity.value == value
        )
        try:
            async with self._factory() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            raise BackendUnavailable(f"sql list remove failed: {exc}") from exc
