"""Backend selection and the FastAPI store dependency."""

import logging

from tfa.core.settings import DatabaseSettings, StoreSettings
from tfa.db.engine import build_engine
from tfa.store.base import KeyValueStore
from tfa.store.memory import InMemoryStore
from tfa.store.redis_store import RedisStore
from tfa.store.sql import SqlStore

logger = logging.getLogger(__name__)


class _StoreHolder:
    """Lazy singleton for the configured store."""

    store: KeyValueStore | None = None
    resolved: bool = False


_holder = _StoreHolder()


async def build_store(settings: StoreSettings) -> KeyValueStore | None:
    """Instantiate the backend named by settings; None disables storage."""
    if settings.backend == "memory":
        return InMemoryStore()
    if settings.backend == "redis":
        return RedisStore.from_url(settings.redis_url)
    if settings.backend == "sql":
        store = SqlStore(build_engine(DatabaseSettings()))
        await store.create_schema()
        return store
    return None


async def get_store() -> KeyValueStore | None:
    """FastAPI dependency returning the process-wide store, if any."""
    if not _holder.resolved:
        settings = StoreSettings()
        _holder.store = await build_store(settings)
        _holder.resolved = True
        logger.info("store backend: %s", settings.backend)
    return _holder.store


async def close_store() -> None:
    """Release backend connections held by the process-wide store."""
    store = _holder.store
    if isinstance(store, RedisStore | SqlStore):
        await store.close()
    _holder.store = None
    _holder.resolved = False
