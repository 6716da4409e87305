"""Async SQLAlchemy engine construction for the SQL store."""

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from tfa.core.settings import DatabaseSettings


def build_engine(db: DatabaseSettings | None = None) -> AsyncEngine:
    """Create an async engine from database settings."""
    db = db or DatabaseSettings()
    if db.async_url.startswith("sqlite"):
        return create_async_engine(db.async_url)
    return create_async_engine(
        db.async_url,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
    )
