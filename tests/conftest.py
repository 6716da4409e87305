"""Shared test fixtures for tfa-broker."""

from collections.abc import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from tfa.core.app import create_app
from tfa.crypto.ecdh import export_private_key_pem, generate_keypair
from tfa.store.factory import get_store
from tfa.store.memory import InMemoryStore
from tfa.store.sql import SqlStore

TEST_USERNAME = "operator"
TEST_PASSWORD = "correct-horse-battery-staple"
TEST_TOTP_SECRET = "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP"
TEST_JWT_SECRET = "test-jwt-secret-that-is-at-least-32-bytes-long"
STATIC_SERVER_PRIVATE_PEM = export_private_key_pem(generate_keypair())


@pytest.fixture(autouse=True)
def _set_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set environment variables for test settings."""
    monkeypatch.setenv("AUTH_ACCESS_USERNAME", TEST_USERNAME)
    monkeypatch.setenv("AUTH_ACCESS_PASSWORD", TEST_PASSWORD)
    monkeypatch.setenv("AUTH_ACCESS_TOTP_SECRET", TEST_TOTP_SECRET)
    monkeypatch.setenv("AUTH_JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("AUTH_OAUTH_ISSUER", "http://test")
    monkeypatch.setenv("AUTH_ECDH_SERVER_PRIVATE_KEY", STATIC_SERVER_PRIVATE_PEM)
    monkeypatch.setenv("AUTH_ENVIRONMENT", "development")
    monkeypatch.setenv("AUTH_STORE_BACKEND", "none")


@pytest.fixture
def store() -> InMemoryStore:
    """Fresh in-process key-value store."""
    return InMemoryStore()


@pytest.fixture
async def sql_store() -> AsyncIterator[SqlStore]:
    """SQL store over a shared in-memory SQLite connection."""
    engine = create_async_engine(
        "sqlite+aiosqlite://", echo=False, poolclass=StaticPool
    )
    sql = SqlStore(engine)
    await sql.create_schema()
    yield sql
    await sql.close()


@pytest.fixture
async def client(store: InMemoryStore) -> AsyncIterator[AsyncClient]:
    """Create an httpx test client with the store dependency overridden."""
    app = create_app()

    async def _override_store() -> InMemoryStore:
        return store

    app.dependency_overrides[get_store] = _override_store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
