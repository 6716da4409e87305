"""In-process key-value store for development and tests."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta


def _utcnow() -> datetime:
    return datetime.now(UTC)


class InMemoryStore:
    """Dict-backed store honouring per-key TTLs against an injectable clock."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._values: dict[str, tuple[str, datetime | None]] = {}
        self._lists: dict[str, list[str]] = {}

    def _live(self, key: str) -> str | None:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._values[key]
            return None
        return value

    async def get(self, key: str) -> str | None:
        """Return the value stored under key, or None if missing or expired."""
        return self._live(key)

    async def put(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        """Store value under key, expiring after ttl_seconds when given."""
        expires_at = None
        if ttl_seconds is not None:
            expires_at = self._clock() + timedelta(seconds=ttl_seconds)
        self._values[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        """Remove key if present."""
        self._values.pop(key, None)
        self._lists.pop(key, None)

    async def exists(self, key: str) -> bool:
        """Return True if key holds an unexpired value."""
        return self._live(key) is not None

    async def list_push(self, key: str, value: str) -> None:
        """Prepend value to the list stored under key."""
        self._lists.setdefault(key, []).insert(0, value)

    async def list_range(self, key: str) -> list[str]:
        """Return every item of the list under key, most recently pushed first."""
        return list(self._lists.get(key, []))

    async def list_remove(self, key: str, value: str) -> None:
        """Remove every occurrence of value from the list under key."""
        items = self._lists.get(key)
        if items is None:
            return
        self._lists[key] = [item for item in items if item != value]
