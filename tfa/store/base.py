"""Key-value storage contract shared by every backend."""

import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BackendUnavailable(Exception):
    """Raised when the storage backend cannot serve a request."""


class KeyValueStore(Protocol):
    """TTL-aware key-value store with a simple list index primitive."""

    async def get(self, key: str) -> str | None:
        """Return the value stored under key, or None if missing or expired."""
        ...

    async def put(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        """Store value under key, expiring after ttl_seconds when given."""
        ...

    async def delete(self, key: str) -> None:
        """Remove key if present."""
        ...

    async def exists(self, key: str) -> bool:
        """Return True if key holds an unexpired value."""
        ...

    async def list_push(self, key: str, value: str) -> None:
        """Prepend value to the list stored under key."""
        ...

    async def list_range(self, key: str) -> list[str]:
        """Return every item of the list under key, most recently pushed first."""
        ...

    async def list_remove(self, key: str, value: str) -> None:
        """Remove every occurrence of value from the list under key."""
        ...


@dataclass(frozen=True)
class BackendResult(Generic[T]):
    """Outcome of a backend read that callers may choose to fail open on."""

    value: T | None = None
    error: BackendUnavailable | None = None

    @property
    def ok(self) -> bool:
        """Whether the backend answered."""
        return self.error is None

    def unwrap_or(self, default: T) -> T:
        """Return the value, or default when the backend was unavailable."""
        if self.error is not None or self.value is None:
            return default
        return self.value


async def attempt(call: Awaitable[T]) -> BackendResult[T]:
    """Await a backend call and capture unavailability instead of raising."""
    try:
        return BackendResult(value=await call)
    except BackendUnavailable as exc:
        logger.warning("storage backend unavailable: %s", exc)
        return BackendResult(error=exc)
