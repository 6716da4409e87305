"""Single-use ledger of exchanged login token identifiers."""

import logging

import uuid_utils

from tfa.store.base import BackendUnavailable, KeyValueStore, attempt

logger = logging.getLogger(__name__)

KEY_PREFIX = "token:"
TTL_BUFFER_SECONDS = 10


def generate_jti() -> str:
    """Random token identifier."""
    return str(uuid_utils.uuid4())


class ReplayLedger:
    """Fail-open record of which jti values have already been exchanged."""

    def __init__(self, store: KeyValueStore | None, enabled: bool) -> None:
        self._store = store
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def is_token_used(self, jti: str) -> bool:
        """False when disabled, unbacked or the backend is unreachable."""
        if not self._enabled or self._store is None or not jti:
            return False
        result = await attempt(self._store.exists(f"{KEY_PREFIX}{jti}"))
        return result.unwrap_or(False)

    async def mark_token_as_used(self, jti: str, ttl_seconds: int) -> None:
        """Best-effort marker living ttl_seconds plus a small buffer."""
        if not self._enabled or self._store is None or not jti:
            return
        try:
            await self._store.put(
                f"{KEY_PREFIX}{jti}", "1", max(ttl_seconds, 0) + TTL_BUFFER_SECONDS
            )
        except BackendUnavailable as exc:
            logger.error("could not mark token %s as used: %s", jti, exc)
