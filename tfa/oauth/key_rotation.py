"""Server ECDH key rotation with overlapping validity windows.

Each key pair is stored under ``oauth:server-key:<id>`` with a storage TTL of
its validity plus the transition period, and its id is pushed onto the
``oauth:server-keys:list`` index. The newest active key encrypts; every active
key may still decrypt, so clients holding a slightly stale public key keep
working until their key expires.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from tfa.core.errors import ConfigurationError
from tfa.core.settings import KeyRotationSettings
from tfa.crypto.keys import generate_server_keypair, seal_keypair, unseal_keypair
from tfa.crypto.types import ServerKeyPair
from tfa.store.base import BackendUnavailable, KeyValueStore, attempt

logger = logging.getLogger(__name__)

KEY_PREFIX = "oauth:server-key:"
KEY_LIST_KEY = "oauth:server-keys:list"
PUBLIC_KEY_PREVIEW_LENGTH = 20

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class KeySummary(BaseModel):
    """Diagnostic view of one active key; never carries private material."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    created_at: str
    expires_at: str
    time_until_expiration: int
    public_key_base64: str


class RotationStatus(BaseModel):
    """Diagnostic snapshot of the rotation configuration and active keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    enabled: bool
    key_ttl_seconds: int
    transition_period_seconds: int
    active_key_count: int
    active_keys: list[KeySummary]
    note: str = (
        "Key rotation is automatic. Keys are rotated when they approach expiration."
    )


class KeyRotationManager:
    """Creates, lists and prunes server key pairs in a key-value store."""

    def __init__(
        self,
        store: KeyValueStore | None,
        config: KeyRotationSettings,
        fernet_key: str = "",
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._config = config
        self._fernet_key = fernet_key
        self._now = now

    @property
    def enabled(self) -> bool:
        """Rotation is on and has somewhere to keep keys."""
        return self._config.enabled and self._store is not None

    def _is_active(self, pair: ServerKeyPair) -> bool:
        return _as_utc(pair.expires_at) > self._now()

    async def _read_pair(self, key_id: str) -> ServerKeyPair | None:
        """Load one stored pair; raises BackendUnavailable on storage failure."""
        assert self._store is not None
        raw = await self._store.get(f"{KEY_PREFIX}{key_id}")
        if raw is None:
            return None
        try:
            return ServerKeyPair.model_validate_json(raw)
        except ValidationError:
            logger.warning("discarding unreadable server key %s", key_id)
            return None

    async def get_active_key_pairs(self) -> list[ServerKeyPair]:
        """Unexpired key pairs, newest first; unreadable entries are skipped."""
        if not self.enabled:
            return []
        assert self._store is not None
        key_ids = (await attempt(self._store.list_range(KEY_LIST_KEY))).unwrap_or([])
        active: list[ServerKeyPair] = []
        for key_id in key_ids:
            result = await attempt(self._read_pair(key_id))
            pair = result.value
            if pair is not None and self._is_active(pair):
                active.append(pair)
        active.sort(key=lambda p: (_as_utc(p.created_at), p.id), reverse=True)
        return active

    async def get_latest_key_pair(self) -> ServerKeyPair | None:
        """Newest active key pair, used for encryption."""
        active = await self.get_active_key_pairs()
        return active[0] if active else None

    async def rotate_key_pair(self) -> ServerKeyPair:
        """Generate and persist a new key pair; storage failures propagate."""
        if not self._config.enabled:
            raise ConfigurationError("Key rotation is not enabled")
        if self._store is None:
            raise ConfigurationError(
                "Key rotation requires a store; set AUTH_STORE_BACKEND"
            )
        pair = generate_server_keypair(self._now(), self._config.ttl_seconds)
        stored = seal_keypair(pair, self._fernet_key)
        storage_ttl = self._config.ttl_seconds + self._config.transition_seconds
        await self._store.put(
            f"{KEY_PREFIX}{pair.id}", stored.model_dump_json(), storage_ttl
        )
        await self._store.list_push(KEY_LIST_KEY, pair.id)
        logger.info("rotated server key, new key id %s", pair.id)
        await self._prune()
        return pair

    async def _prune(self) -> None:
        """Drop index entries whose key is gone or expired."""
        assert self._store is not None
        for key_id in await self._store.list_range(KEY_LIST_KEY):
            try:
                pair = await self._read_pair(key_id)
            except BackendUnavailable:
                continue
            if pair is not None and self._is_active(pair):
                continue
            await self._store.list_remove(KEY_LIST_KEY, key_id)
            await self._store.delete(f"{KEY_PREFIX}{key_id}")
            logger.info("pruned server key %s", key_id)

    async def should_rotate_key(self) -> bool:
        """True when no key exists or the newest is inside its transition window."""
        if not self.enabled:
            return False
        latest = await self.get_latest_key_pair()
        if latest is None:
            return True
        remaining = (_as_utc(latest.expires_at) - self._now()).total_seconds()
        return remaining <= self._config.transition_seconds

    async def ensure_key_rotation(self) -> ServerKeyPair | None:
        """Rotate if due; on failure fall back to whatever key is active."""
        if not self.enabled:
            return None
        if await self.should_rotate_key():
            try:
                return await self.rotate_key_pair()
            except (BackendUnavailable, ConfigurationError) as exc:
                logger.error("automatic key rotation failed: %s", exc)
        return await self.get_latest_key_pair()

    def private_key_pem(self, pair: ServerKeyPair) -> str:
        """Plaintext PEM of a stored pair's private key."""
        return unseal_keypair(pair, self._fernet_key).private_key_pem

    async def try_decrypt_with_all_keys(
        self, decrypt_fn: Callable[[str], T | Awaitable[T]]
    ) -> T | None:
        """Apply decrypt_fn to each active private key, newest first."""
        for pair in await self.get_active_key_pairs():
            try:
                result = decrypt_fn(self.private_key_pem(pair))
                if inspect.isawaitable(result):
                    result = await result
            except (ValueError, ConfigurationError) as exc:
                logger.debug("key %s did not decrypt: %s", pair.id, exc)
                continue
            return result  # type: ignore[return-value]
        return None

    async def status(self) -> RotationStatus:
        """Diagnostics with public keys truncated."""
        active = await self.get_active_key_pairs()
        now = self._now()
        summaries = [
            KeySummary(
                id=pair.id,
                created_at=_as_utc(pair.created_at).isoformat(),
                expires_at=_as_utc(pair.expires_at).isoformat(),
                time_until_expiration=max(
                    0, int((_as_utc(pair.expires_at) - now).total_seconds() * 1000)
                ),
                public_key_base64=pair.public_key_base64[:PUBLIC_KEY_PREVIEW_LENGTH]
                + "...",
            )
            for pair in active
        ]
        return RotationStatus(
            enabled=self._config.enabled,
            key_ttl_seconds=self._config.ttl_seconds,
            transition_period_seconds=self._config.transition_seconds,
            active_key_count=len(active),
            active_keys=summaries,
        )
