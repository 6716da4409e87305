"""FastAPI dependency providers for settings and protocol services."""

from typing import Annotated

from fastapi import Depends

from tfa.core.settings import AuthSettings, KeyRotationSettings
from tfa.crypto.jwt_manager import JWTManager
from tfa.crypto.keys import load_static_private_key, load_static_public_key
from tfa.oauth.key_rotation import KeyRotationManager
from tfa.oauth.replay import ReplayLedger
from tfa.oauth.server_keys import ServerKeyring
from tfa.oauth.whitelist import TrustGuard
from tfa.store.base import KeyValueStore
from tfa.store.factory import get_store


def load_settings() -> AuthSettings:
    return AuthSettings()


def load_rotation_settings() -> KeyRotationSettings:
    return KeyRotationSettings()


SettingsDep = Annotated[AuthSettings, Depends(load_settings)]
StoreDep = Annotated[KeyValueStore | None, Depends(get_store)]


def get_trust_guard(settings: SettingsDep) -> TrustGuard:
    """Trust guard built from the redirect whitelist."""
    return TrustGuard.from_settings(settings)


def get_rotation_manager(
    settings: SettingsDep,
    rotation: Annotated[KeyRotationSettings, Depends(load_rotation_settings)],
    store: StoreDep,
) -> KeyRotationManager:
    """Rotation manager over the configured store."""
    return KeyRotationManager(store, rotation, fernet_key=settings.key_encryption_key)


def get_keyring(
    settings: SettingsDep,
    rotation: Annotated[KeyRotationManager, Depends(get_rotation_manager)],
) -> ServerKeyring:
    """Keyring falling back to the static ECDH key pair."""
    return ServerKeyring(
        rotation,
        static_private_pem=load_static_private_key(settings),
        static_public_key=load_static_public_key(settings),
    )


def get_replay_ledger(settings: SettingsDep, store: StoreDep) -> ReplayLedger:
    """Replay ledger honouring the protection flag."""
    return ReplayLedger(store, enabled=settings.enable_token_replay_protection)


def get_jwt_manager(settings: SettingsDep) -> JWTManager:
    """Token service bound to the configured principal."""
    return JWTManager.from_settings(settings)


GuardDep = Annotated[TrustGuard, Depends(get_trust_guard)]
RotationDep = Annotated[KeyRotationManager, Depends(get_rotation_manager)]
KeyringDep = Annotated[ServerKeyring, Depends(get_keyring)]
LedgerDep = Annotated[ReplayLedger, Depends(get_replay_ledger)]
JWTDep = Annotated[JWTManager, Depends(get_jwt_manager)]
