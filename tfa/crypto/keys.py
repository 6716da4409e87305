"""Server ECDH key generation, at-rest encryption and static key loading."""

from datetime import datetime, timedelta

import uuid_utils
from cryptography.fernet import Fernet, InvalidToken

from tfa.core.errors import ConfigurationError
from tfa.core.settings import AuthSettings
from tfa.crypto.ecdh import (
    EnvelopeError,
    export_private_key_pem,
    export_public_key,
    generate_keypair,
    import_private_key,
    import_public_key,
)
from tfa.crypto.types import ServerKeyPair

KEY_ID_PREFIX = "key-"


def new_key_id() -> str:
    """Time-ordered key identifier."""
    return f"{KEY_ID_PREFIX}{uuid_utils.uuid7()}"


def generate_server_keypair(created_at: datetime, ttl_seconds: int) -> ServerKeyPair:
    """Generate a P-256 server keypair valid for ttl_seconds from created_at."""
    private_key = generate_keypair()
    return ServerKeyPair(
        id=new_key_id(),
        private_key_pem=export_private_key_pem(private_key),
        public_key_base64=export_public_key(private_key),
        created_at=created_at,
        expires_at=created_at + timedelta(seconds=ttl_seconds),
    )


def encrypt_private_key(private_pem: str, fernet_key: str) -> str:
    """Encrypt a PEM private key with Fernet for storage."""
    cipher = Fernet(fernet_key.encode())
    return cipher.encrypt(private_pem.encode()).decode()


def decrypt_private_key(encrypted: str, fernet_key: str) -> str:
    """Decrypt a Fernet-encrypted PEM private key."""
    cipher = Fernet(fernet_key.encode())
    try:
        return cipher.decrypt(encrypted.encode()).decode()
    except InvalidToken as exc:
        raise ConfigurationError("Stored server key cannot be decrypted") from exc


def seal_keypair(pair: ServerKeyPair, fernet_key: str) -> ServerKeyPair:
    """Return a copy whose private key is Fernet-encrypted, if a key is set."""
    if not fernet_key or pair.encrypted:
        return pair
    return pair.model_copy(
        update={
            "private_key_pem": encrypt_private_key(pair.private_key_pem, fernet_key),
            "encrypted": True,
        }
    )


def unseal_keypair(pair: ServerKeyPair, fernet_key: str) -> ServerKeyPair:
    """Return a copy with a plaintext private key."""
    if not pair.encrypted:
        return pair
    if not fernet_key:
        raise ConfigurationError(
            f"Server key {pair.id} is encrypted but AUTH_KEY_ENCRYPTION_KEY is not set"
        )
    return pair.model_copy(
        update={
            "private_key_pem": decrypt_private_key(pair.private_key_pem, fernet_key),
            "encrypted": False,
        }
    )


def load_static_private_key(settings: AuthSettings) -> str | None:
    """Configured static server private key as PEM, normalized."""
    raw = settings.ecdh_server_private_key
    if not raw:
        return None
    try:
        return export_private_key_pem(import_private_key(raw))
    except EnvelopeError as exc:
        raise ConfigurationError("AUTH_ECDH_SERVER_PRIVATE_KEY is not a P-256 key") from exc


def load_static_public_key(settings: AuthSettings) -> str | None:
    """Configured static server public key as SPKI base64, derived if only the private key is set."""
    raw = settings.ecdh_server_public_key
    if raw:
        try:
            return export_public_key(import_public_key(raw))
        except EnvelopeError as exc:
            raise ConfigurationError(
                "AUTH_ECDH_SERVER_PUBLIC_KEY is not a P-256 key"
            ) from exc
    private_pem = load_static_private_key(settings)
    if private_pem is None:
        return None
    return export_public_key(import_private_key(private_pem))
