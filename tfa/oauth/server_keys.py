"""Server key selection: rotated keys first, static configuration as fallback."""

import logging

from tfa.core.errors import ConfigurationError
from tfa.crypto.ecdh import EnvelopeError, decrypt_from_peer, encrypt_for_peer
from tfa.oauth.key_rotation import KeyRotationManager

logger = logging.getLogger(__name__)


class ServerKeyring:
    """Resolves the server key pair used for ECDH with relying parties."""

    def __init__(
        self,
        rotation: KeyRotationManager,
        static_private_pem: str | None = None,
        static_public_key: str | None = None,
    ) -> None:
        self._rotation = rotation
        self._static_private_pem = static_private_pem
        self._static_public_key = static_public_key

    async def current_private_key(self) -> str:
        """PEM of the newest rotated key, else the static key."""
        latest = await self._rotation.get_latest_key_pair()
        if latest is not None:
            return self._rotation.private_key_pem(latest)
        if self._static_private_pem:
            return self._static_private_pem
        raise ConfigurationError(
            "No server ECDH key: enable key rotation or set AUTH_ECDH_SERVER_PRIVATE_KEY"
        )

    async def current_public_key(self) -> str | None:
        """Public half of the key current_private_key would return."""
        latest = await self._rotation.get_latest_key_pair()
        if latest is not None:
            return latest.public_key_base64
        return self._static_public_key

    async def publish_public_key(self) -> str | None:
        """Run the rotation check, then return the key clients should use."""
        rotated = await self._rotation.ensure_key_rotation()
        if rotated is not None:
            return rotated.public_key_base64
        return self._static_public_key

    async def encrypt_for_client(self, plaintext: str, client_public_key: str) -> str:
        """Seal plaintext for a client using the current server key."""
        return encrypt_for_peer(
            plaintext, await self.current_private_key(), client_public_key
        )

    async def decrypt_from_client(
        self, envelope: str, client_public_key: str
    ) -> str | None:
        """Open an envelope sealed to any active key or the static key."""
        result = await self._rotation.try_decrypt_with_all_keys(
            lambda pem: decrypt_from_peer(envelope, pem, client_public_key)
        )
        if result is not None:
            return result
        if not self._static_private_pem:
            return None
        try:
            return decrypt_from_peer(envelope, self._static_private_pem, client_public_key)
        except EnvelopeError as exc:
            logger.info("static key did not decrypt envelope: %s", exc)
            return None
