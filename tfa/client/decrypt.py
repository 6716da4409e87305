"""Open the encrypted login envelope delivered by the broker."""

import json
import logging

from pydantic import BaseModel, ConfigDict, Field

from tfa.client.errors import FlowErrorKind, OAuthClientError
from tfa.crypto.ecdh import (
    EnvelopeError,
    decrypt,
    derive_shared_key,
    import_private_key,
    import_public_key,
)

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 50
JWT_INSTEAD_OF_ENVELOPE = (
    "Received a JWT token instead of an ECDH encrypted payload. Make sure to include "
    "the client public key when launching OAuth and do not decode JWT tokens on this page."
)


class DecryptedToken(BaseModel):
    """Inner plaintext of an envelope."""

    model_config = ConfigDict(populate_by_name=True)

    token: str
    issued_at: int | None = Field(default=None, alias="issuedAt")


def _preview(value: str) -> str:
    suffix = "..." if len(value) > PREVIEW_LENGTH else ""
    return value[:PREVIEW_LENGTH] + suffix


def decrypt_oauth_token(
    encrypted_token: str, client_private_key: str | None, server_public_key: str
) -> DecryptedToken:
    """Decrypt and structurally validate an envelope; every failure is typed."""
    if not client_private_key:
        raise OAuthClientError(
            FlowErrorKind.MISSING_PRIVATE_KEY, "Client private key not found"
        )
    if len(encrypted_token.split(".")) == 3:
        raise OAuthClientError(FlowErrorKind.UNENCRYPTED_TOKEN, JWT_INSTEAD_OF_ENVELOPE)

    try:
        private_key = import_private_key(client_private_key)
    except EnvelopeError as exc:
        raise OAuthClientError(
            FlowErrorKind.KEY_IMPORT_FAILED,
            f"Failed to import client private key: {exc}. "
            "Make sure the private key is valid base64 PKCS#8 format.",
        ) from exc

    try:
        shared_key = derive_shared_key(private_key, import_public_key(server_public_key))
    except EnvelopeError as exc:
        raise OAuthClientError(
            FlowErrorKind.KEY_IMPORT_FAILED,
            f"Failed to derive shared key: {exc}. Check that client private key "
            "and server public key are from the same key exchange.",
        ) from exc

    try:
        plaintext = decrypt(encrypted_token, shared_key)
    except EnvelopeError as exc:
        raise OAuthClientError(
            FlowErrorKind.DECRYPT_FAILED,
            f"Failed to decrypt token: {exc}. Token length: {len(encrypted_token)}, "
            f'Token preview: "{_preview(encrypted_token)}". This usually means the '
            "client private key doesn't match the public key used during encryption, "
            "or the server public key is incorrect.",
        ) from exc

    try:
        payload = json.loads(plaintext)
    except json.JSONDecodeError as exc:
        logger.warning("decrypted payload is not JSON")
        raise OAuthClientError(
            FlowErrorKind.MALFORMED_PAYLOAD, "Decrypted payload is not valid JSON"
        ) from exc

    if not isinstance(payload, dict) or not isinstance(payload.get("token"), str):
        logger.warning("decrypted payload has no token field")
        raise OAuthClientError(
            FlowErrorKind.MISSING_TOKEN, "Decrypted payload is missing the JWT token"
        )

    issued_at = payload.get("issuedAt")
    if isinstance(issued_at, bool) or not isinstance(issued_at, int | float):
        issued_at = None
    else:
        issued_at = int(issued_at)
    return DecryptedToken(token=payload["token"], issued_at=issued_at)
