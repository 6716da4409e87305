"""WebAuthn assertion options and verification for the configured passkey."""

import base64
import binascii
import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from webauthn import (
    base64url_to_bytes,
    generate_authentication_options,
    options_to_json,
    verify_authentication_response,
)
from webauthn.helpers import bytes_to_base64url, parse_authentication_credential_json
from webauthn.helpers.exceptions import WebAuthnException
from webauthn.helpers.structs import (
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    UserVerificationRequirement,
)

from tfa.core.errors import ConfigurationError
from tfa.crypto.jwt_manager import JWTManager

logger = logging.getLogger(__name__)

CHALLENGE_KIND = "webauthn_challenge"
CHALLENGE_TTL_SECONDS = 300
OPTIONS_TIMEOUT_MS = 60_000


class PasskeyCredential(BaseModel):
    """Registered authenticator of the configured principal."""

    model_config = ConfigDict(populate_by_name=True)

    rp_id: str = Field(alias="rpId")
    credential_id: str = Field(alias="credentialId")
    public_key: str = Field(alias="publicKey")
    counter: int = 0
    origin: str | None = None

    @property
    def expected_origin(self) -> str:
        return self.origin or f"https://{self.rp_id}"


def parse_credential_secret(secret: str) -> PasskeyCredential:
    """Decode the base64url JSON blob held in AUTH_ACCESS_WEBAUTHN_SECRET."""
    if not secret:
        raise ConfigurationError("AUTH_ACCESS_WEBAUTHN_SECRET is not set")
    padded = secret.strip() + "=" * (-len(secret.strip()) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
        return PasskeyCredential.model_validate(json.loads(raw))
    except (binascii.Error, ValueError, ValidationError) as exc:
        raise ConfigurationError("AUTH_ACCESS_WEBAUTHN_SECRET is malformed") from exc


def encode_credential_secret(credential: PasskeyCredential) -> str:
    """Inverse of parse_credential_secret."""
    raw = credential.model_dump_json(by_alias=True, exclude_none=True).encode()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def build_authentication_options(
    credential: PasskeyCredential, jwt_mgr: JWTManager
) -> dict[str, Any]:
    """Assertion options plus a signed token carrying the challenge."""
    options = generate_authentication_options(
        rp_id=credential.rp_id,
        timeout=OPTIONS_TIMEOUT_MS,
        allow_credentials=[
            PublicKeyCredentialDescriptor(
                id=base64url_to_bytes(credential.credential_id),
                transports=[AuthenticatorTransport.INTERNAL],
            )
        ],
        user_verification=UserVerificationRequirement.REQUIRED,
    )
    challenge_token = jwt_mgr.issue(
        {"kind": CHALLENGE_KIND, "challenge": bytes_to_base64url(options.challenge)},
        CHALLENGE_TTL_SECONDS,
    )
    return {
        "options": json.loads(options_to_json(options)),
        "challengeToken": challenge_token,
    }


def read_challenge(challenge_token: str, jwt_mgr: JWTManager) -> bytes | None:
    """Recover the challenge from a token issued by build_authentication_options."""
    decoded = jwt_mgr.verify(challenge_token)
    if decoded is None:
        return None
    extras = decoded.model_extra or {}
    if extras.get("kind") != CHALLENGE_KIND or not extras.get("challenge"):
        return None
    return base64url_to_bytes(extras["challenge"])


def verify_assertion(
    credential: PasskeyCredential,
    assertion: dict[str, Any] | str,
    expected_challenge: bytes,
) -> bool:
    """Verify an authenticator assertion against the configured credential."""
    payload = assertion if isinstance(assertion, str) else json.dumps(assertion)
    try:
        parsed = parse_authentication_credential_json(payload)
        verify_authentication_response(
            credential=parsed,
            expected_challenge=expected_challenge,
            expected_rp_id=credential.rp_id,
            expected_origin=credential.expected_origin,
            credential_public_key=base64url_to_bytes(credential.public_key),
            credential_current_sign_count=credential.counter,
            require_user_verification=True,
        )
    except (WebAuthnException, ValueError) as exc:
        logger.info("passkey assertion rejected: %s", exc)
        return False
    return True
