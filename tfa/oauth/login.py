"""Credential verification, login token issuance and envelope delivery."""

import logging
import time
from typing import Any

from pydantic import BaseModel

from tfa.core.errors import AuthenticationError, ConfigurationError
from tfa.core.settings import AuthSettings
from tfa.crypto.ecdh import EnvelopeError
from tfa.crypto.jwt_manager import JWTManager
from tfa.crypto.passkey import parse_credential_secret, read_challenge, verify_assertion
from tfa.crypto.password import verify_password
from tfa.crypto.totp import verify_code
from tfa.crypto.types import TokenEnvelopePayload
from tfa.oauth.delivery import TokenDelivery, plan_delivery
from tfa.oauth.params import (
    InvalidOAuthRequestError,
    OAuthParams,
    ParamError,
    validate_oauth_params,
)
from tfa.oauth.replay import ReplayLedger, generate_jti
from tfa.oauth.server_keys import ServerKeyring
from tfa.oauth.whitelist import TrustGuard

logger = logging.getLogger(__name__)

LOGIN_TOKEN_TTL_SECONDS = 300
LOGIN_TOKEN_USE = "login"


class LoginSubmission(BaseModel):
    """Everything a login attempt carries, whichever second factor is used."""

    username: str = ""
    password: str = ""
    totp_code: str | None = None
    webauthn_response: dict[str, Any] | None = None
    challenge_token: str | None = None
    redirect_url: str | None = None
    state: str | None = None
    client_public_key: str | None = None
    callback_origin: str | None = None


def verify_form(username: str, password: str, settings: AuthSettings) -> None:
    """Check the single configured principal's username and password."""
    if not settings.access_username or not settings.access_password:
        raise ConfigurationError("Invalid server configuration")
    if not username:
        raise AuthenticationError("Username is required")
    if not password:
        raise AuthenticationError("Password is required")
    username_ok = username == settings.access_username
    password_ok = verify_password(password, settings.access_password)
    if not (username_ok and password_ok):
        logger.info("rejected credentials for %r", username)
        raise AuthenticationError("Unauthorized")


def verify_second_factor(
    submission: LoginSubmission, settings: AuthSettings, jwt_mgr: JWTManager
) -> str:
    """Verify TOTP or a passkey assertion; returns the method used."""
    totp_ready = bool(settings.access_totp_secret)
    passkey_ready = bool(settings.access_webauthn_secret)
    if not totp_ready and not passkey_ready:
        raise ConfigurationError("Invalid server configuration")

    if submission.webauthn_response is not None:
        if not passkey_ready:
            raise AuthenticationError("Passkey login is not configured")
        credential = parse_credential_secret(settings.access_webauthn_secret)
        challenge = read_challenge(submission.challenge_token or "", jwt_mgr)
        if challenge is None:
            raise AuthenticationError("Passkey challenge is missing or expired")
        if not verify_assertion(credential, submission.webauthn_response, challenge):
            raise AuthenticationError("Passkey verification failed")
        return "webauthn"

    if submission.totp_code:
        if not totp_ready:
            raise AuthenticationError("TOTP login is not configured")
        if not verify_code(settings.access_totp_secret, submission.totp_code):
            raise AuthenticationError("Invalid verification code")
        return "totp"

    raise AuthenticationError("Verification code is required")


def issue_login_token(jwt_mgr: JWTManager, ledger: ReplayLedger) -> str:
    """Short-lived token asserting a completed login."""
    claims: dict[str, Any] = {"authenticated": True, "token_use": LOGIN_TOKEN_USE}
    if ledger.enabled:
        claims["jti"] = generate_jti()
    return jwt_mgr.issue(claims, LOGIN_TOKEN_TTL_SECONDS)


def build_envelope_payload(token: str, issued_at_ms: int | None = None) -> str:
    """JSON plaintext sealed into the envelope."""
    payload = TokenEnvelopePayload(
        token=token,
        issued_at=issued_at_ms if issued_at_ms is not None else int(time.time() * 1000),
    )
    return payload.model_dump_json(by_alias=True)


async def complete_login(
    submission: LoginSubmission,
    *,
    settings: AuthSettings,
    guard: TrustGuard,
    jwt_mgr: JWTManager,
    ledger: ReplayLedger,
    keyring: ServerKeyring,
    current_host: str | None = None,
) -> TokenDelivery:
    """Authenticate, mint the login token and plan its encrypted delivery."""
    checked = validate_oauth_params(
        OAuthParams(
            redirect_url=submission.redirect_url,
            state=submission.state,
            client_public_key=submission.client_public_key,
            callback_origin=submission.callback_origin,
            current_host=current_host,
        ),
        guard,
    )
    if not checked.valid:
        assert checked.error is not None
        raise InvalidOAuthRequestError(checked.error)
    assert checked.client_public_key is not None
    assert checked.redirect_url is not None

    verify_form(submission.username, submission.password, settings)
    method = verify_second_factor(submission, settings, jwt_mgr)

    token = issue_login_token(jwt_mgr, ledger)
    try:
        encrypted = await keyring.encrypt_for_client(
            build_envelope_payload(token), checked.client_public_key
        )
    except EnvelopeError as exc:
        raise InvalidOAuthRequestError(
            ParamError(
                title="Missing Client Public Key",
                description="The client public key could not be used for encryption.",
                value=checked.client_public_key,
            )
        ) from exc
    logger.info("login completed via %s", method)
    return plan_delivery(
        encrypted,
        checked.redirect_url,
        checked.state,
        checked.callback_origin,
        guard,
    )
