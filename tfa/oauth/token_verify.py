"""Exchange of a delivered login token for a short-lived access token."""

import logging
import time
from typing import Any

from pydantic import BaseModel, Field

from tfa.core.errors import (
    InvalidTokenError,
    MissingTokenError,
    SubjectMismatchError,
    TokenReplayedError,
)
from tfa.core.settings import AuthSettings
from tfa.crypto.jwt_manager import JWTManager
from tfa.crypto.subject import verify_configured_user_sub
from tfa.crypto.types import DecodedToken
from tfa.oauth.replay import ReplayLedger, generate_jti

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TTL_SECONDS = 180
PROVIDER = "tfa-broker"
ACCESS_TOKEN_USE = "access"


class VerifiedUser(BaseModel):
    """Identity block of a verification response."""

    sub: str
    authenticated: bool


class VerifyTokenResult(BaseModel):
    """Response body of a successful token exchange."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    user: VerifiedUser
    claims: dict[str, Any] = Field(default_factory=dict)


def remaining_lifetime(payload: DecodedToken, now: float | None = None) -> int | None:
    """Seconds until the token expires, floored at zero; None without exp."""
    if payload.exp is None:
        return None
    return max(0, int(payload.exp - (now if now is not None else time.time())))


def access_token_ttl(payload: DecodedToken, now: float | None = None) -> int:
    """Remaining lifetime of the inbound token, capped and floored at zero."""
    remaining = remaining_lifetime(payload, now)
    if remaining is None:
        return ACCESS_TOKEN_TTL_SECONDS
    return min(remaining, ACCESS_TOKEN_TTL_SECONDS)


def _check_subject(payload: DecodedToken, settings: AuthSettings) -> None:
    """Accept a matching sub claim, or a matching legacy username claim."""
    if payload.sub:
        if not verify_configured_user_sub(payload.sub, settings):
            raise SubjectMismatchError()
        return
    if payload.username:
        if settings.access_username and payload.username != settings.access_username:
            raise SubjectMismatchError(
                "Token username does not match configured user"
            )
        return
    raise SubjectMismatchError(
        "Token missing required user identifier (sub or username)"
    )


async def verify_token_and_generate_access_token(
    token: str,
    *,
    jwt_mgr: JWTManager,
    ledger: ReplayLedger,
    settings: AuthSettings,
    audience: str | None = None,
    scope: str | None = None,
) -> VerifyTokenResult:
    """Validate a login token once and mint the matching access token."""
    if not token:
        raise MissingTokenError()

    payload = jwt_mgr.verify(token)
    if payload is None or not payload.authenticated:
        raise InvalidTokenError()
    if payload.token_use == ACCESS_TOKEN_USE:
        logger.warning("access token presented for exchange")
        raise InvalidTokenError()
    _check_subject(payload, settings)

    if ledger.enabled and payload.jti and await ledger.is_token_used(payload.jti):
        logger.warning("replayed login token %s", payload.jti)
        raise TokenReplayedError()

    expires_in = access_token_ttl(payload)
    claims: dict[str, Any] = {
        "authenticated": True,
        "provider": PROVIDER,
        "token_use": ACCESS_TOKEN_USE,
        "sub": payload.sub or jwt_mgr.subject,
    }
    if audience:
        claims["aud"] = audience
    if scope:
        claims["scope"] = scope
    if ledger.enabled:
        claims["jti"] = generate_jti()

    access_token = jwt_mgr.issue(claims, expires_in)
    decoded = jwt_mgr.verify(access_token, audience=audience, verify_exp=False)
    complete_claims = (
        decoded.model_dump(exclude_none=True) if decoded is not None else claims
    )

    if ledger.enabled and payload.jti:
        lifetime = remaining_lifetime(payload)
        await ledger.mark_token_as_used(
            payload.jti, lifetime if lifetime is not None else expires_in
        )

    return VerifyTokenResult(
        access_token=access_token,
        expires_in=expires_in,
        user=VerifiedUser(sub=claims["sub"], authenticated=True),
        claims=complete_claims,
    )
