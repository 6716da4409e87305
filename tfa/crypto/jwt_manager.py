"""JWT issuance and verification using HS256."""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from jwt.types import Options

from tfa.core.errors import ConfigurationError
from tfa.core.settings import AuthSettings
from tfa.crypto.subject import configured_user_sub
from tfa.crypto.types import DecodedToken

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
DEFAULT_ISSUER = "https://tfa-broker.local"


def resolve_issuer(settings: AuthSettings, override: str | None = None) -> str:
    """Explicit override, then configured issuer, then the public URL."""
    if override:
        return override
    if settings.oauth_issuer:
        return settings.oauth_issuer
    if settings.public_url:
        return settings.public_url.rstrip("/")
    return DEFAULT_ISSUER


class JWTManager:
    """Creates and verifies HS256-signed tokens for one issuer and subject."""

    def __init__(self, secret: str, issuer: str, subject: str) -> None:
        if not secret:
            raise ConfigurationError("AUTH_JWT_SECRET is not set")
        self._secret = secret
        self._issuer = issuer
        self._subject = subject

    @classmethod
    def from_settings(
        cls, settings: AuthSettings, issuer: str | None = None
    ) -> "JWTManager":
        """Build a manager bound to the configured principal."""
        return cls(
            secret=settings.jwt_secret,
            issuer=resolve_issuer(settings, issuer),
            subject=configured_user_sub(settings),
        )

    @property
    def issuer(self) -> str:
        return self._issuer

    @property
    def subject(self) -> str:
        return self._subject

    def issue(self, claims: dict[str, Any], expires_in: int) -> str:
        """Sign claims with iss and sub filled in unless explicitly given.

        A claim passed as None is omitted from the token.
        """
        now = datetime.now(UTC)
        payload: dict[str, Any] = {"iss": self._issuer, "sub": self._subject}
        payload.update(claims)
        payload = {k: v for k, v in payload.items() if v is not None}
        payload["iat"] = now
        payload["exp"] = now + timedelta(seconds=expires_in)
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def verify(
        self,
        token: str,
        audience: str | None = None,
        verify_exp: bool = True,
    ) -> DecodedToken | None:
        """Decode token, returning None if any check fails."""
        opts: Options = {"require": ["exp"], "verify_exp": verify_exp}
        if audience is None:
            opts["verify_aud"] = False
        try:
            raw = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                issuer=self._issuer,
                audience=audience,
                options=opts,
            )
        except jwt.PyJWTError as exc:
            logger.info("token rejected: %s", exc)
            return None
        return DecodedToken.model_validate(raw)
