"""Opaque subject identifiers derived from the configured username."""

import base64
import hashlib
import hmac

from tfa.core.errors import ConfigurationError
from tfa.core.settings import AuthSettings

SALT_FALLBACK_LENGTH = 32


def generate_user_sub(username: str, salt: str) -> str:
    """HMAC-SHA256 the username with salt, base64url without padding."""
    if not username:
        raise ValueError("Username is required to generate user sub")
    if not salt:
        raise ValueError("Salt is required to generate user sub")
    digest = hmac.new(salt.encode(), username.encode(), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


def verify_user_sub(sub: str, username: str, salt: str) -> bool:
    """Return True if sub was generated from username and salt."""
    if not sub or not username or not salt:
        return False
    return hmac.compare_digest(sub, generate_user_sub(username, salt))


def get_user_sub_salt(settings: AuthSettings) -> str:
    """Dedicated salt, else the leading part of the JWT secret."""
    if settings.user_sub_salt:
        return settings.user_sub_salt
    if not settings.jwt_secret:
        raise ConfigurationError("Either AUTH_USER_SUB_SALT or AUTH_JWT_SECRET must be set")
    return settings.jwt_secret[:SALT_FALLBACK_LENGTH]


def configured_user_sub(settings: AuthSettings) -> str:
    """Subject of the single configured principal."""
    if not settings.access_username:
        raise ConfigurationError("AUTH_ACCESS_USERNAME is not set")
    return generate_user_sub(settings.access_username, get_user_sub_salt(settings))


def verify_configured_user_sub(sub: str, settings: AuthSettings) -> bool:
    """Return True if sub belongs to the configured principal."""
    if not settings.access_username:
        return False
    return verify_user_sub(sub, settings.access_username, get_user_sub_salt(settings))
