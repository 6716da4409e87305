"""Validation and normalization of OAuth login-entry parameters."""

import base64
import binascii
import logging
import re
from urllib.parse import unquote, urlsplit

from pydantic import BaseModel

from tfa.oauth.whitelist import TrustGuard

logger = logging.getLogger(__name__)

MIN_KEY_LENGTH = 32
_BASE64_ALPHABET = re.compile(r"^[A-Za-z0-9+/=]+$")

MISSING_KEY_TITLE = "Missing Client Public Key"
MISSING_KEY_DESCRIPTION = (
    "OAuth requests must include a valid client public key so we can encrypt "
    "the token. Make sure you append the clientPublicKey query parameter."
)
INVALID_REDIRECT_TITLE = "Invalid Redirect URL"
INVALID_REDIRECT_DESCRIPTION = (
    "The redirect URL is not in the allowed list. "
    "Please contact your administrator."
)


class ParamError(BaseModel):
    """Why a login request was refused; value is for server logs only."""

    title: str
    description: str
    value: str


class InvalidOAuthRequestError(ValueError):
    """Raised when login parameters fail validation after submission."""

    def __init__(self, error: ParamError) -> None:
        super().__init__(error.title)
        self.error = error


class OAuthParams(BaseModel):
    """Raw login-entry parameters as received."""

    redirect_url: str | None = None
    state: str | None = None
    client_public_key: str | None = None
    callback_origin: str | None = None
    current_host: str | None = None
    current_page_url: str = ""


class ValidatedOAuthParams(BaseModel):
    """Outcome of validate_oauth_params."""

    valid: bool
    client_public_key: str | None = None
    redirect_url: str | None = None
    state: str | None = None
    callback_origin: str | None = None
    error: ParamError | None = None


def normalize_client_public_key(value: str | None) -> str | None:
    """Undo URL encoding and the '+' to space mangling of query strings."""
    if not value:
        return None
    return unquote(value).replace(" ", "+").strip() or None


def is_valid_base64_key(value: str | None) -> bool:
    """Base64 alphabet only, and long enough to hold a public key."""
    if not value or len(value) < MIN_KEY_LENGTH:
        return False
    if not _BASE64_ALPHABET.match(value):
        return False
    padded = value + "=" * (-len(value) % 4)
    try:
        decoded = base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError):
        return False
    return len(decoded) >= MIN_KEY_LENGTH


def validate_oauth_params(params: OAuthParams, guard: TrustGuard) -> ValidatedOAuthParams:
    """Check the client key, then the redirect target."""
    client_public_key = normalize_client_public_key(params.client_public_key)
    if not client_public_key or not is_valid_base64_key(client_public_key):
        return ValidatedOAuthParams(
            valid=False,
            error=ParamError(
                title=MISSING_KEY_TITLE,
                description=MISSING_KEY_DESCRIPTION,
                value=params.client_public_key or "Not provided",
            ),
        )

    redirect_url = params.current_page_url
    if params.redirect_url:
        redirect_url = unquote(params.redirect_url)

    host = params.current_host
    if not host and params.current_page_url and not params.current_page_url.startswith("/"):
        host = urlsplit(params.current_page_url).netloc or None

    if not guard.is_allowed_redirect_url(redirect_url, host):
        logger.info("rejected redirect target %s", redirect_url)
        return ValidatedOAuthParams(
            valid=False,
            error=ParamError(
                title=INVALID_REDIRECT_TITLE,
                description=INVALID_REDIRECT_DESCRIPTION,
                value=redirect_url,
            ),
        )

    return ValidatedOAuthParams(
        valid=True,
        client_public_key=client_public_key,
        redirect_url=redirect_url,
        state=params.state,
        callback_origin=params.callback_origin,
    )
