"""Request and response bodies of the HTTP API."""

from typing import Any

from pydantic import BaseModel, ConfigDict


def _to_camel(name: str) -> str:
    """Convert snake_case to camelCase for JSON serialization."""
    parts = name.split("_")
    return parts[0] + "".join(p.capitalize() for p in parts[1:])


class VerifyTokenPayload(BaseModel):
    """Request body for POST /api/auth/verify."""

    token: str = ""
    audience: str | None = None
    scope: str | None = None


class PublicKeyResponse(BaseModel):
    """Data of GET /api/oauth/public-key."""

    key: str
    format: str = "spki-base64"
    algorithm: str = "ECDH-P256"


class AuthorizePayload(BaseModel):
    """Request body for POST /api/oauth/authorize."""

    model_config = ConfigDict(alias_generator=_to_camel, populate_by_name=True)

    username: str = ""
    password: str = ""
    totp_code: str | None = None
    webauthn_response: dict[str, Any] | None = None
    challenge_token: str | None = None
    redirect_url: str | None = None
    state: str | None = None
    client_public_key: str | None = None
    callback_origin: str | None = None


class WebauthnOptionsPayload(BaseModel):
    """Request body for POST /api/webauthn/options."""

    username: str = ""
    password: str = ""
