"""Type definitions for server keys, envelopes and signed tokens."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ServerKeyPair(BaseModel):
    """A server ECDH keypair as persisted by the rotation manager."""

    model_config = ConfigDict(frozen=True)

    id: str
    private_key_pem: str
    public_key_base64: str
    created_at: datetime
    expires_at: datetime
    encrypted: bool = False


class TokenEnvelopePayload(BaseModel):
    """Plaintext sealed inside an ECDH envelope."""

    model_config = ConfigDict(populate_by_name=True)

    token: str
    issued_at: int = Field(alias="issuedAt")


class DecodedToken(BaseModel):
    """Verified JWT claims; unknown claims are kept as extras."""

    model_config = ConfigDict(extra="allow")

    iss: str = ""
    sub: str | None = None
    iat: int | None = None
    exp: int | None = None
    jti: str | None = None
    aud: str | list[str] | None = None
    scope: str | None = None
    authenticated: bool = False
    username: str | None = None
    provider: str | None = None
    token_use: str | None = None
