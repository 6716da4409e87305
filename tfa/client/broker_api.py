"""HTTP calls a relying party makes to the broker."""

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from tfa.client.errors import FlowErrorKind, OAuthClientError
from tfa.oauth.token_verify import VerifyTokenResult

logger = logging.getLogger(__name__)

PUBLIC_KEY_PATH = "/api/oauth/public-key"
VERIFY_PATH = "/api/auth/verify"
DEFAULT_TIMEOUT_SECONDS = 10.0
KEY_NOT_AVAILABLE = "Server public key is not available."


def _envelope_body(response: httpx.Response) -> dict[str, Any] | None:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


class BrokerClient:
    """Thin async wrapper over the broker's public-key and verify endpoints."""

    def __init__(
        self,
        base_url: str,
        http: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def fetch_server_public_key(self) -> str:
        """GET the current server public key, bypassing any cache."""
        try:
            response = await self._http.get(
                self.base_url + PUBLIC_KEY_PATH,
                headers={"Cache-Control": "no-store"},
            )
        except httpx.HTTPError as exc:
            logger.warning("public key request failed: %s", exc)
            raise OAuthClientError(
                FlowErrorKind.PUBLIC_KEY_UNAVAILABLE, "Failed to load server public key."
            ) from exc

        body = _envelope_body(response)
        if not response.is_success or body is None:
            raise OAuthClientError(
                FlowErrorKind.PUBLIC_KEY_UNAVAILABLE, "Failed to load server public key."
            )
        if body.get("code") != 0:
            raise OAuthClientError(
                FlowErrorKind.PUBLIC_KEY_UNAVAILABLE,
                body.get("message") or KEY_NOT_AVAILABLE,
            )
        data = body.get("data") or {}
        if not data.get("key"):
            raise OAuthClientError(FlowErrorKind.PUBLIC_KEY_UNAVAILABLE, KEY_NOT_AVAILABLE)
        return str(data["key"])

    async def verify_token(
        self,
        token: str,
        audience: str | None = None,
        scope: str | None = None,
    ) -> VerifyTokenResult:
        """Exchange a decrypted login token for an access token."""
        payload: dict[str, str] = {"token": token}
        if audience:
            payload["audience"] = audience
        if scope:
            payload["scope"] = scope
        try:
            response = await self._http.post(self.base_url + VERIFY_PATH, json=payload)
        except httpx.HTTPError as exc:
            raise OAuthClientError(
                FlowErrorKind.REMOTE_REJECTED, f"Token verification failed: {exc}"
            ) from exc

        body = _envelope_body(response)
        if not response.is_success or body is None:
            message = (body or {}).get("message") or (
                f"HTTP {response.status_code}: {response.reason_phrase}"
            )
            raise OAuthClientError(
                FlowErrorKind.REMOTE_REJECTED, f"Token verification failed: {message}"
            )
        if body.get("code") != 0 or not body.get("data"):
            raise OAuthClientError(
                FlowErrorKind.REMOTE_REJECTED,
                body.get("message") or "Token verification failed",
            )
        try:
            return VerifyTokenResult.model_validate(body["data"])
        except ValidationError as exc:
            logger.warning("malformed verification response: %s", exc)
            raise OAuthClientError(
                FlowErrorKind.REMOTE_REJECTED,
                "Token verification failed: malformed response",
            ) from exc
