"""Tests for the public key, key rotation and verify endpoints."""

import pytest
from httpx import AsyncClient

from tfa.api.response import CODE_FORBIDDEN, CODE_INVALID_PARAMETERS, CODE_UNAUTHORIZED
from tfa.core.settings import AuthSettings
from tfa.crypto.jwt_manager import JWTManager
from tfa.crypto.keys import load_static_public_key
from tfa.oauth.login import issue_login_token
from tfa.oauth.replay import ReplayLedger
from tfa.store.memory import InMemoryStore

EVIL_ORIGIN = {"Origin": "https://evil.example.net"}
LOCAL_ORIGIN = {"Origin": "http://localhost:3000"}
PUBLIC_KEY_URL = "/api/oauth/public-key"
ROTATION_URL = "/api/oauth/key-rotation"
VERIFY_URL = "/api/auth/verify"


def _login_token(with_jti: bool = False) -> str:
    jwt_mgr = JWTManager.from_settings(AuthSettings())
    return issue_login_token(jwt_mgr, ReplayLedger(InMemoryStore(), enabled=with_jti))


class TestPublicKey:
    """Tests for GET /api/oauth/public-key."""

    async def test_static_key_when_rotation_disabled(self, client: AsyncClient) -> None:
        resp = await client.get(PUBLIC_KEY_URL)
        assert resp.status_code == 200
        body = resp.json()
        assert body["code"] == 0
        assert body["data"] == {
            "key": load_static_public_key(AuthSettings()),
            "format": "spki-base64",
            "algorithm": "ECDH-P256",
        }
        assert resp.headers["cache-control"] == "no-cache, must-revalidate"
        assert resp.headers["pragma"] == "no-cache"

    async def test_rotated_key_is_stable(
        self, client: AsyncClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("AUTH_KEY_ROTATION_ENABLED", "true")
        first = (await client.get(PUBLIC_KEY_URL)).json()["data"]["key"]
        second = (await client.get(PUBLIC_KEY_URL)).json()["data"]["key"]
        assert first == second
        assert first != load_static_public_key(AuthSettings())

    async def test_no_key_available(
        self, client: AsyncClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("AUTH_ECDH_SERVER_PRIVATE_KEY", "")
        resp = await client.get(PUBLIC_KEY_URL)
        assert resp.status_code == 400
        assert resp.json()["code"] == CODE_INVALID_PARAMETERS

    async def test_disallowed_origin(self, client: AsyncClient) -> None:
        resp = await client.get(PUBLIC_KEY_URL, headers=EVIL_ORIGIN)
        assert resp.status_code == 403
        assert resp.json()["code"] == CODE_FORBIDDEN
        assert "access-control-allow-origin" not in resp.headers

    async def test_allowed_origin_gets_cors_headers(self, client: AsyncClient) -> None:
        resp = await client.get(PUBLIC_KEY_URL, headers=LOCAL_ORIGIN)
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "http://localhost:3000"
        assert resp.headers["vary"] == "Origin"

    async def test_preflight(self, client: AsyncClient) -> None:
        ok = await client.options(PUBLIC_KEY_URL, headers=LOCAL_ORIGIN)
        assert ok.status_code == 204
        assert ok.headers["access-control-allow-methods"] == "GET, OPTIONS"
        refused = await client.options(PUBLIC_KEY_URL, headers=EVIL_ORIGIN)
        assert refused.status_code == 403

    async def test_https_required_in_production(
        self, client: AsyncClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("AUTH_ENVIRONMENT", "production")
        monkeypatch.setenv("AUTH_ALLOWED_REDIRECT_URLS", "https://app.example.com")
        origin = {"Origin": "https://app.example.com"}
        plain = await client.get(PUBLIC_KEY_URL, headers=origin)
        assert plain.status_code == 400
        assert "HTTPS is required" in plain.json()["message"]
        proxied = await client.get(
            PUBLIC_KEY_URL, headers={**origin, "X-Forwarded-Proto": "https"}
        )
        assert proxied.status_code == 200


class TestKeyRotationStatus:
    """Tests for GET /api/oauth/key-rotation."""

    async def test_reports_truncated_keys(
        self, client: AsyncClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("AUTH_KEY_ROTATION_ENABLED", "true")
        key = (await client.get(PUBLIC_KEY_URL)).json()["data"]["key"]
        data = (await client.get(ROTATION_URL)).json()["data"]
        assert data["enabled"] is True
        assert data["activeKeyCount"] == 1
        assert data["activeKeys"][0]["publicKeyBase64"] == key[:20] + "..."
        assert data["keyTtlSeconds"] == 604800
        assert data["transitionPeriodSeconds"] == 86400

    async def test_disabled(self, client: AsyncClient) -> None:
        data = (await client.get(ROTATION_URL)).json()["data"]
        assert data["enabled"] is False
        assert data["activeKeys"] == []


class TestVerify:
    """Tests for POST /api/auth/verify."""

    async def test_exchange(self, client: AsyncClient) -> None:
        resp = await client.post(
            VERIFY_URL,
            json={"token": _login_token(), "audience": "app", "scope": "read"},
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["token_type"] == "Bearer"
        assert 0 < data["expires_in"] <= 180
        assert data["user"]["authenticated"] is True
        assert data["claims"]["aud"] == "app"

    async def test_replayed_token(
        self, client: AsyncClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("AUTH_ENABLE_TOKEN_REPLAY_PROTECTION", "true")
        token = _login_token(with_jti=True)
        first = await client.post(VERIFY_URL, json={"token": token})
        assert first.status_code == 200
        second = await client.post(VERIFY_URL, json={"token": token})
        assert second.status_code == 401
        assert second.json() == {
            "code": CODE_UNAUTHORIZED,
            "message": "Token has already been used",
            "data": None,
        }

    async def test_missing_token(self, client: AsyncClient) -> None:
        resp = await client.post(VERIFY_URL, json={})
        assert resp.status_code == 400
        assert resp.json()["message"] == "token is required"

    async def test_malformed_body(self, client: AsyncClient) -> None:
        resp = await client.post(
            VERIFY_URL,
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == CODE_INVALID_PARAMETERS

    async def test_invalid_token(self, client: AsyncClient) -> None:
        resp = await client.post(VERIFY_URL, json={"token": "a.b.c"})
        assert resp.status_code == 401
        assert resp.json()["message"] == "Invalid or expired token"

    async def test_preflight_allows_credentials(self, client: AsyncClient) -> None:
        resp = await client.options(
            VERIFY_URL, headers={"Origin": "http://localhost:5173"}
        )
        assert resp.status_code == 204
        assert resp.headers["access-control-allow-credentials"] == "true"

    async def test_missing_jwt_secret_is_configuration_error(
        self, client: AsyncClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        token = _login_token()
        monkeypatch.setenv("AUTH_JWT_SECRET", "")
        monkeypatch.setenv("AUTH_USER_SUB_SALT", "some-salt")
        resp = await client.post(VERIFY_URL, json={"token": token})
        assert resp.status_code == 401
        assert resp.json()["message"] == "Invalid server configuration"
