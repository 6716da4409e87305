"""Tests for the replay ledger and login token exchange."""

import time
from datetime import UTC, datetime, timedelta

import pytest

from tfa.core.errors import (
    InvalidTokenError,
    MissingTokenError,
    SubjectMismatchError,
    TokenReplayedError,
)
from tfa.core.settings import AuthSettings
from tfa.crypto.jwt_manager import JWTManager
from tfa.crypto.types import DecodedToken
from tfa.oauth.login import LOGIN_TOKEN_TTL_SECONDS, issue_login_token
from tfa.oauth.replay import KEY_PREFIX, TTL_BUFFER_SECONDS, ReplayLedger, generate_jti
from tfa.oauth.token_verify import (
    ACCESS_TOKEN_TTL_SECONDS,
    ACCESS_TOKEN_USE,
    PROVIDER,
    access_token_ttl,
    remaining_lifetime,
    verify_token_and_generate_access_token,
)
from tfa.store.base import BackendUnavailable
from tfa.store.memory import InMemoryStore


class DownStore(InMemoryStore):
    """Store whose every call fails."""

    async def exists(self, key: str) -> bool:
        raise BackendUnavailable("down")

    async def put(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        raise BackendUnavailable("down")


@pytest.fixture
def settings() -> AuthSettings:
    """Settings from the shared test environment."""
    return AuthSettings()


@pytest.fixture
def jwt_mgr(settings: AuthSettings) -> JWTManager:
    """Token service bound to the configured principal."""
    return JWTManager.from_settings(settings)


class TestReplayLedger:
    """Tests for single-use jti markers."""

    async def test_marks_and_detects(self, store: InMemoryStore) -> None:
        ledger = ReplayLedger(store, enabled=True)
        jti = generate_jti()
        assert await ledger.is_token_used(jti) is False
        await ledger.mark_token_as_used(jti, 60)
        assert await ledger.is_token_used(jti) is True
        assert await store.exists(f"{KEY_PREFIX}{jti}")

    async def test_disabled_never_reports_used(self, store: InMemoryStore) -> None:
        ledger = ReplayLedger(store, enabled=False)
        await ledger.mark_token_as_used("j", 60)
        assert await ledger.is_token_used("j") is False
        assert await store.exists(f"{KEY_PREFIX}j") is False

    async def test_backend_down_fails_open(self) -> None:
        ledger = ReplayLedger(DownStore(), enabled=True)
        assert await ledger.is_token_used("j") is False
        await ledger.mark_token_as_used("j", 60)

    async def test_marker_outlives_token_by_buffer(self) -> None:
        now = datetime(2026, 1, 1, tzinfo=UTC)
        clock_value = [now]
        store = InMemoryStore(clock=lambda: clock_value[0])
        ledger = ReplayLedger(store, enabled=True)
        await ledger.mark_token_as_used("j", 5)
        clock_value[0] = now + timedelta(seconds=5 + TTL_BUFFER_SECONDS - 1)
        assert await ledger.is_token_used("j") is True
        clock_value[0] = now + timedelta(seconds=5 + TTL_BUFFER_SECONDS)
        assert await ledger.is_token_used("j") is False

    def test_jtis_are_unique(self) -> None:
        assert generate_jti() != generate_jti()


class TestAccessTokenTtl:
    """Tests for access token lifetime selection."""

    def test_capped_at_ceiling(self) -> None:
        assert access_token_ttl(DecodedToken(exp=1000), now=0) == ACCESS_TOKEN_TTL_SECONDS

    def test_shorter_remaining_lifetime_wins(self) -> None:
        assert access_token_ttl(DecodedToken(exp=1060), now=1000) == 60

    def test_floored_at_zero(self) -> None:
        assert access_token_ttl(DecodedToken(exp=900), now=1000) == 0

    def test_remaining_lifetime_is_uncapped(self) -> None:
        assert remaining_lifetime(DecodedToken(exp=1300), now=1000) == 300
        assert remaining_lifetime(DecodedToken(exp=900), now=1000) == 0
        assert remaining_lifetime(DecodedToken()) is None


class TestVerifyToken:
    """Tests for exchanging a login token."""

    async def test_success_shape(
        self, jwt_mgr: JWTManager, settings: AuthSettings, store: InMemoryStore
    ) -> None:
        ledger = ReplayLedger(store, enabled=False)
        token = issue_login_token(jwt_mgr, ledger)
        result = await verify_token_and_generate_access_token(
            token,
            jwt_mgr=jwt_mgr,
            ledger=ledger,
            settings=settings,
            audience="app",
            scope="read",
        )
        assert result.token_type == "Bearer"
        assert 0 < result.expires_in <= ACCESS_TOKEN_TTL_SECONDS
        assert result.user.sub == jwt_mgr.subject
        assert result.user.sub != settings.access_username
        assert result.claims["provider"] == PROVIDER
        assert result.claims["aud"] == "app"
        assert result.claims["scope"] == "read"
        assert "jti" not in result.claims
        decoded = jwt_mgr.verify(result.access_token, audience="app")
        assert decoded is not None and decoded.authenticated is True

    async def test_replay_rejected_second_time(
        self, jwt_mgr: JWTManager, settings: AuthSettings, store: InMemoryStore
    ) -> None:
        ledger = ReplayLedger(store, enabled=True)
        token = issue_login_token(jwt_mgr, ledger)
        first = await verify_token_and_generate_access_token(
            token, jwt_mgr=jwt_mgr, ledger=ledger, settings=settings
        )
        original = jwt_mgr.verify(token)
        assert original is not None and original.jti
        assert first.claims["jti"] != original.jti
        assert await ledger.is_token_used(original.jti) is True
        assert await ledger.is_token_used(first.claims["jti"]) is False
        with pytest.raises(TokenReplayedError):
            await verify_token_and_generate_access_token(
                token, jwt_mgr=jwt_mgr, ledger=ledger, settings=settings
            )

    async def test_token_without_jti_accepted_with_protection_on(
        self, jwt_mgr: JWTManager, settings: AuthSettings, store: InMemoryStore
    ) -> None:
        token = jwt_mgr.issue({"authenticated": True}, 60)
        ledger = ReplayLedger(store, enabled=True)
        for _ in range(2):
            await verify_token_and_generate_access_token(
                token, jwt_mgr=jwt_mgr, ledger=ledger, settings=settings
            )

    async def test_missing_token(
        self, jwt_mgr: JWTManager, settings: AuthSettings, store: InMemoryStore
    ) -> None:
        with pytest.raises(MissingTokenError) as excinfo:
            await verify_token_and_generate_access_token(
                "", jwt_mgr=jwt_mgr, ledger=ReplayLedger(store, False), settings=settings
            )
        assert excinfo.value.status_code == 400

    @pytest.mark.parametrize(
        "claims",
        [{"authenticated": False}, {}],
    )
    async def test_unauthenticated_token_rejected(
        self,
        jwt_mgr: JWTManager,
        settings: AuthSettings,
        store: InMemoryStore,
        claims: dict[str, bool],
    ) -> None:
        with pytest.raises(InvalidTokenError):
            await verify_token_and_generate_access_token(
                jwt_mgr.issue(claims, 60),
                jwt_mgr=jwt_mgr,
                ledger=ReplayLedger(store, False),
                settings=settings,
            )

    async def test_expired_token_rejected(
        self, jwt_mgr: JWTManager, settings: AuthSettings, store: InMemoryStore
    ) -> None:
        with pytest.raises(InvalidTokenError):
            await verify_token_and_generate_access_token(
                jwt_mgr.issue({"authenticated": True}, -1),
                jwt_mgr=jwt_mgr,
                ledger=ReplayLedger(store, False),
                settings=settings,
            )

    async def test_foreign_subject_rejected(
        self, jwt_mgr: JWTManager, settings: AuthSettings, store: InMemoryStore
    ) -> None:
        token = jwt_mgr.issue({"authenticated": True, "sub": "someone-else"}, 60)
        with pytest.raises(SubjectMismatchError):
            await verify_token_and_generate_access_token(
                token, jwt_mgr=jwt_mgr, ledger=ReplayLedger(store, False), settings=settings
            )

    async def test_legacy_username_claim(
        self, jwt_mgr: JWTManager, settings: AuthSettings, store: InMemoryStore
    ) -> None:
        ledger = ReplayLedger(store, False)
        good = jwt_mgr.issue(
            {"authenticated": True, "sub": None, "username": settings.access_username}, 60
        )
        result = await verify_token_and_generate_access_token(
            good, jwt_mgr=jwt_mgr, ledger=ledger, settings=settings
        )
        assert result.user.sub == jwt_mgr.subject
        bad = jwt_mgr.issue({"authenticated": True, "sub": None, "username": "x"}, 60)
        with pytest.raises(SubjectMismatchError):
            await verify_token_and_generate_access_token(
                bad, jwt_mgr=jwt_mgr, ledger=ledger, settings=settings
            )

    async def test_remaining_lifetime_caps_access_token(
        self, jwt_mgr: JWTManager, settings: AuthSettings, store: InMemoryStore
    ) -> None:
        token = jwt_mgr.issue({"authenticated": True}, 30)
        result = await verify_token_and_generate_access_token(
            token, jwt_mgr=jwt_mgr, ledger=ReplayLedger(store, False), settings=settings
        )
        assert result.expires_in <= 30
        assert result.claims["exp"] - int(time.time()) <= 30

    async def test_replay_rejected_for_whole_login_token_lifetime(
        self, jwt_mgr: JWTManager, settings: AuthSettings
    ) -> None:
        now = datetime.now(UTC)
        clock_value = [now]
        store = InMemoryStore(clock=lambda: clock_value[0])
        ledger = ReplayLedger(store, enabled=True)
        token = issue_login_token(jwt_mgr, ledger)
        original = jwt_mgr.verify(token)
        assert original is not None and original.jti
        await verify_token_and_generate_access_token(
            token, jwt_mgr=jwt_mgr, ledger=ledger, settings=settings
        )
        clock_value[0] = now + timedelta(seconds=ACCESS_TOKEN_TTL_SECONDS + 20)
        assert jwt_mgr.verify(token) is not None
        with pytest.raises(TokenReplayedError):
            await verify_token_and_generate_access_token(
                token, jwt_mgr=jwt_mgr, ledger=ledger, settings=settings
            )
        clock_value[0] = now + timedelta(
            seconds=LOGIN_TOKEN_TTL_SECONDS + TTL_BUFFER_SECONDS
        )
        assert await ledger.is_token_used(original.jti) is False

    async def test_access_token_cannot_be_exchanged(
        self, jwt_mgr: JWTManager, settings: AuthSettings, store: InMemoryStore
    ) -> None:
        ledger = ReplayLedger(store, enabled=True)
        result = await verify_token_and_generate_access_token(
            issue_login_token(jwt_mgr, ledger),
            jwt_mgr=jwt_mgr,
            ledger=ledger,
            settings=settings,
        )
        assert result.claims["token_use"] == ACCESS_TOKEN_USE
        with pytest.raises(InvalidTokenError):
            await verify_token_and_generate_access_token(
                result.access_token, jwt_mgr=jwt_mgr, ledger=ledger, settings=settings
            )
