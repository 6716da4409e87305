"""Relying-party login flow: launch, callback, decrypt, exchange."""

import logging
import secrets
from enum import StrEnum
from typing import Any, Protocol
from urllib.parse import parse_qs, urlencode, urljoin, urlsplit, urlunsplit

from pydantic import BaseModel

from tfa.client.broker_api import BrokerClient
from tfa.client.channel import POPUP_POLL_INTERVAL_SECONDS, CallbackChannel, PopupWindow
from tfa.client.decrypt import DecryptedToken, decrypt_oauth_token
from tfa.client.errors import FlowErrorKind, OAuthClientError
from tfa.client.storage import (
    OAuthSession,
    SessionStorage,
    clear_session,
    read_session,
    store_session,
)
from tfa.crypto.ecdh import export_private_key, export_public_key, generate_keypair
from tfa.oauth.token_verify import VerifyTokenResult

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER_URL = "/oauth"


class FlowMode(StrEnum):
    POPUP = "popup"
    REDIRECT = "redirect"


class FlowStatus(StrEnum):
    IDLE = "idle"
    LAUNCHING = "launching"
    WAITING = "waiting"
    REDIRECTING = "redirecting"
    VERIFYING = "verifying"
    SUCCESS = "success"
    ERROR = "error"


class Browser(Protocol):
    """Window operations the flow needs from its host page."""

    @property
    def origin(self) -> str: ...

    def open_popup(self, url: str) -> PopupWindow | None: ...

    def navigate(self, url: str) -> None: ...


class FlowResult(BaseModel):
    """Decrypted envelope and exchange response of a completed login."""

    decrypted: DecryptedToken
    verification: VerifyTokenResult


class _Attempt:
    """Transient state of one popup login attempt."""

    def __init__(
        self, state: str, private_key: str, server_public_key: str
    ) -> None:
        self.state = state
        self.private_key: str | None = private_key
        self.server_public_key = server_public_key
        self.popup: PopupWindow | None = None
        self.channel: CallbackChannel | None = None


def _origin_of(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def _with_query(url: str, **params: str) -> str:
    parts = urlsplit(url)
    query = parse_qs(parts.query, keep_blank_values=True)
    for key, value in params.items():
        query[key] = [value]
    return urlunsplit(parts._replace(query=urlencode(query, doseq=True)))


def parse_callback_params(url: str) -> tuple[str | None, str | None]:
    """Read (token, state) from the fragment, falling back to the query."""
    parts = urlsplit(url)
    for source in (parts.fragment, parts.query):
        params = parse_qs(source)
        if "token" in params:
            state = params.get("state", [None])[0]
            return params["token"][0], state
    return None, None


class OAuthFlow:
    """State machine driving one login attempt at a time."""

    def __init__(
        self,
        broker: BrokerClient,
        browser: Browser,
        storage: SessionStorage,
        provider_url: str = DEFAULT_PROVIDER_URL,
        mode: FlowMode = FlowMode.POPUP,
    ) -> None:
        self.broker = broker
        self.browser = browser
        self.storage = storage
        self.provider_url = provider_url
        self.mode = mode
        self.status = FlowStatus.IDLE
        self.error: str | None = None
        self.error_kind: FlowErrorKind | None = None
        self.result: FlowResult | None = None
        self._attempt: _Attempt | None = None
        self._consumed = False

    @property
    def is_processing(self) -> bool:
        return self.status is FlowStatus.VERIFYING

    def _fail(self, exc: OAuthClientError) -> FlowStatus:
        logger.info("login flow failed (%s): %s", exc.kind, exc.message)
        self.status = FlowStatus.ERROR
        self.error = exc.message
        self.error_kind = exc.kind
        return self.status

    def _login_url(self, redirect_url: str, state: str, client_public_key: str) -> str:
        base = urljoin(self.browser.origin + "/", self.provider_url)
        params = {
            "redirectUrl": redirect_url,
            "state": state,
            "clientPublicKey": client_public_key,
        }
        if self.mode is FlowMode.POPUP:
            params["callbackOrigin"] = self.browser.origin
        return _with_query(base, **params)

    async def start_login(self, redirect_url: str) -> FlowStatus:
        """Generate nonce and key pair, then open the popup or navigate away."""
        self.reset()
        self.status = FlowStatus.LAUNCHING
        state = secrets.token_urlsafe(16)
        try:
            server_public_key = await self.broker.fetch_server_public_key()
        except OAuthClientError as exc:
            return self._fail(exc)

        keypair = generate_keypair()
        client_public_key = export_public_key(keypair)
        client_private_key = export_private_key(keypair)
        target = _with_query(
            urljoin(self.browser.origin + "/", redirect_url), mode=self.mode.value
        )
        login_url = self._login_url(target, state, client_public_key)

        if self.mode is FlowMode.REDIRECT:
            store_session(
                self.storage,
                OAuthSession(
                    state=state,
                    client_public_key=client_public_key,
                    client_private_key=client_private_key,
                    server_public_key=server_public_key,
                ),
            )
            self.status = FlowStatus.REDIRECTING
            self.browser.navigate(login_url)
            return self.status

        attempt = _Attempt(state, client_private_key, server_public_key)
        popup = self.browser.open_popup(login_url)
        if popup is None:
            return self._fail(
                OAuthClientError(
                    FlowErrorKind.POPUP_BLOCKED,
                    "Popup blocked. Please allow popups for this site.",
                )
            )
        attempt.popup = popup
        attempt.channel = CallbackChannel(_origin_of(login_url))
        self._attempt = attempt
        self.status = FlowStatus.WAITING
        return self.status

    def receive_message(self, data: Any, origin: str | None) -> bool:
        """Feed a window message event to the waiting channel."""
        if self._attempt is None or self._attempt.channel is None:
            return False
        return self._attempt.channel.deliver(data, origin)

    async def wait_for_popup(
        self, poll_interval: float = POPUP_POLL_INTERVAL_SECONDS
    ) -> FlowStatus:
        """Wait for the popup callback, then decrypt and exchange."""
        attempt = self._attempt
        if (
            self.status is not FlowStatus.WAITING
            or attempt is None
            or attempt.channel is None
            or attempt.popup is None
        ):
            return self.status
        try:
            message = await attempt.channel.wait(attempt.popup, poll_interval)
        except OAuthClientError as exc:
            if self._attempt is not attempt:
                return self.status
            self._attempt = None
            return self._fail(exc)
        if self._attempt is not attempt:
            return self.status
        return await self._consume(
            message.state,
            message.encrypted_token,
            expected_state=attempt.state,
            private_key=self._take_popup_key(),
            server_public_key=attempt.server_public_key,
        )

    def _take_popup_key(self) -> str | None:
        if self._attempt is None:
            return None
        key, self._attempt.private_key = self._attempt.private_key, None
        return key

    async def handle_redirect_callback(self, url: str) -> FlowStatus:
        """Process a redirect landing URL carrying the envelope."""
        token, state = parse_callback_params(url)
        if token is None:
            return self.status
        session = read_session(self.storage)
        clear_session(self.storage)
        if session is None:
            if self._consumed:
                return self.status
            self._consumed = True
            return self._fail(
                OAuthClientError(
                    FlowErrorKind.MISSING_STATE,
                    "No login attempt is in progress. Please start login again.",
                )
            )
        return await self._consume(
            state,
            token,
            expected_state=session.state,
            private_key=session.client_private_key,
            server_public_key=session.server_public_key,
        )

    async def _consume(
        self,
        state: str | None,
        encrypted_token: str,
        *,
        expected_state: str | None,
        private_key: str | None,
        server_public_key: str,
    ) -> FlowStatus:
        if self._consumed:
            logger.debug("ignored duplicate login callback")
            return self.status
        self._consumed = True

        if not expected_state:
            return self._fail(
                OAuthClientError(FlowErrorKind.MISSING_STATE, "Login state is missing.")
            )
        if state is None or not secrets.compare_digest(state, expected_state):
            return self._fail(
                OAuthClientError(
                    FlowErrorKind.STATE_MISMATCH,
                    "State mismatch. The login response does not belong to this attempt.",
                )
            )

        self.status = FlowStatus.VERIFYING
        try:
            decrypted = decrypt_oauth_token(encrypted_token, private_key, server_public_key)
            verification = await self.broker.verify_token(decrypted.token)
        except OAuthClientError as exc:
            return self._fail(exc)
        finally:
            self._attempt = None

        self.result = FlowResult(decrypted=decrypted, verification=verification)
        self.status = FlowStatus.SUCCESS
        self.error = None
        self.error_kind = None
        return self.status

    def reset(self) -> None:
        """Drop all per-attempt state and return to idle."""
        if self._attempt is not None and self._attempt.channel is not None:
            self._attempt.channel.close()
        self._attempt = None
        self._consumed = False
        clear_session(self.storage)
        self.status = FlowStatus.IDLE
        self.error = None
        self.error_kind = None
        self.result = None
