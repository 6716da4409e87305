"""One-shot callback channel between a login popup and its opener."""

import asyncio
import logging
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tfa.client.errors import FlowErrorKind, OAuthClientError
from tfa.oauth.delivery import OAUTH_POSTMESSAGE_TYPE
from tfa.oauth.whitelist import normalize_origin

logger = logging.getLogger(__name__)

POPUP_POLL_INTERVAL_SECONDS = 0.5


class PopupWindow(Protocol):
    """The part of a popup handle the flow observes."""

    @property
    def closed(self) -> bool: ...


class CallbackMessage(BaseModel):
    """The tagged message the delivery page posts to its opener."""

    model_config = ConfigDict(populate_by_name=True)

    type: str
    state: str | None = None
    encrypted_token: str = Field(alias="encryptedToken")


class CallbackChannel:
    """Accepts the first well-formed OAUTH_RESULT message from one origin."""

    def __init__(self, expected_origin: str) -> None:
        self.expected_origin = normalize_origin(expected_origin)
        self._future: asyncio.Future[CallbackMessage] = (
            asyncio.get_running_loop().create_future()
        )

    @property
    def done(self) -> bool:
        return self._future.done()

    def deliver(self, data: Any, origin: str | None) -> bool:
        """Offer a message event; returns True only for the one accepted message."""
        if self._future.done():
            return False
        if origin is None or normalize_origin(origin) != self.expected_origin:
            logger.debug("ignored message from unexpected origin %s", origin)
            return False
        if not isinstance(data, dict) or data.get("type") != OAUTH_POSTMESSAGE_TYPE:
            return False
        try:
            message = CallbackMessage.model_validate(data)
        except ValidationError:
            logger.debug("ignored malformed callback message")
            return False
        self._future.set_result(message)
        return True

    async def wait(
        self,
        popup: PopupWindow,
        poll_interval: float = POPUP_POLL_INTERVAL_SECONDS,
    ) -> CallbackMessage:
        """Wait for the message, giving up once the popup is closed."""
        while True:
            if self._future.done():
                return self._future.result()
            if popup.closed:
                self.close()
                raise OAuthClientError(
                    FlowErrorKind.POPUP_CLOSED,
                    "Login window was closed before authentication completed.",
                )
            try:
                return await asyncio.wait_for(
                    asyncio.shield(self._future), timeout=poll_interval
                )
            except TimeoutError:
                continue

    def close(self) -> None:
        """Stop listening; a pending wait fails as cancelled."""
        if self._future.done():
            return
        self._future.set_exception(
            OAuthClientError(FlowErrorKind.POPUP_CLOSED, "Login was cancelled.")
        )
        # marks the exception as retrieved
        self._future.exception()
