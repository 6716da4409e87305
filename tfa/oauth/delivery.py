"""How an encrypted login token reaches the relying party."""

from urllib.parse import urlencode, urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from tfa.oauth.whitelist import TrustGuard

OAUTH_POSTMESSAGE_TYPE = "OAUTH_RESULT"


class PostMessageDelivery(BaseModel):
    """Message posted to the opener window in popup mode."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: str = OAUTH_POSTMESSAGE_TYPE
    state: str | None = None
    encrypted_token: str
    target_origin: str


class TokenDelivery(BaseModel):
    """Both delivery routes; the page tries post_message before redirect_url."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    redirect_url: str
    post_message: PostMessageDelivery | None = None


def build_redirect_url_with_fragment(
    redirect_url: str, encrypted_token: str, state: str | None
) -> str:
    """Put token and state in the URL fragment, replacing any existing one."""
    params = {"token": encrypted_token}
    if state:
        params["state"] = state
    parts = urlsplit(redirect_url)
    return urlunsplit(parts._replace(fragment=urlencode(params)))


def plan_delivery(
    encrypted_token: str,
    redirect_url: str,
    state: str | None,
    callback_origin: str | None,
    guard: TrustGuard,
) -> TokenDelivery:
    """Offer postMessage only to a callback origin the guard trusts."""
    post_message = None
    if callback_origin and guard.is_origin_allowed(callback_origin):
        post_message = PostMessageDelivery(
            state=state,
            encrypted_token=encrypted_token,
            target_origin=callback_origin,
        )
    return TokenDelivery(
        redirect_url=build_redirect_url_with_fragment(redirect_url, encrypted_token, state),
        post_message=post_message,
    )
