"""OAuth login entry, form submission and programmatic authorization."""

import logging
from typing import Annotated

from fastapi import APIRouter, Form, Query, Request
from starlette.responses import HTMLResponse, JSONResponse, Response

from tfa.api.cors import CorsContext, preflight_response
from tfa.api.deps import GuardDep, JWTDep, KeyringDep, LedgerDep, SettingsDep
from tfa.api.response import (
    HTTP_BAD_REQUEST,
    HTTP_UNAUTHORIZED,
    json_forbidden,
    json_invalid_parameters,
    json_success,
    json_unauthorized,
)
from tfa.api.schemas import AuthorizePayload, WebauthnOptionsPayload
from tfa.core.errors import AuthenticationError, ConfigurationError
from tfa.crypto.passkey import build_authentication_options, parse_credential_secret
from tfa.oauth.login import LoginSubmission, complete_login, verify_form
from tfa.oauth.pages import render_delivery_page, render_error_panel, render_login_page
from tfa.oauth.params import InvalidOAuthRequestError, OAuthParams, validate_oauth_params

logger = logging.getLogger(__name__)

router = APIRouter()

METHODS = ("POST", "OPTIONS")
CONFIGURATION_ERROR_TITLE = "Service Unavailable"
CONFIGURATION_ERROR_DESCRIPTION = (
    "Sign in is not configured on this server. Please contact your administrator."
)

OptionalQuery = Annotated[str | None, Query()]


def _current_page_url(request: Request) -> str:
    return str(request.url.replace(query="", fragment=""))


@router.get("/oauth", response_class=HTMLResponse)
async def login_entry(
    request: Request,
    guard: GuardDep,
    redirect_url: Annotated[str | None, Query(alias="redirectUrl")] = None,
    state: OptionalQuery = None,
    client_public_key: Annotated[str | None, Query(alias="clientPublicKey")] = None,
    callback_origin: Annotated[str | None, Query(alias="callbackOrigin")] = None,
) -> HTMLResponse:
    """GET /oauth -- render the login form or a generic error panel."""
    checked = validate_oauth_params(
        OAuthParams(
            redirect_url=redirect_url,
            state=state,
            client_public_key=client_public_key,
            callback_origin=callback_origin,
            current_host=request.headers.get("host"),
            current_page_url=_current_page_url(request),
        ),
        guard,
    )
    if not checked.valid:
        assert checked.error is not None
        logger.info("refused login entry: %s", checked.error.title)
        return HTMLResponse(
            render_error_panel(checked.error.title, checked.error.description),
            status_code=HTTP_BAD_REQUEST,
        )
    return HTMLResponse(
        render_login_page(
            redirect_url=checked.redirect_url or "",
            client_public_key=checked.client_public_key or "",
            state=checked.state,
            callback_origin=checked.callback_origin,
        )
    )


@router.post("/oauth", response_class=HTMLResponse)
async def login_submit(
    request: Request,
    settings: SettingsDep,
    guard: GuardDep,
    jwt_mgr: JWTDep,
    ledger: LedgerDep,
    keyring: KeyringDep,
    username: Annotated[str, Form()] = "",
    password: Annotated[str, Form()] = "",
    totp_code: Annotated[str | None, Form(alias="totpCode")] = None,
    redirect_url: Annotated[str | None, Form(alias="redirectUrl")] = None,
    state: Annotated[str | None, Form()] = None,
    client_public_key: Annotated[str | None, Form(alias="clientPublicKey")] = None,
    callback_origin: Annotated[str | None, Form(alias="callbackOrigin")] = None,
) -> HTMLResponse:
    """POST /oauth -- verify credentials and hand off the encrypted token."""
    submission = LoginSubmission(
        username=username,
        password=password,
        totp_code=totp_code,
        redirect_url=redirect_url,
        state=state or None,
        client_public_key=client_public_key,
        callback_origin=callback_origin or None,
    )
    try:
        delivery = await complete_login(
            submission,
            settings=settings,
            guard=guard,
            jwt_mgr=jwt_mgr,
            ledger=ledger,
            keyring=keyring,
            current_host=request.headers.get("host"),
        )
    except InvalidOAuthRequestError as exc:
        return HTMLResponse(
            render_error_panel(exc.error.title, exc.error.description),
            status_code=HTTP_BAD_REQUEST,
        )
    except ConfigurationError as exc:
        logger.error("login refused, configuration problem: %s", exc)
        return HTMLResponse(
            render_error_panel(CONFIGURATION_ERROR_TITLE, CONFIGURATION_ERROR_DESCRIPTION),
            status_code=HTTP_UNAUTHORIZED,
        )
    except AuthenticationError as exc:
        return HTMLResponse(
            render_login_page(
                redirect_url=redirect_url or "",
                client_public_key=client_public_key or "",
                state=state,
                callback_origin=callback_origin,
                error=str(exc),
            ),
            status_code=HTTP_UNAUTHORIZED,
        )
    return HTMLResponse(render_delivery_page(delivery))


@router.options("/api/oauth/authorize")
async def authorize_preflight(request: Request, guard: GuardDep) -> Response:
    """OPTIONS /api/oauth/authorize -- CORS preflight."""
    return preflight_response(request, guard, METHODS)


@router.post("/api/oauth/authorize")
async def authorize(
    request: Request,
    payload: AuthorizePayload,
    settings: SettingsDep,
    guard: GuardDep,
    jwt_mgr: JWTDep,
    ledger: LedgerDep,
    keyring: KeyringDep,
) -> JSONResponse:
    """POST /api/oauth/authorize -- JSON login returning the delivery plan."""
    ctx = CorsContext(request, guard, METHODS)
    if not ctx.allowed:
        return json_forbidden(headers=ctx.headers)
    try:
        delivery = await complete_login(
            LoginSubmission.model_validate(payload.model_dump()),
            settings=settings,
            guard=guard,
            jwt_mgr=jwt_mgr,
            ledger=ledger,
            keyring=keyring,
            current_host=request.headers.get("host"),
        )
    except InvalidOAuthRequestError as exc:
        return json_invalid_parameters(exc.error.title, headers=ctx.headers)
    except AuthenticationError as exc:
        return json_unauthorized(str(exc), headers=ctx.headers)
    return json_success(delivery.model_dump(by_alias=True), headers=ctx.headers)


@router.options("/api/webauthn/options")
async def webauthn_options_preflight(request: Request, guard: GuardDep) -> Response:
    """OPTIONS /api/webauthn/options -- CORS preflight."""
    return preflight_response(request, guard, METHODS)


@router.post("/api/webauthn/options")
async def webauthn_options(
    request: Request,
    payload: WebauthnOptionsPayload,
    settings: SettingsDep,
    guard: GuardDep,
    jwt_mgr: JWTDep,
) -> JSONResponse:
    """POST /api/webauthn/options -- assertion options after password check."""
    ctx = CorsContext(request, guard, METHODS)
    if not ctx.allowed:
        return json_forbidden(headers=ctx.headers)
    if not settings.access_webauthn_secret:
        raise ConfigurationError("AUTH_ACCESS_WEBAUTHN_SECRET is not set")
    try:
        verify_form(payload.username, payload.password, settings)
    except AuthenticationError as exc:
        return json_unauthorized(str(exc), headers=ctx.headers)
    credential = parse_credential_secret(settings.access_webauthn_secret)
    return json_success(
        build_authentication_options(credential, jwt_mgr), headers=ctx.headers
    )
