"""Login token verification and access token exchange endpoint."""

import json

from fastapi import APIRouter, Request
from pydantic import ValidationError
from starlette.responses import JSONResponse, Response

from tfa.api.cors import CorsContext, preflight_response
from tfa.api.deps import GuardDep, JWTDep, LedgerDep, SettingsDep
from tfa.api.response import (
    HTTP_BAD_REQUEST,
    json_forbidden,
    json_invalid_parameters,
    json_success,
    json_unauthorized,
)
from tfa.api.schemas import VerifyTokenPayload
from tfa.core.errors import TokenExchangeError
from tfa.oauth.token_verify import verify_token_and_generate_access_token

router = APIRouter()

METHODS = ("POST", "OPTIONS")


@router.options("/api/auth/verify")
async def verify_preflight(request: Request, guard: GuardDep) -> Response:
    """OPTIONS /api/auth/verify -- CORS preflight with credentials."""
    return preflight_response(request, guard, METHODS, allow_credentials=True)


@router.post("/api/auth/verify")
async def verify(
    request: Request,
    guard: GuardDep,
    settings: SettingsDep,
    jwt_mgr: JWTDep,
    ledger: LedgerDep,
) -> JSONResponse:
    """POST /api/auth/verify -- exchange a login token for an access token."""
    ctx = CorsContext(request, guard, METHODS, allow_credentials=True)
    if not ctx.allowed:
        return json_forbidden(headers=ctx.headers)

    try:
        body = VerifyTokenPayload.model_validate(await request.json())
    except (json.JSONDecodeError, ValidationError, UnicodeDecodeError):
        return json_invalid_parameters("Invalid request body", headers=ctx.headers)

    try:
        result = await verify_token_and_generate_access_token(
            body.token,
            jwt_mgr=jwt_mgr,
            ledger=ledger,
            settings=settings,
            audience=body.audience,
            scope=body.scope,
        )
    except TokenExchangeError as exc:
        if exc.status_code == HTTP_BAD_REQUEST:
            return json_invalid_parameters(exc.reason, headers=ctx.headers)
        return json_unauthorized(exc.reason, headers=ctx.headers)

    return json_success(result.model_dump(), headers=ctx.headers)
