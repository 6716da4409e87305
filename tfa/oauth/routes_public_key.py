"""Server public key and key rotation diagnostics endpoints."""

from fastapi import APIRouter, Request
from starlette.responses import JSONResponse, Response

from tfa.api.cors import CorsContext, preflight_response
from tfa.api.deps import GuardDep, KeyringDep, RotationDep
from tfa.api.response import json_forbidden, json_invalid_parameters, json_success
from tfa.api.schemas import PublicKeyResponse

router = APIRouter()

METHODS = ("GET", "OPTIONS")
HTTPS_REQUIRED_MESSAGE = "HTTPS is required. Please use HTTPS to access this endpoint."


def _gate(request: Request, ctx: CorsContext, guard: GuardDep) -> JSONResponse | None:
    """Return an error response if origin or transport is refused, else None."""
    if not ctx.allowed:
        return json_forbidden(headers=ctx.headers)
    if not guard.assert_https_required(request, ctx.origin):
        return json_invalid_parameters(HTTPS_REQUIRED_MESSAGE, headers=ctx.headers)
    return None


@router.options("/api/oauth/public-key")
async def public_key_preflight(request: Request, guard: GuardDep) -> Response:
    """OPTIONS /api/oauth/public-key -- CORS preflight."""
    return preflight_response(request, guard, METHODS)


@router.get("/api/oauth/public-key")
async def public_key(
    request: Request, guard: GuardDep, keyring: KeyringDep
) -> JSONResponse:
    """GET /api/oauth/public-key -- current server ECDH public key."""
    ctx = CorsContext(request, guard, METHODS)
    error = _gate(request, ctx, guard)
    if error is not None:
        return error

    key = await keyring.publish_public_key()
    if key is None:
        return json_invalid_parameters(
            "Server public key is not available", headers=ctx.headers
        )

    headers = dict(ctx.headers)
    headers["Cache-Control"] = "no-cache, must-revalidate"
    headers["Pragma"] = "no-cache"
    return json_success(PublicKeyResponse(key=key).model_dump(), headers=headers)


@router.options("/api/oauth/key-rotation")
async def key_rotation_preflight(request: Request, guard: GuardDep) -> Response:
    """OPTIONS /api/oauth/key-rotation -- CORS preflight."""
    return preflight_response(request, guard, METHODS)


@router.get("/api/oauth/key-rotation")
async def key_rotation_status(
    request: Request, guard: GuardDep, rotation: RotationDep
) -> JSONResponse:
    """GET /api/oauth/key-rotation -- active keys with truncated public keys."""
    ctx = CorsContext(request, guard, METHODS)
    error = _gate(request, ctx, guard)
    if error is not None:
        return error
    status = await rotation.status()
    return json_success(status.model_dump(by_alias=True), headers=ctx.headers)
