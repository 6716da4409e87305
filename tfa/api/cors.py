"""Per-route CORS handling driven by the trust guard."""

from starlette.requests import Request
from starlette.responses import Response

from tfa.oauth.whitelist import TrustGuard, get_current_origin

HTTP_NO_CONTENT = 204
HTTP_FORBIDDEN = 403


class CorsContext:
    """Origin facts and response headers for one cross-origin request."""

    def __init__(
        self,
        request: Request,
        guard: TrustGuard,
        methods: tuple[str, ...],
        allow_credentials: bool = False,
    ) -> None:
        self.origin = request.headers.get("origin")
        self.current_origin = get_current_origin(request)
        self.allowed = guard.is_origin_allowed(self.origin, self.current_origin)
        self.headers = guard.build_cors_headers(
            self.origin,
            methods=methods,
            allow_credentials=allow_credentials,
            current_origin=self.current_origin,
        )


def preflight_response(
    request: Request,
    guard: TrustGuard,
    methods: tuple[str, ...],
    allow_credentials: bool = False,
) -> Response:
    """204 with CORS headers, or a bare 403 for a disallowed origin."""
    ctx = CorsContext(request, guard, methods, allow_credentials)
    if not ctx.allowed:
        return Response(status_code=HTTP_FORBIDDEN)
    return Response(status_code=HTTP_NO_CONTENT, headers=ctx.headers)
