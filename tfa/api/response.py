"""The {code, message, data} response envelope."""

from typing import Any

from starlette.responses import JSONResponse

CODE_SUCCESS = 0
CODE_INVALID_PARAMETERS = 1000
CODE_UNAUTHORIZED = 2000
CODE_FORBIDDEN = 2003
CODE_SERVER_ERROR = 5000

HTTP_OK = 200
HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_SERVER_ERROR = 500


def _envelope(
    code: int,
    message: str,
    data: Any,
    status_code: int,
    headers: dict[str, str] | None,
) -> JSONResponse:
    return JSONResponse(
        {"code": code, "message": message, "data": data},
        status_code=status_code,
        headers=headers,
    )


def json_success(
    data: Any = None, headers: dict[str, str] | None = None
) -> JSONResponse:
    """200 with code 0."""
    return _envelope(CODE_SUCCESS, "ok", data, HTTP_OK, headers)


def json_invalid_parameters(
    message: str, headers: dict[str, str] | None = None
) -> JSONResponse:
    """400 with code 1000."""
    return _envelope(CODE_INVALID_PARAMETERS, message, None, HTTP_BAD_REQUEST, headers)


def json_unauthorized(
    message: str = "Unauthorized", headers: dict[str, str] | None = None
) -> JSONResponse:
    """401 with code 2000."""
    return _envelope(CODE_UNAUTHORIZED, message, None, HTTP_UNAUTHORIZED, headers)


def json_forbidden(
    message: str = "origin is not allowed", headers: dict[str, str] | None = None
) -> JSONResponse:
    """403 with code 2003."""
    return _envelope(CODE_FORBIDDEN, message, None, HTTP_FORBIDDEN, headers)


def json_server_error(message: str = "Internal server error") -> JSONResponse:
    """500 with code 5000; details stay in the server log."""
    return _envelope(CODE_SERVER_ERROR, message, None, HTTP_SERVER_ERROR, None)
