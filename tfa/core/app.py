"""FastAPI application factory for the tfa-broker service."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from tfa.api.response import (
    json_invalid_parameters,
    json_server_error,
    json_unauthorized,
)
from tfa.core.errors import ConfigurationError
from tfa.core.settings import AuthSettings
from tfa.oauth.routes_login import router as login_router
from tfa.oauth.routes_public_key import router as public_key_router
from tfa.oauth.routes_verify import router as verify_router
from tfa.store.factory import close_store

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Attach a stream handler to the package logger once."""
    package_logger = logging.getLogger("tfa")
    package_logger.setLevel(level.upper())
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        package_logger.addHandler(handler)


async def _invalid_request(_request: Request, exc: Exception) -> JSONResponse:
    logger.info("request validation failed: %s", exc)
    return json_invalid_parameters("Invalid request parameters")


async def _misconfigured(_request: Request, exc: Exception) -> JSONResponse:
    logger.error("server configuration error: %s", exc)
    return json_unauthorized("Invalid server configuration")


async def _unhandled(_request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error", exc_info=exc)
    return json_server_error()


def create_app() -> FastAPI:
    """Build and configure the FastAPI application."""
    settings = AuthSettings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await close_store()

    app = FastAPI(
        title="tfa-broker",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_exception_handler(RequestValidationError, _invalid_request)
    app.add_exception_handler(ConfigurationError, _misconfigured)
    app.add_exception_handler(Exception, _unhandled)

    app.include_router(public_key_router)
    app.include_router(verify_router)
    app.include_router(login_router)

    return app
