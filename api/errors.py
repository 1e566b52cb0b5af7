"""Global exception handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from redis.exceptions import ConnectionError as ValkeyConnectionError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from auth.api import auth_error_response
from auth.exceptions import AuthError, HashingFailureError
from clients.email_client import EmailGatewayError
from clients.postgres_client import DatabaseUnavailableError

logger = logging.getLogger(__name__)


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _unavailable(request: Request) -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content=error_response(
            ErrorCodes.SERVICE_UNAVAILABLE,
            "Service temporarily unavailable",
            request_id=_request_id(request),
        ).model_dump(mode="json"),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        if isinstance(exc, HashingFailureError):
            logger.error(f"Password hashing failed on {request.url.path}: {exc}")
        return auth_error_response(exc, _request_id(request))

    @app.exception_handler(DatabaseUnavailableError)
    async def database_unavailable_handler(request: Request, exc: DatabaseUnavailableError):
        logger.error(f"Database unavailable on {request.url.path}: {exc}")
        return _unavailable(request)

    @app.exception_handler(ValkeyConnectionError)
    async def valkey_unavailable_handler(request: Request, exc: ValkeyConnectionError):
        logger.error(f"Valkey unavailable on {request.url.path}: {exc}")
        return _unavailable(request)

    @app.exception_handler(EmailGatewayError)
    async def email_gateway_handler(request: Request, exc: EmailGatewayError):
        logger.error(f"Email gateway failed on {request.url.path}: {exc}")
        return _unavailable(request)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = [
            {"field": ".".join(str(p) for p in error["loc"]), "reason": error["msg"]}
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=422,
            content=error_response(
                ErrorCodes.VALIDATION_ERROR,
                "Request validation failed",
                details,
                _request_id(request),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return JSONResponse(
            status_code=500,
            content=error_response(
                ErrorCodes.INTERNAL_ERROR,
                "An internal error occurred",
                request_id=_request_id(request),
            ).model_dump(mode="json"),
        )
