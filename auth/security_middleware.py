"""Security middleware for FastAPI - access token validation and user context."""

import logging

from redis.exceptions import ConnectionError as ValkeyConnectionError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from auth.access_tokens import AccessTokenManager
from auth.exceptions import SessionExpiredError
from api.base import error_response, ErrorCodes
from utils.user_context import set_current_user, clear_current_user

logger = logging.getLogger(__name__)


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware that validates the access token and sets user context.

    For protected routes:
    1. Extracts the access token from 'Authorization: Bearer <token>'
    2. Validates it via AccessTokenManager
    3. Sets user_id/role/session_id in request.state and user context (for RLS)
    4. Clears context after request completes

    Public paths bypass authentication entirely.
    """

    PUBLIC_PATHS = [
        "/auth/register",
        "/auth/login",
        "/auth/refresh",
        "/auth/verify-email",
        "/auth/resend-verification",
        "/auth/request-password-reset",
        "/auth/reset-password",
        "/auth/logout",
        "/health",
        "/docs",
        "/openapi.json",
    ]
    # Everything below these prefixes is public
    PUBLIC_PREFIXES = [
        "/docs/",
    ]

    def __init__(self, app, access_tokens: AccessTokenManager):
        super().__init__(app)
        self._access_tokens = access_tokens

    def _is_public_path(self, path: str) -> bool:
        """Exact match only, so /auth/logout does not open /auth/logout-all."""
        if path in self.PUBLIC_PATHS:
            return True
        return any(path.startswith(prefix) for prefix in self.PUBLIC_PREFIXES)

    @staticmethod
    def _bearer_token(request: Request) -> str | None:
        header = request.headers.get("Authorization", "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return None
        return token.strip()

    def _reject(self, request: Request, status_code: int, code: str, message: str) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            headers={"WWW-Authenticate": "Bearer"} if status_code == 401 else None,
            content=error_response(
                code,
                message,
                request_id=getattr(request.state, "request_id", None),
            ).model_dump(mode="json"),
        )

    async def dispatch(self, request: Request, call_next):
        """Process request through middleware."""
        path = request.url.path

        # Skip auth for public paths
        if self._is_public_path(path):
            return await call_next(request)

        access_token = self._bearer_token(request)
        if not access_token:
            return self._reject(
                request, 401, ErrorCodes.NOT_AUTHENTICATED, "Authentication required"
            )

        try:
            grant = self._access_tokens.validate(access_token)
        except SessionExpiredError:
            return self._reject(
                request, 401, ErrorCodes.SESSION_EXPIRED, "Session has expired"
            )
        except ValkeyConnectionError as e:
            logger.error(f"Valkey unavailable during authentication: {e}")
            return self._reject(
                request, 503, ErrorCodes.SERVICE_UNAVAILABLE, "Service temporarily unavailable"
            )

        # Set user context for RLS
        set_current_user(grant.user_id, grant.role.value)
        request.state.user_id = grant.user_id
        request.state.role = grant.role
        request.state.session_id = grant.session_id

        try:
            response = await call_next(request)
            return response
        finally:
            # Always clear context
            clear_current_user()
