"""HTTP routes for authentication."""

import ipaddress
import json
import logging
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from api.base import success_response, error_response, ErrorCodes
from auth.exceptions import (
    AccountLockedError,
    AuthError,
    EmailAlreadyRegisteredError,
    EmailNotVerifiedError,
    FieldError,
    HashingFailureError,
    InvalidCredentialsError,
    PayloadValidationError,
    RateLimitedError,
    SessionExpiredError,
    SessionInvalidError,
    SessionReuseDetectedError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenInvalidError,
    UserNotFoundError,
)
from auth.schemas import (
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    RegisterRequest,
    RequestPasswordResetRequest,
    ResendVerificationRequest,
    ResetPasswordRequest,
    VerifyEmailRequest,
)
from auth.service import AuthService
from auth.types import AuthenticatedUser, User
from auth.validation import RequestValidator

logger = logging.getLogger(__name__)

GENERIC_ACK = "If an account exists for that address, an email is on its way."

# Most specific class first; lookup walks the exception's MRO.
ERROR_MAP: dict[type[AuthError], tuple[int, str, str]] = {
    PayloadValidationError: (422, ErrorCodes.VALIDATION_ERROR, "Request validation failed"),
    EmailAlreadyRegisteredError: (409, ErrorCodes.EMAIL_ALREADY_REGISTERED, "Email is already registered"),
    InvalidCredentialsError: (401, ErrorCodes.INVALID_CREDENTIALS, "Invalid email or password"),
    AccountLockedError: (423, ErrorCodes.ACCOUNT_LOCKED, "Too many failed login attempts"),
    EmailNotVerifiedError: (403, ErrorCodes.EMAIL_NOT_VERIFIED, "Email address has not been verified"),
    TokenInvalidError: (400, ErrorCodes.TOKEN_INVALID, "Invalid token"),
    TokenExpiredError: (400, ErrorCodes.TOKEN_EXPIRED, "Token has expired"),
    TokenAlreadyUsedError: (400, ErrorCodes.TOKEN_ALREADY_USED, "Token has already been used"),
    SessionInvalidError: (401, ErrorCodes.SESSION_INVALID, "Session is not valid"),
    SessionExpiredError: (401, ErrorCodes.SESSION_EXPIRED, "Session has expired"),
    SessionReuseDetectedError: (401, ErrorCodes.SESSION_REUSE_DETECTED, "Session revoked; sign in again"),
    RateLimitedError: (429, ErrorCodes.RATE_LIMITED, "Too many requests"),
    UserNotFoundError: (404, ErrorCodes.NOT_FOUND, "User not found"),
    HashingFailureError: (500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred"),
}


def auth_error_response(exc: AuthError, request_id: str | None = None) -> JSONResponse:
    """Translate a domain error into its HTTP status, code and envelope."""
    for cls in type(exc).__mro__:
        if cls in ERROR_MAP:
            status_code, code, message = ERROR_MAP[cls]
            break
    else:
        status_code, code, message = 400, ErrorCodes.INVALID_REQUEST, "Request could not be processed"

    details = None
    headers = {}
    if isinstance(exc, PayloadValidationError):
        details = [{"field": e.field, "reason": e.reason} for e in exc.errors]
    if isinstance(exc, (AccountLockedError, RateLimitedError)):
        headers["Retry-After"] = str(exc.retry_after_seconds)
        message = f"{message}. Try again in {exc.retry_after_seconds} seconds."

    return JSONResponse(
        status_code=status_code,
        headers=headers or None,
        content=error_response(code, message, details, request_id).model_dump(mode="json"),
    )


def _get_client_ip(request: Request) -> str | None:
    """Extract valid IP address from request, or None if invalid."""
    if not request.client:
        return None
    host = request.client.host
    try:
        ipaddress.ip_address(host)
        return host
    except ValueError:
        return None


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


async def _read_json(request: Request) -> Any:
    body = await request.body()
    if not body:
        return None
    try:
        return json.loads(body)
    except (ValueError, UnicodeDecodeError):
        raise PayloadValidationError([FieldError("body", "Malformed JSON")]) from None


def _user_payload(user: User) -> dict:
    return {
        "id": str(user.id),
        "email": user.email,
        "role": user.role.value,
        "email_verified": user.is_verified,
        "last_login_at": user.last_login_at.isoformat() if user.last_login_at else None,
    }


def _token_payload(result: AuthenticatedUser) -> dict:
    return {
        "access_token": result.access_token,
        "token_type": "bearer",
        "access_token_expires_at": result.access_token_expires_at.isoformat(),
        "refresh_token": result.session.refresh_token,
        "refresh_token_expires_at": result.session.expires_at.isoformat(),
        "user": _user_payload(result.user),
    }


def _respond(request: Request, data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=success_response(data, _request_id(request)).model_dump(mode="json"),
    )


def create_auth_router(
    auth_service: AuthService,
    validator: RequestValidator | None = None,
) -> APIRouter:
    """Create auth router with injected service.

    Routes validate the payload before touching the service, run the
    (blocking) service call in the threadpool and let AuthError propagate
    to the global handler (api.errors), which uses auth_error_response.
    """
    router = APIRouter(tags=["auth"])
    validator = validator or RequestValidator()

    async def parse(request: Request, schema):
        return validator.validate(schema, await _read_json(request))

    @router.post("/register")
    async def register(request: Request):
        body = await parse(request, RegisterRequest)
        result = await run_in_threadpool(
            auth_service.register,
            email=body.email,
            password=body.password,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        return _respond(
            request,
            {"user_id": str(result.user_id), "verification_sent": result.verification_sent},
            status_code=201,
        )

    @router.post("/login")
    async def login(request: Request):
        body = await parse(request, LoginRequest)
        result = await run_in_threadpool(
            auth_service.login,
            email=body.email,
            password=body.password,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        return _respond(request, _token_payload(result))

    @router.post("/refresh")
    async def refresh(request: Request):
        body = await parse(request, RefreshRequest)
        result = await run_in_threadpool(
            auth_service.refresh,
            refresh_token=body.refresh_token,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        return _respond(request, _token_payload(result))

    @router.post("/verify-email")
    async def verify_email(request: Request):
        body = await parse(request, VerifyEmailRequest)
        user = await run_in_threadpool(
            auth_service.verify_email,
            token=body.token,
            ip_address=_get_client_ip(request),
        )
        return _respond(request, {"user": _user_payload(user)})

    @router.post("/resend-verification")
    async def resend_verification(request: Request):
        body = await parse(request, ResendVerificationRequest)
        await run_in_threadpool(
            auth_service.resend_verification,
            email=body.email,
            ip_address=_get_client_ip(request),
        )
        return _respond(request, {"message": GENERIC_ACK}, status_code=202)

    @router.post("/request-password-reset")
    async def request_password_reset(request: Request):
        body = await parse(request, RequestPasswordResetRequest)
        await run_in_threadpool(
            auth_service.request_password_reset,
            email=body.email,
            ip_address=_get_client_ip(request),
        )
        return _respond(request, {"message": GENERIC_ACK}, status_code=202)

    @router.post("/reset-password")
    async def reset_password(request: Request):
        body = await parse(request, ResetPasswordRequest)
        await run_in_threadpool(
            auth_service.reset_password,
            token=body.token,
            new_password=body.password,
            ip_address=_get_client_ip(request),
        )
        return _respond(request, {"message": "Password updated. Please sign in again."})

    @router.post("/logout")
    async def logout(request: Request):
        """Revoke the session behind a refresh token. Unknown tokens are ignored."""
        body = await parse(request, LogoutRequest)
        await run_in_threadpool(
            auth_service.logout,
            refresh_token=body.refresh_token,
            ip_address=_get_client_ip(request),
        )
        return _respond(request, {"message": "Logged out successfully"})

    @router.post("/logout-all")
    async def logout_all(request: Request):
        """Revoke every session of the authenticated user."""
        user_id = _authenticated_user_id(request)
        revoked = await run_in_threadpool(
            auth_service.logout_all,
            user_id=user_id,
            ip_address=_get_client_ip(request),
        )
        return _respond(request, {"revoked_sessions": revoked})

    @router.get("/me")
    async def get_current_user(request: Request):
        """Get current authenticated user.

        Requires authentication (middleware sets user context).
        """
        user_id = _authenticated_user_id(request)
        user = await run_in_threadpool(auth_service.get_user, user_id)
        return _respond(request, {"user": _user_payload(user)})

    return router


def _authenticated_user_id(request: Request):
    if not hasattr(request.state, "user_id"):
        raise SessionInvalidError("Authentication required")
    return request.state.user_id
