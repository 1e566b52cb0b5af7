"""Authentication and authorization modules."""

from auth.exceptions import (
    AuthError,
    FieldError,
    PayloadValidationError,
    EmailAlreadyRegisteredError,
    InvalidCredentialsError,
    AccountLockedError,
    EmailNotVerifiedError,
    UserNotFoundError,
    TokenError,
    TokenInvalidError,
    TokenExpiredError,
    TokenAlreadyUsedError,
    SessionError,
    SessionInvalidError,
    SessionExpiredError,
    SessionReuseDetectedError,
    RateLimitedError,
    HashingFailureError,
)
from auth.types import (
    Role,
    User,
    UserPatch,
    TokenPurpose,
    SessionRecord,
    SessionState,
    IssuedSession,
    LoginOutcome,
    LoginAttempt,
    AccessGrant,
    AuthenticatedUser,
    RegistrationResult,
)
from auth.config import AuthConfig, PasswordHashConfig
from auth.passwords import PasswordHasher
from auth.tokens import TokenIssuer
from auth.login_attempts import LoginAttemptTracker
from auth.session import SessionManager
from auth.access_tokens import AccessTokenManager
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityLogger, SecurityEvent
from auth.validation import RequestValidator
from auth.service import AuthService
from auth.security_middleware import AuthMiddleware
from auth.api import create_auth_router
