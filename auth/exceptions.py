"""Typed exceptions for auth failures.

Everything under AuthError is an expected outcome that the HTTP layer maps
to a specific status and error code. HashingFailureError is the exception:
it signals resource exhaustion and surfaces as an internal error.
"""

from dataclasses import dataclass
from uuid import UUID


class AuthError(Exception):
    """Base class for authentication/authorization errors."""


# -- Request validation ------------------------------------------------------


@dataclass(frozen=True)
class FieldError:
    """One failed field check: dotted field path plus a human-readable reason."""

    field: str
    reason: str


class PayloadValidationError(AuthError):
    """Inbound payload failed shape/format checks. Never reaches persistence."""

    def __init__(self, errors: list[FieldError]):
        self.errors = errors
        summary = "; ".join(f"{e.field}: {e.reason}" for e in errors)
        super().__init__(f"Invalid request payload ({summary})")


# -- Registration and login --------------------------------------------------


class EmailAlreadyRegisteredError(AuthError):
    """An account with this email already exists."""


class InvalidCredentialsError(AuthError):
    """
    Unknown email or wrong password.

    Both cases raise this same error with the same message so responses
    can't be used to discover which emails have accounts.
    """


class AccountLockedError(AuthError):
    """Too many recent failed logins for this identity."""

    def __init__(self, retry_after_seconds: int):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"Account locked. Retry after {retry_after_seconds} seconds.")


class EmailNotVerifiedError(AuthError):
    """Credentials were correct but the email address is not verified yet."""


class UserNotFoundError(AuthError):
    """
    No user with the given id.

    Internal only - email lookups never surface this to clients.
    """


# -- Single-use tokens -------------------------------------------------------


class TokenError(AuthError):
    """Base for verification / password reset token failures."""


class TokenInvalidError(TokenError):
    """Token unknown, superseded by a newer token, or issued for another purpose."""


class TokenExpiredError(TokenError):
    """Token exists but its expiry has passed."""


class TokenAlreadyUsedError(TokenError):
    """Token was already consumed."""


# -- Sessions ----------------------------------------------------------------


class SessionError(AuthError):
    """Base for refresh-session and access-token failures."""


class SessionInvalidError(SessionError):
    """Refresh token unknown or its session was revoked."""


class SessionExpiredError(SessionError):
    """Session or access token has expired and the user must re-authenticate."""


class SessionReuseDetectedError(SessionError):
    """
    A rotated-out refresh token was presented again.

    Treated as theft: the whole session lineage has already been revoked
    by the time this is raised.
    """

    def __init__(self, lineage_id: UUID, revoked_session_ids: list[UUID]):
        self.lineage_id = lineage_id
        self.revoked_session_ids = revoked_session_ids
        super().__init__("Refresh token reuse detected; session revoked")


# -- Throttling and infrastructure --------------------------------------------


class RateLimitedError(AuthError):
    """Too many email requests for this address. Client should wait before retrying."""

    def __init__(self, retry_after_seconds: int):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"Rate limited. Retry after {retry_after_seconds} seconds.")


class HashingFailureError(AuthError):
    """Password hashing failed (entropy or memory exhaustion). Fatal for the request."""
