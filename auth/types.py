"""Pydantic models for auth domain."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class Role(str, Enum):
    """Flat role tag carried on every user."""

    ADMIN = "ADMIN"
    USER = "USER"


class User(BaseModel):
    """A registered user of the system."""

    id: UUID
    email: EmailStr
    password_hash: str = Field(..., min_length=1, repr=False)
    role: Role = Role.USER
    email_verified_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    last_login_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def is_verified(self) -> bool:
        return self.email_verified_at is not None


class UserPatch(BaseModel):
    """Partial update for a user. Unset fields are left alone."""

    password_hash: str | None = Field(default=None, min_length=1)
    role: Role | None = None
    email_verified_at: datetime | None = None

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class TokenPurpose(str, Enum):
    """What a single-use token proves. Each purpose lives in its own table."""

    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


class TokenRecord(BaseModel):
    """Persisted form of a single-use token. The raw value is never stored."""

    token_hash: str
    user_id: UUID
    purpose: TokenPurpose
    created_at: datetime
    expires_at: datetime
    consumed_at: datetime | None = None


class SessionState(str, Enum):
    ACTIVE = "active"
    ROTATED_OUT = "rotated_out"
    REVOKED = "revoked"
    EXPIRED = "expired"


class SessionRecord(BaseModel):
    """One link in a refresh-token session lineage."""

    id: UUID
    lineage_id: UUID
    user_id: UUID
    refresh_token_hash: str = Field(..., repr=False)
    issued_at: datetime
    expires_at: datetime
    rotated_at: datetime | None = None
    replaced_by: UUID | None = None
    revoked_at: datetime | None = None

    def state_at(self, now: datetime) -> SessionState:
        """Revoked wins over rotated-out, which wins over expired."""
        if self.revoked_at is not None:
            return SessionState.REVOKED
        if self.rotated_at is not None:
            return SessionState.ROTATED_OUT
        if now >= self.expires_at:
            return SessionState.EXPIRED
        return SessionState.ACTIVE


class IssuedSession(BaseModel):
    """A freshly created or rotated session. The only place the raw refresh token appears."""

    session_id: UUID
    lineage_id: UUID
    user_id: UUID
    refresh_token: str = Field(..., repr=False)
    issued_at: datetime
    expires_at: datetime


class LoginOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class LoginAttempt(BaseModel):
    """Append-only record of one authentication attempt."""

    identity: str
    outcome: LoginOutcome
    attempted_at: datetime
    ip_address: str | None = None
    user_agent: str | None = None

    model_config = {"frozen": True}


class AccessGrant(BaseModel):
    """What a valid access token resolves to."""

    user_id: UUID
    session_id: UUID
    lineage_id: UUID
    role: Role
    expires_at: datetime


class AuthenticatedUser(BaseModel):
    """Returned by login and refresh."""

    user: User
    session: IssuedSession
    access_token: str = Field(..., repr=False)
    access_token_expires_at: datetime


class RegistrationResult(BaseModel):
    """Outcome of a registration. The verification token itself only travels by email."""

    user_id: UUID
    verification_sent: bool


def normalize_email(email: str) -> str:
    """Canonical form used for storage, lookups and lockout identity."""
    return email.strip().lower()
