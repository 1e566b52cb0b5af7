"""Request payload schemas for the auth endpoints."""

import re

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

PASSWORD_COMPLEXITY_MESSAGE = (
    "Password must be at least 8 characters and include lowercase, uppercase, number, and symbol."
)

_PASSWORD_RULES = (
    re.compile(r"[a-z]"),
    re.compile(r"[A-Z]"),
    re.compile(r"[0-9]"),
    re.compile(r"[^A-Za-z0-9]"),
)

# argon2 accepts anything, but unbounded input is a cheap DoS on the hasher
MAX_PASSWORD_LENGTH = 256


def check_password_complexity(password: str) -> str:
    if len(password) < 8 or not all(rule.search(password) for rule in _PASSWORD_RULES):
        raise ValueError(PASSWORD_COMPLEXITY_MESSAGE)
    return password


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=False)


class RegisterRequest(_Payload):
    email: EmailStr
    password: str = Field(..., max_length=MAX_PASSWORD_LENGTH)

    @field_validator("password")
    @classmethod
    def password_complexity(cls, value: str) -> str:
        return check_password_complexity(value)


class LoginRequest(_Payload):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=MAX_PASSWORD_LENGTH)


class RefreshRequest(_Payload):
    refresh_token: str = Field(..., min_length=20, max_length=512)


class LogoutRequest(_Payload):
    refresh_token: str = Field(..., min_length=20, max_length=512)


class VerifyEmailRequest(_Payload):
    token: str = Field(..., min_length=20, max_length=512)


class ResendVerificationRequest(_Payload):
    email: EmailStr


class RequestPasswordResetRequest(_Payload):
    email: EmailStr


class ResetPasswordRequest(_Payload):
    token: str = Field(..., min_length=20, max_length=512)
    password: str = Field(..., max_length=MAX_PASSWORD_LENGTH)

    @field_validator("password")
    @classmethod
    def password_complexity(cls, value: str) -> str:
        return check_password_complexity(value)
