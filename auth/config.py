"""Authentication configuration."""

import os
from typing import ClassVar, Mapping

from pydantic import BaseModel, Field


class PasswordHashConfig(BaseModel):
    """
    Argon2id cost parameters.

    The parameters are encoded into every stored hash, so raising them later
    leaves existing hashes verifiable; they are upgraded on next login.
    """

    time_cost: int = Field(default=3, ge=1, le=20, description="Iterations")
    memory_cost: int = Field(default=65536, ge=8, le=4_194_304, description="Memory in KiB")
    parallelism: int = Field(default=2, ge=1, le=16, description="Lanes")
    hash_len: int = Field(default=32, ge=16, le=64, description="Digest length in bytes")
    salt_len: int = Field(default=16, ge=16, le=64, description="Salt length in bytes")


class AuthConfig(BaseModel):
    """
    Authentication configuration.

    All durations are in their natural units (minutes for short durations,
    hours or days for longer ones) to make configuration intuitive.
    """

    # Single-use tokens
    verification_token_expiry_hours: int = Field(
        default=24,
        description="How long email verification links remain valid",
        ge=1,
        le=168,
    )
    password_reset_expiry_minutes: int = Field(
        default=30,
        description="How long password reset links remain valid",
        ge=5,
        le=1440,
    )

    # Sessions
    refresh_token_expiry_days: int = Field(
        default=30,
        description="Refresh session lifetime; each rotation starts a new period",
        ge=1,
        le=90,
    )
    access_token_expiry_minutes: int = Field(
        default=15,
        description="Bearer access token lifetime",
        ge=1,
        le=120,
    )

    # Login lockout
    lockout_threshold: int = Field(
        default=5,
        description="Failed logins within the window that lock the identity",
        ge=1,
        le=100,
    )
    lockout_window_minutes: int = Field(
        default=15,
        description="Trailing window for counting failed logins",
        ge=1,
        le=1440,
    )
    login_attempt_retention_days: int = Field(
        default=30,
        description="Login attempts older than this are pruned",
        ge=1,
        le=3650,
    )

    # Outbound email throttle
    email_rate_limit_attempts: int = Field(
        default=3,
        description="Max reset/verification emails per address per window",
        ge=1,
        le=20,
    )
    email_rate_limit_window_minutes: int = Field(
        default=15,
        description="Email throttle window duration",
        ge=1,
        le=1440,
    )

    # Policy
    require_verified_email: bool = Field(
        default=True,
        description="Refuse login until the email address is verified",
    )

    password_hashing: PasswordHashConfig = Field(default_factory=PasswordHashConfig)

    # Application
    app_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL for links in emails",
    )
    app_name: str = Field(
        default="Field Service",
        description="Application name for emails",
    )

    ENV_PREFIX: ClassVar[str] = "AUTH_"
    ARGON2_ENV_PREFIX: ClassVar[str] = "AUTH_ARGON2_"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AuthConfig":
        """Build config from AUTH_* variables (e.g. AUTH_LOCKOUT_THRESHOLD=10).

        Argon2 parameters use AUTH_ARGON2_* (e.g. AUTH_ARGON2_MEMORY_COST).
        Unset variables keep defaults. Invalid values raise pydantic's
        ValidationError - fail fast at startup.
        """
        environ = os.environ if environ is None else environ

        hashing = {
            name: environ[f"{cls.ARGON2_ENV_PREFIX}{name.upper()}"]
            for name in PasswordHashConfig.model_fields
            if f"{cls.ARGON2_ENV_PREFIX}{name.upper()}" in environ
        }
        values: dict = {
            name: environ[f"{cls.ENV_PREFIX}{name.upper()}"]
            for name in cls.model_fields
            if name != "password_hashing" and f"{cls.ENV_PREFIX}{name.upper()}" in environ
        }
        values["password_hashing"] = PasswordHashConfig(**hashing)
        return cls(**values)
