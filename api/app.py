"""Application wiring: explicit initialize/shutdown plus the FastAPI factory.

Clients and services are built once per process by initialize() and torn
down by shutdown(). Nothing is constructed at import time.

Run with:
    uvicorn api.app:create_app --factory
"""

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from dotenv import load_dotenv
from fastapi import FastAPI

from api.base import success_response
from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware
from auth.access_tokens import AccessTokenManager
from auth.api import create_auth_router
from auth.config import AuthConfig
from auth.database import LoginAttemptDatabase, SessionDatabase, TokenDatabase, UserDatabase
from auth.login_attempts import LoginAttemptTracker
from auth.passwords import PasswordHasher
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityLogger
from auth.security_middleware import AuthMiddleware
from auth.service import AuthService
from auth.session import SessionManager
from auth.stores import CredentialStore, LoginAttemptStore, SessionStore, TokenStore
from auth.tokens import TokenIssuer
from auth.validation import RequestValidator
from clients.email_client import EmailGatewayClient
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.vault_client import (
    get_database_url,
    get_email_config,
    get_valkey_url,
    reset_vault_cache,
)
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """Everything a running process holds on to."""

    config: AuthConfig
    auth_service: AuthService
    access_tokens: AccessTokenManager
    users: CredentialStore
    hasher: PasswordHasher
    valkey: ValkeyClient
    security_logger: SecurityLogger
    postgres: PostgresClient | None = None


_state: AppState | None = None


def build_state(
    config: AuthConfig,
    *,
    users: CredentialStore,
    token_store: TokenStore,
    session_store: SessionStore,
    attempt_store: LoginAttemptStore,
    valkey: ValkeyClient,
    email_client: EmailGatewayClient,
    security_logger: SecurityLogger,
    postgres: PostgresClient | None = None,
    clock: Callable[[], datetime] = now_utc,
) -> AppState:
    """Assemble the auth components over whichever store backend is given."""
    hasher = PasswordHasher(config.password_hashing)
    access_tokens = AccessTokenManager(valkey, config, clock=clock)
    auth_service = AuthService(
        config=config,
        users=users,
        hasher=hasher,
        tokens=TokenIssuer(token_store, clock=clock),
        attempts=LoginAttemptTracker(attempt_store, config, clock=clock),
        sessions=SessionManager(session_store, config, clock=clock),
        access_tokens=access_tokens,
        rate_limiter=RateLimiter(valkey, config),
        email_client=email_client,
        security_logger=security_logger,
        clock=clock,
    )
    return AppState(
        config=config,
        auth_service=auth_service,
        access_tokens=access_tokens,
        users=users,
        hasher=hasher,
        valkey=valkey,
        security_logger=security_logger,
        postgres=postgres,
    )


def initialize() -> AppState:
    """Load configuration and secrets, connect clients, build services.

    Idempotent: a second call returns the already-built state.

    Raises:
        VaultError: secrets unavailable.
        DatabaseUnavailableError: PostgreSQL unreachable.
        pydantic.ValidationError: invalid AUTH_* settings.
    """
    global _state
    if _state is not None:
        return _state

    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = AuthConfig.from_env()
    postgres = PostgresClient(get_database_url())
    valkey = ValkeyClient(get_valkey_url())
    email_client = EmailGatewayClient(**get_email_config())

    _state = build_state(
        config,
        users=UserDatabase(postgres),
        token_store=TokenDatabase(postgres),
        session_store=SessionDatabase(postgres),
        attempt_store=LoginAttemptDatabase(postgres),
        valkey=valkey,
        email_client=email_client,
        security_logger=SecurityLogger(postgres),
        postgres=postgres,
    )
    logger.info("Application initialized")
    return _state


def get_state() -> AppState:
    """The state built by initialize().

    Raises RuntimeError if initialize() has not run.
    """
    if _state is None:
        raise RuntimeError("Application not initialized; call initialize() first")
    return _state


def shutdown() -> None:
    """Close pools and connections. Safe to call more than once."""
    global _state
    if _state is None:
        return
    state, _state = _state, None

    state.valkey.close()
    if state.postgres is not None:
        state.postgres.close()
    reset_vault_cache()
    logger.info("Application shut down")


def create_app(state: AppState | None = None) -> FastAPI:
    """Build the FastAPI app.

    With no state, initialize() runs now and shutdown() runs when the
    lifespan ends. A caller-supplied state is left for the caller to close.
    """
    owns_state = state is None
    if state is None:
        state = initialize()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_state:
            shutdown()

    app = FastAPI(title="Field Service Auth", lifespan=lifespan)
    app.state.services = state

    register_error_handlers(app)
    app.include_router(
        create_auth_router(state.auth_service, RequestValidator()),
        prefix="/auth",
    )

    @app.get("/health")
    async def health():
        return success_response({"status": "ok"})

    # Added last so it runs first: request IDs exist before auth rejects
    app.add_middleware(AuthMiddleware, access_tokens=state.access_tokens)
    app.add_middleware(RequestIDMiddleware)

    return app
