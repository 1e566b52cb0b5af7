"""Shared test fixtures for the auth test suite.

Core logic runs against the in-process stores and an in-memory Valkey
double, so the suite needs no external services. PostgreSQL store tests
opt in through TEST_DATABASE_URL.
"""

import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Set
from unittest.mock import Mock

import pytest
from dotenv import load_dotenv

load_dotenv(Path(__file__).parent.parent / ".env")

import clients.vault_client as vault_module
vault_module.reset_vault_cache()

from api.app import AppState, build_state
from auth.config import AuthConfig, PasswordHashConfig
from auth.memory_store import (
    MemoryLoginAttemptStore,
    MemorySessionStore,
    MemoryTokenStore,
    MemoryUserStore,
)
from auth.passwords import PasswordHasher
from auth.security_logger import SecurityLogger
from auth.types import Role, User
from clients.email_client import EmailGatewayClient
from utils.user_context import clear_current_user


# =============================================================================
# TEST CONSTANTS
# =============================================================================

STRONG_PASSWORD = "Str0ng!Pass"
OTHER_STRONG_PASSWORD = "N3w!Passw0rd"
START_TIME = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# TEST DOUBLES
# =============================================================================


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = START_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class InMemoryValkey:
    """Dict-backed stand-in with the ValkeyClient method surface.

    TTLs are recorded but never elapse; expiry-sensitive code also checks
    the injected clock.
    """

    def __init__(self):
        self._data: dict[str, object] = {}
        self._ttl: dict[str, int] = {}

    def ping(self) -> bool:
        return True

    def get(self, key: str) -> str | None:
        value = self._data.get(key)
        return None if value is None else str(value)

    def set(self, key: str, value: str, expire_seconds: int | None = None) -> None:
        self._data[key] = value
        if expire_seconds is not None:
            self._ttl[key] = expire_seconds
        else:
            self._ttl.pop(key, None)

    def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            if key in self._data:
                del self._data[key]
                self._ttl.pop(key, None)
                deleted += 1
        return deleted

    def ttl(self, key: str) -> int:
        if key not in self._data:
            return -2
        return self._ttl.get(key, -1)

    def expire(self, key: str, seconds: int) -> bool:
        if key not in self._data:
            return False
        self._ttl[key] = seconds
        return True

    def incr(self, key: str) -> int:
        value = int(self._data.get(key, 0)) + 1
        self._data[key] = str(value)
        return value

    def sadd(self, key: str, *members: str) -> int:
        current = self._data.setdefault(key, set())
        added = len(set(members) - current)
        current.update(members)
        return added

    def smembers(self, key: str) -> Set[str]:
        return set(self._data.get(key, set()))

    def set_json(self, key: str, value: dict | list, expire_seconds: int | None = None) -> None:
        self.set(key, json.dumps(value), expire_seconds)

    def get_json(self, key: str) -> dict | list | None:
        value = self.get(key)
        return None if value is None else json.loads(value)

    def keys(self, prefix: str = "") -> list[str]:
        return [key for key in self._data if key.startswith(prefix)]

    def close(self) -> None:
        pass


# =============================================================================
# USER CONTEXT
# =============================================================================


@pytest.fixture(autouse=True)
def reset_user_context():
    """Ensure clean user context before and after each test."""
    clear_current_user()
    yield
    clear_current_user()


# =============================================================================
# CONFIG, CLOCK, HASHING
# =============================================================================


@pytest.fixture
def fast_hashing() -> PasswordHashConfig:
    """Cheap argon2 parameters - the cost profile isn't under test."""
    return PasswordHashConfig(time_cost=1, memory_cost=1024, parallelism=1)


@pytest.fixture
def config(fast_hashing) -> AuthConfig:
    return AuthConfig(
        password_hashing=fast_hashing,
        app_base_url="https://app.example.com",
        app_name="Field Service Test",
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def hasher(fast_hashing) -> PasswordHasher:
    return PasswordHasher(fast_hashing)


# =============================================================================
# STORES AND CLIENTS
# =============================================================================


@pytest.fixture
def user_store() -> MemoryUserStore:
    return MemoryUserStore()


@pytest.fixture
def token_store() -> MemoryTokenStore:
    return MemoryTokenStore()


@pytest.fixture
def session_store() -> MemorySessionStore:
    return MemorySessionStore()


@pytest.fixture
def attempt_store() -> MemoryLoginAttemptStore:
    return MemoryLoginAttemptStore()


@pytest.fixture
def valkey() -> InMemoryValkey:
    return InMemoryValkey()


@pytest.fixture
def email_client():
    """Mock email client - no actual emails sent in tests."""
    return Mock(spec=EmailGatewayClient)


@pytest.fixture
def security_logger():
    return Mock(spec=SecurityLogger)


# =============================================================================
# ASSEMBLED SERVICES
# =============================================================================


@pytest.fixture
def app_state(
    config, clock, user_store, token_store, session_store, attempt_store,
    valkey, email_client, security_logger,
) -> AppState:
    return build_state(
        config,
        users=user_store,
        token_store=token_store,
        session_store=session_store,
        attempt_store=attempt_store,
        valkey=valkey,
        email_client=email_client,
        security_logger=security_logger,
        clock=clock,
    )


@pytest.fixture
def auth_service(app_state):
    return app_state.auth_service


@pytest.fixture
def make_user(user_store, hasher) -> Callable[..., User]:
    """Insert a user directly, bypassing registration."""

    def _make(
        email: str = "alice@example.com",
        password: str = STRONG_PASSWORD,
        role: Role = Role.USER,
        verified: bool = True,
    ) -> User:
        return user_store.upsert_by_email(
            email,
            hasher.hash(password),
            role,
            email_verified_at=START_TIME if verified else None,
        )

    return _make


@pytest.fixture
def sent_token(email_client):
    """Pull the raw token out of the last verification or reset email."""

    def _token(kind: str = "verification") -> str:
        method = {
            "verification": email_client.send_verification_email,
            "reset": email_client.send_password_reset_email,
        }[kind]
        assert method.called, f"no {kind} email was sent"
        return method.call_args.kwargs["token"]

    return _token


# =============================================================================
# POSTGRES (opt-in)
# =============================================================================


@pytest.fixture(scope="session")
def db():
    """Session-scoped PostgresClient against TEST_DATABASE_URL, schema applied."""
    url = os.getenv("TEST_DATABASE_URL")
    if not url:
        pytest.skip("TEST_DATABASE_URL not set")

    from clients.postgres_client import PostgresClient

    client = PostgresClient(url)
    schema = (Path(__file__).parent.parent / "schema" / "auth.sql").read_text()
    with client.get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(schema)
        conn.commit()
    yield client
    client.close()


@pytest.fixture
def clean_db(db):
    """Empty the auth tables around each Postgres test."""
    tables = "login_attempts, sessions, verification_tokens, password_reset_tokens, security_events, users"
    with db.get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(f"TRUNCATE {tables} CASCADE")
        conn.commit()
    yield db
