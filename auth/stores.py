"""Persistence contracts for the auth core.

Each component owns exactly one store; nothing reads another component's
table. Implementations: auth.database (PostgreSQL) and auth.memory_store
(in-process).

Conditional transitions (consume, rotate) must be a single atomic
compare-and-set in the backend, never a read followed by a write.
"""

from datetime import datetime
from typing import Protocol
from uuid import UUID

from auth.types import (
    LoginAttempt,
    Role,
    SessionRecord,
    TokenPurpose,
    TokenRecord,
    User,
    UserPatch,
)


class CredentialStore(Protocol):
    def find_by_email(self, email: str) -> User | None: ...

    def find_by_id(self, user_id: UUID) -> User | None: ...

    def create(self, email: str, password_hash: str, role: Role = Role.USER) -> User:
        """Insert a new unverified user. Raises EmailAlreadyRegisteredError on collision."""
        ...

    def update(self, user_id: UUID, patch: UserPatch) -> User | None: ...

    def upsert_by_email(
        self,
        email: str,
        password_hash: str,
        role: Role,
        email_verified_at: datetime | None = None,
    ) -> User:
        """Insert, or update the row keyed by the unique email."""
        ...

    def touch_last_login(self, user_id: UUID, at: datetime) -> None: ...


class TokenStore(Protocol):
    def replace(self, record: TokenRecord) -> None:
        """Drop the user's unconsumed tokens of this purpose and insert record, atomically."""
        ...

    def consume(self, purpose: TokenPurpose, token_hash: str, now: datetime) -> UUID | None:
        """Mark consumed iff unconsumed and unexpired. Returns the user id on success."""
        ...

    def get(self, purpose: TokenPurpose, token_hash: str) -> TokenRecord | None: ...

    def delete_expired(self, now: datetime) -> int: ...


class SessionStore(Protocol):
    def insert(self, record: SessionRecord) -> None: ...

    def rotate(self, token_hash: str, successor: SessionRecord, now: datetime) -> SessionRecord | None:
        """Mark the active, unexpired session with token_hash as rotated out and insert
        successor into its lineage, atomically. Returns the stored successor,
        or None if nothing was active under token_hash.

        successor.lineage_id and user_id are taken from the rotated row.
        """
        ...

    def get_by_token_hash(self, token_hash: str) -> SessionRecord | None: ...

    def revoke(self, session_id: UUID, now: datetime) -> bool: ...

    def revoke_lineage(self, lineage_id: UUID, now: datetime) -> list[UUID]:
        """Revoke every live row in the lineage. Returns the revoked session ids."""
        ...

    def revoke_all_for_user(self, user_id: UUID, now: datetime) -> list[UUID]:
        """Revoke every live row for the user. Returns the affected lineage ids."""
        ...

    def list_active_for_user(self, user_id: UUID, now: datetime) -> list[SessionRecord]: ...

    def revoke_expired(self, now: datetime) -> int: ...


class LoginAttemptStore(Protocol):
    def append(self, attempt: LoginAttempt) -> None: ...

    def failures_since(self, identity: str, since: datetime) -> list[datetime]:
        """Failure timestamps for identity after since, newest first."""
        ...

    def prune(self, before: datetime) -> int: ...
