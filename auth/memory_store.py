"""In-process auth stores.

Same contracts as auth.database, for the test suite and local tooling.
Each store guards its data with one lock; a conditional transition runs
entirely inside that lock, which makes it the same compare-and-set the SQL
statements perform. Records are copied in and out so callers never alias
stored state.
"""

import threading
from datetime import datetime
from uuid import UUID, uuid4

from auth.exceptions import EmailAlreadyRegisteredError
from auth.types import (
    LoginAttempt,
    LoginOutcome,
    Role,
    SessionRecord,
    TokenPurpose,
    TokenRecord,
    User,
    UserPatch,
    normalize_email,
)
from utils.timezone import now_utc


class MemoryUserStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._users: dict[UUID, User] = {}
        self._by_email: dict[str, UUID] = {}

    def find_by_email(self, email: str) -> User | None:
        with self._lock:
            user_id = self._by_email.get(normalize_email(email))
            return self._users[user_id].model_copy() if user_id else None

    def find_by_id(self, user_id: UUID) -> User | None:
        with self._lock:
            user = self._users.get(user_id)
            return user.model_copy() if user else None

    def create(self, email: str, password_hash: str, role: Role = Role.USER) -> User:
        email = normalize_email(email)
        now = now_utc()
        with self._lock:
            if email in self._by_email:
                raise EmailAlreadyRegisteredError("Email is already registered")
            user = User(
                id=uuid4(),
                email=email,
                password_hash=password_hash,
                role=role,
                created_at=now,
                updated_at=now,
            )
            self._users[user.id] = user
            self._by_email[email] = user.id
            return user.model_copy()

    def update(self, user_id: UUID, patch: UserPatch) -> User | None:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            changes = patch.changes()
            if changes:
                user = user.model_copy(update={**changes, "updated_at": now_utc()})
                self._users[user_id] = user
            return user.model_copy()

    def upsert_by_email(
        self,
        email: str,
        password_hash: str,
        role: Role,
        email_verified_at: datetime | None = None,
    ) -> User:
        email = normalize_email(email)
        now = now_utc()
        with self._lock:
            user_id = self._by_email.get(email)
            if user_id is None:
                user = User(
                    id=uuid4(),
                    email=email,
                    password_hash=password_hash,
                    role=role,
                    email_verified_at=email_verified_at,
                    created_at=now,
                    updated_at=now,
                )
                self._by_email[email] = user.id
            else:
                existing = self._users[user_id]
                user = existing.model_copy(update={
                    "password_hash": password_hash,
                    "role": role,
                    "email_verified_at": email_verified_at or existing.email_verified_at,
                    "updated_at": now,
                })
            self._users[user.id] = user
            return user.model_copy()

    def touch_last_login(self, user_id: UUID, at: datetime) -> None:
        with self._lock:
            user = self._users.get(user_id)
            if user is not None:
                self._users[user_id] = user.model_copy(update={"last_login_at": at})


class MemoryTokenStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._tokens: dict[tuple[TokenPurpose, str], TokenRecord] = {}

    def replace(self, record: TokenRecord) -> None:
        purpose = TokenPurpose(record.purpose)
        with self._lock:
            superseded = [
                key for key, existing in self._tokens.items()
                if key[0] == purpose
                and existing.user_id == record.user_id
                and existing.consumed_at is None
            ]
            for key in superseded:
                del self._tokens[key]
            self._tokens[(purpose, record.token_hash)] = record.model_copy()

    def consume(self, purpose: TokenPurpose, token_hash: str, now: datetime) -> UUID | None:
        key = (TokenPurpose(purpose), token_hash)
        with self._lock:
            record = self._tokens.get(key)
            if record is None or record.consumed_at is not None or record.expires_at <= now:
                return None
            self._tokens[key] = record.model_copy(update={"consumed_at": now})
            return record.user_id

    def get(self, purpose: TokenPurpose, token_hash: str) -> TokenRecord | None:
        with self._lock:
            record = self._tokens.get((TokenPurpose(purpose), token_hash))
            return record.model_copy() if record else None

    def delete_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [key for key, record in self._tokens.items() if record.expires_at <= now]
            for key in expired:
                del self._tokens[key]
            return len(expired)


class MemorySessionStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: dict[UUID, SessionRecord] = {}
        self._by_hash: dict[str, UUID] = {}

    def _put(self, record: SessionRecord) -> None:
        self._sessions[record.id] = record
        self._by_hash[record.refresh_token_hash] = record.id

    def insert(self, record: SessionRecord) -> None:
        with self._lock:
            self._put(record.model_copy())

    def rotate(self, token_hash: str, successor: SessionRecord, now: datetime) -> SessionRecord | None:
        with self._lock:
            session_id = self._by_hash.get(token_hash)
            current = self._sessions.get(session_id) if session_id else None
            if (
                current is None
                or current.rotated_at is not None
                or current.revoked_at is not None
                or current.expires_at <= now
            ):
                return None
            self._sessions[current.id] = current.model_copy(
                update={"rotated_at": now, "replaced_by": successor.id}
            )
            stored = successor.model_copy(
                update={"lineage_id": current.lineage_id, "user_id": current.user_id}
            )
            self._put(stored)
            return stored.model_copy()

    def get_by_token_hash(self, token_hash: str) -> SessionRecord | None:
        with self._lock:
            session_id = self._by_hash.get(token_hash)
            return self._sessions[session_id].model_copy() if session_id else None

    def _revoke_where(self, predicate, now: datetime) -> list[SessionRecord]:
        revoked = []
        for record in list(self._sessions.values()):
            if record.revoked_at is None and predicate(record):
                updated = record.model_copy(update={"revoked_at": now})
                self._sessions[record.id] = updated
                revoked.append(updated)
        return revoked

    def revoke(self, session_id: UUID, now: datetime) -> bool:
        with self._lock:
            return bool(self._revoke_where(lambda r: r.id == session_id, now))

    def revoke_lineage(self, lineage_id: UUID, now: datetime) -> list[UUID]:
        with self._lock:
            return [r.id for r in self._revoke_where(lambda r: r.lineage_id == lineage_id, now)]

    def revoke_all_for_user(self, user_id: UUID, now: datetime) -> list[UUID]:
        with self._lock:
            revoked = self._revoke_where(lambda r: r.user_id == user_id, now)
            return list(dict.fromkeys(r.lineage_id for r in revoked))

    def list_active_for_user(self, user_id: UUID, now: datetime) -> list[SessionRecord]:
        with self._lock:
            active = [
                r.model_copy() for r in self._sessions.values()
                if r.user_id == user_id
                and r.revoked_at is None
                and r.rotated_at is None
                and r.expires_at > now
            ]
        return sorted(active, key=lambda r: r.issued_at, reverse=True)

    def revoke_expired(self, now: datetime) -> int:
        with self._lock:
            return len(self._revoke_where(lambda r: r.expires_at <= now, now))


class MemoryLoginAttemptStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._attempts: list[LoginAttempt] = []

    def append(self, attempt: LoginAttempt) -> None:
        with self._lock:
            self._attempts.append(attempt)

    def failures_since(self, identity: str, since: datetime) -> list[datetime]:
        with self._lock:
            times = [
                a.attempted_at for a in self._attempts
                if a.identity == identity
                and a.outcome == LoginOutcome.FAILURE
                and a.attempted_at > since
            ]
        return sorted(times, reverse=True)

    def prune(self, before: datetime) -> int:
        with self._lock:
            kept = [a for a in self._attempts if a.attempted_at >= before]
            pruned = len(self._attempts) - len(kept)
            self._attempts = kept
            return pruned
