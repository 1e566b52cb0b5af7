"""PostgreSQL-backed auth stores.

Tables: users, verification_tokens, password_reset_tokens, sessions,
login_attempts (schema/auth.sql). None of them use RLS - they are read
before a user context exists.

Every conditional transition is one statement, so the row lock it takes is
released as soon as that statement commits.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from clients.postgres_client import PostgresClient
from auth.exceptions import EmailAlreadyRegisteredError
from auth.types import (
    LoginAttempt,
    Role,
    SessionRecord,
    TokenPurpose,
    TokenRecord,
    User,
    UserPatch,
    normalize_email,
)
from utils.timezone import now_utc

_USER_COLUMNS = "id, email, password_hash, role, email_verified_at, created_at, updated_at, last_login_at"

_SESSION_COLUMNS = (
    "id, lineage_id, user_id, refresh_token_hash, issued_at, expires_at, "
    "rotated_at, replaced_by, revoked_at"
)

_TOKEN_TABLES = {
    TokenPurpose.EMAIL_VERIFICATION: "verification_tokens",
    TokenPurpose.PASSWORD_RESET: "password_reset_tokens",
}


def _uuid(value: Any) -> UUID | None:
    if value is None:
        return None
    return UUID(value) if isinstance(value, str) else value


def _row_to_user(row: dict) -> User:
    return User(
        id=_uuid(row["id"]),
        email=row["email"],
        password_hash=row["password_hash"],
        role=Role(row["role"]),
        email_verified_at=row["email_verified_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        last_login_at=row["last_login_at"],
    )


def _row_to_session(row: dict) -> SessionRecord:
    return SessionRecord(
        id=_uuid(row["id"]),
        lineage_id=_uuid(row["lineage_id"]),
        user_id=_uuid(row["user_id"]),
        refresh_token_hash=row["refresh_token_hash"],
        issued_at=row["issued_at"],
        expires_at=row["expires_at"],
        rotated_at=row["rotated_at"],
        replaced_by=_uuid(row["replaced_by"]),
        revoked_at=row["revoked_at"],
    )


class UserDatabase:
    """Credential store: sole owner of the users table."""

    # Columns a UserPatch may touch
    _PATCHABLE = ("password_hash", "role", "email_verified_at")

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def find_by_email(self, email: str) -> User | None:
        """Find user by email (case-insensitive)."""
        row = self._db.execute_single(
            f"SELECT {_USER_COLUMNS} FROM users WHERE email = %s",
            (normalize_email(email),),
        )
        return _row_to_user(row) if row else None

    def find_by_id(self, user_id: UUID) -> User | None:
        row = self._db.execute_single(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s",
            (user_id,),
        )
        return _row_to_user(row) if row else None

    def create(self, email: str, password_hash: str, role: Role = Role.USER) -> User:
        """Create new unverified user.

        ON CONFLICT DO NOTHING lets the unique constraint arbitrate
        concurrent registrations of the same email without a prior lookup.

        Raises:
            EmailAlreadyRegisteredError: email already taken.
        """
        rows = self._db.execute_returning(
            f"""INSERT INTO users (email, password_hash, role)
                VALUES (%s, %s, %s)
                ON CONFLICT (email) DO NOTHING
                RETURNING {_USER_COLUMNS}""",
            (normalize_email(email), password_hash, role.value),
        )
        if not rows:
            raise EmailAlreadyRegisteredError("Email is already registered")
        return _row_to_user(rows[0])

    def update(self, user_id: UUID, patch: UserPatch) -> User | None:
        """Apply a partial update. Returns None if the user doesn't exist."""
        changes = {k: v for k, v in patch.changes().items() if k in self._PATCHABLE}
        if not changes:
            return self.find_by_id(user_id)

        if "role" in changes and changes["role"] is not None:
            changes["role"] = Role(changes["role"]).value

        assignments = ", ".join(f"{column} = %({column})s" for column in changes)
        params = {**changes, "updated_at": now_utc(), "user_id": user_id}
        rows = self._db.execute_returning(
            f"""UPDATE users SET {assignments}, updated_at = %(updated_at)s
                WHERE id = %(user_id)s
                RETURNING {_USER_COLUMNS}""",
            params,
        )
        return _row_to_user(rows[0]) if rows else None

    def upsert_by_email(
        self,
        email: str,
        password_hash: str,
        role: Role,
        email_verified_at: datetime | None = None,
    ) -> User:
        """Insert or update keyed by the unique email.

        An existing verification timestamp is kept when none is given.
        """
        rows = self._db.execute_returning(
            f"""INSERT INTO users (email, password_hash, role, email_verified_at)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (email) DO UPDATE SET
                    password_hash = EXCLUDED.password_hash,
                    role = EXCLUDED.role,
                    email_verified_at = COALESCE(EXCLUDED.email_verified_at, users.email_verified_at),
                    updated_at = %s
                RETURNING {_USER_COLUMNS}""",
            (normalize_email(email), password_hash, role.value, email_verified_at, now_utc()),
        )
        return _row_to_user(rows[0])

    def touch_last_login(self, user_id: UUID, at: datetime) -> None:
        self._db.execute_returning(
            "UPDATE users SET last_login_at = %s WHERE id = %s RETURNING id",
            (at, user_id),
        )


class TokenDatabase:
    """Token store: owns verification_tokens and password_reset_tokens."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    @staticmethod
    def _table(purpose: TokenPurpose) -> str:
        return _TOKEN_TABLES[TokenPurpose(purpose)]

    def replace(self, record: TokenRecord) -> None:
        """Supersede the user's outstanding tokens and store the new one."""
        table = self._table(record.purpose)
        self._db.execute_returning(
            f"""WITH superseded AS (
                    DELETE FROM {table}
                    WHERE user_id = %s AND consumed_at IS NULL
                )
                INSERT INTO {table} (token_hash, user_id, created_at, expires_at)
                VALUES (%s, %s, %s, %s)
                RETURNING token_hash""",
            (
                record.user_id,
                record.token_hash,
                record.user_id,
                record.created_at,
                record.expires_at,
            ),
        )

    def consume(self, purpose: TokenPurpose, token_hash: str, now: datetime) -> UUID | None:
        """Compare-and-set on consumed_at. Under concurrency exactly one caller gets a row."""
        table = self._table(purpose)
        row = self._db.execute_single(
            f"""UPDATE {table}
                SET consumed_at = %s
                WHERE token_hash = %s
                  AND consumed_at IS NULL
                  AND expires_at > %s
                RETURNING user_id""",
            (now, token_hash, now),
        )
        return _uuid(row["user_id"]) if row else None

    def get(self, purpose: TokenPurpose, token_hash: str) -> TokenRecord | None:
        table = self._table(purpose)
        row = self._db.execute_single(
            f"""SELECT token_hash, user_id, created_at, expires_at, consumed_at
                FROM {table} WHERE token_hash = %s""",
            (token_hash,),
        )
        if row is None:
            return None
        return TokenRecord(
            token_hash=row["token_hash"],
            user_id=_uuid(row["user_id"]),
            purpose=purpose,
            created_at=row["created_at"],
            expires_at=row["expires_at"],
            consumed_at=row["consumed_at"],
        )

    def delete_expired(self, now: datetime) -> int:
        """Delete expired tokens of every purpose. Returns count deleted."""
        deleted = 0
        for table in _TOKEN_TABLES.values():
            rows = self._db.execute_returning(
                f"DELETE FROM {table} WHERE expires_at <= %s RETURNING token_hash",
                (now,),
            )
            deleted += len(rows)
        return deleted


class SessionDatabase:
    """Session store: sole owner of the sessions table."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def insert(self, record: SessionRecord) -> None:
        self._db.execute_returning(
            """INSERT INTO sessions
                   (id, lineage_id, user_id, refresh_token_hash, issued_at, expires_at)
               VALUES (%s, %s, %s, %s, %s, %s)
               RETURNING id""",
            (
                record.id,
                record.lineage_id,
                record.user_id,
                record.refresh_token_hash,
                record.issued_at,
                record.expires_at,
            ),
        )

    def rotate(self, token_hash: str, successor: SessionRecord, now: datetime) -> SessionRecord | None:
        """Retire the active row and insert its successor in one statement."""
        row = self._db.execute_single(
            f"""WITH rotated AS (
                    UPDATE sessions
                    SET rotated_at = %(now)s, replaced_by = %(new_id)s
                    WHERE refresh_token_hash = %(old_hash)s
                      AND rotated_at IS NULL
                      AND revoked_at IS NULL
                      AND expires_at > %(now)s
                    RETURNING lineage_id, user_id
                )
                INSERT INTO sessions
                    (id, lineage_id, user_id, refresh_token_hash, issued_at, expires_at)
                SELECT %(new_id)s, lineage_id, user_id, %(new_hash)s, %(issued_at)s, %(expires_at)s
                FROM rotated
                RETURNING {_SESSION_COLUMNS}""",
            {
                "now": now,
                "new_id": successor.id,
                "old_hash": token_hash,
                "new_hash": successor.refresh_token_hash,
                "issued_at": successor.issued_at,
                "expires_at": successor.expires_at,
            },
        )
        return _row_to_session(row) if row else None

    def get_by_token_hash(self, token_hash: str) -> SessionRecord | None:
        row = self._db.execute_single(
            f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE refresh_token_hash = %s",
            (token_hash,),
        )
        return _row_to_session(row) if row else None

    def revoke(self, session_id: UUID, now: datetime) -> bool:
        rows = self._db.execute_returning(
            """UPDATE sessions SET revoked_at = %s
               WHERE id = %s AND revoked_at IS NULL
               RETURNING id""",
            (now, session_id),
        )
        return len(rows) > 0

    def revoke_lineage(self, lineage_id: UUID, now: datetime) -> list[UUID]:
        rows = self._db.execute_returning(
            """UPDATE sessions SET revoked_at = %s
               WHERE lineage_id = %s AND revoked_at IS NULL
               RETURNING id""",
            (now, lineage_id),
        )
        return [_uuid(row["id"]) for row in rows]

    def revoke_all_for_user(self, user_id: UUID, now: datetime) -> list[UUID]:
        """Revoke every live row for the user. Returns the affected lineage ids."""
        rows = self._db.execute_returning(
            """UPDATE sessions SET revoked_at = %s
               WHERE user_id = %s AND revoked_at IS NULL
               RETURNING lineage_id""",
            (now, user_id),
        )
        return list(dict.fromkeys(_uuid(row["lineage_id"]) for row in rows))

    def list_active_for_user(self, user_id: UUID, now: datetime) -> list[SessionRecord]:
        rows = self._db.execute(
            f"""SELECT {_SESSION_COLUMNS} FROM sessions
                WHERE user_id = %s
                  AND revoked_at IS NULL
                  AND rotated_at IS NULL
                  AND expires_at > %s
                ORDER BY issued_at DESC""",
            (user_id, now),
        )
        return [_row_to_session(row) for row in rows]

    def revoke_expired(self, now: datetime) -> int:
        rows = self._db.execute_returning(
            """UPDATE sessions SET revoked_at = %s
               WHERE revoked_at IS NULL AND expires_at <= %s
               RETURNING id""",
            (now, now),
        )
        return len(rows)


class LoginAttemptDatabase:
    """Login attempt store: append-only login_attempts table."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def append(self, attempt: LoginAttempt) -> None:
        self._db.execute_returning(
            """INSERT INTO login_attempts (identity, outcome, attempted_at, ip_address, user_agent)
               VALUES (%s, %s, %s, %s, %s)
               RETURNING id""",
            (
                attempt.identity,
                attempt.outcome.value,
                attempt.attempted_at,
                attempt.ip_address,
                attempt.user_agent,
            ),
        )

    def failures_since(self, identity: str, since: datetime) -> list[datetime]:
        rows = self._db.execute(
            """SELECT attempted_at FROM login_attempts
               WHERE identity = %s AND outcome = 'failure' AND attempted_at > %s
               ORDER BY attempted_at DESC""",
            (identity, since),
        )
        return [row["attempted_at"] for row in rows]

    def prune(self, before: datetime) -> int:
        rows = self._db.execute_returning(
            "DELETE FROM login_attempts WHERE attempted_at < %s RETURNING id",
            (before,),
        )
        return len(rows)
