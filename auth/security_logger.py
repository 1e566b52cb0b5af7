"""Security event logging for auth audit trail.

Append-only log to security_events table (no RLS). Rows older than a
retention horizon are archived to JSON-lines files and then deleted.
"""

import json
import logging
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import UUID

from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class SecurityEvent(Enum):
    """Auth security event types."""

    USER_REGISTERED = "user_registered"
    REGISTRATION_REJECTED = "registration_rejected"
    LOGIN_SUCCEEDED = "login_succeeded"
    LOGIN_FAILED = "login_failed"
    LOGIN_LOCKED = "login_locked"
    LOGIN_UNVERIFIED = "login_unverified"
    PASSWORD_REHASHED = "password_rehashed"
    EMAIL_VERIFICATION_SENT = "email_verification_sent"
    EMAIL_VERIFIED = "email_verified"
    EMAIL_VERIFICATION_FAILED = "email_verification_failed"
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_RESET_COMPLETED = "password_reset_completed"
    PASSWORD_RESET_FAILED = "password_reset_failed"
    SESSION_CREATED = "session_created"
    SESSION_ROTATED = "session_rotated"
    SESSION_REFRESH_FAILED = "session_refresh_failed"
    SESSION_REUSE_DETECTED = "session_reuse_detected"
    SESSION_REVOKED = "session_revoked"
    ALL_SESSIONS_REVOKED = "all_sessions_revoked"
    RATE_LIMITED = "rate_limited"
    EMAIL_DELIVERY_FAILED = "email_delivery_failed"


def _archive_record(row: dict) -> dict:
    """JSON-safe form of a security_events row."""
    return {
        "id": str(row["id"]),
        "event_type": row["event_type"],
        "email": row["email"],
        "user_id": str(row["user_id"]) if row["user_id"] else None,
        "ip_address": str(row["ip_address"]) if row["ip_address"] else None,
        "user_agent": row["user_agent"],
        "details": row["details"],
        "created_at": row["created_at"].isoformat(),
    }


class SecurityLogger:
    """Append-only security event logger with archival."""

    _COLUMNS = "id, event_type, email, user_id, ip_address, user_agent, details, created_at"

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def log(
        self,
        event: SecurityEvent,
        email: str | None = None,
        user_id: UUID | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Append one event. Never pass raw tokens or passwords in details."""
        self._db.execute_returning(
            """INSERT INTO security_events
               (event_type, email, user_id, ip_address, user_agent, details, created_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s)
               RETURNING id""",
            (
                event.value,
                email,
                str(user_id) if user_id else None,
                ip_address,
                user_agent,
                Json(details) if details else None,
                now_utc(),
            ),
        )

    def get_recent_events(
        self,
        email: str | None = None,
        user_id: UUID | None = None,
        event_type: SecurityEvent | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[dict]:
        """Newest-first events matching every filter given."""
        filters = {
            "email = %s": email,
            "user_id = %s": str(user_id) if user_id else None,
            "event_type = %s": event_type.value if event_type else None,
            "created_at >= %s": since,
        }
        conditions = [clause for clause, value in filters.items() if value is not None]
        params = [value for value in filters.values() if value is not None]

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        return self._db.execute(
            f"""SELECT {self._COLUMNS}
                FROM security_events
                WHERE {where_clause}
                ORDER BY created_at DESC
                LIMIT %s""",
            (*params, limit),
        )

    def rotate_logs(self, older_than_days: int, output_path: Path) -> int:
        """Archive old events to a JSON-lines file, then delete them.

        Only the rows actually written are deleted, so events arriving
        between the read and the delete are never lost.

        Returns:
            Number of events archived and deleted
        """
        cutoff = now_utc() - timedelta(days=older_than_days)
        rows = self._db.execute(
            f"""SELECT {self._COLUMNS}
                FROM security_events
                WHERE created_at < %s
                ORDER BY created_at ASC""",
            (cutoff,),
        )
        if not rows:
            return 0

        with Path(output_path).open("a") as archive:
            for row in rows:
                archive.write(json.dumps(_archive_record(row)) + "\n")

        self._db.execute_returning(
            "DELETE FROM security_events WHERE id = ANY(%s) RETURNING id",
            ([row["id"] for row in rows],),
        )

        logger.info(f"Archived {len(rows)} security events to {output_path}")
        return len(rows)
