"""Refresh-token session lifecycle.

A lineage is the chain of sessions produced by repeated rotation from one
login. Each link is a row in the session store:

    Active --rotate--> RotatedOut   (successor Active row inserted, same lineage)
    Active --revoke--> Revoked      (logout, password reset, theft, expiry sweep)

Presenting a rotated-out token again means two parties hold the lineage,
so the whole lineage is revoked before the error is raised.

Raw refresh tokens are secrets.token_urlsafe(32); only SHA-256 digests are
stored.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID, uuid4

from auth.config import AuthConfig
from auth.exceptions import SessionExpiredError, SessionInvalidError, SessionReuseDetectedError
from auth.stores import SessionStore
from auth.tokens import generate_token, hash_token
from auth.types import IssuedSession, SessionRecord, SessionState
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class SessionManager:
    """Creates, rotates and revokes refresh-token sessions."""

    def __init__(
        self,
        store: SessionStore,
        config: AuthConfig,
        clock: Callable[[], datetime] = now_utc,
    ):
        self._store = store
        self._clock = clock
        self._lifetime = timedelta(days=config.refresh_token_expiry_days)

    def _new_record(self, user_id: UUID, lineage_id: UUID, raw_token: str, now: datetime) -> SessionRecord:
        return SessionRecord(
            id=uuid4(),
            lineage_id=lineage_id,
            user_id=user_id,
            refresh_token_hash=hash_token(raw_token),
            issued_at=now,
            expires_at=now + self._lifetime,
        )

    @staticmethod
    def _issued(record: SessionRecord, raw_token: str) -> IssuedSession:
        return IssuedSession(
            session_id=record.id,
            lineage_id=record.lineage_id,
            user_id=record.user_id,
            refresh_token=raw_token,
            issued_at=record.issued_at,
            expires_at=record.expires_at,
        )

    def create(self, user_id: UUID) -> IssuedSession:
        """Start a new lineage. The raw refresh token is only ever returned here."""
        raw = generate_token()
        record = self._new_record(user_id, uuid4(), raw, self._clock())
        self._store.insert(record)
        logger.info(f"Session {record.id} created for user {user_id}")
        return self._issued(record, raw)

    def rotate(self, raw_refresh_token: str) -> IssuedSession:
        """Exchange a refresh token for a new one in the same lineage.

        Raises:
            SessionInvalidError: token unknown, or its session was revoked.
            SessionReuseDetectedError: token was already rotated out; the
                lineage is now revoked.
            SessionExpiredError: session lifetime elapsed.
        """
        old_hash = hash_token(raw_refresh_token)
        now = self._clock()
        raw = generate_token()
        # lineage_id/user_id are placeholders; the store copies them from the rotated row
        successor = self._new_record(UUID(int=0), UUID(int=0), raw, now)

        stored = self._store.rotate(old_hash, successor, now)
        if stored is not None:
            logger.info(f"Session rotated to {stored.id} in lineage {stored.lineage_id}")
            return self._issued(stored, raw)

        current = self._store.get_by_token_hash(old_hash)
        state = current.state_at(now) if current else None

        if state is None or state == SessionState.REVOKED:
            logger.info("Refresh rejected: unknown or revoked session")
            raise SessionInvalidError("Session is not valid")

        if state == SessionState.ROTATED_OUT:
            revoked = self._store.revoke_lineage(current.lineage_id, now)
            logger.warning(
                f"Refresh token reuse detected for user {current.user_id}; "
                f"revoked lineage {current.lineage_id} ({len(revoked)} sessions)"
            )
            raise SessionReuseDetectedError(current.lineage_id, revoked)

        if state == SessionState.EXPIRED:
            logger.info(f"Refresh rejected: session {current.id} expired")
            raise SessionExpiredError("Session has expired")

        # Active now but the conditional update missed: a concurrent
        # transition happened in between.
        logger.warning(f"Refresh rejected: session {current.id} changed during rotation")
        raise SessionInvalidError("Session is not valid")

    def find(self, raw_refresh_token: str) -> SessionRecord | None:
        return self._store.get_by_token_hash(hash_token(raw_refresh_token))

    def is_revoked(self, raw_refresh_token: str) -> bool:
        """True if the token's session is gone or revoked. Rotation doesn't count."""
        record = self.find(raw_refresh_token)
        return record is None or record.revoked_at is not None

    def revoke(self, session_id: UUID) -> bool:
        """Revoke one session row. Safe to call on an already revoked session."""
        return self._store.revoke(session_id, self._clock())

    def revoke_lineage(self, lineage_id: UUID) -> list[UUID]:
        return self._store.revoke_lineage(lineage_id, self._clock())

    def revoke_by_token(self, raw_refresh_token: str) -> UUID | None:
        """Logout: revoke the lineage the token belongs to.

        Returns the lineage id, or None for an unknown token.
        """
        record = self.find(raw_refresh_token)
        if record is None:
            return None
        self.revoke_lineage(record.lineage_id)
        logger.info(f"Lineage {record.lineage_id} revoked by logout")
        return record.lineage_id

    def revoke_all_for_user(self, user_id: UUID) -> list[UUID]:
        """Revoke every session for the user. Returns the affected lineage ids."""
        lineages = self._store.revoke_all_for_user(user_id, self._clock())
        logger.info(f"Revoked {len(lineages)} session lineages for user {user_id}")
        return lineages

    def list_active(self, user_id: UUID) -> list[SessionRecord]:
        return self._store.list_active_for_user(user_id, self._clock())

    def sweep_expired(self) -> int:
        """Revoke sessions past their expiry. Returns count revoked."""
        return self._store.revoke_expired(self._clock())
