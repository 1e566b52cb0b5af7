"""Login attempt tracking and lockout.

Lockout is per identity (normalized email), not per IP, so rotating
addresses doesn't reset it. Addresses are still recorded for forensics.

History is never cleared on success: the lock is a pure function of the
failures inside the trailing window, so it always lifts exactly when enough
of them age out, whatever order attempts arrived in.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable

from auth.config import AuthConfig
from auth.stores import LoginAttemptStore
from auth.types import LoginAttempt, LoginOutcome, normalize_email
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class LoginAttemptTracker:
    """Append-only attempt log plus the lockout decision derived from it."""

    def __init__(
        self,
        store: LoginAttemptStore,
        config: AuthConfig,
        clock: Callable[[], datetime] = now_utc,
    ):
        self._store = store
        self._clock = clock
        self._threshold = config.lockout_threshold
        self._window = timedelta(minutes=config.lockout_window_minutes)
        self._retention = timedelta(days=config.login_attempt_retention_days)

    def record(
        self,
        identity: str,
        outcome: LoginOutcome,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """Append one attempt. Store failures propagate - the write must be durable."""
        self._store.append(LoginAttempt(
            identity=normalize_email(identity),
            outcome=outcome,
            attempted_at=self._clock(),
            ip_address=ip_address,
            user_agent=user_agent,
        ))

    def _recent_failures(self, identity: str, now: datetime) -> list[datetime]:
        return self._store.failures_since(normalize_email(identity), now - self._window)

    def is_locked(self, identity: str) -> bool:
        """Locked iff failures in the trailing window reach the threshold."""
        return self.locked_until(identity) is not None

    def locked_until(self, identity: str) -> datetime | None:
        """When the current lock lifts, or None if not locked.

        The lock lifts once fewer than threshold failures remain in the
        window, i.e. when the threshold-th most recent failure ages out.
        """
        now = self._clock()
        failures = self._recent_failures(identity, now)
        if len(failures) < self._threshold:
            return None
        until = failures[self._threshold - 1] + self._window
        logger.info(
            f"Identity locked: {len(failures)} failures in window, until {until.isoformat()}"
        )
        return until

    def prune(self) -> int:
        """Delete attempts older than the retention horizon. Returns count deleted."""
        return self._store.prune(self._clock() - self._retention)
