"""Single-use tokens for email verification and password reset.

Raw tokens are secrets.token_urlsafe(32) - 256 bits from the OS CSPRNG.
Only their SHA-256 digest is stored; the raw value is returned once and
otherwise only travels inside the emailed link. A plain digest (no salt,
no stretching) is enough because the input is already high-entropy.
"""

import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID

from auth.exceptions import TokenAlreadyUsedError, TokenExpiredError, TokenInvalidError
from auth.stores import TokenStore
from auth.types import TokenPurpose, TokenRecord
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


def hash_token(raw_token: str) -> str:
    """Lookup form of a raw token."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def generate_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


class TokenIssuer:
    """Issues and consumes purpose-bound, expiring, single-use tokens."""

    def __init__(self, store: TokenStore, clock: Callable[[], datetime] = now_utc):
        self._store = store
        self._clock = clock

    def issue(self, user_id: UUID, purpose: TokenPurpose, ttl: timedelta) -> str:
        """Create a token and return its raw value.

        Any unconsumed token of the same purpose for this user stops working,
        so at most one link per purpose is live at a time.
        """
        raw = generate_token()
        now = self._clock()
        self._store.replace(TokenRecord(
            token_hash=hash_token(raw),
            user_id=user_id,
            purpose=purpose,
            created_at=now,
            expires_at=now + ttl,
        ))
        logger.info(f"Issued {purpose.value} token for user {user_id}")
        return raw

    def consume(self, raw_token: str, purpose: TokenPurpose) -> UUID:
        """Consume a token, returning the user it was issued to.

        The store performs the consume as one conditional update. Only when
        that fails do we read the record, and only to pick the error.

        Raises:
            TokenInvalidError: unknown, superseded, or issued for another purpose.
            TokenAlreadyUsedError: consumed before (including by a concurrent caller).
            TokenExpiredError: past its expiry.
        """
        token_hash = hash_token(raw_token)
        now = self._clock()

        user_id = self._store.consume(purpose, token_hash, now)
        if user_id is not None:
            return user_id

        record = self._store.get(purpose, token_hash)
        if record is None:
            logger.info(f"Rejected {purpose.value} token: unknown")
            raise TokenInvalidError("Invalid token")
        if record.consumed_at is not None:
            logger.info(f"Rejected {purpose.value} token: already used")
            raise TokenAlreadyUsedError("Token has already been used")
        if record.expires_at <= now:
            logger.info(f"Rejected {purpose.value} token: expired")
            raise TokenExpiredError("Token has expired")

        # Store refused yet the record looks usable: it changed in between.
        # Treat as invalid rather than guess.
        logger.warning(f"Rejected {purpose.value} token: state changed during consume")
        raise TokenInvalidError("Invalid token")

    def sweep_expired(self) -> int:
        """Delete expired tokens. Returns count deleted."""
        return self._store.delete_expired(self._clock())
