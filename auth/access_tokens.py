"""Short-lived bearer access tokens.

Stored in Valkey with a TTL matching token expiry, keyed by the token's
SHA-256 digest. Each lineage keeps a set of its token digests so revoking a
lineage (logout, reuse detection, password reset) kills its access tokens
immediately instead of waiting out the TTL.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable
from uuid import UUID

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig
from auth.exceptions import SessionExpiredError
from auth.tokens import generate_token, hash_token
from auth.types import AccessGrant, Role
from utils.timezone import now_utc, parse_iso

logger = logging.getLogger(__name__)


class AccessTokenManager:
    """Issues, validates and revokes access tokens."""

    KEY_PREFIX = "access:"
    LINEAGE_PREFIX = "access_lineage:"

    def __init__(
        self,
        valkey: ValkeyClient,
        config: AuthConfig,
        clock: Callable[[], datetime] = now_utc,
    ):
        self._valkey = valkey
        self._clock = clock
        self._ttl_seconds = config.access_token_expiry_minutes * 60

    def _key(self, token_hash: str) -> str:
        return f"{self.KEY_PREFIX}{token_hash}"

    def _lineage_key(self, lineage_id: UUID) -> str:
        return f"{self.LINEAGE_PREFIX}{lineage_id}"

    def issue(self, user_id: UUID, session_id: UUID, lineage_id: UUID, role: Role) -> tuple[str, datetime]:
        """Create an access token for a session. Returns (raw token, expires_at)."""
        raw = generate_token()
        token_hash = hash_token(raw)
        expires_at = self._clock() + timedelta(seconds=self._ttl_seconds)

        self._valkey.set_json(
            self._key(token_hash),
            {
                "user_id": str(user_id),
                "session_id": str(session_id),
                "lineage_id": str(lineage_id),
                "role": Role(role).value,
                "expires_at": expires_at.isoformat(),
            },
            expire_seconds=self._ttl_seconds,
        )
        lineage_key = self._lineage_key(lineage_id)
        self._valkey.sadd(lineage_key, token_hash)
        self._valkey.expire(lineage_key, self._ttl_seconds)

        return raw, expires_at

    def validate(self, raw_token: str) -> AccessGrant:
        """Resolve an access token.

        Raises:
            SessionExpiredError: token unknown, revoked or expired.
        """
        key = self._key(hash_token(raw_token))
        data = self._valkey.get_json(key)
        if data is None:
            raise SessionExpiredError("Access token not found or expired")

        grant = AccessGrant(
            user_id=UUID(data["user_id"]),
            session_id=UUID(data["session_id"]),
            lineage_id=UUID(data["lineage_id"]),
            role=Role(data["role"]),
            expires_at=parse_iso(data["expires_at"]),
        )

        # Belt and suspenders - Valkey TTL should handle this
        if self._clock() >= grant.expires_at:
            self._valkey.delete(key)
            raise SessionExpiredError("Access token expired")

        return grant

    def revoke_lineages(self, lineage_ids: Iterable[UUID]) -> int:
        """Delete every access token issued to the given lineages. Returns count deleted."""
        deleted = 0
        for lineage_id in lineage_ids:
            lineage_key = self._lineage_key(lineage_id)
            hashes = self._valkey.smembers(lineage_key)
            if hashes:
                deleted += self._valkey.delete(*(self._key(h) for h in hashes))
            self._valkey.delete(lineage_key)
        if deleted:
            logger.info(f"Revoked {deleted} access tokens")
        return deleted
