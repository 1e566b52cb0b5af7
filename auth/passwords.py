"""Argon2id password hashing.

Stored hashes are PHC strings ($argon2id$v=19$m=...,t=...,p=...$salt$digest),
so the cost parameters travel with each hash and verification never depends
on the current configuration.
"""

import logging
import secrets

from argon2 import PasswordHasher as Argon2Hasher, Type
from argon2.exceptions import HashingError, InvalidHashError, VerificationError, VerifyMismatchError

from auth.config import PasswordHashConfig
from auth.exceptions import HashingFailureError

logger = logging.getLogger(__name__)


class PasswordHasher:
    """One-way salted hashing and constant-time verification of passwords."""

    def __init__(self, config: PasswordHashConfig):
        self._config = config
        self._hasher = Argon2Hasher(
            time_cost=config.time_cost,
            memory_cost=config.memory_cost,
            parallelism=config.parallelism,
            hash_len=config.hash_len,
            salt_len=config.salt_len,
            type=Type.ID,
        )
        # Verified against when the account doesn't exist, so unknown
        # emails cost the same as wrong passwords.
        self._dummy_hash = self.hash(secrets.token_urlsafe(16))

    def hash(self, plaintext: str) -> str:
        """Hash a password for storage.

        Raises:
            HashingFailureError: argon2 could not allocate memory or entropy.
        """
        try:
            return self._hasher.hash(plaintext)
        except (HashingError, MemoryError) as e:
            logger.error(f"Password hashing failed: {e}")
            raise HashingFailureError("Password hashing failed") from e

    def verify(self, plaintext: str, stored_hash: str) -> bool:
        """True iff plaintext matches stored_hash.

        Mismatch, malformed hash and empty input all return False; callers
        can't tell them apart. argon2 compares digests in constant time.
        """
        if not plaintext or not stored_hash:
            return False
        try:
            return self._hasher.verify(stored_hash, plaintext)
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            return False

    def needs_rehash(self, stored_hash: str) -> bool:
        """True if stored_hash was made with parameters other than the current ones."""
        try:
            return self._hasher.check_needs_rehash(stored_hash)
        except (InvalidHashError, ValueError):
            return True

    def burn(self, plaintext: str) -> None:
        """Spend one verification's worth of time against a throwaway hash."""
        self.verify(plaintext or "-", self._dummy_hash)
