"""Tests for PasswordHasher - argon2id hashing and verification."""

from unittest.mock import patch

import argon2
import pytest
from argon2.exceptions import HashingError

from auth.config import PasswordHashConfig
from auth.exceptions import HashingFailureError
from auth.passwords import PasswordHasher


class TestHashAndVerify:
    """Round trip and rejection behavior."""

    def test_hash_then_verify_round_trip(self, hasher):
        """A password verifies against its own hash."""
        stored = hasher.hash("Str0ng!Pass")
        assert hasher.verify("Str0ng!Pass", stored) is True

    def test_wrong_password_is_rejected(self, hasher):
        stored = hasher.hash("Str0ng!Pass")
        assert hasher.verify("Str0ng!Pasz", stored) is False

    def test_hash_is_argon2id_phc_string(self, hasher):
        """Parameters travel with the hash."""
        stored = hasher.hash("Str0ng!Pass")
        assert stored.startswith("$argon2id$")
        assert "m=1024,t=1,p=1" in stored

    def test_same_password_hashes_differently(self, hasher):
        """Fresh salt per hash."""
        assert hasher.hash("Str0ng!Pass") != hasher.hash("Str0ng!Pass")

    def test_malformed_hash_returns_false(self, hasher):
        """Malformed stored value is a plain mismatch, not an exception."""
        assert hasher.verify("Str0ng!Pass", "not-a-hash") is False

    def test_empty_inputs_return_false(self, hasher):
        stored = hasher.hash("Str0ng!Pass")
        assert hasher.verify("", stored) is False
        assert hasher.verify("Str0ng!Pass", "") is False

    def test_burn_does_not_raise(self, hasher):
        """Dummy verification for unknown accounts."""
        hasher.burn("whatever")
        hasher.burn("")


class TestRehash:
    """Parameter upgrades."""

    def test_current_parameters_need_no_rehash(self, hasher):
        assert hasher.needs_rehash(hasher.hash("Str0ng!Pass")) is False

    def test_changed_parameters_need_rehash(self, hasher):
        """Hash made with weaker settings is flagged but still verifies."""
        stronger = PasswordHasher(PasswordHashConfig(time_cost=2, memory_cost=2048, parallelism=1))
        old_hash = hasher.hash("Str0ng!Pass")

        assert stronger.needs_rehash(old_hash) is True
        assert stronger.verify("Str0ng!Pass", old_hash) is True

    def test_malformed_hash_needs_rehash(self, hasher):
        assert hasher.needs_rehash("garbage") is True


class TestHashingFailure:
    """Resource exhaustion surfaces as HashingFailureError."""

    def test_argon2_error_becomes_hashing_failure(self, hasher):
        with patch.object(argon2.PasswordHasher, "hash", side_effect=HashingError("out of memory")):
            with pytest.raises(HashingFailureError):
                hasher.hash("Str0ng!Pass")

    def test_memory_error_becomes_hashing_failure(self, hasher):
        with patch.object(argon2.PasswordHasher, "hash", side_effect=MemoryError()):
            with pytest.raises(HashingFailureError):
                hasher.hash("Str0ng!Pass")
