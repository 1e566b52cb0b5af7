"""Tests for TokenIssuer - single-use, purpose-bound, expiring tokens."""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from uuid import uuid4

import pytest

from auth.exceptions import TokenAlreadyUsedError, TokenExpiredError, TokenInvalidError
from auth.tokens import TokenIssuer, generate_token, hash_token
from auth.types import TokenPurpose

TTL = timedelta(minutes=30)


@pytest.fixture
def issuer(token_store, clock):
    return TokenIssuer(token_store, clock=clock)


class TestTokenHelpers:
    def test_generated_tokens_are_unique_and_long(self):
        tokens = {generate_token() for _ in range(50)}
        assert len(tokens) == 50
        assert all(len(t) >= 43 for t in tokens)

    def test_hash_is_sha256_hex(self):
        digest = hash_token("abc")
        assert digest == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


class TestIssueAndConsume:
    """Round trip and failure kinds."""

    def test_consume_returns_user(self, issuer):
        user_id = uuid4()
        raw = issuer.issue(user_id, TokenPurpose.EMAIL_VERIFICATION, TTL)
        assert issuer.consume(raw, TokenPurpose.EMAIL_VERIFICATION) == user_id

    def test_raw_token_is_not_stored(self, issuer, token_store):
        """Only the digest is persisted."""
        user_id = uuid4()
        raw = issuer.issue(user_id, TokenPurpose.PASSWORD_RESET, TTL)

        assert token_store.get(TokenPurpose.PASSWORD_RESET, raw) is None
        record = token_store.get(TokenPurpose.PASSWORD_RESET, hash_token(raw))
        assert record is not None
        assert record.user_id == user_id

    def test_second_consume_is_already_used(self, issuer):
        raw = issuer.issue(uuid4(), TokenPurpose.EMAIL_VERIFICATION, TTL)
        issuer.consume(raw, TokenPurpose.EMAIL_VERIFICATION)

        with pytest.raises(TokenAlreadyUsedError):
            issuer.consume(raw, TokenPurpose.EMAIL_VERIFICATION)

    def test_unknown_token_is_invalid(self, issuer):
        with pytest.raises(TokenInvalidError):
            issuer.consume(generate_token(), TokenPurpose.EMAIL_VERIFICATION)

    def test_wrong_purpose_is_invalid(self, issuer):
        """A verification token can't reset a password."""
        raw = issuer.issue(uuid4(), TokenPurpose.EMAIL_VERIFICATION, TTL)

        with pytest.raises(TokenInvalidError):
            issuer.consume(raw, TokenPurpose.PASSWORD_RESET)

        # Still usable for its own purpose
        issuer.consume(raw, TokenPurpose.EMAIL_VERIFICATION)

    def test_expired_token(self, issuer, clock):
        raw = issuer.issue(uuid4(), TokenPurpose.PASSWORD_RESET, TTL)
        clock.advance(minutes=31)

        with pytest.raises(TokenExpiredError):
            issuer.consume(raw, TokenPurpose.PASSWORD_RESET)

    def test_token_valid_just_before_expiry(self, issuer, clock):
        user_id = uuid4()
        raw = issuer.issue(user_id, TokenPurpose.PASSWORD_RESET, TTL)
        clock.advance(minutes=29, seconds=59)

        assert issuer.consume(raw, TokenPurpose.PASSWORD_RESET) == user_id

    def test_token_expires_exactly_at_expiry(self, issuer, clock):
        raw = issuer.issue(uuid4(), TokenPurpose.PASSWORD_RESET, TTL)
        clock.advance(minutes=30)

        with pytest.raises(TokenExpiredError):
            issuer.consume(raw, TokenPurpose.PASSWORD_RESET)

    def test_new_token_supersedes_outstanding_one(self, issuer):
        """Only the latest link per purpose works."""
        user_id = uuid4()
        first = issuer.issue(user_id, TokenPurpose.PASSWORD_RESET, TTL)
        second = issuer.issue(user_id, TokenPurpose.PASSWORD_RESET, TTL)

        with pytest.raises(TokenInvalidError):
            issuer.consume(first, TokenPurpose.PASSWORD_RESET)
        assert issuer.consume(second, TokenPurpose.PASSWORD_RESET) == user_id

    def test_superseding_is_per_purpose(self, issuer):
        user_id = uuid4()
        verify = issuer.issue(user_id, TokenPurpose.EMAIL_VERIFICATION, TTL)
        issuer.issue(user_id, TokenPurpose.PASSWORD_RESET, TTL)

        assert issuer.consume(verify, TokenPurpose.EMAIL_VERIFICATION) == user_id


class TestConcurrentConsume:
    """Exactly one of N concurrent consumers wins."""

    def test_exactly_once_under_contention(self, issuer):
        user_id = uuid4()
        raw = issuer.issue(user_id, TokenPurpose.PASSWORD_RESET, TTL)

        def attempt(_):
            try:
                return issuer.consume(raw, TokenPurpose.PASSWORD_RESET)
            except TokenAlreadyUsedError:
                return None

        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(attempt, range(32)))

        winners = [r for r in results if r is not None]
        assert winners == [user_id]


class TestSweep:
    def test_sweep_deletes_only_expired(self, issuer, clock, token_store):
        user_a, user_b = uuid4(), uuid4()
        old = issuer.issue(user_a, TokenPurpose.PASSWORD_RESET, timedelta(minutes=5))
        fresh = issuer.issue(user_b, TokenPurpose.PASSWORD_RESET, timedelta(hours=1))
        clock.advance(minutes=10)

        assert issuer.sweep_expired() == 1
        assert token_store.get(TokenPurpose.PASSWORD_RESET, hash_token(old)) is None
        assert token_store.get(TokenPurpose.PASSWORD_RESET, hash_token(fresh)) is not None
