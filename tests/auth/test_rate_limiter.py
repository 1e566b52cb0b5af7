"""Tests for RateLimiter - outbound email throttling."""

import pytest

from auth.rate_limiter import RateLimiter
from auth.exceptions import RateLimitedError


@pytest.fixture
def rate_limiter(valkey, config):
    """RateLimiter with default config: 3 per 15 minutes."""
    return RateLimiter(valkey, config)


class TestCheckRateLimit:
    """Test rate limit checking and incrementing."""

    def test_within_limit_passes(self, rate_limiter, config):
        """Attempts within limit pass."""
        for _ in range(config.email_rate_limit_attempts):
            rate_limiter.check_rate_limit("password_reset", "allowed@example.com")

    def test_exceeds_limit_raises(self, rate_limiter, config):
        """Exceeding limit raises RateLimitedError with a retry hint."""
        for _ in range(config.email_rate_limit_attempts):
            rate_limiter.check_rate_limit("password_reset", "blocked@example.com")

        with pytest.raises(RateLimitedError) as exc_info:
            rate_limiter.check_rate_limit("password_reset", "blocked@example.com")

        assert exc_info.value.retry_after_seconds == config.email_rate_limit_window_minutes * 60

    def test_different_emails_tracked_separately(self, rate_limiter, config):
        for _ in range(config.email_rate_limit_attempts):
            rate_limiter.check_rate_limit("password_reset", "user1@example.com")

        rate_limiter.check_rate_limit("password_reset", "user2@example.com")

    def test_actions_tracked_separately(self, rate_limiter, config):
        """Resetting a password doesn't use up the verification allowance."""
        for _ in range(config.email_rate_limit_attempts):
            rate_limiter.check_rate_limit("password_reset", "both@example.com")

        rate_limiter.check_rate_limit("verification", "both@example.com")

    def test_emails_normalized(self, rate_limiter, config):
        """Email lookups are case-insensitive."""
        for _ in range(config.email_rate_limit_attempts):
            rate_limiter.check_rate_limit("password_reset", "CASE@example.com")

        with pytest.raises(RateLimitedError):
            rate_limiter.check_rate_limit("password_reset", "case@EXAMPLE.com")


class TestSlidingWindow:
    """Every attempt restarts the window."""

    def test_ttl_reset_on_each_attempt(self, rate_limiter, valkey, config):
        rate_limiter.check_rate_limit("verification", "slide@example.com")
        key = f"{RateLimiter.KEY_PREFIX}verification:slide@example.com"
        valkey.expire(key, 5)

        rate_limiter.check_rate_limit("verification", "slide@example.com")

        assert valkey.ttl(key) == config.email_rate_limit_window_minutes * 60


class TestReset:
    def test_reset_clears_counter(self, rate_limiter, config):
        for _ in range(config.email_rate_limit_attempts):
            rate_limiter.check_rate_limit("password_reset", "reset@example.com")

        rate_limiter.reset_rate_limit("password_reset", "reset@example.com")

        rate_limiter.check_rate_limit("password_reset", "reset@example.com")
