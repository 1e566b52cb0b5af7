"""Throttling for outbound account emails (password reset, verification resend).

Uses Valkey with sliding window TTL - each attempt resets the expiry, so
hammering an address extends its lockout. The counter is keyed by the
requested address and incremented before any account lookup, so being
throttled says nothing about whether the account exists.
"""

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig
from auth.exceptions import RateLimitedError
from auth.types import normalize_email


class RateLimiter:
    """Per-address email throttle using Valkey."""

    KEY_PREFIX = "ratelimit:email:"

    def __init__(self, valkey: ValkeyClient, config: AuthConfig):
        self._valkey = valkey
        self._max_attempts = config.email_rate_limit_attempts
        self._window_seconds = config.email_rate_limit_window_minutes * 60

    def _key(self, action: str, email: str) -> str:
        """Rate limit key for action + normalized email."""
        return f"{self.KEY_PREFIX}{action}:{normalize_email(email)}"

    def check_rate_limit(self, action: str, email: str) -> None:
        """Count this request and raise if over the limit.

        Raises:
            RateLimitedError: If rate limit exceeded.
        """
        key = self._key(action, email)

        count = self._valkey.incr(key)

        # Reset TTL on every attempt (sliding window)
        self._valkey.expire(key, self._window_seconds)

        if count > self._max_attempts:
            ttl = self._valkey.ttl(key)
            raise RateLimitedError(retry_after_seconds=max(ttl, 1))

    def reset_rate_limit(self, action: str, email: str) -> None:
        """Clear the counter, e.g. once the emailed token has been used."""
        self._valkey.delete(self._key(action, email))
