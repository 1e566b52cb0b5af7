"""Authentication service - orchestrates registration, login and credential lifecycle."""

import logging
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID

from auth.access_tokens import AccessTokenManager
from auth.config import AuthConfig
from auth.exceptions import (
    AccountLockedError,
    EmailAlreadyRegisteredError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    RateLimitedError,
    SessionError,
    SessionInvalidError,
    SessionReuseDetectedError,
    TokenError,
    TokenInvalidError,
    UserNotFoundError,
)
from auth.login_attempts import LoginAttemptTracker
from auth.passwords import PasswordHasher
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.session import SessionManager
from auth.stores import CredentialStore
from auth.tokens import TokenIssuer
from auth.types import (
    AccessGrant,
    AuthenticatedUser,
    IssuedSession,
    LoginOutcome,
    RegistrationResult,
    TokenPurpose,
    User,
    UserPatch,
    normalize_email,
)
from clients.email_client import EmailGatewayClient, EmailGatewayError
from utils.timezone import now_utc, seconds_until

logger = logging.getLogger(__name__)


class AuthService:
    """Orchestrates the account lifecycle.

    Handles:
    - Registration (with email verification)
    - Login (with per-identity lockout and enumeration-safe failures)
    - Refresh-token rotation with reuse detection
    - Password reset (enumeration-safe request, revoke-everywhere on completion)
    - Logout

    Collapsed failures, on purpose:
    - Unknown email and wrong password both raise InvalidCredentialsError.
    - request_password_reset and resend_verification return nothing either
      way; whether a token was issued is only visible in the audit log.
    Registration does disclose an existing email (EmailAlreadyRegisteredError).
    """

    VERIFY_ACTION = "verification"
    RESET_ACTION = "password_reset"

    def __init__(
        self,
        config: AuthConfig,
        users: CredentialStore,
        hasher: PasswordHasher,
        tokens: TokenIssuer,
        attempts: LoginAttemptTracker,
        sessions: SessionManager,
        access_tokens: AccessTokenManager,
        rate_limiter: RateLimiter,
        email_client: EmailGatewayClient,
        security_logger: SecurityLogger,
        clock: Callable[[], datetime] = now_utc,
    ):
        self._config = config
        self._users = users
        self._hasher = hasher
        self._tokens = tokens
        self._attempts = attempts
        self._sessions = sessions
        self._access_tokens = access_tokens
        self._rate_limiter = rate_limiter
        self._email_client = email_client
        self._security_logger = security_logger
        self._clock = clock

    # -- Registration and email verification --------------------------------

    def register(
        self,
        email: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> RegistrationResult:
        """Create an unverified account and email a verification link.

        The password is hashed before the store is touched, so a duplicate
        email costs the same time as a new one.

        Raises:
            EmailAlreadyRegisteredError: email already has an account.
            HashingFailureError: hasher could not run.
        """
        email = normalize_email(email)
        password_hash = self._hasher.hash(password)

        try:
            user = self._users.create(email, password_hash)
        except EmailAlreadyRegisteredError:
            logger.info("Registration rejected: email already registered")
            self._security_logger.log(
                SecurityEvent.REGISTRATION_REJECTED,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"reason": "email_already_registered"},
            )
            raise

        self._security_logger.log(
            SecurityEvent.USER_REGISTERED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        sent = self._send_verification(user, ip_address)
        return RegistrationResult(user_id=user.id, verification_sent=sent)

    def _send_verification(self, user: User, ip_address: str | None) -> bool:
        """Issue a verification token and email it. False if delivery failed.

        The token stays valid on delivery failure; the user can ask again.
        """
        token = self._tokens.issue(
            user.id,
            TokenPurpose.EMAIL_VERIFICATION,
            timedelta(hours=self._config.verification_token_expiry_hours),
        )
        try:
            self._email_client.send_verification_email(
                email=user.email,
                token=token,
                app_url=self._config.app_base_url,
                app_name=self._config.app_name,
            )
        except EmailGatewayError as e:
            logger.error(f"Verification email for user {user.id} not delivered: {e}")
            self._security_logger.log(
                SecurityEvent.EMAIL_DELIVERY_FAILED,
                email=user.email,
                user_id=user.id,
                ip_address=ip_address,
                details={"purpose": TokenPurpose.EMAIL_VERIFICATION.value},
            )
            return False

        self._security_logger.log(
            SecurityEvent.EMAIL_VERIFICATION_SENT,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
        )
        return True

    def verify_email(self, token: str, ip_address: str | None = None) -> User:
        """Consume a verification token and mark the email verified.

        Verifying an already verified account keeps the original timestamp.

        Raises:
            TokenInvalidError, TokenExpiredError, TokenAlreadyUsedError
        """
        try:
            user_id = self._tokens.consume(token, TokenPurpose.EMAIL_VERIFICATION)
        except TokenError as e:
            self._security_logger.log(
                SecurityEvent.EMAIL_VERIFICATION_FAILED,
                ip_address=ip_address,
                details={"reason": type(e).__name__},
            )
            raise

        user = self._users.find_by_id(user_id)
        if user is None:
            raise TokenInvalidError("Invalid token")

        if not user.is_verified:
            user = self._users.update(user_id, UserPatch(email_verified_at=self._clock()))

        self._rate_limiter.reset_rate_limit(self.VERIFY_ACTION, user.email)
        self._security_logger.log(
            SecurityEvent.EMAIL_VERIFIED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
        )
        return user

    def resend_verification(self, email: str, ip_address: str | None = None) -> None:
        """Send a fresh verification link if the account exists and is unverified.

        Returns nothing either way. Earlier links stop working.

        Raises:
            RateLimitedError: too many requests for this address.
        """
        email = normalize_email(email)
        self._throttle(self.VERIFY_ACTION, email, ip_address)

        user = self._users.find_by_email(email)
        if user is None or user.is_verified:
            logger.info("Verification resend skipped: no unverified account")
            return

        self._send_verification(user, ip_address)

    # -- Login, refresh, logout ----------------------------------------------

    def login(
        self,
        email: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthenticatedUser:
        """Check credentials and open a session.

        Flow:
        1. Refuse locked identities without hashing or recording
        2. Verify password (dummy verification for unknown emails)
        3. Record the attempt
        4. Enforce email verification policy
        5. Upgrade the hash if cost parameters changed
        6. Create session, re-checking the password hash hasn't moved
        7. Issue the access token

        Raises:
            AccountLockedError: too many recent failures for this email.
            InvalidCredentialsError: unknown email or wrong password.
            EmailNotVerifiedError: correct password, unverified email.
        """
        identity = normalize_email(email)

        locked_until = self._attempts.locked_until(identity)
        if locked_until is not None:
            self._security_logger.log(
                SecurityEvent.LOGIN_LOCKED,
                email=identity,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            raise AccountLockedError(seconds_until(locked_until, self._clock()))

        user = self._users.find_by_email(identity)
        if user is None:
            self._hasher.burn(password)
            verified = False
        else:
            verified = self._hasher.verify(password, user.password_hash)

        self._attempts.record(
            identity,
            LoginOutcome.SUCCESS if verified else LoginOutcome.FAILURE,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        if not verified:
            logger.info("Login failed: invalid credentials")
            self._security_logger.log(
                SecurityEvent.LOGIN_FAILED,
                email=identity,
                user_id=user.id if user else None,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"reason": "wrong_password" if user else "unknown_email"},
            )
            raise InvalidCredentialsError("Invalid email or password")

        if self._config.require_verified_email and not user.is_verified:
            self._security_logger.log(
                SecurityEvent.LOGIN_UNVERIFIED,
                email=user.email,
                user_id=user.id,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            raise EmailNotVerifiedError("Email address has not been verified")

        if self._hasher.needs_rehash(user.password_hash):
            user = self._users.update(
                user.id, UserPatch(password_hash=self._hasher.hash(password))
            ) or user
            self._security_logger.log(
                SecurityEvent.PASSWORD_REHASHED,
                email=user.email,
                user_id=user.id,
            )

        session = self._sessions.create(user.id)

        # A reset that committed after the password check doesn't see this
        # session, so the new lineage has to retire itself.
        current = self._users.find_by_id(user.id)
        if current is None or (
            current.password_hash != user.password_hash
            and not self._hasher.verify(password, current.password_hash)
        ):
            self._sessions.revoke_lineage(session.lineage_id)
            logger.info(f"Login for user {user.id} lost a race with a password change")
            self._security_logger.log(
                SecurityEvent.LOGIN_FAILED,
                email=user.email,
                user_id=user.id,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"reason": "password_changed"},
            )
            raise InvalidCredentialsError("Invalid email or password")

        self._users.touch_last_login(user.id, self._clock())

        self._security_logger.log(
            SecurityEvent.LOGIN_SUCCEEDED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self._security_logger.log(
            SecurityEvent.SESSION_CREATED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"session_id": str(session.session_id)},
        )

        # Refresh user to get updated last_login_at
        user = self._users.find_by_id(user.id) or user
        return self._authenticated(user, session)

    def _authenticated(self, user: User, session: IssuedSession) -> AuthenticatedUser:
        """Issue the access token, then confirm the session survived.

        A revocation pass (reset, logout-all) that ran before the token was
        indexed can't see it, so the check has to come after issuing.

        Raises:
            SessionInvalidError: the lineage was revoked mid-request.
        """
        access_token, expires_at = self._access_tokens.issue(
            user.id, session.session_id, session.lineage_id, user.role
        )
        if self._sessions.is_revoked(session.refresh_token):
            self._access_tokens.revoke_lineages([session.lineage_id])
            logger.info(f"Lineage {session.lineage_id} revoked while issuing access token")
            raise SessionInvalidError("Session is not valid")

        return AuthenticatedUser(
            user=user,
            session=session,
            access_token=access_token,
            access_token_expires_at=expires_at,
        )

    def refresh(
        self,
        refresh_token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthenticatedUser:
        """Rotate the refresh token and issue a new access token.

        Session failure kinds propagate unchanged. On reuse detection the
        lineage's access tokens are revoked along with its sessions.

        Raises:
            SessionInvalidError, SessionExpiredError, SessionReuseDetectedError
        """
        try:
            session = self._sessions.rotate(refresh_token)
        except SessionReuseDetectedError as e:
            self._access_tokens.revoke_lineages([e.lineage_id])
            self._security_logger.log(
                SecurityEvent.SESSION_REUSE_DETECTED,
                ip_address=ip_address,
                user_agent=user_agent,
                details={
                    "lineage_id": str(e.lineage_id),
                    "revoked_sessions": len(e.revoked_session_ids),
                },
            )
            raise
        except SessionError as e:
            self._security_logger.log(
                SecurityEvent.SESSION_REFRESH_FAILED,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"reason": type(e).__name__},
            )
            raise

        user = self._users.find_by_id(session.user_id)
        if user is None:
            self._sessions.revoke_lineage(session.lineage_id)
            raise SessionInvalidError("Session is not valid")

        self._security_logger.log(
            SecurityEvent.SESSION_ROTATED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"session_id": str(session.session_id)},
        )
        return self._authenticated(user, session)

    def logout(self, refresh_token: str, ip_address: str | None = None) -> None:
        """Revoke the session lineage behind a refresh token.

        Safe to call with an unknown token.
        """
        lineage_id = self._sessions.revoke_by_token(refresh_token)
        if lineage_id is None:
            return

        self._access_tokens.revoke_lineages([lineage_id])
        self._security_logger.log(
            SecurityEvent.SESSION_REVOKED,
            ip_address=ip_address,
            details={"lineage_id": str(lineage_id)},
        )

    def logout_all(self, user_id: UUID, ip_address: str | None = None) -> int:
        """Revoke every session for a user. Returns the number of lineages revoked."""
        lineages = self._revoke_everywhere(user_id)
        self._security_logger.log(
            SecurityEvent.ALL_SESSIONS_REVOKED,
            user_id=user_id,
            ip_address=ip_address,
            details={"lineages": len(lineages)},
        )
        return len(lineages)

    def _revoke_everywhere(self, user_id: UUID) -> list[UUID]:
        lineages = self._sessions.revoke_all_for_user(user_id)
        self._access_tokens.revoke_lineages(lineages)
        return lineages

    def authenticate(self, access_token: str) -> AccessGrant:
        """Resolve a bearer access token.

        Raises:
            SessionExpiredError: token unknown, revoked or expired.
        """
        return self._access_tokens.validate(access_token)

    def get_user(self, user_id: UUID) -> User:
        user = self._users.find_by_id(user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} not found")
        return user

    # -- Password reset ------------------------------------------------------

    def request_password_reset(self, email: str, ip_address: str | None = None) -> None:
        """Email a reset link if an account exists. Returns nothing either way.

        Throttling is counted before the lookup, so it applies equally to
        unknown addresses. A delivery failure is logged, never surfaced.

        Raises:
            RateLimitedError: too many requests for this address.
        """
        email = normalize_email(email)
        self._throttle(self.RESET_ACTION, email, ip_address)

        user = self._users.find_by_email(email)
        if user is None:
            self._security_logger.log(
                SecurityEvent.PASSWORD_RESET_REQUESTED,
                email=email,
                ip_address=ip_address,
                details={"account_exists": False},
            )
            return

        token = self._tokens.issue(
            user.id,
            TokenPurpose.PASSWORD_RESET,
            timedelta(minutes=self._config.password_reset_expiry_minutes),
        )
        self._security_logger.log(
            SecurityEvent.PASSWORD_RESET_REQUESTED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            details={"account_exists": True},
        )

        try:
            self._email_client.send_password_reset_email(
                email=user.email,
                token=token,
                app_url=self._config.app_base_url,
                app_name=self._config.app_name,
            )
        except EmailGatewayError as e:
            logger.error(f"Password reset email for user {user.id} not delivered: {e}")
            self._security_logger.log(
                SecurityEvent.EMAIL_DELIVERY_FAILED,
                email=user.email,
                user_id=user.id,
                ip_address=ip_address,
                details={"purpose": TokenPurpose.PASSWORD_RESET.value},
            )

    def reset_password(
        self,
        token: str,
        new_password: str,
        ip_address: str | None = None,
    ) -> None:
        """Replace the password and revoke every session of the user.

        The new password is hashed before the token is consumed, so a
        hashing failure leaves the token usable.

        Raises:
            TokenInvalidError, TokenExpiredError, TokenAlreadyUsedError
            HashingFailureError
        """
        password_hash = self._hasher.hash(new_password)

        try:
            user_id = self._tokens.consume(token, TokenPurpose.PASSWORD_RESET)
        except TokenError as e:
            self._security_logger.log(
                SecurityEvent.PASSWORD_RESET_FAILED,
                ip_address=ip_address,
                details={"reason": type(e).__name__},
            )
            raise

        user = self._users.update(user_id, UserPatch(password_hash=password_hash))
        if user is None:
            raise TokenInvalidError("Invalid token")

        lineages = self._revoke_everywhere(user_id)
        self._rate_limiter.reset_rate_limit(self.RESET_ACTION, user.email)

        self._security_logger.log(
            SecurityEvent.PASSWORD_RESET_COMPLETED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            details={"revoked_lineages": len(lineages)},
        )

        try:
            self._email_client.send_email(
                to=user.email,
                subject=f"{self._config.app_name}: your password was changed",
                body=(
                    "Your password was just changed and all devices were signed out. "
                    "If this wasn't you, reset your password again immediately."
                ),
                sender="auth",
            )
        except EmailGatewayError as e:
            logger.error(f"Password change notice for user {user.id} not delivered: {e}")

    # -- Helpers and maintenance ---------------------------------------------

    def _throttle(self, action: str, email: str, ip_address: str | None) -> None:
        try:
            self._rate_limiter.check_rate_limit(action, email)
        except RateLimitedError as e:
            logger.info(f"Throttled {action} email request")
            self._security_logger.log(
                SecurityEvent.RATE_LIMITED,
                email=email,
                ip_address=ip_address,
                details={"action": action, "retry_after": e.retry_after_seconds},
            )
            raise

    def sweep_expired(self) -> dict[str, int]:
        """Purge expired tokens and sessions and prune old login attempts."""
        result = {
            "tokens_deleted": self._tokens.sweep_expired(),
            "sessions_revoked": self._sessions.sweep_expired(),
            "login_attempts_pruned": self._attempts.prune(),
        }
        logger.info(f"Auth sweep complete: {result}")
        return result
