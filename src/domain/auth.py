"""
Auth domain service - request-level sequencing of the auth flows.

This module composes the credential store, OTP issuer, login guard and
token issuer into the flows exposed over HTTP.

Identity State Machine
======================

States:
- UNREGISTERED: No credential record for the email
- PENDING: Record exists, email not yet verified (a code is outstanding)
- VERIFIED: Email verified; login allowed

Transitions:
    UNREGISTERED -> PENDING    (register: create record, issue + send code)
    PENDING      -> PENDING    (register again / resend / unverified login:
                                fresh code replaces the old one)
    PENDING      -> VERIFIED   (verify_otp success; returns a token pair)
    PENDING      -> UNREGISTERED (verification email could not be sent on
                                first registration; record is discarded)

Registration in VERIFIED fails with AlreadyRegistered. Verification is
monotonic: nothing moves a record back out of VERIFIED.

Login order (each step short-circuits):
    unknown email     -> InvalidCredentials (dummy bcrypt run)
    active lock       -> AccountLocked
    wrong password    -> record failure, InvalidCredentials
    unverified        -> issue + send fresh code, EmailNotVerified
    deactivated       -> AccountInactive
    success           -> reset failures, stamp last login, token pair

Note: the distinct login errors let a caller tell registered emails
apart from unknown ones. This mirrors the observed behavior of the
system being replaced and is tracked in DESIGN.md.
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass, field
from datetime import timedelta

from .credentials import CredentialStore, ensure_strong_password, normalize_email
from .exceptions import (
    AccountInactive,
    AlreadyRegistered,
    AlreadyVerified,
    EmailDeliveryFailed,
    EmailNotVerified,
    Expired,
    InvalidCredentials,
    InvalidToken,
    NotFound,
)
from .login_guard import LoginGuard
from .notifications import password_reset_email, verification_email, welcome_email
from .otp import OTPIssuer
from .ports import (
    AuthSession,
    Clock,
    CredentialRecord,
    EmailSender,
    RegistrationOutcome,
    Role,
    UserStats,
    utc_now,
)
from .tokens import TokenIssuer

logger = logging.getLogger(__name__)


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


@dataclass
class AuthService:
    """
    Domain service for authentication and session lifecycle.

    Every collaborator is passed in at construction time; there is no
    module-level state.
    """

    store: CredentialStore
    otp: OTPIssuer
    guard: LoginGuard
    tokens: TokenIssuer
    email_sender: EmailSender
    reset_ttl_minutes: int = 10
    clock: Clock = field(default=utc_now)

    # Registration / verification

    def register(
        self, email: str, password: str, name: str = "", role: Role = Role.USER
    ) -> RegistrationOutcome:
        """
        Register a new identity, or re-send a code for a pending one.

        Raises:
            WeakPassword: Password violates the strength policy
            AlreadyRegistered: Email belongs to a verified record
            DuplicateEmail: A concurrent registration claimed the email first
            EmailDeliveryFailed: The verification email could not be sent
        """
        normalized_email = normalize_email(email)
        ensure_strong_password(password)

        existing = self.store.find_by_email(normalized_email)
        if existing is not None:
            if existing.is_email_verified:
                raise AlreadyRegistered(normalized_email)
            # Tolerate lost emails: a pending registration just gets a new code
            self._send_verification_code(existing)
            logger.info("Re-sent verification code to pending registration %s", existing.id)
            return RegistrationOutcome(
                email=normalized_email,
                resent=True,
                otp_expires_in_minutes=self.otp.ttl_minutes,
            )

        record = self.store.create(normalized_email, password, role, name)
        try:
            self._send_verification_code(record)
        except EmailDeliveryFailed:
            self.store.discard(record)
            raise

        return RegistrationOutcome(
            email=normalized_email,
            resent=False,
            otp_expires_in_minutes=self.otp.ttl_minutes,
        )

    def verify_otp(self, email: str, code: str) -> AuthSession:
        """
        Complete registration with the emailed code.

        Raises:
            NotFound: No record for email
            AlreadyVerified: Email was verified before
            Expired / TooManyAttempts / InvalidCode: See OTPIssuer.verify
        """
        record = self._require_by_email(email)
        if record.is_email_verified:
            raise AlreadyVerified()

        self.otp.verify(record, code)
        self.store.set_verified(record)
        logger.info("Email verified for %s", record.id)

        subject, body = welcome_email(record.profile.name)
        try:
            self.email_sender.send_email(record.email, subject, body)
        except EmailDeliveryFailed:
            logger.warning("Welcome email to %s could not be sent", record.email)

        return self._sign_in(record)

    def resend_otp(self, email: str) -> int:
        """
        Issue and send a fresh code for a pending registration.

        Returns:
            Code lifetime in minutes
        """
        record = self._require_by_email(email)
        if record.is_email_verified:
            raise AlreadyVerified()
        self._send_verification_code(record)
        return self.otp.ttl_minutes

    # Login / session

    def login(self, email: str, password: str) -> AuthSession:
        """
        Authenticate with email and password.

        Raises:
            InvalidCredentials: Unknown email or wrong password
            AccountLocked: Too many recent failures
            EmailNotVerified: Password correct but email unverified
            AccountInactive: Account was deactivated
        """
        record = self.store.find_by_email(email)
        if record is None:
            self.store.verify_password(None, password)
            raise InvalidCredentials()

        self.guard.check_eligible(record)

        if not self.store.verify_password(record, password):
            remaining = self.guard.record_failure(record)
            raise InvalidCredentials(attempts_remaining=remaining)

        if not record.is_email_verified:
            self._send_verification_code(record)
            raise EmailNotVerified(record.email)

        if not record.is_active:
            raise AccountInactive()

        self.guard.record_success(record)
        return self._sign_in(record)

    def refresh(self, refresh_token: str) -> AuthSession:
        record, tokens = self.tokens.refresh(refresh_token)
        return AuthSession(user=record, tokens=tokens)

    def authenticate(self, access_token: str) -> CredentialRecord:
        """
        Resolve a bearer access token to its (active) credential record.

        Raises:
            InvalidToken: Token invalid, or the user is gone or inactive
        """
        user_id = self.tokens.validate_access_token(access_token)
        record = self.store.find_by_id(user_id)
        if record is None or not record.is_active:
            raise InvalidToken()
        return record

    def logout(self, user_id: str) -> None:
        """
        Stamp the logout time.

        Already-issued access tokens stay valid until they expire.
        """
        record = self._require_by_id(user_id)
        self.store.record_logout(record)

    # Profile

    def get_me(self, user_id: str) -> CredentialRecord:
        return self._require_by_id(user_id)

    def update_profile(
        self, user_id: str, name: str | None = None, avatar: str | None = None
    ) -> CredentialRecord:
        record = self._require_by_id(user_id)
        updated = self.store.update_profile(record, name=name, avatar=avatar)
        if updated is None:
            raise NotFound()
        return updated

    def change_password(
        self, user_id: str, current_password: str, new_password: str
    ) -> AuthSession:
        """
        Raises:
            InvalidCredentials: current_password is wrong
            WeakPassword / PasswordReused: new_password rejected
        """
        record = self._require_by_id(user_id)
        if not self.store.verify_password(record, current_password):
            raise InvalidCredentials("Current password is incorrect")

        self.store.update_password(record, new_password)
        tokens = self.tokens.issue_pair(record.id)
        return AuthSession(user=self._reload(record), tokens=tokens)

    # Password reset

    def request_password_reset(self, email: str) -> None:
        """
        Store the hash of a fresh reset token and email the raw token.

        Raises:
            NotFound: No record for email
            EmailDeliveryFailed: Email could not be sent (reset is cancelled)
        """
        record = self._require_by_email(email)

        token = secrets.token_hex(20)
        expires_at = self.clock() + timedelta(minutes=self.reset_ttl_minutes)
        self.store.set_reset_token(record, hash_reset_token(token), expires_at)

        subject, body = password_reset_email(record.profile.name, token, self.reset_ttl_minutes)
        try:
            self.email_sender.send_email(record.email, subject, body)
        except EmailDeliveryFailed:
            self.store.clear_reset_token(record)
            raise
        logger.info("Password reset requested for %s", record.id)

    def reset_password(self, token: str, new_password: str) -> AuthSession:
        """
        Set a new password using an emailed reset token.

        A failed token check is terminal: an expired token is cleared and
        a fresh request is required.

        Raises:
            InvalidToken: No outstanding reset matches token
            Expired: Token is past its expiry (password unchanged)
            WeakPassword / PasswordReused: new_password rejected
        """
        token_hash = hash_reset_token(token)
        record = self.store.find_by_reset_token_hash(token_hash)
        if record is None:
            raise InvalidToken("Invalid or expired reset token")

        expires_at = record.password_reset_expires_at
        if expires_at is None or self.clock() > expires_at:
            self.store.clear_reset_token(record)
            logger.info("Expired reset token used for %s", record.id)
            raise Expired("Reset token has expired. Please request a new one.")

        self.store.update_password(record, new_password, reset_token_hash=token_hash)
        logger.info("Password reset completed for %s", record.id)
        tokens = self.tokens.issue_pair(record.id)
        return AuthSession(user=self._reload(record), tokens=tokens)

    # Admin

    def user_stats(self) -> UserStats:
        return self.store.stats()

    # Helpers

    def _send_verification_code(self, record: CredentialRecord) -> None:
        code = self.otp.issue(record)
        subject, body = verification_email(record.profile.name, code, self.otp.ttl_minutes)
        self.email_sender.send_email(record.email, subject, body)

    def _sign_in(self, record: CredentialRecord) -> AuthSession:
        self.store.record_login(record)
        tokens = self.tokens.issue_pair(record.id)
        return AuthSession(user=self._reload(record), tokens=tokens)

    def _reload(self, record: CredentialRecord) -> CredentialRecord:
        return self.store.find_by_id(record.id) or record

    def _require_by_email(self, email: str) -> CredentialRecord:
        record = self.store.find_by_email(email)
        if record is None:
            raise NotFound()
        return record

    def _require_by_id(self, user_id: str) -> CredentialRecord:
        record = self.store.find_by_id(user_id)
        if record is None:
            raise NotFound()
        return record
