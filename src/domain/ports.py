"""
Port interfaces - Protocol definitions for infrastructure abstraction.

This module defines the record types the domain works with and the
interfaces (ports) that the domain requires from infrastructure.
Adapters implement these protocols.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Protocol

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock: timezone-aware wall-clock time in UTC."""
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Fixed role enumeration for credential records."""

    USER = "user"
    ADMIN = "admin"
    MANAGER = "manager"
    SALES = "sales"
    SUPPORT = "support"


@dataclass
class UserProfile:
    """Display fields owned by a credential record."""

    name: str
    avatar: str | None = None


@dataclass
class CredentialRecord:
    """
    Snapshot of one registered identity.

    The password hash and password history never appear here; they stay
    behind the repository boundary and are only reachable through
    CredentialStore.verify_password().

    Lifecycle fields come in groups that populate and clear together:
    - otp_hash / otp_expires_at / otp_attempt_count: verification cycle
    - login_failure_count / locked_until: login cycle
    - password_reset_token_hash / password_reset_expires_at: reset cycle
    """

    id: str
    email: str
    role: Role
    profile: UserProfile
    created_at: datetime
    is_email_verified: bool = False
    is_active: bool = True
    email_verified_at: datetime | None = None
    otp_hash: str | None = None
    otp_expires_at: datetime | None = None
    otp_attempt_count: int = 0
    login_failure_count: int = 0
    locked_until: datetime | None = None
    last_login_at: datetime | None = None
    last_logout_at: datetime | None = None
    password_reset_token_hash: str | None = None
    password_reset_expires_at: datetime | None = None

    def is_locked(self, now: datetime) -> bool:
        """A lock is only meaningful while now < locked_until."""
        return self.locked_until is not None and now < self.locked_until


@dataclass(frozen=True)
class TokenPair:
    """Access/refresh bearer credentials issued together."""

    access_token: str
    refresh_token: str
    access_expires_in: int  # seconds
    refresh_expires_in: int  # seconds


@dataclass(frozen=True)
class AuthSession:
    """Result of a flow that ends with the caller signed in."""

    user: CredentialRecord
    tokens: TokenPair


@dataclass(frozen=True)
class RegistrationOutcome:
    """Result of a registration request."""

    email: str
    resent: bool  # True when a pending registration got a fresh code
    otp_expires_in_minutes: int


@dataclass
class UserStats:
    """Aggregate counts across all credential records."""

    total_users: int
    active_users: int
    verified_users: int
    new_users_this_month: int
    by_role: dict[str, int] = field(default_factory=dict)


class CredentialRepository(Protocol):
    """
    Port interface for credential persistence.

    Counter updates (OTP attempts, login failures) must be applied as a
    single atomic increment-and-fetch at the storage layer, never as a
    read in Python followed by a write.
    """

    def create_user(
        self, email: str, password_hash: str, role: Role, name: str, now: datetime
    ) -> CredentialRecord | None:
        """
        Insert a new unverified record.

        Returns:
            The created record, or None if the email is already taken
        """
        ...

    def get_by_id(self, user_id: str) -> CredentialRecord | None: ...

    def get_by_email(self, email: str) -> CredentialRecord | None: ...

    def get_by_reset_token_hash(self, token_hash: str) -> CredentialRecord | None: ...

    def delete_user(self, user_id: str) -> bool: ...

    def get_password_hash(self, user_id: str) -> str | None: ...

    def get_password_history(self, user_id: str) -> list[str]:
        """Previous password hashes, most recent first."""
        ...

    def update_password(
        self,
        user_id: str,
        password_hash: str,
        history_size: int,
        reset_token_hash: str | None = None,
    ) -> bool:
        """
        Replace the password hash.

        The outgoing hash is pushed onto the history (trimmed to
        history_size) and any outstanding reset token is cleared. With
        reset_token_hash, the update only applies while the stored reset
        token still equals it, so one token sets a password at most once.

        Returns:
            True if the password was replaced
        """
        ...

    def set_otp(self, user_id: str, otp_hash: str, expires_at: datetime) -> None:
        """Store a new OTP hash and expiry, resetting the attempt counter to 0."""
        ...

    def increment_otp_attempts(self, user_id: str, ceiling: int) -> int | None:
        """
        Atomically increment the OTP attempt counter, never past ceiling.

        Returns:
            The new count, or None if the counter was already at ceiling
        """
        ...

    def consume_otp(self, user_id: str, otp_hash: str) -> bool:
        """
        Clear all OTP fields if the stored hash still equals otp_hash.

        Returns:
            True if this call consumed the code, False if it was already gone
        """
        ...

    def invalidate_otp(self, user_id: str) -> None:
        """Drop the outstanding code but keep the attempt counter."""
        ...

    def mark_verified(self, user_id: str, now: datetime) -> None:
        """Set is_email_verified and clear OTP fields (idempotent)."""
        ...

    def record_login_failure(
        self, user_id: str, now: datetime, threshold: int, lock_window: timedelta
    ) -> tuple[int, datetime | None]:
        """
        Atomically count a failed login.

        An expired lock is discarded first (counter restarts from zero).
        Reaching threshold sets locked_until = now + lock_window; while
        locked the counter stays at threshold.

        Returns:
            (login_failure_count, locked_until) after the update
        """
        ...

    def reset_login_failures(self, user_id: str) -> None: ...

    def touch_last_login(self, user_id: str, now: datetime) -> None: ...

    def touch_last_logout(self, user_id: str, now: datetime) -> None: ...

    def set_password_reset(self, user_id: str, token_hash: str, expires_at: datetime) -> None: ...

    def clear_password_reset(self, user_id: str) -> None: ...

    def update_profile(
        self, user_id: str, name: str | None, avatar: str | None
    ) -> CredentialRecord | None: ...

    def set_active(self, user_id: str, active: bool) -> None:
        """Administrative toggle for is_active; deactivated accounts cannot log in or refresh."""
        ...

    def get_stats(self, month_start: datetime) -> UserStats: ...


class EmailSender(Protocol):
    """Port interface for email delivery."""

    def send_email(self, recipient: str, subject: str, body: str) -> None:
        """
        Deliver a plain-text email.

        Raises:
            EmailDeliveryFailed: If the message could not be handed off
        """
        ...
