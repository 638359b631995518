"""
Credential store - password policy, hashing and record access.

Wraps the CredentialRepository port with the rules that belong to the
identity itself: email normalization, the password strength policy,
bcrypt hashing and constant-time verification. Password hashes never
leave this module; callers only get CredentialRecord snapshots and
boolean verification results.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache

import bcrypt

from .exceptions import DuplicateEmail, InvalidToken, PasswordReused, WeakPassword
from .ports import Clock, CredentialRecord, CredentialRepository, Role, UserStats, utc_now

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_BYTES = 72  # bcrypt input limit
SPECIAL_CHARACTERS = '!@#$%^&*(),.?":{}|<>'
_SPECIAL_RE = re.compile("[" + re.escape(SPECIAL_CHARACTERS) + "]")


@lru_cache(maxsize=None)
def dummy_hash(cost: int) -> bytes:
    """
    Hash compared against when no real hash exists, so bcrypt always runs.

    Computed once per process and cost; an unknown-email login then costs
    one checkpw, the same as a known-email login.
    """
    return bcrypt.hashpw(b"dummy_password_for_timing_safety", bcrypt.gensalt(cost))


def normalize_email(email: str) -> str:
    """
    Normalize email address for consistent storage and lookup.

    Applies: strip whitespace + lowercase
    """
    return email.strip().lower()


def check_password_strength(password: str) -> list[str]:
    """
    Return the list of policy violations for password (empty when strong).

    Policy: at least 8 characters with one uppercase letter, one lowercase
    letter, one digit and one special character; at most 72 bytes.
    """
    errors = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(password.encode()) > MAX_PASSWORD_BYTES:
        errors.append(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    if not _SPECIAL_RE.search(password):
        errors.append("Password must contain at least one special character")
    return errors


def ensure_strong_password(password: str) -> None:
    """Raise WeakPassword if the policy is violated."""
    errors = check_password_strength(password)
    if errors:
        raise WeakPassword(errors)


@dataclass
class CredentialStore:
    """
    Durable identity/password/role state behind a repository port.

    Uses structural subtyping for the repository - any object with the
    CredentialRepository methods will do (Postgres, in-memory, Mock).
    """

    repository: CredentialRepository
    bcrypt_cost: int = 12
    history_size: int = 5
    clock: Clock = field(default=utc_now)

    def hash_password(self, password: str) -> str:
        return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=self.bcrypt_cost)).decode()

    def create(
        self, email: str, password: str, role: Role = Role.USER, name: str = ""
    ) -> CredentialRecord:
        """
        Create a new unverified credential record.

        The password policy is checked before anything is written.

        Raises:
            WeakPassword: If password violates the strength policy
            DuplicateEmail: If a record with this email already exists
        """
        normalized_email = normalize_email(email)
        ensure_strong_password(password)

        record = self.repository.create_user(
            normalized_email, self.hash_password(password), role, name.strip(), self.clock()
        )
        if record is None:
            raise DuplicateEmail(normalized_email)

        logger.info("Created credential record %s for %s", record.id, normalized_email)
        return record

    def find_by_email(self, email: str) -> CredentialRecord | None:
        return self.repository.get_by_email(normalize_email(email))

    def find_by_id(self, user_id: str) -> CredentialRecord | None:
        return self.repository.get_by_id(user_id)

    def verify_password(self, record: CredentialRecord | None, candidate: str) -> bool:
        """
        Constant-time comparison of candidate against the stored hash.

        Passing None (unknown email) still runs a full bcrypt comparison
        against a dummy hash so response timing does not reveal whether
        the account exists. Never raises on mismatch.
        """
        stored_hash = None
        if record is not None:
            stored_hash = self.repository.get_password_hash(record.id)

        candidate_bytes = candidate.encode()
        if stored_hash is None or len(candidate_bytes) > MAX_PASSWORD_BYTES:
            bcrypt.checkpw(candidate_bytes[:MAX_PASSWORD_BYTES], dummy_hash(self.bcrypt_cost))
            return False

        return bcrypt.checkpw(candidate_bytes, stored_hash.encode())

    def set_verified(self, record: CredentialRecord) -> None:
        """Idempotently mark the email verified and clear OTP fields."""
        self.repository.mark_verified(record.id, self.clock())

    def update_password(
        self,
        record: CredentialRecord,
        new_password: str,
        reset_token_hash: str | None = None,
    ) -> None:
        """
        Re-hash and replace the password.

        With reset_token_hash the replacement is conditional on that reset
        token still being outstanding on the record.

        Raises:
            WeakPassword: If new_password violates the strength policy
            PasswordReused: If new_password matches the current password
                or one of the last history_size passwords
            InvalidToken: If reset_token_hash was already used or replaced
        """
        ensure_strong_password(new_password)

        previous = []
        current = self.repository.get_password_hash(record.id)
        if current is not None:
            previous.append(current)
        previous.extend(self.repository.get_password_history(record.id)[: self.history_size])

        candidate = new_password.encode()
        if any(bcrypt.checkpw(candidate, old.encode()) for old in previous):
            raise PasswordReused()

        updated = self.repository.update_password(
            record.id, self.hash_password(new_password), self.history_size, reset_token_hash
        )
        if not updated and reset_token_hash is not None:
            raise InvalidToken("Invalid or expired reset token")
        logger.info("Password updated for %s", record.id)

    def discard(self, record: CredentialRecord) -> None:
        """Remove a record whose registration could not be completed."""
        self.repository.delete_user(record.id)
        logger.info("Discarded credential record %s", record.id)

    def record_login(self, record: CredentialRecord) -> None:
        self.repository.touch_last_login(record.id, self.clock())

    def record_logout(self, record: CredentialRecord) -> None:
        self.repository.touch_last_logout(record.id, self.clock())

    def find_by_reset_token_hash(self, token_hash: str) -> CredentialRecord | None:
        return self.repository.get_by_reset_token_hash(token_hash)

    def set_reset_token(
        self, record: CredentialRecord, token_hash: str, expires_at: datetime
    ) -> None:
        self.repository.set_password_reset(record.id, token_hash, expires_at)

    def clear_reset_token(self, record: CredentialRecord) -> None:
        self.repository.clear_password_reset(record.id)

    def update_profile(
        self, record: CredentialRecord, name: str | None = None, avatar: str | None = None
    ) -> CredentialRecord | None:
        if name is not None:
            name = name.strip()
        return self.repository.update_profile(record.id, name, avatar)

    def stats(self) -> UserStats:
        now = self.clock()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        return self.repository.get_stats(month_start)
