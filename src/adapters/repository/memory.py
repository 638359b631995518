"""
In-memory repository adapter - Implements CredentialRepository protocol.

Thread-safe dictionary store for development (STORAGE_BACKEND=memory)
and for tests that exercise the full stack without PostgreSQL. Every
method runs under a single lock, so read-modify-write sequences here
are as atomic as the single-statement UPDATEs of the Postgres adapter.
"""

import copy
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from src.domain.ports import CredentialRecord, Role, UserProfile, UserStats


@dataclass
class _Row:
    record: CredentialRecord
    password_hash: str
    password_history: list[str] = field(default_factory=list)


class InMemoryCredentialRepository:
    """
    Implements CredentialRepository protocol with process-local state.

    Uses structural subtyping - no explicit inheritance from Protocol.
    Returned records are copies; mutating them never changes stored state.
    """

    def __init__(self) -> None:
        self._rows: dict[str, _Row] = {}
        self._ids_by_email: dict[str, str] = {}
        self._lock = threading.RLock()

    def _row(self, user_id: str) -> _Row | None:
        return self._rows.get(user_id)

    @staticmethod
    def _snapshot(row: _Row | None) -> CredentialRecord | None:
        return copy.deepcopy(row.record) if row is not None else None

    def create_user(
        self, email: str, password_hash: str, role: Role, name: str, now: datetime
    ) -> CredentialRecord | None:
        with self._lock:
            if email in self._ids_by_email:
                return None
            record = CredentialRecord(
                id=str(uuid.uuid4()),
                email=email,
                role=role,
                profile=UserProfile(name=name),
                created_at=now,
            )
            self._rows[record.id] = _Row(record=record, password_hash=password_hash)
            self._ids_by_email[email] = record.id
            return copy.deepcopy(record)

    def get_by_id(self, user_id: str) -> CredentialRecord | None:
        with self._lock:
            return self._snapshot(self._row(user_id))

    def get_by_email(self, email: str) -> CredentialRecord | None:
        with self._lock:
            user_id = self._ids_by_email.get(email)
            return self._snapshot(self._row(user_id)) if user_id else None

    def get_by_reset_token_hash(self, token_hash: str) -> CredentialRecord | None:
        with self._lock:
            for row in self._rows.values():
                if row.record.password_reset_token_hash == token_hash:
                    return self._snapshot(row)
            return None

    def delete_user(self, user_id: str) -> bool:
        with self._lock:
            row = self._rows.pop(user_id, None)
            if row is None:
                return False
            self._ids_by_email.pop(row.record.email, None)
            return True

    def get_password_hash(self, user_id: str) -> str | None:
        with self._lock:
            row = self._row(user_id)
            return row.password_hash if row else None

    def get_password_history(self, user_id: str) -> list[str]:
        with self._lock:
            row = self._row(user_id)
            return list(row.password_history) if row else []

    def update_password(
        self,
        user_id: str,
        password_hash: str,
        history_size: int,
        reset_token_hash: str | None = None,
    ) -> bool:
        with self._lock:
            row = self._row(user_id)
            if row is None:
                return False
            if (
                reset_token_hash is not None
                and row.record.password_reset_token_hash != reset_token_hash
            ):
                return False
            row.password_history = [row.password_hash, *row.password_history][:history_size]
            row.password_hash = password_hash
            row.record.password_reset_token_hash = None
            row.record.password_reset_expires_at = None
            return True

    def set_otp(self, user_id: str, otp_hash: str, expires_at: datetime) -> None:
        with self._lock:
            row = self._row(user_id)
            if row is None:
                return
            row.record.otp_hash = otp_hash
            row.record.otp_expires_at = expires_at
            row.record.otp_attempt_count = 0

    def increment_otp_attempts(self, user_id: str, ceiling: int) -> int | None:
        with self._lock:
            row = self._row(user_id)
            if row is None or row.record.otp_attempt_count >= ceiling:
                return None
            row.record.otp_attempt_count += 1
            return row.record.otp_attempt_count

    def consume_otp(self, user_id: str, otp_hash: str) -> bool:
        with self._lock:
            row = self._row(user_id)
            if row is None or row.record.otp_hash != otp_hash:
                return False
            self._clear_otp(row.record)
            return True

    def invalidate_otp(self, user_id: str) -> None:
        with self._lock:
            row = self._row(user_id)
            if row is None:
                return
            row.record.otp_hash = None
            row.record.otp_expires_at = None

    def mark_verified(self, user_id: str, now: datetime) -> None:
        with self._lock:
            row = self._row(user_id)
            if row is None:
                return
            if not row.record.is_email_verified:
                row.record.is_email_verified = True
                row.record.email_verified_at = now
            self._clear_otp(row.record)

    @staticmethod
    def _clear_otp(record: CredentialRecord) -> None:
        record.otp_hash = None
        record.otp_expires_at = None
        record.otp_attempt_count = 0

    def record_login_failure(
        self, user_id: str, now: datetime, threshold: int, lock_window: timedelta
    ) -> tuple[int, datetime | None]:
        with self._lock:
            row = self._row(user_id)
            if row is None:
                return 0, None
            record = row.record

            if record.locked_until is not None and record.locked_until <= now:
                # Lock elapsed: start a fresh cycle
                record.locked_until = None
                record.login_failure_count = 0

            if record.locked_until is None:
                record.login_failure_count = min(record.login_failure_count + 1, threshold)
                if record.login_failure_count >= threshold:
                    record.locked_until = now + lock_window

            return record.login_failure_count, record.locked_until

    def reset_login_failures(self, user_id: str) -> None:
        with self._lock:
            row = self._row(user_id)
            if row is None:
                return
            row.record.login_failure_count = 0
            row.record.locked_until = None

    def touch_last_login(self, user_id: str, now: datetime) -> None:
        with self._lock:
            row = self._row(user_id)
            if row is not None:
                row.record.last_login_at = now

    def touch_last_logout(self, user_id: str, now: datetime) -> None:
        with self._lock:
            row = self._row(user_id)
            if row is not None:
                row.record.last_logout_at = now

    def set_password_reset(self, user_id: str, token_hash: str, expires_at: datetime) -> None:
        with self._lock:
            row = self._row(user_id)
            if row is None:
                return
            row.record.password_reset_token_hash = token_hash
            row.record.password_reset_expires_at = expires_at

    def clear_password_reset(self, user_id: str) -> None:
        with self._lock:
            row = self._row(user_id)
            if row is None:
                return
            row.record.password_reset_token_hash = None
            row.record.password_reset_expires_at = None

    def update_profile(
        self, user_id: str, name: str | None, avatar: str | None
    ) -> CredentialRecord | None:
        with self._lock:
            row = self._row(user_id)
            if row is None:
                return None
            if name is not None:
                row.record.profile.name = name
            if avatar is not None:
                row.record.profile.avatar = avatar
            return self._snapshot(row)

    def set_active(self, user_id: str, active: bool) -> None:
        """Administrative toggle for is_active."""
        with self._lock:
            row = self._row(user_id)
            if row is not None:
                row.record.is_active = active

    def get_stats(self, month_start: datetime) -> UserStats:
        with self._lock:
            records = [row.record for row in self._rows.values()]
        by_role: dict[str, int] = {}
        for record in records:
            by_role[record.role.value] = by_role.get(record.role.value, 0) + 1
        return UserStats(
            total_users=len(records),
            active_users=sum(1 for r in records if r.is_active),
            verified_users=sum(1 for r in records if r.is_email_verified),
            new_users_this_month=sum(1 for r in records if r.created_at >= month_start),
            by_role=by_role,
        )
