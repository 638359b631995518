"""
PostgreSQL repository adapter - Implements CredentialRepository protocol.

This module provides the PostgreSQL implementation of the domain's
repository port using psycopg3 with raw SQL.

Concurrency Design - Atomic Counters:
-------------------------------------
Every counter change is a single UPDATE ... RETURNING statement, so the
row lock taken by the UPDATE serializes concurrent requests against the
same identity and no increment is lost:

1. **increment_otp_attempts**: ``otp_attempt_count = otp_attempt_count + 1``
   only ``WHERE otp_attempt_count < ceiling``; the new value comes back in
   the same round trip and zero rows means the ceiling was already reached.

2. **record_login_failure**: lazy lock expiry, capped increment and lock
   activation are folded into CASE expressions evaluated against the row
   as it is when the lock is acquired.

3. **consume_otp**: clears the OTP only ``WHERE otp_hash = %s``; a second
   concurrent success for the same code matches zero rows.

4. **create_user**: ``ON CONFLICT (email) DO NOTHING``; the UNIQUE index is
   the single arbiter between concurrent registrations.

Password hashes are read only by get_password_hash/get_password_history
and are never part of the CredentialRecord column list.
"""

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from src.domain.ports import CredentialRecord, Role, UserProfile, UserStats

logger = logging.getLogger(__name__)

# Columns that make up a CredentialRecord (no password material)
_RECORD_COLUMNS = """
    id, email, role, name, avatar, is_active, is_email_verified, email_verified_at,
    otp_hash, otp_expires_at, otp_attempt_count, login_failure_count, locked_until,
    last_login_at, last_logout_at, password_reset_token_hash, password_reset_expires_at,
    created_at
"""


def _to_record(row: dict[str, Any]) -> CredentialRecord:
    return CredentialRecord(
        id=str(row["id"]),
        email=row["email"],
        role=Role(row["role"]),
        profile=UserProfile(name=row["name"], avatar=row["avatar"]),
        created_at=row["created_at"],
        is_email_verified=row["is_email_verified"],
        is_active=row["is_active"],
        email_verified_at=row["email_verified_at"],
        otp_hash=row["otp_hash"],
        otp_expires_at=row["otp_expires_at"],
        otp_attempt_count=row["otp_attempt_count"],
        login_failure_count=row["login_failure_count"],
        locked_until=row["locked_until"],
        last_login_at=row["last_login_at"],
        last_logout_at=row["last_logout_at"],
        password_reset_token_hash=row["password_reset_token_hash"],
        password_reset_expires_at=row["password_reset_expires_at"],
    )


class PostgresCredentialRepository:
    """
    Implements CredentialRepository protocol via psycopg3.

    Uses structural subtyping - no explicit inheritance from Protocol.
    All SQL uses parameterized queries for security.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """
        Initialize repository with connection pool.

        Args:
            pool: psycopg3 ConnectionPool for database connections
        """
        self._pool = pool

    def _fetch_one(self, sql: str, params: dict[str, Any]) -> dict[str, Any] | None:
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(sql, params)
            row = cursor.fetchone()
            conn.commit()
            return row

    def _execute(self, sql: str, params: dict[str, Any]) -> int:
        with self._pool.connection() as conn, conn.cursor() as cursor:
            cursor.execute(sql, params)
            conn.commit()
            return cursor.rowcount

    def _fetch_record(self, sql: str, params: dict[str, Any]) -> CredentialRecord | None:
        row = self._fetch_one(sql, params)
        return _to_record(row) if row is not None else None

    def create_user(
        self, email: str, password_hash: str, role: Role, name: str, now: datetime
    ) -> CredentialRecord | None:
        """
        Insert a new unverified record.

        Returns:
            The new record, or None if the email already exists
        """
        sql = f"""
            INSERT INTO users (email, password_hash, role, name, created_at)
            VALUES (%(email)s, %(password_hash)s, %(role)s, %(name)s, %(now)s)
            ON CONFLICT (email) DO NOTHING
            RETURNING {_RECORD_COLUMNS}
        """
        return self._fetch_record(
            sql,
            {
                "email": email,
                "password_hash": password_hash,
                "role": role.value,
                "name": name,
                "now": now,
            },
        )

    def get_by_id(self, user_id: str) -> CredentialRecord | None:
        sql = f"SELECT {_RECORD_COLUMNS} FROM users WHERE id = %(user_id)s"
        return self._fetch_record(sql, {"user_id": user_id})

    def get_by_email(self, email: str) -> CredentialRecord | None:
        sql = f"SELECT {_RECORD_COLUMNS} FROM users WHERE email = %(email)s"
        return self._fetch_record(sql, {"email": email})

    def get_by_reset_token_hash(self, token_hash: str) -> CredentialRecord | None:
        sql = f"""
            SELECT {_RECORD_COLUMNS} FROM users
            WHERE password_reset_token_hash = %(token_hash)s
        """
        return self._fetch_record(sql, {"token_hash": token_hash})

    def delete_user(self, user_id: str) -> bool:
        return self._execute("DELETE FROM users WHERE id = %(user_id)s", {"user_id": user_id}) == 1

    def get_password_hash(self, user_id: str) -> str | None:
        row = self._fetch_one(
            "SELECT password_hash FROM users WHERE id = %(user_id)s", {"user_id": user_id}
        )
        return row["password_hash"] if row else None

    def get_password_history(self, user_id: str) -> list[str]:
        row = self._fetch_one(
            "SELECT password_history FROM users WHERE id = %(user_id)s", {"user_id": user_id}
        )
        return list(row["password_history"]) if row else []

    def update_password(
        self,
        user_id: str,
        password_hash: str,
        history_size: int,
        reset_token_hash: str | None = None,
    ) -> bool:
        # Right-hand sides see the old row, so the outgoing hash lands in history
        sql = """
            UPDATE users
            SET password_history = (ARRAY[password_hash::text] || password_history)[1:%(history_size)s],
                password_hash = %(password_hash)s,
                password_reset_token_hash = NULL,
                password_reset_expires_at = NULL
            WHERE id = %(user_id)s
        """
        if reset_token_hash is not None:
            sql += " AND password_reset_token_hash = %(reset_token_hash)s"
        params = {
            "user_id": user_id,
            "password_hash": password_hash,
            "history_size": history_size,
            "reset_token_hash": reset_token_hash,
        }
        return self._execute(sql, params) == 1

    def set_otp(self, user_id: str, otp_hash: str, expires_at: datetime) -> None:
        sql = """
            UPDATE users
            SET otp_hash = %(otp_hash)s, otp_expires_at = %(expires_at)s, otp_attempt_count = 0
            WHERE id = %(user_id)s
        """
        self._execute(sql, {"user_id": user_id, "otp_hash": otp_hash, "expires_at": expires_at})

    def increment_otp_attempts(self, user_id: str, ceiling: int) -> int | None:
        sql = """
            UPDATE users
            SET otp_attempt_count = otp_attempt_count + 1
            WHERE id = %(user_id)s AND otp_attempt_count < %(ceiling)s
            RETURNING otp_attempt_count
        """
        row = self._fetch_one(sql, {"user_id": user_id, "ceiling": ceiling})
        return row["otp_attempt_count"] if row else None

    def consume_otp(self, user_id: str, otp_hash: str) -> bool:
        sql = """
            UPDATE users
            SET otp_hash = NULL, otp_expires_at = NULL, otp_attempt_count = 0
            WHERE id = %(user_id)s AND otp_hash = %(otp_hash)s
        """
        return self._execute(sql, {"user_id": user_id, "otp_hash": otp_hash}) == 1

    def invalidate_otp(self, user_id: str) -> None:
        sql = """
            UPDATE users SET otp_hash = NULL, otp_expires_at = NULL
            WHERE id = %(user_id)s
        """
        self._execute(sql, {"user_id": user_id})

    def mark_verified(self, user_id: str, now: datetime) -> None:
        sql = """
            UPDATE users
            SET is_email_verified = TRUE,
                email_verified_at = COALESCE(email_verified_at, %(now)s),
                otp_hash = NULL, otp_expires_at = NULL, otp_attempt_count = 0
            WHERE id = %(user_id)s
        """
        self._execute(sql, {"user_id": user_id, "now": now})

    def record_login_failure(
        self, user_id: str, now: datetime, threshold: int, lock_window: timedelta
    ) -> tuple[int, datetime | None]:
        """
        Count a failed login in one statement.

        CASE branches, in order:
        - lock still active: leave count and lock untouched
        - lock elapsed: this failure starts a new cycle at 1
        - no lock: capped increment, lock when the threshold is reached
        """
        sql = """
            UPDATE users
            SET login_failure_count = CASE
                    WHEN locked_until > %(now)s THEN login_failure_count
                    WHEN locked_until IS NOT NULL THEN LEAST(1, %(threshold)s)
                    ELSE LEAST(login_failure_count + 1, %(threshold)s)
                END,
                locked_until = CASE
                    WHEN locked_until > %(now)s THEN locked_until
                    WHEN (CASE WHEN locked_until IS NOT NULL THEN 1
                               ELSE login_failure_count + 1 END) >= %(threshold)s
                        THEN %(lock_until)s
                    ELSE NULL
                END
            WHERE id = %(user_id)s
            RETURNING login_failure_count, locked_until
        """
        row = self._fetch_one(
            sql,
            {
                "user_id": user_id,
                "now": now,
                "threshold": threshold,
                "lock_until": now + lock_window,
            },
        )
        if row is None:
            return 0, None
        return row["login_failure_count"], row["locked_until"]

    def reset_login_failures(self, user_id: str) -> None:
        sql = """
            UPDATE users SET login_failure_count = 0, locked_until = NULL
            WHERE id = %(user_id)s
        """
        self._execute(sql, {"user_id": user_id})

    def touch_last_login(self, user_id: str, now: datetime) -> None:
        self._execute(
            "UPDATE users SET last_login_at = %(now)s WHERE id = %(user_id)s",
            {"user_id": user_id, "now": now},
        )

    def touch_last_logout(self, user_id: str, now: datetime) -> None:
        self._execute(
            "UPDATE users SET last_logout_at = %(now)s WHERE id = %(user_id)s",
            {"user_id": user_id, "now": now},
        )

    def set_password_reset(self, user_id: str, token_hash: str, expires_at: datetime) -> None:
        sql = """
            UPDATE users
            SET password_reset_token_hash = %(token_hash)s,
                password_reset_expires_at = %(expires_at)s
            WHERE id = %(user_id)s
        """
        self._execute(
            sql, {"user_id": user_id, "token_hash": token_hash, "expires_at": expires_at}
        )

    def clear_password_reset(self, user_id: str) -> None:
        sql = """
            UPDATE users
            SET password_reset_token_hash = NULL, password_reset_expires_at = NULL
            WHERE id = %(user_id)s
        """
        self._execute(sql, {"user_id": user_id})

    def update_profile(
        self, user_id: str, name: str | None, avatar: str | None
    ) -> CredentialRecord | None:
        sql = f"""
            UPDATE users
            SET name = COALESCE(%(name)s, name), avatar = COALESCE(%(avatar)s, avatar)
            WHERE id = %(user_id)s
            RETURNING {_RECORD_COLUMNS}
        """
        return self._fetch_record(sql, {"user_id": user_id, "name": name, "avatar": avatar})

    def set_active(self, user_id: str, active: bool) -> None:
        """Administrative toggle for is_active."""
        self._execute(
            "UPDATE users SET is_active = %(active)s WHERE id = %(user_id)s",
            {"user_id": user_id, "active": active},
        )

    def get_stats(self, month_start: datetime) -> UserStats:
        totals_sql = """
            SELECT COUNT(*) AS total_users,
                   COUNT(*) FILTER (WHERE is_active) AS active_users,
                   COUNT(*) FILTER (WHERE is_email_verified) AS verified_users,
                   COUNT(*) FILTER (WHERE created_at >= %(month_start)s) AS new_users_this_month
            FROM users
        """
        roles_sql = "SELECT role, COUNT(*) AS count FROM users GROUP BY role"

        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cursor:
            cursor.execute(totals_sql, {"month_start": month_start})
            totals = cursor.fetchone()
            cursor.execute(roles_sql)
            by_role = {row["role"]: row["count"] for row in cursor.fetchall()}
            conn.commit()

        return UserStats(
            total_users=totals["total_users"],
            active_users=totals["active_users"],
            verified_users=totals["verified_users"],
            new_users_this_month=totals["new_users_this_month"],
            by_role=by_role,
        )


def run_migrations(pool: ConnectionPool) -> None:
    """
    Execute all SQL migration files from the migrations directory.

    Migrations are executed in sorted order (alphabetically by filename).
    Each migration should be idempotent (use IF NOT EXISTS, etc.).

    Args:
        pool: psycopg3 ConnectionPool instance
    """
    # Structure: src/adapters/repository/postgres.py -> migrations/
    migrations_dir = Path(__file__).parent.parent.parent.parent / "migrations"

    if not migrations_dir.exists():
        logger.warning("Migrations directory not found: %s", migrations_dir)
        return

    sql_files = sorted(migrations_dir.glob("*.sql"))

    if not sql_files:
        logger.info("No migration files found")
        return

    logger.info("Running %d migration(s)", len(sql_files))

    for sql_file in sql_files:
        logger.info("Executing migration: %s", sql_file.name)
        try:
            sql_content = sql_file.read_text()

            with pool.connection() as conn:
                conn.execute(sql_content)

            logger.info("Migration complete: %s", sql_file.name)
        except Exception as e:
            logger.error("Migration failed: %s - %s", sql_file.name, e)
            raise RuntimeError(f"Database migration failed: {sql_file.name}") from e
