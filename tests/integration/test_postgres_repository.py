"""
Integration tests for PostgresCredentialRepository.

Tests repository operations against a real PostgreSQL database
(DATABASE_URL). The module is skipped when the database is unreachable.
"""

from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest
from psycopg_pool import ConnectionPool, PoolTimeout

from src.adapters.repository.postgres import PostgresCredentialRepository, run_migrations
from src.config.settings import get_settings
from src.domain.ports import CredentialRecord, Role

pytestmark = [pytest.mark.integration, pytest.mark.postgres]

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)
HASH = "$2b$04$abcdefghijklmnopqrstuuQ6kT0k9f0Zx1b8C4E7m8sJv2sQ3n4kO"


@pytest.fixture(scope="module")
def pool() -> Iterator[ConnectionPool]:
    """Create connection pool for integration tests and apply migrations."""
    settings = get_settings()
    pool = ConnectionPool(conninfo=settings.database_url, min_size=1, max_size=10, open=True)
    try:
        pool.wait(timeout=3.0)
    except PoolTimeout:
        pool.close()
        pytest.skip("PostgreSQL is not reachable")
    run_migrations(pool)
    yield pool
    pool.close()


@pytest.fixture
def repository(pool: ConnectionPool) -> PostgresCredentialRepository:
    return PostgresCredentialRepository(pool)


@pytest.fixture(autouse=True)
def clean_database(pool: ConnectionPool) -> Iterator[None]:
    """Clean users table before each test."""
    with pool.connection() as conn:
        conn.execute("DELETE FROM users")
        conn.commit()
    yield


def create(repository: PostgresCredentialRepository, email: str = "pg@example.com"):
    record = repository.create_user(email, HASH, Role.USER, "Pg User", NOW)
    assert record is not None
    return record


class TestCreateUser:
    def test_create_returns_unverified_record(
        self, repository: PostgresCredentialRepository
    ) -> None:
        record = create(repository)

        assert isinstance(record, CredentialRecord)
        assert record.email == "pg@example.com"
        assert record.is_email_verified is False
        assert record.is_active is True
        assert record.profile.name == "Pg User"
        assert record.created_at == NOW

    def test_duplicate_email_returns_none(self, repository: PostgresCredentialRepository) -> None:
        create(repository)
        assert repository.create_user("pg@example.com", HASH, Role.USER, "", NOW) is None

    def test_concurrent_creates_exactly_one_succeeds(
        self, repository: PostgresCredentialRepository
    ) -> None:
        def attempt(_: int) -> CredentialRecord | None:
            return repository.create_user("race@example.com", HASH, Role.USER, "", NOW)

        with ThreadPoolExecutor(max_workers=5) as executor:
            results = list(executor.map(attempt, range(5)))

        assert sum(1 for r in results if r is not None) == 1

    def test_password_hash_stays_out_of_record(
        self, repository: PostgresCredentialRepository
    ) -> None:
        record = create(repository)
        assert repository.get_password_hash(record.id) == HASH
        assert HASH not in repr(record)


class TestLookups:
    def test_get_by_id_and_email(self, repository: PostgresCredentialRepository) -> None:
        record = create(repository)

        assert repository.get_by_id(record.id).email == "pg@example.com"
        assert repository.get_by_email("pg@example.com").id == record.id
        assert repository.get_by_email("missing@example.com") is None

    def test_delete_user(self, repository: PostgresCredentialRepository) -> None:
        record = create(repository)

        assert repository.delete_user(record.id) is True
        assert repository.get_by_id(record.id) is None
        assert repository.delete_user(record.id) is False


class TestOtpCounters:
    def test_increment_returns_new_value(self, repository: PostgresCredentialRepository) -> None:
        record = create(repository)
        repository.set_otp(record.id, "a" * 64, NOW + timedelta(minutes=15))

        assert repository.increment_otp_attempts(record.id, 5) == 1
        assert repository.increment_otp_attempts(record.id, 5) == 2

    def test_increment_stops_at_ceiling(self, repository: PostgresCredentialRepository) -> None:
        record = create(repository)
        repository.set_otp(record.id, "a" * 64, NOW + timedelta(minutes=15))

        results = [repository.increment_otp_attempts(record.id, 5) for _ in range(7)]

        assert results == [1, 2, 3, 4, 5, None, None]
        assert repository.get_by_id(record.id).otp_attempt_count == 5

    def test_concurrent_increments_respect_ceiling(
        self, repository: PostgresCredentialRepository
    ) -> None:
        record = create(repository)
        repository.set_otp(record.id, "a" * 64, NOW + timedelta(minutes=15))

        with ThreadPoolExecutor(max_workers=10) as executor:
            results = list(
                executor.map(lambda _: repository.increment_otp_attempts(record.id, 5), range(20))
            )

        assert sorted(r for r in results if r is not None) == [1, 2, 3, 4, 5]
        assert results.count(None) == 15
        assert repository.get_by_id(record.id).otp_attempt_count == 5

    def test_consume_only_matching_hash(self, repository: PostgresCredentialRepository) -> None:
        record = create(repository)
        repository.set_otp(record.id, "a" * 64, NOW + timedelta(minutes=15))

        assert repository.consume_otp(record.id, "b" * 64) is False
        assert repository.consume_otp(record.id, "a" * 64) is True
        assert repository.consume_otp(record.id, "a" * 64) is False
        assert repository.get_by_id(record.id).otp_hash is None

    def test_mark_verified_clears_otp(self, repository: PostgresCredentialRepository) -> None:
        record = create(repository)
        repository.set_otp(record.id, "a" * 64, NOW + timedelta(minutes=15))

        repository.mark_verified(record.id, NOW)
        repository.mark_verified(record.id, NOW + timedelta(hours=1))

        stored = repository.get_by_id(record.id)
        assert stored.is_email_verified is True
        assert stored.email_verified_at == NOW
        assert stored.otp_hash is None


class TestLoginFailures:
    def test_threshold_locks(self, repository: PostgresCredentialRepository) -> None:
        record = create(repository)
        window = timedelta(minutes=30)

        results = [repository.record_login_failure(record.id, NOW, 5, window) for _ in range(5)]

        assert [count for count, _ in results] == [1, 2, 3, 4, 5]
        assert results[-1][1] == NOW + window
        assert all(locked is None for _, locked in results[:-1])

    def test_locked_record_is_not_incremented(
        self, repository: PostgresCredentialRepository
    ) -> None:
        record = create(repository)
        window = timedelta(minutes=30)
        for _ in range(5):
            repository.record_login_failure(record.id, NOW, 5, window)

        later = NOW + timedelta(minutes=1)
        assert repository.record_login_failure(record.id, later, 5, window) == (5, NOW + window)

    def test_elapsed_lock_starts_new_cycle(
        self, repository: PostgresCredentialRepository
    ) -> None:
        record = create(repository)
        window = timedelta(minutes=30)
        for _ in range(5):
            repository.record_login_failure(record.id, NOW, 5, window)

        later = NOW + timedelta(minutes=31)
        assert repository.record_login_failure(record.id, later, 5, window) == (1, None)

    def test_concurrent_failures_lock_exactly_at_threshold(
        self, repository: PostgresCredentialRepository
    ) -> None:
        record = create(repository)
        window = timedelta(minutes=30)

        with ThreadPoolExecutor(max_workers=10) as executor:
            list(
                executor.map(
                    lambda _: repository.record_login_failure(record.id, NOW, 5, window),
                    range(10),
                )
            )

        stored = repository.get_by_id(record.id)
        assert stored.login_failure_count == 5
        assert stored.locked_until == NOW + window

    def test_reset(self, repository: PostgresCredentialRepository) -> None:
        record = create(repository)
        for _ in range(5):
            repository.record_login_failure(record.id, NOW, 5, timedelta(minutes=30))

        repository.reset_login_failures(record.id)

        stored = repository.get_by_id(record.id)
        assert stored.login_failure_count == 0
        assert stored.locked_until is None


class TestPasswords:
    def test_update_password_keeps_bounded_history(
        self, repository: PostgresCredentialRepository
    ) -> None:
        record = create(repository)

        for i in range(7):
            repository.update_password(record.id, f"hash-{i}", 5)

        assert repository.get_password_hash(record.id) == "hash-6"
        assert repository.get_password_history(record.id) == [
            "hash-5",
            "hash-4",
            "hash-3",
            "hash-2",
            "hash-1",
        ]

    def test_update_password_clears_reset_token(
        self, repository: PostgresCredentialRepository
    ) -> None:
        record = create(repository)
        repository.set_password_reset(record.id, "c" * 64, NOW + timedelta(minutes=10))
        assert repository.get_by_reset_token_hash("c" * 64).id == record.id

        repository.update_password(record.id, "new-hash", 5)

        assert repository.get_by_reset_token_hash("c" * 64) is None

    def test_reset_token_guarded_update_applies_once(
        self, repository: PostgresCredentialRepository
    ) -> None:
        record = create(repository)
        repository.set_password_reset(record.id, "c" * 64, NOW + timedelta(minutes=10))

        assert repository.update_password(record.id, "wrong", 5, reset_token_hash="d" * 64) is False
        assert repository.update_password(record.id, "first", 5, reset_token_hash="c" * 64) is True
        assert repository.update_password(record.id, "second", 5, reset_token_hash="c" * 64) is False
        assert repository.get_password_hash(record.id) == "first"


class TestProfileAndStats:
    def test_update_profile_keeps_omitted_fields(
        self, repository: PostgresCredentialRepository
    ) -> None:
        record = create(repository)

        updated = repository.update_profile(record.id, None, "avatar.png")

        assert updated.profile.name == "Pg User"
        assert updated.profile.avatar == "avatar.png"

    def test_stats(self, repository: PostgresCredentialRepository) -> None:
        first = create(repository, "a@example.com")
        create(repository, "b@example.com")
        repository.create_user("c@example.com", HASH, Role.ADMIN, "", NOW - timedelta(days=60))
        repository.mark_verified(first.id, NOW)
        repository.set_active(first.id, False)

        stats = repository.get_stats(NOW.replace(day=1))

        assert stats.total_users == 3
        assert stats.active_users == 2
        assert stats.verified_users == 1
        assert stats.new_users_this_month == 2
        assert stats.by_role == {"user": 2, "admin": 1}
