"""
Shared test fixtures and configuration.

This module provides pytest fixtures for:
- A controllable clock for expiry tests
- An email sender that records messages instead of delivering them
- Domain services wired around the in-memory repository
- Settings for the in-memory application backend
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import pytest

from src.adapters.repository.memory import InMemoryCredentialRepository
from src.config.settings import Settings
from src.domain import (
    AuthService,
    CredentialStore,
    EmailDeliveryFailed,
    LoginGuard,
    OTPIssuer,
    TokenIssuer,
)

# bcrypt's minimum work factor keeps the suite fast
TEST_BCRYPT_COST = 4

STRONG_PASSWORD = "Str0ng!Pass"
OTHER_STRONG_PASSWORD = "An0ther!Pass"

ACCESS_SECRET = "test-access-secret-at-least-32-bytes!"
REFRESH_SECRET = "test-refresh-secret-at-least-32-bytes"


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class SentEmail:
    recipient: str
    subject: str
    body: str


@dataclass
class RecordingEmailSender:
    """EmailSender that keeps every message; set ``fail`` to simulate an outage."""

    sent: list[SentEmail] = field(default_factory=list)
    fail: bool = False

    def send_email(self, recipient: str, subject: str, body: str) -> None:
        if self.fail:
            raise EmailDeliveryFailed()
        self.sent.append(SentEmail(recipient, subject, body))

    def to(self, recipient: str) -> list[SentEmail]:
        return [msg for msg in self.sent if msg.recipient == recipient]

    def last_code(self, recipient: str) -> str:
        """Most recent 6-digit verification code sent to recipient."""
        for msg in reversed(self.to(recipient)):
            match = re.search(r"verification code is: (\d{6})", msg.body)
            if match:
                return match.group(1)
        raise AssertionError(f"No verification code sent to {recipient}")

    def last_reset_token(self, recipient: str) -> str:
        for msg in reversed(self.to(recipient)):
            match = re.search(r"Reset token: ([0-9a-f]{40})", msg.body)
            if match:
                return match.group(1)
        raise AssertionError(f"No reset token sent to {recipient}")


@pytest.fixture
def clock() -> FixedClock:
    # Close to wall time so tokens look plausible, but fully controlled
    return FixedClock(datetime.now(timezone.utc).replace(microsecond=0))


@pytest.fixture
def repository() -> InMemoryCredentialRepository:
    return InMemoryCredentialRepository()


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def store(repository: InMemoryCredentialRepository, clock: FixedClock) -> CredentialStore:
    return CredentialStore(repository, bcrypt_cost=TEST_BCRYPT_COST, clock=clock)


@pytest.fixture
def otp_issuer(repository: InMemoryCredentialRepository, clock: FixedClock) -> OTPIssuer:
    return OTPIssuer(repository, clock=clock)


@pytest.fixture
def login_guard(repository: InMemoryCredentialRepository, clock: FixedClock) -> LoginGuard:
    return LoginGuard(repository, clock=clock)


@pytest.fixture
def token_issuer(repository: InMemoryCredentialRepository, clock: FixedClock) -> TokenIssuer:
    return TokenIssuer(
        repository, access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET, clock=clock
    )


@pytest.fixture
def auth_service(
    store: CredentialStore,
    otp_issuer: OTPIssuer,
    login_guard: LoginGuard,
    token_issuer: TokenIssuer,
    email_sender: RecordingEmailSender,
    clock: FixedClock,
) -> AuthService:
    return AuthService(
        store=store,
        otp=otp_issuer,
        guard=login_guard,
        tokens=token_issuer,
        email_sender=email_sender,
        clock=clock,
    )


@pytest.fixture
def memory_settings() -> Settings:
    """Settings for an application running on the in-memory backend."""
    return Settings(
        _env_file=None,
        storage_backend="memory",
        email_backend="console",
        bcrypt_cost=TEST_BCRYPT_COST,
        jwt_secret=ACCESS_SECRET,
        jwt_refresh_secret=REFRESH_SECRET,
    )
