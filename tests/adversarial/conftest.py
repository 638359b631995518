"""
Shared fixtures for adversarial tests.

Attack simulations run against the auth service wired to the in-memory
repository; the same atomic-counter contract is exercised against
PostgreSQL in tests/integration/test_postgres_repository.py.
"""

from collections.abc import Callable

import pytest

from src.domain import AuthService

ATTACK_PASSWORD = "Att4ck!Target"


@pytest.fixture
def verified_user(auth_service: AuthService, email_sender) -> Callable[[str], str]:
    """Factory registering and verifying an account; returns its email."""

    def create(email: str) -> str:
        auth_service.register(email, ATTACK_PASSWORD, name="Target")
        auth_service.verify_otp(email, email_sender.last_code(email))
        return email

    return create


@pytest.fixture
def pending_user(auth_service: AuthService) -> Callable[[str], str]:
    """Factory registering an account that is left unverified."""

    def create(email: str) -> str:
        auth_service.register(email, ATTACK_PASSWORD, name="Target")
        return email

    return create
