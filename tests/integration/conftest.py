"""
Shared fixtures for integration tests.

The application runs through its real lifespan on the in-memory backend,
with a recording email sender so tests can read codes and reset tokens.
"""

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from src.adapters.repository.memory import InMemoryCredentialRepository
from src.api.main import create_app
from src.config.settings import Settings


@pytest.fixture
def client(
    memory_settings: Settings,
    repository: InMemoryCredentialRepository,
    email_sender,
) -> Iterator[TestClient]:
    app = create_app(memory_settings, repository=repository, email_sender=email_sender)
    with TestClient(app) as test_client:
        yield test_client
