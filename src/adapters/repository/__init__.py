"""Repository adapters - Database implementations."""

from .memory import InMemoryCredentialRepository
from .postgres import PostgresCredentialRepository, run_migrations

__all__ = ["InMemoryCredentialRepository", "PostgresCredentialRepository", "run_migrations"]
