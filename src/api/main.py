"""
FastAPI application factory and configuration.

This module creates the FastAPI application instance,
configures exception handlers and lifespan events.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from psycopg_pool import ConnectionPool

from src.adapters.repository import InMemoryCredentialRepository, PostgresCredentialRepository
from src.adapters.repository.postgres import run_migrations
from src.api.dependencies import build_email_sender
from src.api.errors import register_exception_handlers
from src.api.v1 import router as v1_router
from src.config.settings import Settings, get_settings
from src.domain import CredentialRepository, EmailSender

logger = logging.getLogger(__name__)

# OpenAPI tags for documentation grouping
tags_metadata = [
    {
        "name": "auth",
        "description": "Registration, email verification, login and session lifecycle",
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    FastAPI lifespan context manager.

    Manages application startup and shutdown:
    - Configures logging from settings
    - Creates the credential repository (Postgres pool + migrations, or in-memory)
    - Creates the email sender
    - Closes the connection pool on shutdown
    """
    settings: Settings = app.state.settings
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger.info("Starting application...")

    pool: ConnectionPool | None = None
    if app.state.repository is None:
        if settings.storage_backend == "postgres":
            logger.info("Connecting to database...")
            # Create connection pool with explicit sizing
            pool = ConnectionPool(
                conninfo=settings.database_url,
                min_size=settings.pool_min_size,
                max_size=settings.pool_max_size,
            )
            logger.info("Running database migrations...")
            run_migrations(pool)
            app.state.repository = PostgresCredentialRepository(pool)
        else:
            logger.warning("Using in-memory credential storage; data is lost on restart")
            app.state.repository = InMemoryCredentialRepository()
    app.state.pool = pool

    if app.state.email_sender is None:
        app.state.email_sender = build_email_sender(settings)

    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    if pool is not None:
        pool.close()
        logger.info("Database connection pool closed")


def create_app(
    settings: Settings | None = None,
    repository: CredentialRepository | None = None,
    email_sender: EmailSender | None = None,
) -> FastAPI:
    """
    Build the application.

    Collaborators that are not passed in are created at startup from settings.
    """
    app = FastAPI(
        title="crm-auth",
        description="Authentication and session lifecycle API for the CRM",
        version="0.1.0",
        openapi_tags=tags_metadata,
        lifespan=lifespan,
    )
    app.state.settings = settings or get_settings()
    app.state.repository = repository
    app.state.email_sender = email_sender
    app.state.pool = None

    register_exception_handlers(app)

    # Include v1 API routes
    app.include_router(v1_router, prefix="/v1")

    @app.get("/health")
    def health_check(request: Request) -> dict[str, str]:
        """
        Health check endpoint with database validation.

        Returns 200 OK if application and database are healthy.
        A database failure surfaces as 503 through the exception handlers.
        """
        pool = request.app.state.pool
        if pool is not None:
            with pool.connection() as conn:
                conn.execute("SELECT 1")

        return {"status": "healthy"}

    return app


app = create_app()


def run() -> None:
    """Serve the application with uvicorn (the `crm-auth` console script)."""
    settings = get_settings()
    uvicorn.run(
        "src.api.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
