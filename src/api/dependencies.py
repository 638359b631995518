"""
FastAPI dependencies - Dependency injection factories.

This module provides Depends() factories for injecting
domain services and infrastructure adapters into routes.
"""

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.adapters.smtp.console import ConsoleEmailSender
from src.adapters.smtp.smtp import SmtpEmailSender
from src.config.settings import Settings
from src.domain import (
    AuthService,
    CredentialRecord,
    CredentialRepository,
    CredentialStore,
    EmailSender,
    Forbidden,
    InvalidToken,
    LoginGuard,
    OTPIssuer,
    Role,
    TokenIssuer,
)


def build_email_sender(settings: Settings) -> EmailSender:
    """Pick the email adapter named by ``email_backend``."""
    if settings.email_backend == "smtp":
        return SmtpEmailSender(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.smtp_from,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
        )
    return ConsoleEmailSender()


def build_auth_service(
    repository: CredentialRepository, email_sender: EmailSender, settings: Settings
) -> AuthService:
    """
    Wire the domain collaborators around one repository.

    All components share the same repository so that counter updates
    made by one are visible to the others.
    """
    return AuthService(
        store=CredentialStore(
            repository,
            bcrypt_cost=settings.bcrypt_cost,
            history_size=settings.password_history_size,
        ),
        otp=OTPIssuer(
            repository,
            ttl_minutes=settings.otp_ttl_minutes,
            max_attempts=settings.otp_max_attempts,
        ),
        guard=LoginGuard(
            repository,
            max_failures=settings.login_max_failures,
            lock_minutes=settings.lock_minutes,
        ),
        tokens=TokenIssuer(
            repository,
            access_secret=settings.jwt_secret,
            refresh_secret=settings.jwt_refresh_secret,
            algorithm=settings.jwt_algorithm,
            access_ttl_minutes=settings.access_token_ttl_minutes,
            refresh_ttl_days=settings.refresh_token_ttl_days,
        ),
        email_sender=email_sender,
        reset_ttl_minutes=settings.reset_token_ttl_minutes,
    )


def get_settings_from_app(request: Request) -> Settings:
    """Settings the app was created with (see create_app)."""
    return request.app.state.settings


def get_auth_service(request: Request) -> AuthService:
    """
    Create the auth service with injected dependencies.

    The repository and email sender are created during app lifespan
    startup and stored in app.state.
    """
    state = request.app.state
    return build_auth_service(state.repository, state.email_sender, state.settings)


# Bearer security scheme for OpenAPI documentation. auto_error is off so a
# missing header comes back as the INVALID_TOKEN envelope instead of a bare 403.
bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    service: AuthService = Depends(get_auth_service),
) -> CredentialRecord:
    """
    Resolve the bearer access token to the calling user.

    Raises:
        InvalidToken: Header missing, token invalid, or user gone/inactive
    """
    if credentials is None:
        raise InvalidToken("Not authorized to access this route")
    return service.authenticate(credentials.credentials)


def require_admin(user: CredentialRecord = Depends(get_current_user)) -> CredentialRecord:
    if user.role != Role.ADMIN:
        raise Forbidden()
    return user
