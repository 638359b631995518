"""
Domain exceptions - Semantic error types for authentication.

This module defines domain-specific exceptions that communicate
business rule violations without leaking infrastructure details.
Each exception carries a stable machine-readable ``code`` that the
API layer copies into the response envelope.
"""

from datetime import datetime


class AuthError(Exception):
    """Base class for authentication domain errors."""

    code = "AUTH_ERROR"
    default_message = "Authentication error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class DuplicateEmail(AuthError):
    """A credential record already exists for this email."""

    code = "DUPLICATE_EMAIL"
    default_message = "User with this email already exists"

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__()

    def __str__(self) -> str:
        return f"{self.message}: {self.email}"


class AlreadyRegistered(DuplicateEmail):
    """Registration attempted for an email that is already verified."""

    code = "ALREADY_REGISTERED"
    default_message = "User with this email already exists and is verified"


class AlreadyVerified(AuthError):
    """Verification requested for an email that is already verified."""

    code = "ALREADY_VERIFIED"
    default_message = "Email is already verified"


class WeakPassword(AuthError):
    """Password does not satisfy the strength policy."""

    code = "WEAK_PASSWORD"
    default_message = "Password does not meet security requirements"

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__()


class PasswordReused(WeakPassword):
    """New password matches the current or a recently used password."""

    code = "PASSWORD_REUSED"
    default_message = "Password was used recently"

    def __init__(self) -> None:
        super().__init__(["Password must differ from recently used passwords"])


class InvalidCredentials(AuthError):
    """Email/password combination is not valid."""

    code = "INVALID_CREDENTIALS"
    default_message = "Invalid credentials"

    def __init__(
        self, message: str | None = None, attempts_remaining: int | None = None
    ) -> None:
        self.attempts_remaining = attempts_remaining
        super().__init__(message)


class EmailNotVerified(AuthError):
    """Login attempted before the email was verified; a fresh code was sent."""

    code = "EMAIL_NOT_VERIFIED"
    default_message = "Please verify your email before logging in. A new OTP has been sent."

    def __init__(self, email: str) -> None:
        self.email = email
        super().__init__()


class AccountLocked(AuthError):
    """Too many failed logins; the account is locked until ``locked_until``."""

    code = "ACCOUNT_LOCKED"
    default_message = (
        "Account is temporarily locked due to too many failed login attempts"
    )

    def __init__(self, locked_until: datetime) -> None:
        self.locked_until = locked_until
        super().__init__()


class AccountInactive(AuthError):
    """Account was deactivated by an administrator."""

    code = "ACCOUNT_INACTIVE"
    default_message = "Account is deactivated. Please contact administrator."


class Expired(AuthError):
    """OTP or password reset token is past its expiry."""

    code = "EXPIRED"
    default_message = "Code has expired. Please request a new one."


class TooManyAttempts(AuthError):
    """OTP attempt ceiling reached; a new code must be issued."""

    code = "TOO_MANY_ATTEMPTS"
    default_message = "Too many OTP attempts. Please request a new OTP."


class InvalidCode(AuthError):
    """OTP does not match the outstanding code."""

    code = "INVALID_CODE"
    default_message = "Invalid OTP"


class InvalidToken(AuthError):
    """Bearer, refresh or reset token failed verification."""

    code = "INVALID_TOKEN"
    default_message = "Invalid or expired token"


class NotFound(AuthError):
    """No credential record matches the request."""

    code = "NOT_FOUND"
    default_message = "User not found"


class ServiceUnavailable(AuthError):
    """Infrastructure failure; the client should retry later."""

    code = "SERVICE_UNAVAILABLE"
    default_message = "Service temporarily unavailable. Please try again later."


class EmailDeliveryFailed(ServiceUnavailable):
    """Email collaborator could not deliver the message."""

    code = "EMAIL_DELIVERY_FAILED"
    default_message = "Failed to send email. Please try again."


class Forbidden(AuthError):
    """Authenticated user lacks the role required for the operation."""

    code = "FORBIDDEN"
    default_message = "Not authorized to access this route"
