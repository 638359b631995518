"""
Domain layer - Pure business logic with zero framework imports.

This package contains the authentication and session-lifecycle logic:
credential store, OTP issuer, login guard, token issuer and the auth
service that sequences them. It defines its own port interfaces for
infrastructure abstraction, ensuring true hexagonal architecture decoupling.
"""

from .auth import AuthService
from .credentials import CredentialStore
from .exceptions import (
    AccountInactive,
    AccountLocked,
    AlreadyRegistered,
    AlreadyVerified,
    AuthError,
    DuplicateEmail,
    EmailDeliveryFailed,
    EmailNotVerified,
    Expired,
    Forbidden,
    InvalidCode,
    InvalidCredentials,
    InvalidToken,
    NotFound,
    PasswordReused,
    ServiceUnavailable,
    TooManyAttempts,
    WeakPassword,
)
from .login_guard import LoginGuard
from .otp import OTPIssuer
from .ports import (
    AuthSession,
    CredentialRecord,
    CredentialRepository,
    EmailSender,
    RegistrationOutcome,
    Role,
    TokenPair,
    UserProfile,
    UserStats,
)
from .tokens import TokenIssuer

__all__ = [
    "AccountInactive",
    "AccountLocked",
    "AlreadyRegistered",
    "AlreadyVerified",
    "AuthError",
    "AuthService",
    "AuthSession",
    "CredentialRecord",
    "CredentialRepository",
    "CredentialStore",
    "DuplicateEmail",
    "EmailDeliveryFailed",
    "EmailNotVerified",
    "EmailSender",
    "Expired",
    "Forbidden",
    "InvalidCode",
    "InvalidCredentials",
    "InvalidToken",
    "LoginGuard",
    "NotFound",
    "OTPIssuer",
    "PasswordReused",
    "RegistrationOutcome",
    "Role",
    "ServiceUnavailable",
    "TokenIssuer",
    "TokenPair",
    "TooManyAttempts",
    "UserProfile",
    "UserStats",
    "WeakPassword",
]
