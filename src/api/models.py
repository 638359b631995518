"""
API request and response models.

Pydantic models for FastAPI endpoint validation and OpenAPI schema generation.
Every endpoint answers with the same envelope: ``success`` and ``message``,
plus optional ``code``, ``data`` and ``token`` fields.
"""

from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, EmailStr, Field

from src.domain.ports import CredentialRecord, Role, UserStats

DataT = TypeVar("DataT")


# Requests


class RegisterRequest(BaseModel):
    """Request model for user registration."""

    name: str = Field(default="", max_length=50, description="Display name")
    email: EmailStr
    # Strength rules are enforced by the domain so that failures come back
    # as WEAK_PASSWORD with the full list of violated rules.
    password: str = Field(..., max_length=128, description="User password")
    role: Role = Role.USER


class VerifyOtpRequest(BaseModel):
    """Request model for email verification."""

    email: EmailStr
    otp: str = Field(
        ...,
        min_length=6,
        max_length=6,
        pattern=r"^\d{6}$",
        description="6-digit verification code",
    )


class ResendOtpRequest(BaseModel):
    email: EmailStr


class LoginRequest(BaseModel):
    """Request model for email/password login."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class RefreshRequest(BaseModel):
    """Refresh token in the body, for clients that cannot hold the cookie."""

    refresh_token: str | None = None


class UpdateProfileRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=50)
    avatar: str | None = Field(default=None, max_length=2048)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., max_length=128)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    password: str = Field(..., max_length=128)


# Responses


class UserResponse(BaseModel):
    """Public view of a credential record; never carries hashes or codes."""

    id: str
    email: str
    name: str
    avatar: str | None = None
    role: Role
    is_email_verified: bool
    is_active: bool
    last_login_at: datetime | None = None
    created_at: datetime

    @classmethod
    def from_record(cls, record: CredentialRecord) -> "UserResponse":
        return cls(
            id=record.id,
            email=record.email,
            name=record.profile.name,
            avatar=record.profile.avatar,
            role=record.role,
            is_email_verified=record.is_email_verified,
            is_active=record.is_active,
            last_login_at=record.last_login_at,
            created_at=record.created_at,
        )


class RegisterData(BaseModel):
    email: str
    otp_expires_in_minutes: int


class ResendOtpData(BaseModel):
    otp_expires_in_minutes: int


class SessionData(BaseModel):
    """Signed-in user plus access token lifetime (the token itself is top-level)."""

    user: UserResponse
    expires_in: int = Field(..., description="Access token lifetime in seconds")


class UserData(BaseModel):
    user: UserResponse


class StatsData(BaseModel):
    total_users: int
    active_users: int
    verified_users: int
    new_users_this_month: int
    by_role: dict[str, int]

    @classmethod
    def from_stats(cls, stats: UserStats) -> "StatsData":
        return cls(
            total_users=stats.total_users,
            active_users=stats.active_users,
            verified_users=stats.verified_users,
            new_users_this_month=stats.new_users_this_month,
            by_role=stats.by_role,
        )


class Envelope(BaseModel, Generic[DataT]):
    """Successful response envelope."""

    success: bool = True
    message: str
    data: DataT | None = None
    token: str | None = Field(default=None, description="Access token, when one was issued")


class ErrorResponse(BaseModel):
    """Standard error response model."""

    success: bool = False
    message: str
    code: str
    data: dict[str, Any] | None = None


class MessageResponse(BaseModel):
    """Envelope for endpoints that only report an outcome."""

    success: bool = True
    message: str
