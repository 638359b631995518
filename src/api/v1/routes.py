"""
API v1 routes.

Defines REST endpoints for the authentication and session API under
``/v1/auth``. Handlers are plain ``def`` functions: bcrypt and the
psycopg pool are blocking, so FastAPI runs them in its threadpool.

Domain errors propagate to the handlers in ``src.api.errors``.
"""

from fastapi import APIRouter, Cookie, Depends, Request, Response, status

from src.api.dependencies import (
    get_auth_service,
    get_current_user,
    get_settings_from_app,
    require_admin,
)
from src.api.models import (
    ChangePasswordRequest,
    Envelope,
    ErrorResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    RegisterData,
    RegisterRequest,
    ResendOtpData,
    ResendOtpRequest,
    ResetPasswordRequest,
    SessionData,
    StatsData,
    UpdateProfileRequest,
    UserData,
    UserResponse,
    VerifyOtpRequest,
)
from src.config.settings import Settings
from src.domain import AuthService, AuthSession, CredentialRecord, InvalidToken

router = APIRouter(prefix="/auth", tags=["auth"])

REFRESH_COOKIE = "refresh_token"
REFRESH_COOKIE_PATH = "/v1/auth"


def _set_refresh_cookie(response: Response, session: AuthSession, settings: Settings) -> None:
    response.set_cookie(
        key=REFRESH_COOKIE,
        value=session.tokens.refresh_token,
        max_age=session.tokens.refresh_expires_in,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict",
        path=REFRESH_COOKIE_PATH,
    )


def _session_envelope(
    message: str, session: AuthSession, response: Response, settings: Settings
) -> Envelope[SessionData]:
    _set_refresh_cookie(response, session, settings)
    return Envelope[SessionData](
        message=message,
        token=session.tokens.access_token,
        data=SessionData(
            user=UserResponse.from_record(session.user),
            expires_in=session.tokens.access_expires_in,
        ),
    )


@router.post(
    "/register",
    response_model=Envelope[RegisterData],
    status_code=status.HTTP_201_CREATED,
    responses={
        200: {"model": Envelope[RegisterData], "description": "Pending registration, code re-sent"},
        400: {"model": ErrorResponse, "description": "Weak password"},
        409: {"model": ErrorResponse, "description": "Email already registered"},
        503: {"model": ErrorResponse, "description": "Verification email could not be sent"},
    },
    summary="Register a new user",
    description="Create an unverified account and email a 6-digit verification code. "
    "Registering again with a pending email re-sends the code.",
)
def register(
    request_data: RegisterRequest,
    response: Response,
    service: AuthService = Depends(get_auth_service),
) -> Envelope[RegisterData]:
    outcome = service.register(
        request_data.email,
        request_data.password,
        name=request_data.name,
        role=request_data.role,
    )
    if outcome.resent:
        response.status_code = status.HTTP_200_OK
        message = "User already registered but not verified. New OTP sent to email."
    else:
        message = "User registered successfully. Please check your email for OTP verification."
    return Envelope[RegisterData](
        message=message,
        data=RegisterData(
            email=outcome.email, otp_expires_in_minutes=outcome.otp_expires_in_minutes
        ),
    )


@router.post(
    "/verify-otp",
    response_model=Envelope[SessionData],
    responses={
        400: {"model": ErrorResponse, "description": "Invalid or expired code"},
        404: {"model": ErrorResponse, "description": "Unknown email"},
        409: {"model": ErrorResponse, "description": "Email already verified"},
        429: {"model": ErrorResponse, "description": "Too many attempts"},
    },
    summary="Verify email with the emailed code",
)
def verify_otp(
    request_data: VerifyOtpRequest,
    request: Request,
    response: Response,
    service: AuthService = Depends(get_auth_service),
) -> Envelope[SessionData]:
    """
    Verify the account and sign in.

    - **email**: Email used at registration
    - **otp**: 6-digit verification code from email

    Returns an access token; the refresh token is set as an http-only cookie.
    """
    session = service.verify_otp(request_data.email, request_data.otp)
    return _session_envelope(
        "Email verified successfully", session, response, get_settings_from_app(request)
    )


@router.post(
    "/resend-otp",
    response_model=Envelope[ResendOtpData],
    responses={
        404: {"model": ErrorResponse, "description": "Unknown email"},
        409: {"model": ErrorResponse, "description": "Email already verified"},
    },
    summary="Send a fresh verification code",
)
def resend_otp(
    request_data: ResendOtpRequest,
    service: AuthService = Depends(get_auth_service),
) -> Envelope[ResendOtpData]:
    ttl = service.resend_otp(request_data.email)
    return Envelope[ResendOtpData](
        message="New OTP sent to your email",
        data=ResendOtpData(otp_expires_in_minutes=ttl),
    )


@router.post(
    "/login",
    response_model=Envelope[SessionData],
    responses={
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
        403: {"model": ErrorResponse, "description": "Email not verified or account inactive"},
        423: {"model": ErrorResponse, "description": "Account locked"},
    },
    summary="Log in with email and password",
)
def login(
    request_data: LoginRequest,
    request: Request,
    response: Response,
    service: AuthService = Depends(get_auth_service),
) -> Envelope[SessionData]:
    session = service.login(request_data.email, request_data.password)
    return _session_envelope(
        "Login successful", session, response, get_settings_from_app(request)
    )


@router.post(
    "/refresh",
    response_model=Envelope[SessionData],
    responses={401: {"model": ErrorResponse, "description": "Invalid refresh token"}},
    summary="Rotate the token pair",
    description="Reads the refresh token from the cookie, or from the body when no cookie is sent.",
)
def refresh(
    request: Request,
    response: Response,
    body: RefreshRequest | None = None,
    refresh_token: str | None = Cookie(default=None),
    service: AuthService = Depends(get_auth_service),
) -> Envelope[SessionData]:
    token = refresh_token or (body.refresh_token if body else None)
    if not token:
        raise InvalidToken("Refresh token not provided")
    session = service.refresh(token)
    return _session_envelope(
        "Token refreshed successfully", session, response, get_settings_from_app(request)
    )


@router.post(
    "/logout",
    response_model=MessageResponse,
    responses={401: {"model": ErrorResponse, "description": "Not authenticated"}},
    summary="Log out",
)
def logout(
    response: Response,
    user: CredentialRecord = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    service.logout(user.id)
    response.delete_cookie(REFRESH_COOKIE, path=REFRESH_COOKIE_PATH)
    return MessageResponse(message="Logged out successfully")


@router.get(
    "/me",
    response_model=Envelope[UserData],
    responses={401: {"model": ErrorResponse, "description": "Not authenticated"}},
    summary="Current user",
)
def get_me(
    user: CredentialRecord = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> Envelope[UserData]:
    record = service.get_me(user.id)
    return Envelope[UserData](
        message="User retrieved successfully",
        data=UserData(user=UserResponse.from_record(record)),
    )


@router.put(
    "/me",
    response_model=Envelope[UserData],
    responses={401: {"model": ErrorResponse, "description": "Not authenticated"}},
    summary="Update profile",
)
def update_me(
    request_data: UpdateProfileRequest,
    user: CredentialRecord = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> Envelope[UserData]:
    record = service.update_profile(
        user.id, name=request_data.name, avatar=request_data.avatar
    )
    return Envelope[UserData](
        message="Profile updated successfully",
        data=UserData(user=UserResponse.from_record(record)),
    )


@router.put(
    "/password",
    response_model=Envelope[SessionData],
    responses={
        400: {"model": ErrorResponse, "description": "Weak or recently used password"},
        401: {"model": ErrorResponse, "description": "Current password is incorrect"},
    },
    summary="Change password",
)
def change_password(
    request_data: ChangePasswordRequest,
    request: Request,
    response: Response,
    user: CredentialRecord = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> Envelope[SessionData]:
    session = service.change_password(
        user.id, request_data.current_password, request_data.new_password
    )
    return _session_envelope(
        "Password updated successfully", session, response, get_settings_from_app(request)
    )


@router.post(
    "/forgot-password",
    response_model=MessageResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Unknown email"},
        503: {"model": ErrorResponse, "description": "Reset email could not be sent"},
    },
    summary="Email a password reset token",
)
def forgot_password(
    request_data: ForgotPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    service.request_password_reset(request_data.email)
    return MessageResponse(message="Password reset email sent")


@router.put(
    "/reset-password/{token}",
    response_model=Envelope[SessionData],
    responses={
        400: {"model": ErrorResponse, "description": "Expired token or weak password"},
        401: {"model": ErrorResponse, "description": "Invalid reset token"},
    },
    summary="Set a new password with a reset token",
)
def reset_password(
    token: str,
    request_data: ResetPasswordRequest,
    request: Request,
    response: Response,
    service: AuthService = Depends(get_auth_service),
) -> Envelope[SessionData]:
    session = service.reset_password(token, request_data.password)
    return _session_envelope(
        "Password reset successful", session, response, get_settings_from_app(request)
    )


@router.get(
    "/stats",
    response_model=Envelope[StatsData],
    responses={
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        403: {"model": ErrorResponse, "description": "Admin role required"},
    },
    summary="User statistics (admin)",
)
def user_stats(
    _admin: CredentialRecord = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> Envelope[StatsData]:
    stats = service.user_stats()
    return Envelope[StatsData](
        message="User statistics retrieved successfully",
        data=StatsData.from_stats(stats),
    )
