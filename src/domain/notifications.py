"""Subject/body builders for the emails sent during auth flows."""

APP_NAME = "CRM System"


def verification_email(name: str, code: str, ttl_minutes: int) -> tuple[str, str]:
    greeting = f"Hello {name}," if name else "Hello,"
    body = (
        f"{greeting}\n\n"
        f"Your {APP_NAME} verification code is: {code}\n\n"
        f"The code expires in {ttl_minutes} minutes. "
        "If you did not request it, you can ignore this email.\n"
    )
    return "Email Verification - OTP Code", body


def welcome_email(name: str) -> tuple[str, str]:
    greeting = f"Hello {name}," if name else "Hello,"
    body = (
        f"{greeting}\n\n"
        f"Your email has been verified and your {APP_NAME} account is ready.\n"
    )
    return f"Welcome to {APP_NAME}", body


def password_reset_email(name: str, token: str, ttl_minutes: int) -> tuple[str, str]:
    greeting = f"Hello {name}," if name else "Hello,"
    body = (
        f"{greeting}\n\n"
        "You are receiving this email because you (or someone else) requested "
        "a password reset.\n\n"
        f"Reset token: {token}\n\n"
        f"The token expires in {ttl_minutes} minutes. "
        "If you did not request a reset, your password stays unchanged.\n"
    )
    return "Password Reset Request", body
