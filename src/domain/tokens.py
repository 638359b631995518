"""
Session/token issuer - signed bearer credentials.

Access and refresh tokens are self-contained HS256 JWTs signed with
separate secrets. There is no server-side session store and no
revocation list: a token stays valid until its natural expiry.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import timedelta

import jwt

from .exceptions import InvalidToken
from .ports import Clock, CredentialRecord, CredentialRepository, TokenPair, utc_now

logger = logging.getLogger(__name__)

ACCESS = "access"
REFRESH = "refresh"


@dataclass
class TokenIssuer:
    """Mints, validates and rotates access/refresh tokens."""

    repository: CredentialRepository
    access_secret: str
    refresh_secret: str
    algorithm: str = "HS256"
    access_ttl_minutes: int = 15
    refresh_ttl_days: int = 7
    clock: Clock = field(default=utc_now)

    @property
    def access_ttl(self) -> timedelta:
        return timedelta(minutes=self.access_ttl_minutes)

    @property
    def refresh_ttl(self) -> timedelta:
        return timedelta(days=self.refresh_ttl_days)

    def _encode(self, user_id: str, token_type: str, secret: str, ttl: timedelta) -> str:
        now = self.clock()
        payload = {
            "sub": user_id,
            "type": token_type,
            "iat": now,
            "exp": now + ttl,
            "jti": secrets.token_hex(16),  # distinct tokens within the same second
        }
        return jwt.encode(payload, secret, algorithm=self.algorithm)

    def _decode(self, token: str, secret: str, expected_type: str) -> str:
        try:
            # Expiry is checked against self.clock below, not wall time
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self.algorithm],
                options={"require": ["exp", "sub"], "verify_exp": False, "verify_iat": False},
            )
        except jwt.InvalidTokenError:
            raise InvalidToken() from None

        if payload.get("type") != expected_type:
            raise InvalidToken()
        if payload["exp"] <= self.clock().timestamp():
            raise InvalidToken("Token has expired")
        return payload["sub"]

    def issue_access_token(self, user_id: str) -> str:
        return self._encode(user_id, ACCESS, self.access_secret, self.access_ttl)

    def issue_refresh_token(self, user_id: str) -> str:
        return self._encode(user_id, REFRESH, self.refresh_secret, self.refresh_ttl)

    def issue_pair(self, user_id: str) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access_token(user_id),
            refresh_token=self.issue_refresh_token(user_id),
            access_expires_in=int(self.access_ttl.total_seconds()),
            refresh_expires_in=int(self.refresh_ttl.total_seconds()),
        )

    def validate_access_token(self, token: str) -> str:
        """
        Returns:
            The user id encoded in token

        Raises:
            InvalidToken: Bad signature, wrong token type or expired
        """
        return self._decode(token, self.access_secret, ACCESS)

    def refresh(self, refresh_token: str) -> tuple[CredentialRecord, TokenPair]:
        """
        Rotate a refresh token into a new access/refresh pair.

        Raises:
            InvalidToken: Bad or expired token, or the user no longer
                exists or has been deactivated
        """
        user_id = self._decode(refresh_token, self.refresh_secret, REFRESH)
        record = self.repository.get_by_id(user_id)
        if record is None or not record.is_active:
            logger.info("Refresh rejected for missing or inactive user %s", user_id)
            raise InvalidToken()
        return record, self.issue_pair(record.id)
