"""
OTP issuer - one-time code lifecycle for email verification.

Only the SHA-256 hash of a code is ever persisted. The plaintext code
is returned exactly once by issue() so the caller can hand it to the
email collaborator.

Verification order:
1. Outstanding code past its expiry      -> Expired
2. Attempt counter already at ceiling    -> TooManyAttempts
3. No outstanding code                   -> InvalidCode
4. Atomic increment of attempt counter
5. Hash match and code still current     -> success (fields cleared)
6. Mismatch on the attempt that reaches
   the ceiling                           -> TooManyAttempts (code dropped)
7. Any other mismatch                    -> InvalidCode
"""

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass, field
from datetime import timedelta

from .exceptions import Expired, InvalidCode, TooManyAttempts
from .ports import Clock, CredentialRecord, CredentialRepository, utc_now

logger = logging.getLogger(__name__)

OTP_LENGTH = 6


def generate_otp() -> str:
    """
    Generate cryptographically secure 6-digit code.

    Returns string to preserve leading zeros.
    """
    return "".join(secrets.choice("0123456789") for _ in range(OTP_LENGTH))


def hash_code(code: str) -> str:
    return hashlib.sha256(code.encode()).hexdigest()


@dataclass
class OTPIssuer:
    """Issues and verifies one outstanding code per credential record."""

    repository: CredentialRepository
    ttl_minutes: int = 15
    max_attempts: int = 5
    clock: Clock = field(default=utc_now)

    def issue(self, record: CredentialRecord) -> str:
        """
        Generate a fresh code for record, replacing any outstanding one.

        Returns:
            The plaintext code (never stored)
        """
        code = generate_otp()
        expires_at = self.clock() + timedelta(minutes=self.ttl_minutes)
        self.repository.set_otp(record.id, hash_code(code), expires_at)
        logger.info("Issued verification code for %s (expires %s)", record.id, expires_at)
        return code

    def verify(self, record: CredentialRecord, candidate_code: str) -> None:
        """
        Check candidate_code against the outstanding code on record.

        record must be a snapshot read just before this call.

        Raises:
            Expired: Outstanding code is past its expiry
            TooManyAttempts: Attempt ceiling reached
            InvalidCode: No outstanding code, or candidate does not match
        """
        if record.otp_expires_at is not None and self.clock() > record.otp_expires_at:
            raise Expired()
        if record.otp_attempt_count >= self.max_attempts:
            raise TooManyAttempts()
        if record.otp_hash is None:
            raise InvalidCode()

        attempts = self.repository.increment_otp_attempts(record.id, self.max_attempts)
        if attempts is None:
            # Concurrent attempts already used up the ceiling
            raise TooManyAttempts()

        matches = hmac.compare_digest(record.otp_hash, hash_code(candidate_code))
        if matches and self.repository.consume_otp(record.id, record.otp_hash):
            logger.info("Verification code accepted for %s", record.id)
            return

        if attempts >= self.max_attempts:
            self.repository.invalidate_otp(record.id)
            logger.warning(
                "Verification code invalidated for %s after %d attempts", record.id, attempts
            )
            raise TooManyAttempts()

        logger.info("Invalid verification code for %s (attempt %d)", record.id, attempts)
        raise InvalidCode()
