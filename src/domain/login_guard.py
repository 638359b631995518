"""
Login guard - failed-attempt counting and temporary account lockout.

State machine (lazy, no background timer):
    Normal --(threshold failures)--> Locked
    Locked --(lock window elapses)--> Normal   (observed on next check/failure)
    Locked --(record_success)-------> Normal
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta

from .exceptions import AccountLocked
from .ports import Clock, CredentialRecord, CredentialRepository, utc_now

logger = logging.getLogger(__name__)


@dataclass
class LoginGuard:
    """Brute-force mitigation, independent of password correctness."""

    repository: CredentialRepository
    max_failures: int = 5
    lock_minutes: int = 30
    clock: Clock = field(default=utc_now)

    def check_eligible(self, record: CredentialRecord) -> None:
        """
        Raises:
            AccountLocked: If record carries a lock that has not yet elapsed
        """
        if record.is_locked(self.clock()):
            raise AccountLocked(record.locked_until)

    def record_failure(self, record: CredentialRecord) -> int:
        """
        Count a failed login; lock the account when the threshold is reached.

        Returns:
            Remaining attempts before lockout (0 once locked)
        """
        count, locked_until = self.repository.record_login_failure(
            record.id,
            now=self.clock(),
            threshold=self.max_failures,
            lock_window=timedelta(minutes=self.lock_minutes),
        )
        if locked_until is not None:
            logger.warning(
                "Account %s locked until %s after %d failed logins",
                record.id,
                locked_until,
                count,
            )
            return 0
        return max(0, self.max_failures - count)

    def record_success(self, record: CredentialRecord) -> None:
        self.repository.reset_login_failures(record.id)
