"""
Console email sender adapter - Implements EmailSender protocol.

This module provides a console-based implementation of the domain's
email sender port, logging messages to stdout for demo purposes.
"""

import logging

logger = logging.getLogger(__name__)


class ConsoleEmailSender:
    """
    Implements EmailSender protocol via console logging.

    Uses structural subtyping - no explicit inheritance from Protocol.
    For demo/development purposes - prints emails (including OTP codes
    and reset tokens) to the log.
    """

    def send_email(self, recipient: str, subject: str, body: str) -> None:
        """
        Log the email to console (simulates email delivery).

        The message is logged at INFO level to be visible in docker-compose logs.

        Args:
            recipient: Recipient email address (normalized by domain layer)
            subject: Email subject line
            body: Plain-text body
        """
        logger.info("[EMAIL] To: %s Subject: %s\n%s", recipient, subject, body)
