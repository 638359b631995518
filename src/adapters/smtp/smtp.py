"""
SMTP email sender adapter - Implements EmailSender protocol.

Delivers plain-text messages through an SMTP relay using smtplib,
with optional STARTTLS and login. Transport failures are converted
to the domain's EmailDeliveryFailed so callers can tell "try again
later" apart from credential errors.
"""

import logging
import smtplib
from email.message import EmailMessage

from src.domain.exceptions import EmailDeliveryFailed

logger = logging.getLogger(__name__)


class SmtpEmailSender:
    """
    Implements EmailSender protocol via an SMTP relay.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._timeout = timeout

    def send_email(self, recipient: str, subject: str, body: str) -> None:
        """
        Send one message.

        Raises:
            EmailDeliveryFailed: On any SMTP or socket error
        """
        msg = EmailMessage()
        msg["From"] = self._sender
        msg["To"] = recipient
        msg["Subject"] = subject
        msg.set_content(body)

        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
                if self._use_tls:
                    server.starttls()
                if self._username:
                    server.login(self._username, self._password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email to %s failed: %s", recipient, e)
            raise EmailDeliveryFailed() from e

        logger.info("Email '%s' sent to %s", subject, recipient)
