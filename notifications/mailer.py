"""Outgoing email over SMTP."""

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

class Mailer:
    """Sends multipart (text + HTML) email through an SMTP server.

    When no host is configured, messages are logged instead of sent so a
    development setup works without a mail server.
    """

    def __init__(
        self,
        smtp_host: str = '',
        smtp_port: int = 587,
        smtp_user: str = '',
        smtp_password: str = '',
        from_email: str = 'no-reply@scrapmarket.local',
        use_tls: bool = True
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_email = from_email
        self.use_tls = use_tls

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> 'Mailer':
        """Build a mailer from the smtp_* settings."""
        return cls(
            smtp_host=settings['smtp_host'],
            smtp_port=settings['smtp_port'],
            smtp_user=settings['smtp_user'],
            smtp_password=settings['smtp_password'],
            from_email=settings['smtp_sender'],
            use_tls=settings['smtp_use_tls']
        )

    def build_message(
        self,
        to: str,
        subject: str,
        text: str,
        html: Optional[str] = None
    ) -> MIMEMultipart:
        msg = MIMEMultipart('alternative')
        msg['From'] = self.from_email
        msg['To'] = to
        msg['Subject'] = subject
        msg.attach(MIMEText(text, 'plain'))
        if html:
            msg.attach(MIMEText(html, 'html'))
        return msg

    def _send_sync(self, msg: MIMEMultipart) -> None:
        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
            if self.use_tls:
                server.starttls()
            if self.smtp_user:
                server.login(self.smtp_user, self.smtp_password)
            server.send_message(msg)

    async def send(
        self,
        to: str,
        subject: str,
        text: str,
        html: Optional[str] = None
    ) -> None:
        """Send an email.

        Raises:
            smtplib.SMTPException: If the server rejects the message
            OSError: If the server cannot be reached
        """
        msg = self.build_message(to, subject, text, html)

        if not self.smtp_host:
            logger.info(f"SMTP disabled, not sending '{subject}' to {to}")
            logger.debug(text)
            return

        await asyncio.to_thread(self._send_sync, msg)
        logger.info(f"Email '{subject}' sent to {to}")
