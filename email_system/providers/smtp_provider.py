# email_system/providers/smtp_provider.py
"""
SMTP email provider using aiosmtplib.
"""
import logging
import aiosmtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional

logger = logging.getLogger(__name__)


class SMTPProvider:
    """SMTP provider for regular recipient domains."""

    name = "smtp"

    def __init__(
            self,
            host: str,
            port: int,
            username: str,
            password: str,
            from_email: Optional[str] = None,
            start_tls: bool = True,
            timeout: float = 30
    ):
        self.smtp_host = host
        self.smtp_port = port
        self.username = username
        self.password = password
        self.from_email = from_email or username
        self.start_tls = start_tls
        self.timeout = timeout

        logger.info(f"SMTPProvider initialized: {host}:{port}")

    def _build_message(self, to: str, subject: str, html_body: str, text_body: Optional[str]) -> MIMEMultipart:
        message = MIMEMultipart('alternative')
        message['From'] = self.from_email
        message['To'] = to
        message['Subject'] = subject

        # Plain part first so clients prefer HTML
        if text_body:
            message.attach(MIMEText(text_body, 'plain', 'utf-8'))
        message.attach(MIMEText(html_body, 'html', 'utf-8'))
        return message

    async def send_email(
            self,
            to: str,
            subject: str,
            html_body: str,
            text_body: Optional[str] = None
    ) -> bool:
        """
        Send email via SMTP.

        Returns:
            True if the server accepted the message
        """
        message = self._build_message(to, subject, html_body, text_body)

        try:
            await aiosmtplib.send(
                message,
                hostname=self.smtp_host,
                port=self.smtp_port,
                username=self.username,
                password=self.password,
                start_tls=self.start_tls,
                timeout=self.timeout
            )
        except aiosmtplib.SMTPException as e:
            logger.error(f"SMTP error while sending email to {to}: {e}")
            return False
        except OSError as e:
            logger.error(f"SMTP server {self.smtp_host}:{self.smtp_port} unreachable: {e}")
            return False

        logger.info(f"✅ Email sent via SMTP to {to}")
        return True

    async def test_connection(self) -> bool:
        """Connect and authenticate without sending anything."""
        client = aiosmtplib.SMTP(
            hostname=self.smtp_host,
            port=self.smtp_port,
            start_tls=self.start_tls,
            timeout=10
        )
        try:
            await client.connect()
            await client.login(self.username, self.password)
            await client.quit()
            logger.info("SMTP connection test successful")
            return True
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP connection test failed: {e}")
            return False
