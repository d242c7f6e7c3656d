# email_system/providers/mailgun_provider.py
"""
Mailgun email provider, used first for domains that reject our SMTP relay.
"""
import logging
from typing import Optional

import aiohttp

logger = logging.getLogger(__name__)

MAILGUN_BASE_URLS = {
    'eu': "https://api.eu.mailgun.net/v3",
    'us': "https://api.mailgun.net/v3",
}


class MailgunProvider:
    """Mailgun HTTP API provider."""

    name = "mailgun"

    def __init__(self, api_key: str, domain: str, region: str = 'eu', from_email: Optional[str] = None):
        """
        Args:
            api_key: Mailgun API key
            domain: Sending domain
            region: eu or us
            from_email: Sender address, defaults to noreply@domain
        """
        self.api_key = api_key
        self.domain = domain
        self.region = region
        self.base_url = MAILGUN_BASE_URLS.get(region, MAILGUN_BASE_URLS['us'])
        self.from_email = from_email or f"noreply@{domain}"

        logger.info(f"MailgunProvider initialized: domain={domain}, region={region}")

    def _auth(self) -> aiohttp.BasicAuth:
        return aiohttp.BasicAuth("api", self.api_key)

    async def send_email(
            self,
            to: str,
            subject: str,
            html_body: str,
            text_body: Optional[str] = None
    ) -> bool:
        """
        Send email via the Mailgun messages endpoint.

        Returns:
            True if Mailgun queued the message
        """
        data = {
            "from": self.from_email,
            "to": to,
            "subject": subject,
            "html": html_body,
        }
        if text_body:
            data["text"] = text_body

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                        f"{self.base_url}/{self.domain}/messages",
                        auth=self._auth(),
                        data=data,
                        timeout=aiohttp.ClientTimeout(total=30)
                ) as response:
                    if response.status == 200:
                        logger.info(f"✅ Email sent via Mailgun to {to}")
                        return True

                    error_text = await response.text()
                    logger.error(f"Mailgun API error: {response.status} - {error_text}")
                    return False

        except aiohttp.ClientError as e:
            logger.error(f"HTTP error while sending email via Mailgun to {to}: {e}")
            return False

    async def test_connection(self) -> bool:
        """Check credentials against the domain endpoint."""
        if not self.api_key or not self.domain:
            logger.error("Mailgun API key or domain not configured")
            return False

        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                        f"{self.base_url}/domains/{self.domain}",
                        auth=self._auth(),
                        timeout=aiohttp.ClientTimeout(total=5)
                ) as response:
                    if response.status == 401:
                        logger.error("Mailgun authentication failed")
                        return False
                    logger.info(f"Mailgun auth check passed (status: {response.status})")
                    return True

        except aiohttp.ClientError as e:
            logger.warning(f"Mailgun connection test failed: {e}")
            return False
