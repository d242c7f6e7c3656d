# email_system/services/email_service.py
"""
Email service for payout and reward notifications.
Manages multiple providers with routing based on recipient domain.
"""
import logging
from typing import Dict, List, Any, Optional, Union

from email_system.providers import SMTPProvider, MailgunProvider
from email_system.templates import render_template
from config import Config

logger = logging.getLogger(__name__)


def format_cents(amountCents: int) -> str:
    """1234 -> '12.34'"""
    return f"{amountCents / 100:.2f}"


class EmailService:
    """
    Service for sending notification emails via multiple providers.

    Features:
    - Provider order chosen by recipient domain
    - Secure domains routed to Mailgun first
    - Fallback to the next provider when one fails

    Usage:
        email_service = EmailService()
        await email_service.initialize()
        await email_service.send_payout_notification('member@example.com', 12500, 'po_123')
    """

    def __init__(self, providers: Optional[Dict[str, Union[SMTPProvider, MailgunProvider]]] = None):
        self.providers: Dict[str, Union[SMTPProvider, MailgunProvider]] = dict(providers or {})
        self.secure_domains: List[str] = []
        self._initialized = bool(providers)

    async def initialize(self) -> None:
        """Build providers from Config. Called once at startup."""
        if self._initialized:
            logger.warning("EmailService already initialized")
            return

        logger.info("Initializing EmailService...")

        smtp_host = Config.get(Config.SMTP_HOST)
        smtp_username = Config.get(Config.SMTP_USERNAME)
        smtp_password = Config.get(Config.SMTP_PASSWORD)

        if smtp_host and smtp_username and smtp_password:
            smtp_port = Config.get(Config.SMTP_PORT, 587)
            self.providers['smtp'] = SMTPProvider(
                host=smtp_host,
                port=smtp_port,
                username=smtp_username,
                password=smtp_password,
                from_email=Config.get(Config.SMTP_FROM_EMAIL),
                start_tls=Config.get(Config.SMTP_USE_TLS, True)
            )
            logger.info(f"✓ SMTP provider added: {smtp_host}:{smtp_port}")
        else:
            logger.warning("SMTP provider not configured (missing credentials)")

        mailgun_api_key = Config.get(Config.MAILGUN_API_KEY)
        mailgun_domain = Config.get(Config.MAILGUN_DOMAIN)

        if mailgun_api_key and mailgun_domain:
            mailgun_region = Config.get(Config.MAILGUN_REGION, 'eu')
            self.providers['mailgun'] = MailgunProvider(
                api_key=mailgun_api_key,
                domain=mailgun_domain,
                region=mailgun_region
            )
            logger.info(f"✓ Mailgun provider added: {mailgun_domain} ({mailgun_region})")
        else:
            logger.warning("Mailgun provider not configured (missing credentials)")

        self._load_secure_domains()

        if not self.providers:
            logger.error("❌ No email providers configured!")
        else:
            logger.info(f"✓ EmailService initialized with {len(self.providers)} provider(s)")

        self._initialized = True

    def _load_secure_domains(self) -> None:
        """
        Load secure domains from Config.
        These domains use Mailgun before SMTP.
        """
        domains_str = Config.get(Config.SECURE_EMAIL_DOMAINS, '') or ''

        # "@t-online.de, gmx.de" -> ["@t-online.de", "@gmx.de"]
        domains = [d.strip().lower() for d in domains_str.split(',') if d.strip()]
        self.secure_domains = [d if d.startswith('@') else f'@{d}' for d in domains]

        if self.secure_domains:
            logger.info(f"Loaded {len(self.secure_domains)} secure domains: {self.secure_domains}")

    def _get_email_domain(self, email: str) -> str:
        if '@' in email:
            return '@' + email.split('@')[1].lower()
        return ''

    def _select_provider_for_email(self, email: str) -> List[str]:
        """
        Provider names in priority order for a recipient.

        Secure domains -> Mailgun first, SMTP fallback.
        Others -> SMTP first, Mailgun fallback.
        """
        if self._get_email_domain(email) in self.secure_domains:
            provider_order = ['mailgun', 'smtp']
        else:
            provider_order = ['smtp', 'mailgun']

        return [p for p in provider_order if p in self.providers]

    async def get_providers_status(self) -> Dict[str, bool]:
        """Connection status of every provider."""
        status = {}
        for provider_name, provider in self.providers.items():
            status[provider_name] = await provider.test_connection()
        return status

    async def send_email(self, to: str, template_key: str, variables: Dict[str, Any]) -> bool:
        """
        Render a template and send it, trying providers in order.

        Args:
            to: Recipient email address
            template_key: Key in email_system.templates
            variables: Values for template substitution

        Returns:
            True if any provider accepted the email
        """
        if not to:
            logger.error("Recipient email not provided")
            return False

        provider_order = self._select_provider_for_email(to)
        if not provider_order:
            logger.error("No available providers for sending email")
            return False

        subject, html_body, text_body = render_template(template_key, variables)

        for provider_name in provider_order:
            success = await self.providers[provider_name].send_email(
                to=to,
                subject=subject,
                html_body=html_body,
                text_body=text_body
            )
            if success:
                return True
            logger.warning(f"Failed to send via {provider_name}, trying next provider...")

        logger.error(f"❌ Failed to send {template_key} email via all providers")
        return False

    # ═══════════════════════════════════════════════════════════════════
    # NOTIFICATIONS
    # ═══════════════════════════════════════════════════════════════════

    async def send_payout_notification(self, to: str, amountCents: int, externalReference: Optional[str]) -> bool:
        """Tell a member an automatic payout was sent."""
        return await self.send_email(to, 'payout_completed', {
            'amount': format_cents(amountCents),
            'reference': externalReference or '-',
        })

    async def send_reward_notification(
            self,
            to: str,
            tier: int,
            periodKey: str,
            creditCents: int = 0,
            freeProduct: bool = False
    ) -> bool:
        """Tell a member about a new phase reward."""
        if freeProduct:
            return await self.send_email(to, 'reward_free_product', {
                'tier': tier,
                'period': periodKey,
            })
        return await self.send_email(to, 'reward_store_credit', {
            'tier': tier,
            'period': periodKey,
            'credit': format_cents(creditCents),
        })

    def get_config_info(self) -> Dict[str, Any]:
        return {
            'smtp': {
                'configured': 'smtp' in self.providers,
                'host': Config.get(Config.SMTP_HOST, 'Not configured'),
                'port': Config.get(Config.SMTP_PORT, 587),
            },
            'mailgun': {
                'configured': 'mailgun' in self.providers,
                'domain': Config.get(Config.MAILGUN_DOMAIN, 'Not configured'),
                'region': Config.get(Config.MAILGUN_REGION, 'eu'),
            },
            'secure_domains': self.secure_domains,
            'providers_count': len(self.providers)
        }
